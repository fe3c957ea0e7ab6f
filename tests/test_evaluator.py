"""Tests for per-node evaluation semantics."""

import math

import pytest

from py_density.core.context import ContextInputs
from py_density.core.errors import (
    CacheScopeError, MissingContextInputError, RecursionDepthError, UnhandledSwitchCaseError,
)
from py_density.core.evaluator import Evaluator, evaluate
from py_density.core.resolver import resolve
from py_density.core.schema import parse


def sample(document, x=0.0, y=0.0, z=0.0, inputs=None):
    return evaluate(resolve(parse(document)), x, y, z, inputs)


def graph_of(document):
    return resolve(parse(document))


class TestMath:
    """Test arithmetic nodes."""

    def test_constant_and_sum(self):
        """Test constants and summation."""
        assert sample({"Type": "Constant", "Value": 3}) == 3.0
        assert sample({"Type": "Sum", "Inputs": [1, 2, {"Type": "Constant", "Value": 3}]}) == 6.0

    def test_empty_reductions(self):
        """Test that empty Sum and Multiplier read 0."""
        assert sample({"Type": "Sum"}) == 0.0
        assert sample({"Type": "Multiplier"}) == 0.0

    def test_multiplier_short_circuits(self):
        """Test that inputs after an exact zero are not evaluated."""
        # Terrain is not supplied; evaluating it would raise.
        document = {"Type": "Multiplier", "Inputs": [0, {"Type": "Terrain"}]}
        assert sample(document) == 0.0

    def test_multiplier_product(self):
        """Test the product of several inputs."""
        assert sample({"Type": "Multiplier", "Inputs": [2, -3, 0.5]}) == -3.0

    def test_pow_is_odd_symmetric(self):
        """Test that Pow keeps the sign of its input."""
        assert sample({"Type": "Pow", "Exponent": 2, "Input": -3}) == -9.0
        assert sample({"Type": "Pow", "Exponent": 2, "Input": 3}) == 9.0

    def test_pow_of_zero_with_negative_exponent(self):
        """Test that infinities propagate rather than raising."""
        assert sample({"Type": "Pow", "Exponent": -1, "Input": 0}) == math.inf

    def test_sqrt_mirrors_negatives(self):
        """Test Sqrt on both sides of zero."""
        assert sample({"Type": "Sqrt", "Input": 9}) == 3.0
        assert sample({"Type": "Sqrt", "Input": -4}) == -2.0

    def test_unary_constants(self):
        """Test Abs, Inverter, OffsetConstant and AmplitudeConstant."""
        assert sample({"Type": "Abs", "Input": -2}) == 2.0
        assert sample({"Type": "Inverter", "Input": 2}) == -2.0
        assert sample({"Type": "OffsetConstant", "Offset": 1.5, "Input": 1}) == 2.5
        assert sample({"Type": "AmplitudeConstant", "Amplitude": 4, "Input": 0.5}) == 2.0


class TestClamps:
    """Test clamp and min/max nodes."""

    def test_clamp_sorts_walls(self):
        """Test that the walls may be given in either order."""
        clamp = {"Type": "Clamp", "WallA": 1, "WallB": -1}
        assert sample({**clamp, "Input": 5}) == 1.0
        assert sample({**clamp, "Input": -5}) == -1.0
        assert sample({**clamp, "Input": 0.25}) == 0.25

    def test_smooth_clamp_interior_untouched(self):
        """Test that values well inside the walls pass through."""
        assert sample({"Type": "SmoothClamp", "WallA": 0, "WallB": 1, "Range": 0.1, "Input": 0.5}) == pytest.approx(0.5)

    def test_smooth_clamp_bounds(self):
        """Test that far-out values settle on the walls."""
        clamp = {"Type": "SmoothClamp", "WallA": 0, "WallB": 1, "Range": 0.1}
        assert sample({**clamp, "Input": 5}) == pytest.approx(1.0)
        assert sample({**clamp, "Input": -5}) == pytest.approx(0.0)

    def test_smooth_clamp_continuous(self):
        """Test that the smooth clamp has no jump at the wall."""
        clamp = {"Type": "SmoothClamp", "WallA": 0, "WallB": 1, "Range": 0.2}
        below = sample({**clamp, "Input": 1.0 - 1e-7})
        above = sample({**clamp, "Input": 1.0 + 1e-7})
        assert abs(above - below) < 1e-6
        assert below <= 1.0

    def test_floor_and_ceiling(self):
        """Test hard floor and ceiling with their defaults."""
        assert sample({"Type": "Floor", "Input": -1}) == 0.0
        assert sample({"Type": "Ceiling", "Input": 3}) == 1.0
        assert sample({"Type": "Floor", "Floor": 2, "Input": 1}) == 2.0

    def test_smooth_floor_never_below(self):
        """Test that the smooth floor stays at or above the hard floor."""
        for value in (-2.0, -0.05, 0.0, 0.05, 2.0):
            result = sample({"Type": "SmoothFloor", "Floor": 0, "Range": 0.2, "Input": value})
            assert result >= max(value, 0.0) - 1e-12

    def test_min_max(self):
        """Test hard and smooth reductions."""
        assert sample({"Type": "Min", "Inputs": [3, 1, 2]}) == 1.0
        assert sample({"Type": "Max", "Inputs": [3, 1, 2]}) == 3.0
        assert sample({"Type": "Min"}) == 0.0
        assert sample({"Type": "SmoothMin", "Range": 0, "Inputs": [3, 1]}) == 1.0
        assert sample({"Type": "SmoothMin", "Range": 1, "Inputs": [1, 1]}) < 1.0
        assert sample({"Type": "SmoothMax", "Range": 1, "Inputs": [1, 1]}) > 1.0


class TestMapping:
    """Test mapping and mixing nodes."""

    def test_normalizer_defaults(self):
        """Test the default [-1, 1] → [0, 1] mapping."""
        assert sample({"Type": "Normalizer", "Input": 0}) == 0.5
        assert sample({"Type": "Normalizer", "Input": 3}) == 2.0

    def test_normalizer_zero_width(self):
        """Test that a zero-width source range maps to ToMin."""
        assert sample({"Type": "Normalizer", "FromMin": 1, "FromMax": 1, "ToMin": 7, "Input": 5}) == 7.0

    def test_curve_mapper_inline_and_named(self):
        """Test inline curves and curves supplied by name."""
        assert sample({"Type": "CurveMapper", "Curve": [[0, 0], [1, 10]], "Input": 0.5}) == pytest.approx(5.0)

        inputs = ContextInputs(curves={"Ramp": [[0, 0], [1, 2]]})
        assert sample({"Type": "CurveMapper", "Curve": "Ramp", "Input": 0.25}, inputs=inputs) == pytest.approx(0.5)
        assert sample({"Type": "CurveMapper", "Curve": "Linear", "Input": 0.3}) == pytest.approx(0.3)

    def test_unknown_named_curve(self):
        """Test that an unsupplied curve name is a missing context input."""
        with pytest.raises(MissingContextInputError):
            sample({"Type": "CurveMapper", "Curve": "Nope", "Input": 1})

    def test_offset_and_amplitude(self):
        """Test node-valued offset and amplitude."""
        assert sample({"Type": "Offset", "Offset": {"Type": "YValue"}, "Input": 1}, y=4) == 5.0
        assert sample({"Type": "Amplitude", "Amplitude": {"Type": "YValue"}, "Input": 3}, y=2) == 6.0
        assert sample({"Type": "Amplitude", "Input": 3}) == 3.0

    def test_mix(self):
        """Test two-way mixing by gauge."""
        assert sample({"Type": "Mix", "Inputs": [0, 10, 0.25]}) == 2.5
        assert sample({"Type": "Mix", "Inputs": [0, 10]}) == 5.0
        assert sample({"Type": "Mix", "Inputs": [0, 10, 2]}) == 10.0
        assert sample({"Type": "Mix", "Inputs": [4]}) == 4.0

    def test_multi_mix(self):
        """Test keyed interpolation with the gauge as last input."""
        mix = {"Type": "MultiMix", "Keys": [0, 1, 2]}
        assert sample({**mix, "Inputs": [10, 20, 40, 1.5]}) == 30.0
        assert sample({**mix, "Inputs": [10, 20, 40, -1]}) == 10.0
        assert sample({**mix, "Inputs": [10, 20, 40, 5]}) == 40.0


class TestSpatial:
    """Test coordinate transforms."""

    def test_coordinates(self):
        """Test the coordinate accessors."""
        assert sample({"Type": "XValue"}, 1, 2, 3) == 1.0
        assert sample({"Type": "YValue"}, 1, 2, 3) == 2.0
        assert sample({"Type": "ZValue"}, 1, 2, 3) == 3.0

    def test_scale_and_slider(self):
        """Test scaling and sliding the sample point."""
        assert sample({"Type": "Scale", "X": 2, "Input": {"Type": "XValue"}}, x=10) == 5.0
        assert sample({"Type": "Scale", "X": 0, "Input": {"Type": "XValue"}}, x=10) == 10.0
        assert sample({"Type": "Slider", "SlideX": 3, "Input": {"Type": "XValue"}}, x=10) == 7.0

    def test_override_restores(self):
        """Test that an override only applies inside its subtree."""
        document = {
            "Type": "Sum",
            "Inputs": [{"Type": "YOverride", "Override": 42, "Input": {"Type": "YValue"}}, {"Type": "YValue"}],
        }
        assert sample(document, y=1) == 43.0

    def test_override_evaluated_at_original_point(self):
        """Test that the override value sees the untouched coordinate."""
        document = {"Type": "XOverride", "Override": {"Type": "ZValue"}, "Input": {"Type": "XValue"}}
        assert sample(document, 1, 2, 3) == 3.0

    def test_anchor(self):
        """Test that Anchor re-centres shapes on the current point."""
        assert sample({"Type": "Distance"}, 3, 4, 0) == 5.0
        assert sample({"Type": "Anchor", "Input": {"Type": "Distance"}}, 3, 4, 0) == 0.0

    def test_rotator_follows_new_y_axis(self):
        """Test that the rotated field's Y axis points along NewYAxis."""
        document = {"Type": "Rotator", "NewYAxis": {"x": 1, "y": 0, "z": 0}, "Input": {"Type": "YValue"}}
        assert sample(document, 5, 0, 0) == pytest.approx(5.0)

    def test_rotator_loose_components(self):
        """Test that X/Y/Z build the axis when NewYAxis is absent."""
        document = {"Type": "Rotator", "X": 1, "Y": 0, "Z": 0, "Input": {"Type": "YValue"}}
        assert sample(document, 5, 0, 0) == pytest.approx(5.0)


class TestWarps:
    """Test domain warping."""

    def test_gradient_warp(self):
        """Test displacement along the warp source's gradient."""
        document = {"Type": "GradientWarp", "WarpFactor": 2, "Inputs": [{"Type": "XValue"}, {"Type": "XValue"}]}
        assert sample(document, 0, 0, 0) == pytest.approx(2.0)

    def test_gradient_warp_without_source(self):
        """Test that a missing warp source leaves the input unwarped."""
        assert sample({"Type": "GradientWarp", "Inputs": [{"Type": "XValue"}]}, 3, 0, 0) == 3.0

    def test_vector_warp(self):
        """Test displacement along a constant vector."""
        document = {
            "Type": "VectorWarp",
            "WarpFactor": 1.5,
            "WarpVector": {"x": 2, "y": 0, "z": 0},
            "Inputs": [{"Type": "XValue"}, 2],
        }
        assert sample(document) == pytest.approx(3.0)

    def test_vector_warp_density_gradient(self):
        """Test a vector provider as the warp direction."""
        document = {
            "Type": "VectorWarp",
            "WarpVector": {"Type": "DensityGradient", "Density": {"Type": "XValue"}},
            "Inputs": [{"Type": "XValue"}, 1],
        }
        assert sample(document) == pytest.approx(1.0)

    def test_fast_gradient_warp_deterministic(self):
        """Test that the internal warp noise is seeded."""
        document = {"Type": "FastGradientWarp", "Seed": "w", "WarpFactor": 5, "Input": {"Type": "XValue"}}
        assert sample(document, 12.5, 3.25, -7.75) == sample(document, 12.5, 3.25, -7.75)


class TestShapes:
    """Test shape nodes."""

    def test_cube(self):
        """Test the Chebyshev norm."""
        assert sample({"Type": "Cube"}, 1, -3, 2) == 3.0

    def test_ellipsoid_scale(self):
        """Test that Scale stretches the ellipsoid."""
        document = {"Type": "Ellipsoid", "Scale": {"x": 2, "y": 1, "z": 1}}
        assert sample(document, 4, 0, 0) == pytest.approx(2.0)

    def test_cuboid(self):
        """Test the scaled box norm."""
        document = {"Type": "Cuboid", "Scale": {"x": 1, "y": 2, "z": 1}}
        assert sample(document, 0.5, 3, 0) == pytest.approx(1.5)

    def test_cylinder(self):
        """Test radial times axial distance."""
        assert sample({"Type": "Cylinder"}, 3, 2, 4) == pytest.approx(10.0)

    def test_plane(self):
        """Test signed distance to a plane."""
        assert sample({"Type": "Plane", "PlaneNormal": {"x": 0, "y": 2, "z": 0}}, 0, 3, 0) == pytest.approx(3.0)
        assert sample({"Type": "Plane"}, 0, -3, 0) == pytest.approx(-3.0)

    def test_axis(self):
        """Test distance to a line."""
        assert sample({"Type": "Axis"}, 3, 10, 4) == pytest.approx(5.0)

    def test_shell(self):
        """Test distance times angle, with mirroring."""
        assert sample({"Type": "Shell"}, 2, 0, 0) == pytest.approx(180.0)
        assert sample({"Type": "Shell"}, 0, 2, 0) == pytest.approx(0.0)
        assert sample({"Type": "Shell", "Mirror": True}, 0, -2, 0) == pytest.approx(0.0)
        assert sample({"Type": "Shell"}, 0, -2, 0) == pytest.approx(360.0)

    def test_angle(self):
        """Test the angle to a reference vector."""
        assert sample({"Type": "Angle"}, 1, 0, 0) == pytest.approx(90.0)
        assert sample({"Type": "Angle", "Vector": [0, 0, 1]}, 0, 0, -1) == pytest.approx(180.0)
        assert sample({"Type": "Angle", "Vector": [0, 0, 1], "IsAxis": True}, 0, 0, -1) == pytest.approx(0.0)

    def test_distance_curve(self):
        """Test that shapes map their distance through Curve."""
        assert sample({"Type": "Distance", "Curve": {"Type": "Not"}}, 0.25, 0, 0) == pytest.approx(0.75)


class TestWorldContext:
    """Test nodes backed by context inputs."""

    def test_terrain(self):
        """Test constant and callable terrain."""
        assert sample({"Type": "Terrain"}, inputs=ContextInputs(terrain=64)) == 64.0
        inputs = ContextInputs(terrain=lambda x, y, z: x + z)
        assert sample({"Type": "Terrain"}, 1, 0, 2, inputs) == 3.0

    def test_missing_terrain(self):
        """Test that an absent context input raises with the node path."""
        with pytest.raises(MissingContextInputError) as info:
            sample({"Type": "Abs", "Input": {"Type": "Terrain"}})

        assert info.value.kind == "MissingContextInput"
        assert info.value.path == "/Input"

    def test_base_height(self):
        """Test base height lookup and distance mode."""
        inputs = ContextInputs(base_heights={"Base": 64, "Sea": 40})
        assert sample({"Type": "BaseHeight"}, inputs=inputs) == 64.0
        assert sample({"Type": "BaseHeight", "BaseHeightName": "Sea"}, inputs=inputs) == 40.0
        assert sample({"Type": "BaseHeight", "Distance": True}, y=70, inputs=inputs) == 6.0

    def test_missing_base_height(self):
        """Test that an unknown base height name raises."""
        with pytest.raises(MissingContextInputError):
            sample({"Type": "BaseHeight", "BaseHeightName": "Nope"})

    def test_gradient(self):
        """Test the vertical gradient and its defaults."""
        assert sample({"Type": "Gradient"}, y=160) == pytest.approx(0.5)
        assert sample({"Type": "Gradient", "FromY": 0, "ToY": 10, "From": 1, "To": -1}, y=20) == pytest.approx(-3.0)
        assert sample({"Type": "Gradient", "FromY": 5, "ToY": 5, "From": 2}, y=100) == 2.0

    def test_biome_edge(self):
        """Test the biome-edge distance input."""
        assert sample({"Type": "DistanceToBiomeEdge"}, inputs=ContextInputs(distance_to_biome_edge=12)) == 12.0

    def test_cell_wall_distance(self):
        """Test half the gap between the two nearest positions."""
        document = {"Type": "CellWallDistance", "Positions": [[0, 0, 0], [10, 0, 0]]}
        assert sample(document, 2, 0, 0) == pytest.approx(3.0)
        assert sample({**document, "MaxDistance": 1}, 2, 0, 0) == pytest.approx(1.0)


class TestSwitch:
    """Test switch channels."""

    CASES = [{"CaseState": "Desert", "Density": 7}, {"CaseState": "Forest", "Density": 3}]

    def test_matching_case(self):
        """Test that SwitchState selects the matching case."""
        document = {
            "Type": "SwitchState",
            "Name": "Biome",
            "SwitchState": "Desert",
            "Input": {"Type": "Switch", "Name": "Biome", "SwitchCases": self.CASES},
        }
        assert sample(document) == 7.0

    def test_state_from_context_inputs(self):
        """Test initial switch states from the context."""
        inputs = ContextInputs(switch_states={"Biome": "Forest"})
        assert sample({"Type": "Switch", "Name": "Biome", "SwitchCases": self.CASES}, inputs=inputs) == 3.0

    def test_fallback_input(self):
        """Test the default input when no case matches."""
        assert sample({"Type": "Switch", "SwitchCases": self.CASES, "Input": 1}) == 1.0

    def test_unhandled_case(self):
        """Test that no match and no default raises."""
        with pytest.raises(UnhandledSwitchCaseError):
            sample({"Type": "Switch", "SwitchCases": self.CASES})

    def test_numeric_states_match(self):
        """Test that a state written as 2 selects a case written as 2.0."""
        document = {
            "Type": "SwitchState",
            "SwitchState": 2,
            "Input": {"Type": "Switch", "SwitchCases": [{"CaseState": 1.0, "Density": 5}, {"CaseState": 2.0, "Density": 6}]},
        }
        assert sample(document) == 6.0

    def test_switch_state_without_input(self):
        """Test that SwitchState with nothing to evaluate reads 0."""
        assert sample({"Type": "SwitchState", "SwitchState": "Desert"}) == 0.0


class TestCaching:
    """Test memoizing nodes."""

    def test_cache_2d_ignores_y(self):
        """Test that Cache2D keys on (x, z) only within a session."""
        session = Evaluator(graph_of({"Type": "Cache2D", "Input": {"Type": "YValue"}})).session()

        assert session.evaluate(0, 1, 0) == 1.0
        assert session.evaluate(0, 5, 0) == 1.0
        assert session.stats["hits"] == 1

    def test_sessions_do_not_share(self):
        """Test that a fresh session recomputes."""
        evaluator = Evaluator(graph_of({"Type": "Cache2D", "Input": {"Type": "YValue"}}))
        assert evaluator.session().evaluate(0, 1, 0) == 1.0
        assert evaluator.session().evaluate(0, 5, 0) == 5.0

    def test_cache_keys_full_coordinate(self):
        """Test that Cache distinguishes y."""
        session = Evaluator(graph_of({"Type": "Cache", "Input": {"Type": "YValue"}})).session()
        assert session.evaluate(0, 1, 0) == 1.0
        assert session.evaluate(0, 5, 0) == 5.0

    def test_cache_capacity(self):
        """Test that a bounded cache evicts old entries."""
        session = Evaluator(graph_of({"Type": "Cache", "Capacity": 2, "Input": {"Type": "XValue"}})).session()
        for x in range(5):
            session.evaluate(x, 0, 0)
        assert len(session.memo) == 2

    def test_y_sampled(self):
        """Test that YSampled evaluates at its fixed Y."""
        assert sample({"Type": "YSampled", "Y": 7, "Input": {"Type": "YValue"}}, y=100) == 7.0

    def test_single_instance_export_computed_once(self):
        """Test that import sites share one single-instance result."""
        document = {
            "Type": "Sum",
            "Inputs": [
                {"Type": "Exported", "Name": "S", "SingleInstance": True, "Input": {"Type": "SimplexNoise2D", "Scale": 8}},
                {"Type": "Imported", "Name": "S"},
                {"Type": "Imported", "Name": "S"},
            ],
        }
        session = Evaluator(graph_of(document)).session()
        total = session.evaluate(1.5, 0, 2.5)
        single = sample({"Type": "SimplexNoise2D", "Scale": 8}, 1.5, 0, 2.5)

        assert total == pytest.approx(3 * single)
        assert session.stats["misses"] == 1
        assert session.stats["hits"] == 2

    def test_scope_mismatch(self):
        """Test that a session refuses another cache scope."""
        session = Evaluator(graph_of({"Type": "Cache", "Input": 1})).session(scope="chunk-a")
        session.evaluate(0, 0, 0, scope="chunk-a")
        with pytest.raises(CacheScopeError):
            session.evaluate(0, 0, 0, scope="chunk-b")

    def test_memo_respects_anchor(self):
        """Test that cached values are keyed on the anchor too."""
        document = {
            "Type": "Sum",
            "Inputs": [
                {"Type": "Cache", "Input": {"Type": "Distance"}},
                {"Type": "Anchor", "Input": {"Type": "Imported", "Name": "D"}},
                {"Type": "Exported", "Name": "D", "SingleInstance": True, "Input": {"Type": "Distance"}},
            ],
        }
        assert sample(document, 3, 4, 0) == pytest.approx(10.0)


class TestNoiseNodes:
    """Test noise node evaluation."""

    def test_simplex_deterministic_and_bounded(self):
        """Test repeatability and the [-1, 1] range."""
        document = {"Type": "SimplexNoise3D", "ScaleXZ": 20, "ScaleY": 10, "Octaves": 4, "Seed": "caves"}
        first = sample(document, 12.3, 4.5, 67.8)

        assert first == sample(document, 12.3, 4.5, 67.8)
        assert -1.0 <= first <= 1.0

    def test_seed_changes_output(self):
        """Test that different seeds give different fields."""
        values = {
            sample({"Type": "SimplexNoise2D", "Scale": 10, "Seed": seed}, 12.3, 0, 45.6)
            for seed in ("a", "b", "c")
        }
        assert len(values) > 1

    def test_cell_noise_deterministic(self):
        """Test that cell noise is repeatable."""
        document = {"Type": "CellNoise2D", "Scale": 16, "ReturnType": "Distance2Sub", "Seed": 7}
        assert sample(document, 3.3, 0, 9.1) == sample(document, 3.3, 0, 9.1)


class TestPositionsNodes:
    """Test positions-based nodes."""

    def test_positions_cell_noise(self):
        """Test horizontal distance to the nearest position."""
        document = {"Type": "PositionsCellNoise", "Positions": [[0, 0, 0]]}
        assert sample(document, 3, 99, 4) == pytest.approx(4.0)

    def test_positions_3d_falloff(self):
        """Test the falloff around the nearest position."""
        document = {"Type": "Positions3D", "Positions": [[0, 0, 0]], "MaxDistance": 10}
        assert sample(document, 5, 0, 0) == pytest.approx(0.5)
        assert sample(document, 20, 0, 0) == 0.0

    def test_positions_3d_density_anchored(self):
        """Test that Density is anchored at the nearest position."""
        document = {"Type": "Positions3D", "Positions": [[10, 0, 0]], "Density": {"Type": "Distance"}}
        assert sample(document, 13, 4, 0) == pytest.approx(5.0)

    def test_named_positions(self):
        """Test positions supplied by name."""
        inputs = ContextInputs(positions={"Villages": [[0, 0, 0]]})
        document = {"Type": "Positions3D", "Positions": "Villages", "MaxDistance": 4}
        assert sample(document, 2, 0, 0, inputs) == pytest.approx(0.5)

    def test_pinch_identity_curve(self):
        """Test that the identity pinch curve leaves the point in place."""
        document = {"Type": "PositionsPinch", "Positions": [[0, 0, 0]], "Input": {"Type": "XValue"}}
        assert sample(document, 3, 0, 0) == pytest.approx(3.0)

    def test_pinch_constant_curve(self):
        """Test that a constant pinch curve pulls points to a fixed radius."""
        document = {
            "Type": "PositionsPinch",
            "Positions": [[0, 0, 0]],
            "PinchCurve": 1,
            "Input": {"Type": "XValue"},
        }
        assert sample(document, 3, 0, 0) == pytest.approx(1.0)

    def test_twist(self):
        """Test rotation about the twist axis through the nearest position."""
        document = {
            "Type": "PositionsTwist",
            "Positions": [[0, 0, 0]],
            "TwistCurve": 90,
            "Input": {"Type": "ZValue"},
        }
        # (1, 0, 0) rotated 90 degrees about +Y lands on (0, 0, -1).
        assert sample(document, 1, 0, 0) == pytest.approx(-1.0)


class TestNonFiniteCoordinates:
    """Test sampling where an override moves the point to infinity or NaN."""

    @pytest.mark.parametrize("override", [{"Type": "Pow", "Exponent": -1, "Input": 0}, float("nan")])
    @pytest.mark.parametrize("type_name", ["SimplexNoise2D", "SimplexNoise3D", "CellNoise2D", "CellNoise3D"])
    def test_noise_reads_nan(self, override, type_name):
        """Test that noise at a non-finite coordinate is NaN."""
        document = {"Type": "XOverride", "Override": override, "Input": {"Type": type_name, "Scale": 8}}
        assert math.isnan(sample(document))

    def test_fast_gradient_warp(self):
        """Test that a non-finite warp gradient carries NaN to its input."""
        document = {
            "Type": "XOverride",
            "Override": float("nan"),
            "Input": {"Type": "FastGradientWarp", "WarpScale": 10, "Input": {"Type": "ZValue"}},
        }
        assert math.isnan(sample(document, z=5.0))

    def test_positions_queries(self):
        """Test that positions nodes treat a non-finite point as having no neighbour."""
        inf_x = {"Type": "Pow", "Exponent": -1, "Input": 0}
        positions = [[0, 0, 0], [4, 0, 0]]

        nearest = {"Type": "Positions3D", "Positions": positions}
        cells = {"Type": "PositionsCellNoise", "Positions": positions}

        assert sample({"Type": "XOverride", "Override": inf_x, "Input": nearest}) == 0.0
        assert sample({"Type": "XOverride", "Override": inf_x, "Input": cells}) == math.inf


class TestLimits:
    """Test evaluation limits."""

    def test_recursion_depth(self):
        """Test the evaluation depth cap."""
        document = {"Type": "Constant", "Value": 1}
        for _ in range(20):
            document = {"Type": "Abs", "Input": document}
        graph = graph_of(document)

        assert Evaluator(graph).evaluate(0, 0, 0) == 1.0
        with pytest.raises(RecursionDepthError):
            Evaluator(graph, max_depth=10).evaluate(0, 0, 0)
