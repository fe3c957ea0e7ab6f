"""
Density AST.

Every density node type is a frozen dataclass registered under its JSON
``Type`` discriminator. Field metadata records the JSON key, the field kind
and the fallback used when the field is absent, which drives both the parser
(``parse``) and the serializer (``dump``).

Input slots hold either a nested node or a ``Literal`` (a bare JSON number).
Absent fields are stored as ``None`` (or an empty tuple for lists) so that
serialization only emits what the document set; ``node.get(name)`` applies
the per-type fallback.
"""

import json
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, ClassVar, Dict, Iterator, Optional, Tuple, Type, Union

import structlog

from ..config import settings
from ..utils.recursion import ensure_recursion_limit
from .curves import Curve, build_curve
from .errors import TooDeepError, TypeMismatchError, UnknownTypeError
from .noise import DISTANCE_FUNCTIONS, RETURN_TYPES
from .positions import parse_points

logger = structlog.get_logger()


# Value types

@dataclass(frozen=True)
class Literal:
    """A bare number standing in an input slot."""
    value: float


@dataclass(frozen=True)
class Vec3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __iter__(self):
        yield self.x
        yield self.y
        yield self.z


@dataclass(frozen=True)
class CurveRef:
    """Inline curve or the name of a curve supplied through context inputs."""
    name: Optional[str] = None
    curve: Optional[Curve] = None


@dataclass(frozen=True)
class PositionsRef:
    """Inline point list or the name of a positions asset."""
    name: Optional[str] = None
    points: Optional[Tuple[Tuple[float, float, float], ...]] = None


@dataclass(frozen=True)
class SwitchCase:
    state: str
    density: Optional[Any] = None


# Field declarations

def _spec(kind: str, key: str, default: Any = None, empty: Any = None, **extra):
    return field(default=empty, metadata={"kind": kind, "key": key, "default": default, **extra})


def number(key: str, default: Optional[float] = None):
    return _spec("number", key, default)


def integer(key: str, default: Optional[int] = None):
    return _spec("integer", key, default)


def octave_count(key: str, default: int):
    """Octave count, capped by ``settings.max_octaves``."""
    return _spec("octaves", key, default)


def string(key: str, default: Optional[str] = None):
    return _spec("string", key, default)


def label(key: str, default: Optional[str] = None):
    """String field that also accepts numbers (seeds, switch states)."""
    return _spec("label", key, default)


def choice(key: str, default: str, options: Tuple[str, ...]):
    """Enumerated string, given bare or as ``{"Type": ...}``."""
    return _spec("choice", key, default, options=options)


def boolean(key: str, default: bool = False):
    return _spec("boolean", key, default)


def operand(key: str = "Input"):
    return _spec("operand", key)


def operands(key: str = "Inputs"):
    return _spec("operands", key, empty=())


def numbers(key: str, default: Tuple[float, ...] = ()):
    return _spec("numbers", key, default, empty=())


def vector(key: str, default: Optional[Vec3] = Vec3(0.0, 1.0, 0.0)):
    return _spec("vector", key, default)


def curve(key: str = "Curve"):
    return _spec("curve", key)


def positions(key: str = "Positions"):
    return _spec("positions", key)


def cases(key: str = "SwitchCases"):
    return _spec("cases", key, empty=())


@dataclass(frozen=True)
class DensityNode:
    """Base of every node type. ``uid`` is assigned by the resolver."""

    TYPE: ClassVar[str] = ""
    CATEGORY: ClassVar[str] = ""
    # Vector field filled from loose X/Y/Z components when absent.
    PRIMARY_VECTOR: ClassVar[Optional[str]] = None

    uid: int = field(default=-1, compare=False, repr=False)

    def get(self, name: str) -> Any:
        """Field value, or the type's fallback when the document left it unset."""
        value = getattr(self, name)
        if value is None or (isinstance(value, tuple) and not value):
            return self.__dataclass_fields__[name].metadata.get("default")
        return value


Operand = Union[DensityNode, Literal]

NODE_TYPES: Dict[str, Type[DensityNode]] = {}
VECTOR_TYPES: Dict[str, Type[DensityNode]] = {}


def node_type(category: str, type_name: str = None, registry: Dict[str, Type[DensityNode]] = NODE_TYPES):
    """Register a node class under its ``Type`` discriminator."""
    def register(cls):
        cls.TYPE = type_name or cls.__name__
        cls.CATEGORY = category
        registry[cls.TYPE] = cls
        return cls
    return register


# Noise

@node_type("Noise")
@dataclass(frozen=True)
class SimplexNoise2D(DensityNode):
    lacunarity: Optional[float] = number("Lacunarity", 2.0)
    persistence: Optional[float] = number("Persistence", 0.5)
    scale: Optional[float] = number("Scale", 1.0)
    octaves: Optional[int] = octave_count("Octaves", 1)
    seed: Optional[str] = label("Seed")


@node_type("Noise")
@dataclass(frozen=True)
class SimplexNoise3D(DensityNode):
    lacunarity: Optional[float] = number("Lacunarity", 2.0)
    persistence: Optional[float] = number("Persistence", 0.5)
    scale_xz: Optional[float] = number("ScaleXZ", 1.0)
    scale_y: Optional[float] = number("ScaleY", 1.0)
    octaves: Optional[int] = octave_count("Octaves", 1)
    seed: Optional[str] = label("Seed")


@node_type("Noise")
@dataclass(frozen=True)
class CellNoise2D(DensityNode):
    scale: Optional[float] = number("Scale", 1.0)
    seed: Optional[str] = label("Seed")
    return_type: Optional[str] = choice("ReturnType", "Distance", RETURN_TYPES)
    distance_function: Optional[str] = choice("DistanceFunction", "Euclidean", DISTANCE_FUNCTIONS)
    jitter: Optional[float] = number("Jitter", 1.0)


@node_type("Noise")
@dataclass(frozen=True)
class CellNoise3D(DensityNode):
    scale: Optional[float] = number("Scale", 1.0)
    seed: Optional[str] = label("Seed")
    return_type: Optional[str] = choice("ReturnType", "Distance", RETURN_TYPES)
    distance_function: Optional[str] = choice("DistanceFunction", "Euclidean", DISTANCE_FUNCTIONS)
    jitter: Optional[float] = number("Jitter", 1.0)


# Math

@node_type("Math")
@dataclass(frozen=True)
class Constant(DensityNode):
    value: Optional[float] = number("Value", 0.0)


@node_type("Math")
@dataclass(frozen=True)
class Sum(DensityNode):
    inputs: Tuple[Operand, ...] = operands()


@node_type("Math")
@dataclass(frozen=True)
class Multiplier(DensityNode):
    inputs: Tuple[Operand, ...] = operands()


@node_type("Math")
@dataclass(frozen=True)
class Abs(DensityNode):
    input: Optional[Operand] = operand()


@node_type("Math")
@dataclass(frozen=True)
class Inverter(DensityNode):
    input: Optional[Operand] = operand()


@node_type("Math")
@dataclass(frozen=True)
class Sqrt(DensityNode):
    input: Optional[Operand] = operand()


@node_type("Math")
@dataclass(frozen=True)
class Pow(DensityNode):
    exponent: Optional[float] = number("Exponent", 2.0)
    input: Optional[Operand] = operand()


@node_type("Math")
@dataclass(frozen=True)
class OffsetConstant(DensityNode):
    offset: Optional[float] = number("Offset", 0.0)
    input: Optional[Operand] = operand()


@node_type("Math")
@dataclass(frozen=True)
class AmplitudeConstant(DensityNode):
    amplitude: Optional[float] = number("Amplitude", 1.0)
    input: Optional[Operand] = operand()


# Clamp family

@node_type("Clamp")
@dataclass(frozen=True)
class Clamp(DensityNode):
    wall_a: Optional[float] = number("WallA", 0.0)
    wall_b: Optional[float] = number("WallB", 1.0)
    input: Optional[Operand] = operand()


@node_type("Clamp")
@dataclass(frozen=True)
class SmoothClamp(DensityNode):
    wall_a: Optional[float] = number("WallA", 0.0)
    wall_b: Optional[float] = number("WallB", 1.0)
    range: Optional[float] = number("Range", 0.1)
    input: Optional[Operand] = operand()


@node_type("Clamp")
@dataclass(frozen=True)
class Floor(DensityNode):
    floor: Optional[float] = number("Floor", 0.0)
    input: Optional[Operand] = operand()


@node_type("Clamp")
@dataclass(frozen=True)
class SmoothFloor(DensityNode):
    floor: Optional[float] = number("Floor", 0.0)
    range: Optional[float] = number("Range", 0.1)
    input: Optional[Operand] = operand()


@node_type("Clamp")
@dataclass(frozen=True)
class Ceiling(DensityNode):
    ceiling: Optional[float] = number("Ceiling", 1.0)
    input: Optional[Operand] = operand()


@node_type("Clamp")
@dataclass(frozen=True)
class SmoothCeiling(DensityNode):
    ceiling: Optional[float] = number("Ceiling", 1.0)
    range: Optional[float] = number("Range", 0.1)
    input: Optional[Operand] = operand()


# Min / max

@node_type("MinMax")
@dataclass(frozen=True)
class Min(DensityNode):
    inputs: Tuple[Operand, ...] = operands()


@node_type("MinMax")
@dataclass(frozen=True)
class SmoothMin(DensityNode):
    range: Optional[float] = number("Range", 0.1)
    inputs: Tuple[Operand, ...] = operands()


@node_type("MinMax")
@dataclass(frozen=True)
class Max(DensityNode):
    inputs: Tuple[Operand, ...] = operands()


@node_type("MinMax")
@dataclass(frozen=True)
class SmoothMax(DensityNode):
    range: Optional[float] = number("Range", 0.1)
    inputs: Tuple[Operand, ...] = operands()


# Mapping

@node_type("Mapping")
@dataclass(frozen=True)
class Normalizer(DensityNode):
    from_min: Optional[float] = number("FromMin", -1.0)
    from_max: Optional[float] = number("FromMax", 1.0)
    to_min: Optional[float] = number("ToMin", 0.0)
    to_max: Optional[float] = number("ToMax", 1.0)
    input: Optional[Operand] = operand()


@node_type("Mapping")
@dataclass(frozen=True)
class CurveMapper(DensityNode):
    curve: Optional[CurveRef] = curve()
    input: Optional[Operand] = operand()


@node_type("Mapping")
@dataclass(frozen=True)
class Offset(DensityNode):
    offset: Optional[Operand] = operand("Offset")
    input: Optional[Operand] = operand()


@node_type("Mapping")
@dataclass(frozen=True)
class Amplitude(DensityNode):
    amplitude: Optional[Operand] = operand("Amplitude")
    input: Optional[Operand] = operand()


# Mixing

@node_type("Mixing")
@dataclass(frozen=True)
class Mix(DensityNode):
    inputs: Tuple[Operand, ...] = operands()


@node_type("Mixing")
@dataclass(frozen=True)
class MultiMix(DensityNode):
    keys: Tuple[float, ...] = numbers("Keys", (0.0, 1.0))
    inputs: Tuple[Operand, ...] = operands()


# Spatial transforms

@node_type("SpatialTransform")
@dataclass(frozen=True)
class Scale(DensityNode):
    x: Optional[float] = number("X", 1.0)
    y: Optional[float] = number("Y", 1.0)
    z: Optional[float] = number("Z", 1.0)
    input: Optional[Operand] = operand()


@node_type("SpatialTransform")
@dataclass(frozen=True)
class Slider(DensityNode):
    slide_x: Optional[float] = number("SlideX", 0.0)
    slide_y: Optional[float] = number("SlideY", 0.0)
    slide_z: Optional[float] = number("SlideZ", 0.0)
    input: Optional[Operand] = operand()


@node_type("SpatialTransform")
@dataclass(frozen=True)
class Rotator(DensityNode):
    PRIMARY_VECTOR = "new_y_axis"

    new_y_axis: Optional[Any] = vector("NewYAxis")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    spin_angle: Optional[float] = number("SpinAngle", 0.0)
    input: Optional[Operand] = operand()


@node_type("SpatialTransform")
@dataclass(frozen=True)
class Anchor(DensityNode):
    reverse: Optional[bool] = boolean("Reverse")
    input: Optional[Operand] = operand()


@node_type("SpatialTransform")
@dataclass(frozen=True)
class XOverride(DensityNode):
    input: Optional[Operand] = operand()
    override: Optional[Operand] = operand("Override")


@node_type("SpatialTransform")
@dataclass(frozen=True)
class YOverride(DensityNode):
    input: Optional[Operand] = operand()
    override: Optional[Operand] = operand("Override")


@node_type("SpatialTransform")
@dataclass(frozen=True)
class ZOverride(DensityNode):
    input: Optional[Operand] = operand()
    override: Optional[Operand] = operand("Override")


# Warps

@node_type("Warp")
@dataclass(frozen=True)
class GradientWarp(DensityNode):
    sample_range: Optional[float] = number("SampleRange", 1.0)
    warp_factor: Optional[float] = number("WarpFactor", 1.0)
    two_d: Optional[bool] = boolean("2D")
    y_for_2d: Optional[float] = number("YFor2D", 0.0)
    inputs: Tuple[Operand, ...] = operands()


@node_type("Warp")
@dataclass(frozen=True)
class FastGradientWarp(DensityNode):
    warp_scale: Optional[float] = number("WarpScale", 100.0)
    warp_lacunarity: Optional[float] = number("WarpLacunarity", 2.0)
    warp_persistence: Optional[float] = number("WarpPersistence", 0.5)
    warp_octaves: Optional[int] = octave_count("WarpOctaves", 3)
    warp_factor: Optional[float] = number("WarpFactor", 1.0)
    seed: Optional[str] = label("Seed")
    two_d: Optional[bool] = boolean("2D")
    input: Optional[Operand] = operand()


@node_type("Warp")
@dataclass(frozen=True)
class VectorWarp(DensityNode):
    PRIMARY_VECTOR = "warp_vector"

    warp_factor: Optional[float] = number("WarpFactor", 1.0)
    warp_vector: Optional[Any] = vector("WarpVector")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    inputs: Tuple[Operand, ...] = operands()


# Shapes

@node_type("Shape")
@dataclass(frozen=True)
class Distance(DensityNode):
    curve: Optional[CurveRef] = curve()


@node_type("Shape")
@dataclass(frozen=True)
class Cube(DensityNode):
    curve: Optional[CurveRef] = curve()


@node_type("Shape")
@dataclass(frozen=True)
class Ellipsoid(DensityNode):
    PRIMARY_VECTOR = "scale"

    curve: Optional[CurveRef] = curve()
    scale: Optional[Any] = vector("Scale", Vec3(1.0, 1.0, 1.0))
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    spin: Optional[float] = number("Spin", 0.0)
    new_y_axis: Optional[Any] = vector("NewYAxis")


@node_type("Shape")
@dataclass(frozen=True)
class Cuboid(DensityNode):
    PRIMARY_VECTOR = "scale"

    curve: Optional[CurveRef] = curve()
    scale: Optional[Any] = vector("Scale", Vec3(1.0, 1.0, 1.0))
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    spin: Optional[float] = number("Spin", 0.0)
    new_y_axis: Optional[Any] = vector("NewYAxis")


@node_type("Shape")
@dataclass(frozen=True)
class Cylinder(DensityNode):
    axial_curve: Optional[CurveRef] = curve("AxialCurve")
    radial_curve: Optional[CurveRef] = curve("RadialCurve")
    spin: Optional[float] = number("Spin", 0.0)
    new_y_axis: Optional[Any] = vector("NewYAxis")


@node_type("Shape")
@dataclass(frozen=True)
class Plane(DensityNode):
    PRIMARY_VECTOR = "plane_normal"

    plane_normal: Optional[Any] = vector("PlaneNormal")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    curve: Optional[CurveRef] = curve()


@node_type("Shape")
@dataclass(frozen=True)
class Axis(DensityNode):
    PRIMARY_VECTOR = "axis"

    axis: Optional[Any] = vector("Axis")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    curve: Optional[CurveRef] = curve()
    is_anchored: Optional[bool] = boolean("IsAnchored")


@node_type("Shape")
@dataclass(frozen=True)
class Shell(DensityNode):
    PRIMARY_VECTOR = "axis"

    axis: Optional[Any] = vector("Axis")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    mirror: Optional[bool] = boolean("Mirror")
    angle_curve: Optional[CurveRef] = curve("AngleCurve")
    distance_curve: Optional[CurveRef] = curve("DistanceCurve")


@node_type("Shape")
@dataclass(frozen=True)
class Angle(DensityNode):
    vector_provider: Optional[Any] = vector("VectorProvider", None)
    vector: Optional[Any] = vector("Vector")
    is_axis: Optional[bool] = boolean("IsAxis")


# Coordinate accessors

@node_type("CoordinateAccessor")
@dataclass(frozen=True)
class XValue(DensityNode):
    pass


@node_type("CoordinateAccessor")
@dataclass(frozen=True)
class YValue(DensityNode):
    pass


@node_type("CoordinateAccessor")
@dataclass(frozen=True)
class ZValue(DensityNode):
    pass


# World context

@node_type("WorldContext")
@dataclass(frozen=True)
class Terrain(DensityNode):
    pass


@node_type("WorldContext")
@dataclass(frozen=True)
class BaseHeight(DensityNode):
    base_height_name: Optional[str] = string("BaseHeightName", "Base")
    distance: Optional[bool] = boolean("Distance")


@node_type("WorldContext")
@dataclass(frozen=True)
class CellWallDistance(DensityNode):
    positions: Optional[PositionsRef] = positions()
    max_distance: Optional[float] = number("MaxDistance", 0.0)


@node_type("WorldContext")
@dataclass(frozen=True)
class DistanceToBiomeEdge(DensityNode):
    pass


@node_type("WorldContext")
@dataclass(frozen=True)
class Gradient(DensityNode):
    from_value: Optional[float] = number("From", 0.0)
    to_value: Optional[float] = number("To", 1.0)
    from_y: Optional[float] = number("FromY", 0.0)
    to_y: Optional[float] = number("ToY")


# Caching

@node_type("Cache")
@dataclass(frozen=True)
class Cache(DensityNode):
    capacity: Optional[int] = integer("Capacity", 0)
    input: Optional[Operand] = operand()


@node_type("Cache")
@dataclass(frozen=True)
class Cache2D(DensityNode):
    input: Optional[Operand] = operand()


@node_type("Cache")
@dataclass(frozen=True)
class YSampled(DensityNode):
    y: Optional[float] = number("Y", 0.0)
    input: Optional[Operand] = operand()


# Switching

@node_type("Switch")
@dataclass(frozen=True)
class Switch(DensityNode):
    name: Optional[str] = string("Name", "Default")
    cases: Tuple[SwitchCase, ...] = cases()
    input: Optional[Operand] = operand()


@node_type("Switch")
@dataclass(frozen=True)
class SwitchState(DensityNode):
    name: Optional[str] = string("Name", "Default")
    switch_state: Optional[str] = label("SwitchState", "")
    input: Optional[Operand] = operand()


# Positions-based

@node_type("PositionsBased")
@dataclass(frozen=True)
class PositionsCellNoise(DensityNode):
    positions: Optional[PositionsRef] = positions()
    return_type: Optional[str] = choice("ReturnType", "Distance", RETURN_TYPES)
    distance_function: Optional[str] = choice("DistanceFunction", "Euclidean", DISTANCE_FUNCTIONS)
    max_distance: Optional[float] = number("MaxDistance", 0.0)


@node_type("PositionsBased")
@dataclass(frozen=True)
class Positions3D(DensityNode):
    positions: Optional[PositionsRef] = positions()
    density: Optional[Operand] = operand("Density")
    max_distance: Optional[float] = number("MaxDistance", 0.0)


@node_type("PositionsBased")
@dataclass(frozen=True)
class PositionsPinch(DensityNode):
    positions: Optional[PositionsRef] = positions()
    pinch_curve: Optional[CurveRef] = curve("PinchCurve")
    max_distance: Optional[float] = number("MaxDistance", 0.0)
    normalize_distance: Optional[bool] = boolean("NormalizeDistance")
    horizontal_pinch: Optional[bool] = boolean("HorizontalPinch")
    positions_max_y: Optional[float] = number("PositionsMaxY")
    positions_min_y: Optional[float] = number("PositionsMinY")
    input: Optional[Operand] = operand()


@node_type("PositionsBased")
@dataclass(frozen=True)
class PositionsTwist(DensityNode):
    PRIMARY_VECTOR = "twist_axis"

    positions: Optional[PositionsRef] = positions()
    twist_curve: Optional[CurveRef] = curve("TwistCurve")
    twist_axis: Optional[Any] = vector("TwistAxis")
    x: Optional[float] = number("X")
    y: Optional[float] = number("Y")
    z: Optional[float] = number("Z")
    max_distance: Optional[float] = number("MaxDistance", 0.0)
    normalize_distance: Optional[bool] = boolean("NormalizeDistance")
    input: Optional[Operand] = operand()


# Import / export / pipeline

@node_type("ImportExport")
@dataclass(frozen=True)
class Exported(DensityNode):
    name: Optional[str] = string("Name")
    single_instance: Optional[bool] = boolean("SingleInstance")
    density: Optional[Operand] = operand("Density")
    input: Optional[Operand] = operand()


@node_type("ImportExport")
@dataclass(frozen=True)
class Imported(DensityNode):
    name: Optional[str] = string("Name")


@node_type("Pipeline")
@dataclass(frozen=True)
class Pipeline(DensityNode):
    steps: Tuple[Operand, ...] = operands("Steps")
    input: Optional[Operand] = operand()


# Vector providers

@node_type("Vector", "Constant", VECTOR_TYPES)
@dataclass(frozen=True)
class ConstantVector(DensityNode):
    value: Optional[Any] = vector("Value", Vec3())


@node_type("Vector", "DensityGradient", VECTOR_TYPES)
@dataclass(frozen=True)
class DensityGradient(DensityNode):
    density: Optional[Operand] = operand("Density")
    sample_distance: Optional[float] = number("SampleDistance", 1.0)


# Tree traversal

def iter_children(node: DensityNode) -> Iterator[Tuple[str, DensityNode]]:
    """Yield ``(relative path, child)`` for every node nested in ``node``."""
    for f in fields(node):
        kind = f.metadata.get("kind")
        key = f.metadata.get("key")
        value = getattr(node, f.name)
        if value is None:
            continue
        if kind in ("operand", "vector"):
            if isinstance(value, DensityNode):
                yield key, value
        elif kind == "operands":
            for i, item in enumerate(value):
                if isinstance(item, DensityNode):
                    yield f"{key}/{i}", item
        elif kind == "cases":
            for i, case in enumerate(value):
                if isinstance(case.density, DensityNode):
                    yield f"{key}/{i}/Density", case.density


def map_children(node: DensityNode, fn: Callable[[DensityNode, str], Any]) -> DensityNode:
    """Copy of ``node`` with every nested node replaced by ``fn(child, path)``."""
    changes = {}
    for f in fields(node):
        kind = f.metadata.get("kind")
        key = f.metadata.get("key")
        value = getattr(node, f.name)
        if value is None:
            continue
        if kind in ("operand", "vector") and isinstance(value, DensityNode):
            changes[f.name] = fn(value, key)
        elif kind == "operands":
            changes[f.name] = tuple(
                fn(item, f"{key}/{i}") if isinstance(item, DensityNode) else item
                for i, item in enumerate(value)
            )
        elif kind == "cases":
            changes[f.name] = tuple(
                replace(case, density=fn(case.density, f"{key}/{i}/Density"))
                if isinstance(case.density, DensityNode) else case
                for i, case in enumerate(value)
            )
    return replace(node, **changes) if changes else node


def count_nodes(node: DensityNode) -> int:
    return 1 + sum(count_nodes(child) for _, child in iter_children(node))


# Parsing

# Integers at or beyond this do not convert to float.
_LARGEST_INT = 2 ** 1023


def _is_number(raw: Any) -> bool:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return False
    return isinstance(raw, float) or abs(raw) < _LARGEST_INT


class _Parser:
    """Single-use recursive-descent parser over decoded JSON."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth

    def node(self, doc: Any, path: str, depth: int,
             registry: Dict[str, Type[DensityNode]] = NODE_TYPES) -> DensityNode:
        if depth > self.max_depth:
            raise TooDeepError(self.max_depth, path or "/")
        if not isinstance(doc, dict):
            raise TypeMismatchError(f"Expected a node object, got {type(doc).__name__}", path or "/")
        type_name = doc.get("Type")
        if not isinstance(type_name, str):
            raise TypeMismatchError("Node is missing its 'Type' discriminator", path or "/")
        cls = registry.get(type_name)
        if cls is None:
            raise UnknownTypeError(type_name, path or "/")

        values = {}
        for f in fields(cls):
            key = f.metadata.get("key")
            if key is None or doc.get(key) is None:
                continue
            values[f.name] = self.value(
                f.metadata["kind"], doc[key], f"{path}/{key}", depth, f.metadata.get("options", ()),
            )
        return cls(**values)

    def operand(self, raw: Any, path: str, depth: int) -> Operand:
        if _is_number(raw):
            return Literal(float(raw))
        if isinstance(raw, dict):
            return self.node(raw, path, depth + 1)
        raise TypeMismatchError(f"Expected a number or node, got {type(raw).__name__}", path)

    def vector(self, raw: Any, path: str, depth: int):
        if isinstance(raw, dict):
            if "Type" in raw:
                return self.node(raw, path, depth + 1, VECTOR_TYPES)
            lowered = {str(k).lower(): v for k, v in raw.items()}
            components = [lowered.get(axis, 0.0) for axis in ("x", "y", "z")]
        elif isinstance(raw, (list, tuple)) and len(raw) == 3:
            components = list(raw)
        else:
            raise TypeMismatchError("Expected a vector {x, y, z}, [x, y, z] or vector provider", path)
        if not all(_is_number(c) for c in components):
            raise TypeMismatchError("Vector components must be numbers", path)
        return Vec3(*(float(c) for c in components))

    def value(self, kind: str, raw: Any, path: str, depth: int, options: Tuple[str, ...] = ()) -> Any:
        if kind == "number":
            if not _is_number(raw):
                raise TypeMismatchError(f"Expected a number, got {type(raw).__name__}", path)
            return float(raw)
        if kind == "integer":
            if not _is_number(raw) or (isinstance(raw, float) and not raw.is_integer()):
                raise TypeMismatchError(f"Expected an integer, got {raw!r}", path)
            return int(raw)
        if kind == "octaves":
            count = self.value("integer", raw, path, depth)
            if count > settings.max_octaves:
                raise TypeMismatchError(f"At most {settings.max_octaves} octaves are allowed, got {count}", path)
            return count
        if kind == "string":
            if not isinstance(raw, str):
                raise TypeMismatchError(f"Expected a string, got {type(raw).__name__}", path)
            return raw
        if kind == "label":
            if isinstance(raw, str):
                return raw
            if _is_number(raw):
                # 1 and 1.0 name the same state
                if isinstance(raw, float) and raw.is_integer():
                    raw = int(raw)
                return str(raw)
            raise TypeMismatchError(f"Expected a string, got {type(raw).__name__}", path)
        if kind == "choice":
            if isinstance(raw, dict) and isinstance(raw.get("Type"), str):
                raw = raw["Type"]
            if isinstance(raw, str):
                if options and raw not in options:
                    raise TypeMismatchError(f"Unknown option '{raw}', expected one of {', '.join(options)}", path)
                return raw
            raise TypeMismatchError(f"Expected an option name, got {type(raw).__name__}", path)
        if kind == "boolean":
            if not isinstance(raw, bool):
                raise TypeMismatchError(f"Expected a boolean, got {type(raw).__name__}", path)
            return raw
        if kind == "operand":
            return self.operand(raw, path, depth)
        if kind == "operands":
            if not isinstance(raw, list):
                raise TypeMismatchError("Expected a list of inputs", path)
            return tuple(self.operand(item, f"{path}/{i}", depth) for i, item in enumerate(raw))
        if kind == "numbers":
            if not isinstance(raw, list) or not all(_is_number(v) for v in raw):
                raise TypeMismatchError("Expected a list of numbers", path)
            return tuple(float(v) for v in raw)
        if kind == "vector":
            return self.vector(raw, path, depth)
        if kind == "curve":
            if isinstance(raw, str):
                return CurveRef(name=raw)
            try:
                return CurveRef(curve=build_curve(raw))
            except TypeMismatchError as e:
                raise TypeMismatchError(e.message, path) from e
            except (ValueError, TypeError, AttributeError, OverflowError) as e:
                raise TypeMismatchError(f"Malformed curve: {e}", path) from e
        if kind == "positions":
            if isinstance(raw, str):
                return PositionsRef(name=raw)
            try:
                points = parse_points(raw)
            except TypeMismatchError as e:
                raise TypeMismatchError(e.message, path) from e
            except (ValueError, TypeError, AttributeError, OverflowError) as e:
                raise TypeMismatchError(f"Malformed positions: {e}", path) from e
            return PositionsRef(points=tuple(tuple(float(v) for v in p) for p in points))
        if kind == "cases":
            if not isinstance(raw, list):
                raise TypeMismatchError("Expected a list of switch cases", path)
            return tuple(self.case(item, f"{path}/{i}", depth) for i, item in enumerate(raw))
        raise TypeMismatchError(f"Unsupported field kind '{kind}'", path)

    def case(self, raw: Any, path: str, depth: int) -> SwitchCase:
        if not isinstance(raw, dict):
            raise TypeMismatchError("Switch case must be an object", path)
        state = self.value("label", raw.get("CaseState", ""), f"{path}/CaseState", depth)
        density = raw.get("Density")
        if density is not None:
            density = self.operand(density, f"{path}/Density", depth)
        return SwitchCase(state=state, density=density)


def parse(document: Any, max_depth: int = None) -> DensityNode:
    """
    Parse a decoded JSON document into a density tree.

    Unknown fields are ignored; absent fields keep their per-type fallback.

    Raises:
        UnknownTypeError: if a ``Type`` discriminator is not a known node type
        TypeMismatchError: if a field has the wrong JSON shape
        TooDeepError: if nesting exceeds ``max_depth``
    """
    max_depth = max_depth or settings.max_parse_depth
    ensure_recursion_limit(max_depth)
    root = _Parser(max_depth).node(document, "", 1)
    logger.debug("Parsed density document", root_type=root.TYPE)
    return root


def parse_json(text: str, max_depth: int = None) -> DensityNode:
    """Parse a JSON string; malformed JSON is reported as a type mismatch."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise TypeMismatchError(f"Malformed JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e
    return parse(document, max_depth)


# Serialization

def _dump_operand(value: Any) -> Any:
    if isinstance(value, Literal):
        return value.value
    return dump(value)


def _dump_value(kind: str, value: Any) -> Any:
    if kind == "operand":
        return _dump_operand(value)
    if kind == "operands":
        return [_dump_operand(item) for item in value]
    if kind == "numbers":
        return list(value)
    if kind == "vector":
        if isinstance(value, Vec3):
            return {"x": value.x, "y": value.y, "z": value.z}
        return dump(value)
    if kind == "curve":
        return value.name if value.name is not None else value.curve.document
    if kind == "positions":
        if value.name is not None:
            return value.name
        return {"Points": [list(p) for p in value.points]}
    if kind == "cases":
        out = []
        for case in value:
            entry = {"CaseState": case.state}
            if case.density is not None:
                entry["Density"] = _dump_operand(case.density)
            out.append(entry)
        return out
    return value


def dump(node: DensityNode) -> Dict[str, Any]:
    """Serialize a tree back to its JSON form, emitting only fields that were set."""
    document = {"Type": node.TYPE}
    for f in fields(node):
        key = f.metadata.get("key")
        value = getattr(node, f.name)
        if key is None or value is None or (isinstance(value, tuple) and not value):
            continue
        document[key] = _dump_value(f.metadata["kind"], value)
    return document
