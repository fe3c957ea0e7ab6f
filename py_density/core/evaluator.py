"""
Density evaluator.

A ``Session`` walks a ``ResolvedGraph`` for one sample point at a time,
owning its own ``EvaluationContext`` and ``MemoTable``. Graphs are shared and
never mutated, so any number of sessions may evaluate the same graph
concurrently as long as each session stays on one thread.

Node semantics live in small handler functions registered per node class in
``_HANDLERS``.
"""

import math
from bisect import bisect_right
from functools import reduce
from itertools import islice
from typing import Any, Callable, Dict, Optional, Type, Union

import structlog

from ..config import settings
from ..utils.recursion import ensure_recursion_limit
from . import noise
from .context import ContextInputs, EvaluationContext
from .curves import Curve, identity_curve
from .errors import (
    DensityError,
    MissingContextInputError,
    TypeMismatchError,
    UnhandledSwitchCaseError,
)
from .geometry import (
    angle_between,
    dot,
    length,
    normalize,
    rotate_about,
    rotation_matrix,
    signed_pow,
    smooth_max,
    smooth_min,
    to_local,
)
from .memo import MemoTable, is_miss
from .positions import PositionSet
from .resolver import ResolvedGraph, resolve, thread_pipeline
from .schema import (
    Abs, Amplitude, AmplitudeConstant, Anchor, Angle, Axis, BaseHeight, Cache, Cache2D,
    Ceiling, CellNoise2D, CellNoise3D, CellWallDistance, Clamp, Constant, ConstantVector,
    Cube, Cuboid, CurveMapper, CurveRef, Cylinder, DensityGradient, DensityNode, Distance,
    DistanceToBiomeEdge, Ellipsoid, Exported, FastGradientWarp, Floor, Gradient,
    GradientWarp, Imported, Inverter, Literal, Max, Min, Mix, MultiMix, Multiplier,
    Normalizer, Offset, OffsetConstant, Operand, Pipeline, Plane, Positions3D,
    PositionsCellNoise, PositionsPinch, PositionsRef, PositionsTwist, Pow, Rotator, Scale,
    Shell, SimplexNoise2D, SimplexNoise3D, Slider, SmoothCeiling, SmoothClamp,
    SmoothFloor, SmoothMax, SmoothMin, Sqrt, Sum, Switch, SwitchState, Terrain, Vec3,
    VectorWarp, XOverride, XValue, YOverride, YSampled, YValue, ZOverride, ZValue,
)
from .seeding import hash_cell, mulberry32, seed_to_int

logger = structlog.get_logger()

Handler = Callable[["Session", Any], float]

_HANDLERS: Dict[Type[DensityNode], Handler] = {}

_UP = Vec3(0.0, 1.0, 0.0)


def handles(*node_classes: Type[DensityNode]):
    """Register the decorated function as the handler for ``node_classes``."""
    def register(fn: Handler) -> Handler:
        for cls in node_classes:
            _HANDLERS[cls] = fn
        return fn
    return register


def _nonzero(value: float) -> float:
    return value if value else 1.0


def _unit_clamp(value: float) -> float:
    if math.isnan(value):
        return value
    return max(0.0, min(1.0, value))


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


class Session:
    """
    One evaluation walk's state: context, memo table and cache scope.

    Args:
        graph: Resolved graph to evaluate
        inputs: External world data (terrain, base heights, curves, positions)
        scope: Cache-scope token; memoized values never cross scopes
        max_depth: Evaluation recursion cap
    """

    def __init__(self, graph: ResolvedGraph, inputs: Optional[ContextInputs] = None,
                 scope: Any = None, max_depth: Optional[int] = None):
        self.graph = graph
        self.ctx = EvaluationContext(inputs, scope, max_depth)
        self.memo = MemoTable(scope)
        ensure_recursion_limit(self.ctx.max_depth)

    @property
    def inputs(self) -> ContextInputs:
        return self.ctx.inputs

    @property
    def stats(self) -> Dict[str, int]:
        return self.memo.stats.as_dict()

    def reset(self, scope: Any = None) -> None:
        """Drop memoized values and rebind the session to a new cache scope."""
        self.memo.clear(scope)
        self.ctx.scope = scope

    def evaluate(self, x: float, y: float, z: float, scope: Any = None) -> float:
        """Density of the graph root at ``(x, y, z)``."""
        self.memo.check_scope(scope)
        self.ctx.reset(float(x), float(y), float(z))
        return self.eval(self.graph.root)

    def path(self, node: DensityNode) -> Optional[str]:
        return self.graph.path_of(node)

    def eval(self, op: Optional[Operand]) -> float:
        """Evaluate an input slot at the current context. Absent slots read 0."""
        if op is None:
            return 0.0
        if isinstance(op, Literal):
            return op.value
        try:
            with self.ctx.descend():
                return _HANDLERS[type(op)](self, op)
        except DensityError as e:
            if e.path is None:
                e.path = self.path(op)
                e.args = (f"{e.message} (at {e.path})",)
            raise

    def eval_at(self, op: Optional[Operand], x: float, y: float, z: float) -> float:
        with self.ctx.moved(x, y, z):
            return self.eval(op)

    # Shared lookups

    def seed(self, node: DensityNode) -> int:
        return seed_to_int(node.seed, settings.default_seed)

    def curve(self, ref: Optional[CurveRef]) -> Curve:
        if ref is None:
            return identity_curve()
        if ref.name is not None:
            return self.inputs.curve(ref.name)
        return ref.curve

    def position_set(self, node: DensityNode, ref: Optional[PositionsRef]) -> PositionSet:
        if ref is None:
            raise MissingContextInputError("positions", self.path(node))
        if ref.name is not None:
            return self.inputs.position_set(ref.name)
        found = self.graph.positions.get(node.uid)
        if found is None:
            found = PositionSet(ref.points)
        return found

    def owner(self, node: DensityNode) -> Any:
        """Memo owner key; hand-built nodes without a uid fall back to identity."""
        return node.uid if node.uid >= 0 else ("id", id(node))

    def memoized(self, owner: Any, key: tuple, compute: Callable[[], float],
                 capacity: Optional[int] = None) -> float:
        full_key = (key, self.ctx.signature())
        value = self.memo.lookup(owner, full_key)
        if not is_miss(value):
            return value
        return self.memo.store(owner, full_key, compute(), capacity)

    # Vectors

    def vector(self, value: Any, default: Optional[Vec3] = _UP) -> Optional[Vec3]:
        """Resolve a constant vector or vector provider at the current point."""
        if value is None:
            return default
        if isinstance(value, Vec3):
            return value
        if isinstance(value, ConstantVector):
            return self.vector(value.get("value"), Vec3())
        if isinstance(value, DensityGradient):
            return self._density_gradient(value)
        raise TypeMismatchError(f"Not a vector: {type(value).__name__}")

    def vector_field(self, node: DensityNode, name: str) -> Optional[Vec3]:
        """
        Vector-valued field of ``node``.

        The node's primary vector, when absent, is assembled from its loose
        ``X``/``Y``/``Z`` fields; missing components keep the field default.
        """
        value = getattr(node, name)
        default = node.__dataclass_fields__[name].metadata.get("default")
        if value is None and name == node.PRIMARY_VECTOR:
            loose = (node.x, node.y, node.z)
            if any(c is not None for c in loose):
                base = default or Vec3()
                return Vec3(*(c if c is not None else b for c, b in zip(loose, base)))
        return self.vector(value, default)

    def _density_gradient(self, provider: DensityGradient) -> Vec3:
        if provider.density is None:
            return Vec3()
        h = _nonzero(provider.get("sample_distance"))
        x, y, z = self.ctx.position
        f = provider.density
        return Vec3(
            (self.eval_at(f, x + h, y, z) - self.eval_at(f, x - h, y, z)) / (2 * h),
            (self.eval_at(f, x, y + h, z) - self.eval_at(f, x, y - h, z)) / (2 * h),
            (self.eval_at(f, x, y, z + h) - self.eval_at(f, x, y, z - h)) / (2 * h),
        )

    def rotation(self, node: DensityNode, spin: float):
        axis = self.vector_field(node, "new_y_axis")
        return rotation_matrix(tuple(float(c) for c in axis), float(spin or 0.0))


class Evaluator:
    """Entry point binding a resolved graph to a set of context inputs."""

    def __init__(self, graph: Union[ResolvedGraph, DensityNode],
                 inputs: Optional[ContextInputs] = None, max_depth: Optional[int] = None):
        self.graph = graph if isinstance(graph, ResolvedGraph) else resolve(graph)
        self.inputs = inputs or ContextInputs()
        self.max_depth = max_depth

    def session(self, scope: Any = None) -> Session:
        logger.debug("Opened evaluation session", nodes=self.graph.node_count, scope=scope)
        return Session(self.graph, self.inputs, scope, self.max_depth)

    def evaluate(self, x: float, y: float, z: float) -> float:
        """Evaluate one point in a fresh session."""
        return self.session().evaluate(x, y, z)


def evaluate(graph: Union[ResolvedGraph, DensityNode], x: float, y: float, z: float,
             inputs: Optional[ContextInputs] = None, session: Optional[Session] = None) -> float:
    """
    Density value at one point.

    Args:
        graph: Resolved graph (an unresolved tree is resolved first)
        x, y, z: Sample coordinate
        inputs: Context inputs, ignored when ``session`` is given
        session: Existing session whose memo table should be reused

    Returns:
        The density value; NaN and infinities propagate
    """
    if session is None:
        session = Evaluator(graph, inputs).session()
    return session.evaluate(x, y, z)


# Noise

@handles(SimplexNoise2D)
def _simplex_2d(s: Session, node: SimplexNoise2D) -> float:
    return noise.fbm_2d(
        s.seed(node), s.ctx.x, s.ctx.z,
        node.get("scale"), node.get("octaves"), node.get("lacunarity"), node.get("persistence"),
    )


@handles(SimplexNoise3D)
def _simplex_3d(s: Session, node: SimplexNoise3D) -> float:
    return noise.fbm_3d(
        s.seed(node), s.ctx.x, s.ctx.y, s.ctx.z,
        node.get("scale_xz"), node.get("scale_y"), node.get("octaves"),
        node.get("lacunarity"), node.get("persistence"),
    )


@handles(CellNoise2D)
def _cell_2d(s: Session, node: CellNoise2D) -> float:
    return noise.cell_noise_2d(
        s.seed(node), s.ctx.x, s.ctx.z, node.get("scale"),
        node.get("return_type"), node.get("distance_function"), node.get("jitter"),
    )


@handles(CellNoise3D)
def _cell_3d(s: Session, node: CellNoise3D) -> float:
    return noise.cell_noise_3d(
        s.seed(node), s.ctx.x, s.ctx.y, s.ctx.z, node.get("scale"),
        node.get("return_type"), node.get("distance_function"), node.get("jitter"),
    )


# Math

@handles(Constant)
def _constant(s: Session, node: Constant) -> float:
    return node.get("value")


@handles(Sum)
def _sum(s: Session, node: Sum) -> float:
    total = 0.0
    for op in node.inputs:
        total += s.eval(op)
    return total


@handles(Multiplier)
def _multiplier(s: Session, node: Multiplier) -> float:
    if not node.inputs:
        return 0.0
    product = 1.0
    for op in node.inputs:
        value = s.eval(op)
        if value == 0.0:
            return 0.0
        product *= value
    return product


@handles(Abs)
def _abs(s: Session, node: Abs) -> float:
    return abs(s.eval(node.input))


@handles(Inverter)
def _inverter(s: Session, node: Inverter) -> float:
    return -s.eval(node.input)


@handles(Sqrt)
def _sqrt(s: Session, node: Sqrt) -> float:
    value = s.eval(node.input)
    if value < 0:
        return -math.sqrt(-value)
    return math.sqrt(value)


@handles(Pow)
def _pow(s: Session, node: Pow) -> float:
    return signed_pow(s.eval(node.input), node.get("exponent"))


@handles(OffsetConstant)
def _offset_constant(s: Session, node: OffsetConstant) -> float:
    return s.eval(node.input) + node.get("offset")


@handles(AmplitudeConstant)
def _amplitude_constant(s: Session, node: AmplitudeConstant) -> float:
    return s.eval(node.input) * node.get("amplitude")


# Clamp family

def _walls(node) -> tuple:
    a, b = node.get("wall_a"), node.get("wall_b")
    return (a, b) if a <= b else (b, a)


@handles(Clamp)
def _clamp(s: Session, node: Clamp) -> float:
    lo, hi = _walls(node)
    return min(max(s.eval(node.input), lo), hi)


@handles(SmoothClamp)
def _smooth_clamp(s: Session, node: SmoothClamp) -> float:
    lo, hi = _walls(node)
    k = node.get("range")
    return smooth_max(smooth_min(s.eval(node.input), hi, k), lo, k)


@handles(Floor)
def _floor(s: Session, node: Floor) -> float:
    return max(s.eval(node.input), node.get("floor"))


@handles(SmoothFloor)
def _smooth_floor(s: Session, node: SmoothFloor) -> float:
    return smooth_max(s.eval(node.input), node.get("floor"), node.get("range"))


@handles(Ceiling)
def _ceiling(s: Session, node: Ceiling) -> float:
    return min(s.eval(node.input), node.get("ceiling"))


@handles(SmoothCeiling)
def _smooth_ceiling(s: Session, node: SmoothCeiling) -> float:
    return smooth_min(s.eval(node.input), node.get("ceiling"), node.get("range"))


# Min / max

def _fold(s: Session, node, combine: Callable[[float, float], float]) -> float:
    if not node.inputs:
        return 0.0
    return reduce(combine, (s.eval(op) for op in node.inputs))


@handles(Min)
def _min(s: Session, node: Min) -> float:
    return _fold(s, node, min)


@handles(Max)
def _max(s: Session, node: Max) -> float:
    return _fold(s, node, max)


@handles(SmoothMin)
def _smooth_min(s: Session, node: SmoothMin) -> float:
    k = node.get("range")
    return _fold(s, node, lambda a, b: smooth_min(a, b, k))


@handles(SmoothMax)
def _smooth_max(s: Session, node: SmoothMax) -> float:
    k = node.get("range")
    return _fold(s, node, lambda a, b: smooth_max(a, b, k))


# Mapping

@handles(Normalizer)
def _normalizer(s: Session, node: Normalizer) -> float:
    value = s.eval(node.input)
    from_min, from_max = node.get("from_min"), node.get("from_max")
    to_min, to_max = node.get("to_min"), node.get("to_max")
    if from_max == from_min:
        return to_min
    return to_min + (value - from_min) / (from_max - from_min) * (to_max - to_min)


@handles(CurveMapper)
def _curve_mapper(s: Session, node: CurveMapper) -> float:
    return s.curve(node.curve)(s.eval(node.input))


@handles(Offset)
def _offset(s: Session, node: Offset) -> float:
    return s.eval(node.input) + s.eval(node.offset)


@handles(Amplitude)
def _amplitude(s: Session, node: Amplitude) -> float:
    amplitude = 1.0 if node.amplitude is None else s.eval(node.amplitude)
    return s.eval(node.input) * amplitude


# Mixing

@handles(Mix)
def _mix(s: Session, node: Mix) -> float:
    inputs = node.inputs
    if not inputs:
        return 0.0
    if len(inputs) == 1:
        return s.eval(inputs[0])
    t = _unit_clamp(s.eval(inputs[2])) if len(inputs) > 2 else 0.5
    if t == 0.0:
        return s.eval(inputs[0])
    if t == 1.0:
        return s.eval(inputs[1])
    return _lerp(s.eval(inputs[0]), s.eval(inputs[1]), t)


@handles(MultiMix)
def _multi_mix(s: Session, node: MultiMix) -> float:
    keys = node.get("keys")
    n = len(keys)
    if n == 0:
        return 0.0
    values = list(node.inputs[:n]) + [None] * (n - len(node.inputs[:n]))
    gauge = s.eval(node.inputs[-1]) if len(node.inputs) > n else 0.0
    if math.isnan(gauge):
        return gauge
    pairs = sorted(zip(keys, range(n)))
    ordered = [k for k, _ in pairs]
    if n == 1 or gauge <= ordered[0]:
        return s.eval(values[pairs[0][1]])
    if gauge >= ordered[-1]:
        return s.eval(values[pairs[-1][1]])
    lo = bisect_right(ordered, gauge) - 1
    k0, k1 = ordered[lo], ordered[lo + 1]
    t = 1.0 if k1 == k0 else (gauge - k0) / (k1 - k0)
    return _lerp(s.eval(values[pairs[lo][1]]), s.eval(values[pairs[lo + 1][1]]), t)


# Spatial transforms

@handles(Scale)
def _scale(s: Session, node: Scale) -> float:
    x, y, z = s.ctx.position
    return s.eval_at(
        node.input,
        x / _nonzero(node.get("x")), y / _nonzero(node.get("y")), z / _nonzero(node.get("z")),
    )


@handles(Slider)
def _slider(s: Session, node: Slider) -> float:
    x, y, z = s.ctx.position
    return s.eval_at(
        node.input,
        x - node.get("slide_x"), y - node.get("slide_y"), z - node.get("slide_z"),
    )


@handles(Rotator)
def _rotator(s: Session, node: Rotator) -> float:
    matrix = s.rotation(node, node.get("spin_angle"))
    ax, ay, az = s.ctx.anchor or (0.0, 0.0, 0.0)
    lx, ly, lz = to_local(matrix, s.ctx.local())
    return s.eval_at(node.input, ax + lx, ay + ly, az + lz)


@handles(Anchor)
def _anchor(s: Session, node: Anchor) -> float:
    origin = None if node.reverse else s.ctx.position
    with s.ctx.anchored(origin):
        return s.eval(node.input)


def _axis_override(axis: str) -> Handler:
    def handler(s: Session, node) -> float:
        value = s.eval(node.override)
        with s.ctx.override(axis, value):
            return s.eval(node.input)
    return handler


handles(XOverride)(_axis_override("x"))
handles(YOverride)(_axis_override("y"))
handles(ZOverride)(_axis_override("z"))


# Warps

@handles(GradientWarp)
def _gradient_warp(s: Session, node: GradientWarp) -> float:
    target = node.inputs[0] if node.inputs else None
    source = node.inputs[1] if len(node.inputs) > 1 else None
    if source is None or isinstance(source, Literal):
        return s.eval(target)

    x, y, z = s.ctx.position
    h = _nonzero(node.get("sample_range"))
    factor = node.get("warp_factor")
    if node.two_d:
        sy = node.get("y_for_2d")
        gx = (s.eval_at(source, x + h, sy, z) - s.eval_at(source, x - h, sy, z)) / (2 * h)
        gz = (s.eval_at(source, x, sy, z + h) - s.eval_at(source, x, sy, z - h)) / (2 * h)
        gy = 0.0
    else:
        gx = (s.eval_at(source, x + h, y, z) - s.eval_at(source, x - h, y, z)) / (2 * h)
        gy = (s.eval_at(source, x, y + h, z) - s.eval_at(source, x, y - h, z)) / (2 * h)
        gz = (s.eval_at(source, x, y, z + h) - s.eval_at(source, x, y, z - h)) / (2 * h)
    return s.eval_at(target, x + factor * gx, y + factor * gy, z + factor * gz)


@handles(FastGradientWarp)
def _fast_gradient_warp(s: Session, node: FastGradientWarp) -> float:
    x, y, z = s.ctx.position
    gx, gy, gz = noise.fbm_gradient(
        s.seed(node), x, y, z,
        node.get("warp_scale"), node.get("warp_octaves"),
        node.get("warp_lacunarity"), node.get("warp_persistence"),
        bool(node.two_d),
    )
    factor = node.get("warp_factor")
    return s.eval_at(node.input, x + factor * gx, y + factor * gy, z + factor * gz)


@handles(VectorWarp)
def _vector_warp(s: Session, node: VectorWarp) -> float:
    target = node.inputs[0] if node.inputs else None
    direction = normalize(s.vector_field(node, "warp_vector"))
    magnitude = s.eval(node.inputs[1]) if len(node.inputs) > 1 else 0.0
    if direction == (0.0, 0.0, 0.0) or magnitude == 0.0:
        return s.eval(target)
    shift = magnitude * node.get("warp_factor")
    x, y, z = s.ctx.position
    return s.eval_at(target, x + direction[0] * shift, y + direction[1] * shift, z + direction[2] * shift)


# Shapes

def _scaled(point, scale: Vec3) -> tuple:
    return tuple(c / _nonzero(f) for c, f in zip(point, scale))


@handles(Distance)
def _distance(s: Session, node: Distance) -> float:
    return s.curve(node.curve)(length(s.ctx.local()))


@handles(Cube)
def _cube(s: Session, node: Cube) -> float:
    return s.curve(node.curve)(max(abs(c) for c in s.ctx.local()))


@handles(Ellipsoid)
def _ellipsoid(s: Session, node: Ellipsoid) -> float:
    local = to_local(s.rotation(node, node.get("spin")), s.ctx.local())
    return s.curve(node.curve)(length(_scaled(local, s.vector_field(node, "scale"))))


@handles(Cuboid)
def _cuboid(s: Session, node: Cuboid) -> float:
    local = to_local(s.rotation(node, node.get("spin")), s.ctx.local())
    return s.curve(node.curve)(max(abs(c) for c in _scaled(local, s.vector_field(node, "scale"))))


@handles(Cylinder)
def _cylinder(s: Session, node: Cylinder) -> float:
    lx, ly, lz = to_local(s.rotation(node, node.get("spin")), s.ctx.local())
    radial = s.curve(node.radial_curve)(math.hypot(lx, lz))
    axial = s.curve(node.axial_curve)(abs(ly))
    return radial * axial


@handles(Plane)
def _plane(s: Session, node: Plane) -> float:
    normal = normalize(s.vector_field(node, "plane_normal"))
    return s.curve(node.curve)(dot(normal, s.ctx.local()))


@handles(Axis)
def _axis(s: Session, node: Axis) -> float:
    p = s.ctx.local() if node.is_anchored else s.ctx.position
    a = normalize(s.vector_field(node, "axis"))
    along = dot(p, a)
    off_axis = (p[0] - a[0] * along, p[1] - a[1] * along, p[2] - a[2] * along)
    return s.curve(node.curve)(length(off_axis))


@handles(Shell)
def _shell(s: Session, node: Shell) -> float:
    p = s.ctx.local()
    radius = length(p)
    amplitude = s.curve(node.distance_curve)(radius)
    if radius == 0.0:
        return amplitude
    angle = angle_between(p, s.vector_field(node, "axis"))
    if node.mirror and angle > 90.0:
        angle = 180.0 - angle
    return amplitude * s.curve(node.angle_curve)(angle)


@handles(Angle)
def _angle(s: Session, node: Angle) -> float:
    reference = s.vector(node.vector_provider, None)
    if reference is None:
        reference = s.vector_field(node, "vector")
    angle = angle_between(s.ctx.local(), reference)
    if node.is_axis and angle > 90.0:
        angle = 180.0 - angle
    return angle


# Coordinates

@handles(XValue)
def _x_value(s: Session, node: XValue) -> float:
    return s.ctx.x


@handles(YValue)
def _y_value(s: Session, node: YValue) -> float:
    return s.ctx.y


@handles(ZValue)
def _z_value(s: Session, node: ZValue) -> float:
    return s.ctx.z


# World context

@handles(Terrain)
def _terrain(s: Session, node: Terrain) -> float:
    return s.inputs.terrain_at(*s.ctx.position)


@handles(DistanceToBiomeEdge)
def _biome_edge(s: Session, node: DistanceToBiomeEdge) -> float:
    return s.inputs.biome_edge_distance_at(*s.ctx.position)


@handles(BaseHeight)
def _base_height(s: Session, node: BaseHeight) -> float:
    base = s.inputs.base_height(node.get("base_height_name"))
    return s.ctx.y - base if node.distance else base


@handles(Gradient)
def _gradient(s: Session, node: Gradient) -> float:
    from_y = node.get("from_y")
    to_y = node.to_y if node.to_y is not None else settings.default_world_height
    from_value, to_value = node.get("from_value"), node.get("to_value")
    if to_y == from_y:
        return from_value
    return _lerp(from_value, to_value, (s.ctx.y - from_y) / (to_y - from_y))


@handles(CellWallDistance)
def _cell_wall_distance(s: Session, node: CellWallDistance) -> float:
    points = s.position_set(node, node.positions)
    d1, d2, _ = points.nearest_two(s.ctx.position)
    gap = (d2 - d1) * 0.5 if math.isfinite(d2) else math.inf
    limit = node.get("max_distance")
    return min(gap, limit) if limit > 0 else gap


# Caching

@handles(Cache)
def _cache(s: Session, node: Cache) -> float:
    return s.memoized(s.owner(node), s.ctx.position, lambda: s.eval(node.input), node.get("capacity"))


@handles(Cache2D)
def _cache_2d(s: Session, node: Cache2D) -> float:
    return s.memoized(s.owner(node), (s.ctx.x, s.ctx.z), lambda: s.eval(node.input))


@handles(YSampled)
def _y_sampled(s: Session, node: YSampled) -> float:
    def compute():
        with s.ctx.override("y", node.get("y")):
            return s.eval(node.input)
    return s.memoized(s.owner(node), (s.ctx.x, s.ctx.z), compute)


# Switching

@handles(Switch)
def _switch(s: Session, node: Switch) -> float:
    channel = node.get("name")
    state = s.ctx.switch_states.get(channel)
    if state is not None:
        for case in node.cases:
            if case.state == state:
                return s.eval(case.density)
    if node.input is not None:
        return s.eval(node.input)
    raise UnhandledSwitchCaseError(channel, state, s.path(node))


@handles(SwitchState)
def _switch_state(s: Session, node: SwitchState) -> float:
    if node.input is None:
        return 0.0
    with s.ctx.switch_state(node.get("name"), node.get("switch_state")):
        return s.eval(node.input)


# Positions-based

def _point_value(index: int) -> float:
    """Stable per-point value in [-1, 1) for ``CellValue`` returns."""
    if index < 0:
        return 0.0
    draw, = islice(mulberry32(hash_cell(0, index, 0)), 1)
    return draw * 2.0 - 1.0


@handles(PositionsCellNoise)
def _positions_cell_noise(s: Session, node: PositionsCellNoise) -> float:
    points = s.position_set(node, node.positions)
    limit = node.get("max_distance")
    d1, d2, index = points.nearest_two(
        s.ctx.position, node.get("distance_function"), horizontal=True, max_distance=limit,
    )
    if limit > 0:
        d1, d2 = min(d1, limit), min(d2, limit)
    return noise.combine_distances(d1, d2, node.get("return_type"), _point_value(index))


@handles(Positions3D)
def _positions_3d(s: Session, node: Positions3D) -> float:
    points = s.position_set(node, node.positions)
    limit = node.get("max_distance")
    d, nearest = points.nearest(s.ctx.position, max_distance=limit)
    if nearest is None:
        return 0.0
    if node.density is not None:
        with s.ctx.anchored(tuple(nearest)):
            return s.eval(node.density)
    if limit > 0:
        return max(0.0, 1.0 - d / limit)
    return d


@handles(PositionsPinch)
def _positions_pinch(s: Session, node: PositionsPinch) -> float:
    points = s.position_set(node, node.positions).filtered(node.positions_min_y, node.positions_max_y)
    horizontal = bool(node.horizontal_pinch)
    limit = node.get("max_distance")
    x, y, z = s.ctx.position
    _, nearest = points.nearest((x, y, z), horizontal=horizontal, max_distance=limit)
    if nearest is None:
        return s.eval(node.input)

    px, py, pz = (float(c) for c in nearest)
    offset = (x - px, 0.0 if horizontal else y - py, z - pz)
    d = length(offset)
    if d == 0.0:
        return s.eval(node.input)
    curve = s.curve(node.pinch_curve)
    if node.normalize_distance and limit > 0:
        mapped = curve(d / limit) * limit
    else:
        mapped = curve(d)
    ratio = mapped / d
    new_y = y if horizontal else py + offset[1] * ratio
    return s.eval_at(node.input, px + offset[0] * ratio, new_y, pz + offset[2] * ratio)


@handles(PositionsTwist)
def _positions_twist(s: Session, node: PositionsTwist) -> float:
    points = s.position_set(node, node.positions)
    limit = node.get("max_distance")
    x, y, z = s.ctx.position
    d, nearest = points.nearest((x, y, z), max_distance=limit)
    if nearest is None:
        return s.eval(node.input)

    px, py, pz = (float(c) for c in nearest)
    t = d / limit if node.normalize_distance and limit > 0 else d
    degrees = s.curve(node.twist_curve)(t)
    rx, ry, rz = rotate_about((x - px, y - py, z - pz), s.vector_field(node, "twist_axis"), degrees)
    return s.eval_at(node.input, px + rx, py + ry, pz + rz)


# Import / export / pipeline

@handles(Exported)
def _exported(s: Session, node: Exported) -> float:
    body = node.density if node.density is not None else node.input
    if not node.single_instance:
        return s.eval(body)
    return s.memoized(("export", s.owner(node)), s.ctx.position, lambda: s.eval(body))


@handles(Imported)
def _imported(s: Session, node: Imported) -> float:
    entry = s.graph.registry.lookup(node.name or "", s.path(node))
    return s.eval(entry.node)


@handles(Pipeline)
def _pipeline(s: Session, node: Pipeline) -> float:
    chain = thread_pipeline(node) if node.steps else node.input
    return s.eval(chain)
