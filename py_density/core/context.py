"""
Evaluation context: the mutable per-walk state threaded through evaluation.

Every mutation is scoped: the context managers below restore the previous
value on every exit path, including exceptions raised by the sub-tree being
evaluated.
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import settings
from .curves import Curve, curve_from_input, preset_curve
from .errors import MissingContextInputError, RecursionDepthError
from .positions import PositionSet, parse_points

Point = Tuple[float, float, float]
ScalarInput = Union[float, Callable[[float, float, float], float]]

_UNSET = object()
AXES = ("x", "y", "z")


class ContextInputs(BaseModel):
    """World data supplied by the caller before evaluation starts."""

    terrain: Optional[ScalarInput] = Field(default=None, description="Terrain height, constant or f(x, y, z)")
    base_heights: Dict[str, float] = Field(default_factory=dict, description="Named base heights, e.g. {'Base': 100}")
    distance_to_biome_edge: Optional[ScalarInput] = Field(default=None, description="Distance to the biome edge, constant or f(x, y, z)")
    curves: Dict[str, Any] = Field(default_factory=dict, description="Named curve assets")
    positions: Dict[str, Any] = Field(default_factory=dict, description="Named positions assets")
    anchor: Optional[Point] = Field(default=None, description="Initial anchor origin")
    switch_states: Dict[str, str] = Field(default_factory=dict, description="Initial switch state per channel")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("curves")
    @classmethod
    def _build_curves(cls, value: Dict[str, Any]) -> Dict[str, Curve]:
        return {name: curve_from_input(doc) for name, doc in value.items()}

    @field_validator("positions")
    @classmethod
    def _build_positions(cls, value: Dict[str, Any]) -> Dict[str, PositionSet]:
        return {
            name: doc if isinstance(doc, PositionSet) else PositionSet(parse_points(doc))
            for name, doc in value.items()
        }

    def _scalar(self, name: str, value: Optional[ScalarInput], x: float, y: float, z: float) -> float:
        if value is None:
            raise MissingContextInputError(name)
        if callable(value):
            return float(value(x, y, z))
        return float(value)

    def terrain_at(self, x: float, y: float, z: float) -> float:
        return self._scalar("terrain", self.terrain, x, y, z)

    def biome_edge_distance_at(self, x: float, y: float, z: float) -> float:
        return self._scalar("distance_to_biome_edge", self.distance_to_biome_edge, x, y, z)

    def base_height(self, name: str) -> float:
        try:
            return float(self.base_heights[name])
        except KeyError:
            raise MissingContextInputError(f"base_heights[{name!r}]") from None

    def curve(self, name: str) -> Curve:
        found = self.curves.get(name) or preset_curve(name)
        if found is None:
            raise MissingContextInputError(f"curves[{name!r}]")
        return found

    def position_set(self, name: str) -> PositionSet:
        try:
            return self.positions[name]
        except KeyError:
            raise MissingContextInputError(f"positions[{name!r}]") from None


class EvaluationContext:
    """
    Current sample coordinate plus the scoped state set by ancestor nodes.

    Owned by exactly one evaluation walk; never shared between threads.
    """

    def __init__(self, inputs: Optional[ContextInputs] = None, scope: Any = None,
                 max_depth: Optional[int] = None):
        self.inputs = inputs or ContextInputs()
        self.scope = scope
        self.max_depth = max_depth or settings.max_eval_depth
        self.x = self.y = self.z = 0.0
        self.anchor: Optional[Point] = self.inputs.anchor
        self.switch_states: Dict[str, str] = dict(self.inputs.switch_states)
        self.depth = 0
        self._overrides: Dict[str, list] = {axis: [] for axis in AXES}

    @property
    def position(self) -> Point:
        return self.x, self.y, self.z

    def reset(self, x: float, y: float, z: float) -> None:
        """Start a new top-level sample."""
        self.x, self.y, self.z = x, y, z
        self.anchor = self.inputs.anchor
        self.switch_states = dict(self.inputs.switch_states)
        self.depth = 0
        for stack in self._overrides.values():
            stack.clear()

    def local(self) -> Point:
        """Position relative to the active anchor (world origin when unset)."""
        if self.anchor is None:
            return self.position
        ax, ay, az = self.anchor
        return self.x - ax, self.y - ay, self.z - az

    def signature(self) -> tuple:
        """Context state that memoized values depend on besides the coordinate."""
        return self.anchor, tuple(sorted(self.switch_states.items()))

    def override_depth(self, axis: str) -> int:
        return len(self._overrides[axis])

    @contextmanager
    def override(self, axis: str, value: float):
        """Replace one axis of the coordinate for the duration of the block."""
        stack = self._overrides[axis]
        stack.append(getattr(self, axis))
        setattr(self, axis, value)
        try:
            yield self
        finally:
            setattr(self, axis, stack.pop())

    @contextmanager
    def moved(self, x: float, y: float, z: float):
        """Evaluate the block at another coordinate."""
        saved = self.x, self.y, self.z
        self.x, self.y, self.z = x, y, z
        try:
            yield self
        finally:
            self.x, self.y, self.z = saved

    @contextmanager
    def anchored(self, origin: Optional[Point]):
        """Set (or, with ``None``, clear) the anchor origin for the block."""
        saved = self.anchor
        self.anchor = None if origin is None else tuple(float(c) for c in origin)
        try:
            yield self
        finally:
            self.anchor = saved

    @contextmanager
    def switch_state(self, name: str, value: str):
        """Set a named switch channel for the block."""
        saved = self.switch_states.get(name, _UNSET)
        self.switch_states[name] = value
        try:
            yield self
        finally:
            if saved is _UNSET:
                del self.switch_states[name]
            else:
                self.switch_states[name] = saved

    @contextmanager
    def descend(self, path: Optional[str] = None):
        """Descend one tree level, enforcing the recursion cap."""
        if self.depth >= self.max_depth:
            raise RecursionDepthError(self.max_depth, path)
        self.depth += 1
        try:
            yield self
        finally:
            self.depth -= 1
