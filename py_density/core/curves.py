"""
Curve assets: scalar-to-scalar functions referenced by curve-driven nodes.

A curve is given inline in a document either as a bare number (a constant
curve), a list of control points (a manual curve), or an object with a
``Type`` naming one of the computed curve families below. Named curves are
looked up in the context inputs, falling back to the built-in presets.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import TypeMismatchError

CURVE_PRESETS: Dict[str, List[Tuple[float, float]]] = {
    "Linear": [(0, 0), (1, 1)],
    "Ease In": [(0, 0), (0.25, 0.0625), (0.5, 0.25), (0.75, 0.5625), (1, 1)],
    "Ease Out": [(0, 0), (0.25, 0.4375), (0.5, 0.75), (0.75, 0.9375), (1, 1)],
    "S-Curve": [(0, 0), (0.25, 0.1), (0.5, 0.5), (0.75, 0.9), (1, 1)],
    "Step": [(0, 0), (0.49, 0), (0.5, 1), (1, 1)],
}


def _as_float(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeMismatchError(f"{what} must be a number, got {value!r}")
    try:
        return float(value)
    except OverflowError:
        raise TypeMismatchError(f"{what} is too large, got {value!r}")


def _number(fields: Dict[str, Any], key: str, default: float) -> float:
    value = fields.get(key)
    return default if value is None else _as_float(value, key)


def _range(fields: Dict[str, Any], key: str, lo: float, hi: float) -> Tuple[float, float]:
    value = fields.get(key) or {}
    if not isinstance(value, dict):
        raise TypeMismatchError(f"{key} must be an object with Min and Max, got {value!r}")
    return _number(value, "Min", lo), _number(value, "Max", hi)


def _power(x: float, exponent: float) -> float:
    if x < 0 and not float(exponent).is_integer():
        return math.nan
    try:
        return math.pow(x, exponent)
    except (OverflowError, ZeroDivisionError):
        return math.inf


def normalize_points(raw: Sequence[Any]) -> List[Tuple[float, float]]:
    """Accept ``[x, y]`` pairs or ``{"x", "y"}`` objects, sorted by x."""
    if not isinstance(raw, (list, tuple)):
        raise TypeMismatchError(f"Curve points must be a list, got {type(raw).__name__}")
    points = []
    for p in raw:
        if isinstance(p, dict):
            x = p.get("x", p.get("X", 0.0))
            y = p.get("y", p.get("Y", 0.0))
            points.append((_as_float(x, "x"), _as_float(y, "y")))
        elif isinstance(p, (list, tuple)) and len(p) >= 2:
            points.append((_as_float(p[0], "x"), _as_float(p[1], "y")))
        else:
            raise TypeMismatchError(f"Curve point must be [x, y] or {{x, y}}, got {p!r}")
    return sorted(points)


def _manual(points: List[Tuple[float, float]]) -> Callable[[float], float]:
    if not points:
        return lambda x: x
    xs = np.array([p[0] for p in points], dtype=float)
    ys = np.array([p[1] for p in points], dtype=float)
    return lambda x: float(np.interp(x, xs, ys))


def _smooth_step(edge0: float, edge1: float) -> Callable[[float], float]:
    def f(x):
        if edge0 == edge1:
            return 1.0 if x >= edge0 else 0.0
        t = max(0.0, min(1.0, (x - edge0) / (edge1 - edge0)))
        return t * t * (3 - 2 * t)
    return f


def _distance_exponential(exponent: float, lo: float, hi: float) -> Callable[[float], float]:
    def f(x):
        if hi == lo:
            return 0.0
        t = max(0.0, min(1.0, (x - lo) / (hi - lo)))
        return 1.0 - _power(t, exponent)
    return f


def _distance_s(steepness: float, offset: float, width: float, exponent: float) -> Callable[[float], float]:
    def f(x):
        if width <= 0:
            return 0.0
        return math.exp(-_power(abs(x - offset) / width, exponent) * steepness)
    return f


def _linear_remap(src: Tuple[float, float], tgt: Tuple[float, float]) -> Callable[[float], float]:
    def f(x):
        if src[1] == src[0]:
            return tgt[0]
        return tgt[0] + (x - src[0]) / (src[1] - src[0]) * (tgt[1] - tgt[0])
    return f


def _step(steps: float) -> Callable[[float], float]:
    return lambda x: x if steps <= 0 or not math.isfinite(x * steps) else math.floor(x * steps) / steps


def _computed(kind: str, fields: Dict[str, Any]) -> Callable[[float], float]:
    if kind == "Manual":
        return _manual(normalize_points(fields.get("Points") or []))
    if kind == "Constant":
        value = _number(fields, "Value", 1.0)
        return lambda x: value
    if kind == "Power":
        exponent = _number(fields, "Exponent", 2.0)
        return lambda x: _power(x, exponent)
    if kind == "StepFunction":
        return _step(_number(fields, "Steps", 4.0))
    if kind == "Threshold":
        threshold = _number(fields, "Threshold", 0.5)
        return lambda x: 1.0 if x >= threshold else 0.0
    if kind == "SmoothStep":
        return _smooth_step(_number(fields, "Edge0", 0.0), _number(fields, "Edge1", 1.0))
    if kind == "DistanceExponential":
        return _distance_exponential(_number(fields, "Exponent", 2.0), *_range(fields, "Range", 0.0, 1.0))
    if kind == "DistanceS":
        return _distance_s(
            _number(fields, "Steepness", 1.0),
            _number(fields, "Offset", 0.5),
            _number(fields, "Width", 0.5),
            _number(fields, "Exponent", 2.0),
        )
    if kind == "Inverter":
        return lambda x: -x
    if kind == "Not":
        return lambda x: 1.0 - x
    if kind == "Clamp":
        lo, hi = _number(fields, "Min", 0.0), _number(fields, "Max", 1.0)
        return lambda x: max(lo, min(hi, x))
    if kind == "LinearRemap":
        return _linear_remap(_range(fields, "SourceRange", 0.0, 1.0), _range(fields, "TargetRange", 0.0, 1.0))
    raise TypeMismatchError(f"Unknown curve type '{kind}'")



@dataclass(frozen=True)
class Curve:
    """A parsed curve asset. Calling it samples the curve."""

    kind: str
    document: Any = None
    fn: Callable[[float], float] = field(default=None, compare=False, repr=False)

    def __call__(self, x: float) -> float:
        return self.fn(x)


def build_curve(document: Any) -> Curve:
    """
    Build a curve from its inline JSON form.

    Raises:
        TypeMismatchError: if the document is not a curve
    """
    if isinstance(document, bool):
        raise TypeMismatchError("Curve cannot be a boolean")
    if isinstance(document, (int, float)):
        value = float(document)
        return Curve("Constant", document, lambda x: value)
    if isinstance(document, (list, tuple)):
        return Curve("Manual", document, _manual(normalize_points(document)))
    if isinstance(document, dict):
        kind = str(document.get("Type", "Manual"))
        if kind.startswith("Curve:"):
            kind = kind[len("Curve:"):]
        return Curve(kind, document, _computed(kind, document))
    raise TypeMismatchError(f"Curve must be a number, point list or object, got {type(document).__name__}")


def preset_curve(name: str) -> Optional[Curve]:
    points = CURVE_PRESETS.get(name)
    if points is None:
        return None
    return Curve("Manual", name, _manual(list(points)))


def identity_curve() -> Curve:
    return Curve("Identity", None, lambda x: x)


def curve_from_input(value: Any) -> Curve:
    """Wrap a curve supplied through context inputs (document or callable)."""
    if isinstance(value, Curve):
        return value
    if callable(value):
        return Curve("External", None, lambda x: float(value(x)))
    return build_curve(value)
