"""Small vector helpers shared by the shape and transform handlers."""

import math
from functools import lru_cache
from typing import Sequence, Tuple

import numpy as np

Vector = Tuple[float, float, float]

_EPSILON = 1e-10


def smooth_min(a: float, b: float, k: float) -> float:
    """Polynomial smooth minimum; ``k <= 0`` is the hard minimum."""
    if k <= 0:
        return min(a, b)
    h = max(0.0, min(1.0, 0.5 + 0.5 * (b - a) / k))
    return b + (a - b) * h - k * h * (1.0 - h)


def smooth_max(a: float, b: float, k: float) -> float:
    return -smooth_min(-a, -b, k)


def signed_pow(value: float, exponent: float) -> float:
    """``|value| ** exponent`` carrying the sign of ``value``."""
    if value == 0:
        return 0.0 if exponent > 0 else math.inf
    try:
        return math.copysign(math.pow(abs(value), exponent), value)
    except OverflowError:
        return math.copysign(math.inf, value)


def length(v: Sequence[float]) -> float:
    x, y, z = v
    return math.sqrt(x * x + y * y + z * z)


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    ax, ay, az = a
    bx, by, bz = b
    return ax * bx + ay * by + az * bz


def normalize(v: Sequence[float]) -> Vector:
    """Unit vector along ``v``, or the zero vector when ``v`` is degenerate."""
    x, y, z = v
    n = length(v)
    if n < _EPSILON:
        return 0.0, 0.0, 0.0
    return x / n, y / n, z / n


def _axis_angle(axis: Vector, radians: float) -> np.ndarray:
    x, y, z = axis
    c, s = math.cos(radians), math.sin(radians)
    t = 1.0 - c
    return np.array([
        [t * x * x + c, t * x * y - s * z, t * x * z + s * y],
        [t * x * y + s * z, t * y * y + c, t * y * z - s * x],
        [t * x * z - s * y, t * y * z + s * x, t * z * z + c],
    ])


@lru_cache(maxsize=1024)
def rotation_matrix(new_y_axis: Vector = (0.0, 1.0, 0.0), spin_degrees: float = 0.0) -> np.ndarray:
    """
    Rotation taking +Y onto ``new_y_axis``, then spinning about that axis.

    A degenerate axis yields the identity. Antiparallel axes flip Y and Z.
    """
    if length(new_y_axis) < _EPSILON:
        matrix = np.eye(3)
    else:
        nx, ny, nz = normalize(new_y_axis)
        # Y x n
        axis = (nz, 0.0, -nx)
        axis_len = length(axis)
        if axis_len < _EPSILON:
            matrix = np.eye(3) if ny > 0 else np.diag([1.0, -1.0, -1.0])
        else:
            unit = (axis[0] / axis_len, 0.0, axis[2] / axis_len)
            matrix = _axis_angle(unit, math.atan2(axis_len, ny))
        if spin_degrees:
            matrix = _axis_angle((nx, ny, nz), math.radians(spin_degrees)) @ matrix
    matrix.setflags(write=False)
    return matrix


def to_local(matrix: np.ndarray, p: Sequence[float]) -> Vector:
    """Express world-relative ``p`` in the rotated frame (``R^T p``)."""
    x, y, z = matrix.T @ np.asarray(p, dtype=float)
    return float(x), float(y), float(z)


def rotate_about(v: Sequence[float], axis: Sequence[float], degrees: float) -> Vector:
    """Rotate ``v`` about the unit ``axis`` by ``degrees`` (right-handed)."""
    if not degrees or length(axis) < _EPSILON:
        x, y, z = v
        return float(x), float(y), float(z)
    x, y, z = _axis_angle(normalize(axis), math.radians(degrees)) @ np.asarray(v, dtype=float)
    return float(x), float(y), float(z)


def angle_between(a: Sequence[float], b: Sequence[float]) -> float:
    """Angle in degrees between two vectors; 0 if either is degenerate."""
    la, lb = length(a), length(b)
    if la < _EPSILON or lb < _EPSILON:
        return 0.0
    cos = max(-1.0, min(1.0, dot(a, b) / (la * lb)))
    return math.degrees(math.acos(cos))
