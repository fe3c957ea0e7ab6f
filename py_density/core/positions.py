"""Positions assets: fixed point sets queried by positions-based nodes."""

import math
from typing import Any, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .errors import TypeMismatchError

_MINKOWSKI_P = {
    "Euclidean": 2,
    "EuclideanSquared": 2,
    "Manhattan": 1,
    "Chebyshev": np.inf,
}


def _coordinate(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        raise TypeMismatchError(f"Position coordinates must be numbers, got {value!r}")
    try:
        value = float(value)
    except OverflowError:
        value = math.inf
    if not math.isfinite(value):
        raise TypeMismatchError(f"Position coordinates must be finite, got {value!r}")
    return value


def parse_points(raw: Any) -> np.ndarray:
    """
    Normalize a positions document to an ``(n, 3)`` float array.

    Accepts ``{"Points": [...]}`` or a bare list whose entries are ``[x, y, z]``
    lists or ``{"x", "y", "z"}`` objects.
    """
    if isinstance(raw, dict):
        raw = raw.get("Points", [])
    if not isinstance(raw, (list, tuple, np.ndarray)):
        raise TypeMismatchError(f"Positions must be a list of points, got {type(raw).__name__}")
    points = []
    for p in raw:
        if isinstance(p, dict):
            points.append([_coordinate(p.get(k, p.get(k.upper(), 0.0))) for k in ("x", "y", "z")])
        elif isinstance(p, (list, tuple, np.ndarray)) and len(p) == 3:
            points.append([_coordinate(v) for v in p])
        else:
            raise TypeMismatchError(f"Position must be [x, y, z] or {{x, y, z}}, got {p!r}")
    return np.asarray(points, dtype=float).reshape(-1, 3)


class PositionSet:
    """
    Immutable point set with nearest-neighbour queries.

    Trees are built once per set, for full 3D queries and for horizontal
    (x, z) queries, and are safe to share between sessions.
    """

    def __init__(self, points: Sequence[Sequence[float]]):
        self.points = np.asarray(points, dtype=float).reshape(-1, 3)
        self._tree_3d = cKDTree(self.points) if len(self.points) else None
        self._tree_2d = cKDTree(self.points[:, [0, 2]]) if len(self.points) else None
        self._bands = {}

    def __len__(self) -> int:
        return len(self.points)

    def nearest_two(self, point: Sequence[float], distance_function: str = "Euclidean",
                    horizontal: bool = False, max_distance: float = math.inf) -> Tuple[float, float, int]:
        """
        Distances to the two nearest points and the index of the nearest.

        Missing neighbours (empty set, or beyond ``max_distance``) read as
        ``inf``; a missing nearest point has index -1.
        """
        tree = self._tree_2d if horizontal else self._tree_3d
        if tree is None:
            return math.inf, math.inf, -1
        query = (point[0], point[2]) if horizontal else tuple(point)
        if not all(math.isfinite(c) for c in query):
            return math.inf, math.inf, -1
        p = _MINKOWSKI_P.get(distance_function, 2)
        k = min(2, len(self.points))
        bound = max_distance if max_distance and max_distance > 0 else math.inf
        distances, indices = tree.query(query, k=k, p=p, distance_upper_bound=bound)
        distances = np.atleast_1d(distances).astype(float)
        indices = np.atleast_1d(indices)
        d1 = float(distances[0])
        d2 = float(distances[1]) if k > 1 else math.inf
        nearest = int(indices[0]) if math.isfinite(d1) else -1
        if distance_function == "EuclideanSquared":
            d1, d2 = d1 * d1, d2 * d2
        return d1, d2, nearest

    def nearest(self, point: Sequence[float], horizontal: bool = False,
                max_distance: float = math.inf) -> Tuple[float, np.ndarray]:
        """Distance to and coordinates of the nearest point, or ``(inf, None)``."""
        d1, _, index = self.nearest_two(point, horizontal=horizontal, max_distance=max_distance)
        if index < 0:
            return math.inf, None
        return d1, self.points[index]

    def filtered(self, min_y: float = None, max_y: float = None) -> "PositionSet":
        """Subset of points whose Y lies within the optional band."""
        mask = np.ones(len(self.points), dtype=bool)
        if min_y is not None:
            mask &= self.points[:, 1] >= min_y
        if max_y is not None:
            mask &= self.points[:, 1] <= max_y
        if mask.all():
            return self
        key = (min_y, max_y)
        if key not in self._bands:
            self._bands[key] = PositionSet(self.points[mask])
        return self._bands[key]
