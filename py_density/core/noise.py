"""
Noise primitives: simplex fBm and cell (Worley) noise in 2D and 3D.

All functions are pure: the same (seed, coordinate, parameters) always
returns the same value.
"""

import math
from functools import lru_cache
from itertools import islice, product
from typing import Tuple

from opensimplex import OpenSimplex

from ..config import settings
from .seeding import hash_cell, mulberry32

# Finite-difference step in noise space used for analytic-free gradients.
_GRADIENT_STEP = 1e-4

RETURN_TYPES = (
    "CellValue",
    "Distance",
    "Distance2",
    "Distance2Add",
    "Distance2Sub",
    "Distance2Mul",
    "Distance2Div",
)

DISTANCE_FUNCTIONS = ("Euclidean", "EuclideanSquared", "Manhattan", "Chebyshev")


@lru_cache(maxsize=256)
def get_generator(seed: int) -> OpenSimplex:
    """Return the (shared, immutable) OpenSimplex generator for ``seed``."""
    return OpenSimplex(seed=seed)


def _frequency(scale: float) -> float:
    return 1.0 / scale if scale else 1.0


def _octaves(octaves: int) -> int:
    return max(1, min(int(octaves), settings.max_octaves))


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def _clamp_unit(value: float) -> float:
    return max(-1.0, min(1.0, value))


def fbm_2d(seed: int, x: float, z: float, scale: float = 1.0, octaves: int = 1,
           lacunarity: float = 2.0, persistence: float = 0.5) -> float:
    """
    Fractal simplex noise over the horizontal plane.

    Octave ``i`` is sampled from the generator seeded ``seed + i`` at
    frequency ``lacunarity**i / scale`` with weight ``persistence**i``. The sum
    is normalized by the total weight and clamped to [-1, 1]. Non-finite
    coordinates give NaN.
    """
    freq = _frequency(scale)
    amp = 1.0
    total = 0.0
    norm = 0.0
    for i in range(_octaves(octaves)):
        u, w = x * freq, z * freq
        if not _finite(u, w):
            return math.nan
        total += get_generator(seed + i).noise2(u, w) * amp
        norm += amp
        amp *= persistence
        freq *= lacunarity
    return _clamp_unit(total / norm) if norm else 0.0


def fbm_3d(seed: int, x: float, y: float, z: float, scale_xz: float = 1.0,
           scale_y: float = 1.0, octaves: int = 1, lacunarity: float = 2.0,
           persistence: float = 0.5) -> float:
    """Fractal simplex noise in 3D with separate horizontal and vertical scale."""
    freq_xz = _frequency(scale_xz)
    freq_y = _frequency(scale_y)
    amp = 1.0
    total = 0.0
    norm = 0.0
    for i in range(_octaves(octaves)):
        u, v, w = x * freq_xz, y * freq_y, z * freq_xz
        if not _finite(u, v, w):
            return math.nan
        total += get_generator(seed + i).noise3(u, v, w) * amp
        norm += amp
        amp *= persistence
        freq_xz *= lacunarity
        freq_y *= lacunarity
    return _clamp_unit(total / norm) if norm else 0.0


def fbm_gradient(seed: int, x: float, y: float, z: float, scale: float = 1.0,
                 octaves: int = 1, lacunarity: float = 2.0, persistence: float = 0.5,
                 two_d: bool = False) -> Tuple[float, float, float]:
    """
    World-space gradient of an unnormalized simplex fBm.

    Each octave contributes ``amp * freq * dn`` where ``dn`` is the central
    difference of the octave's noise in noise space. In 2D mode the gradient
    lies in the XZ plane and its Y component is 0.
    """
    freq = _frequency(scale)
    amp = 1.0
    h = _GRADIENT_STEP
    gx = gy = gz = 0.0
    for i in range(_octaves(octaves)):
        gen = get_generator(seed + i)
        u, v, w = x * freq, y * freq, z * freq
        if not _finite(u, v, w):
            return math.nan, math.nan, math.nan
        if two_d:
            dx = (gen.noise2(u + h, w) - gen.noise2(u - h, w)) / (2 * h)
            dz = (gen.noise2(u, w + h) - gen.noise2(u, w - h)) / (2 * h)
            dy = 0.0
        else:
            dx = (gen.noise3(u + h, v, w) - gen.noise3(u - h, v, w)) / (2 * h)
            dy = (gen.noise3(u, v + h, w) - gen.noise3(u, v - h, w)) / (2 * h)
            dz = (gen.noise3(u, v, w + h) - gen.noise3(u, v, w - h)) / (2 * h)
        gx += amp * dx * freq
        gy += amp * dy * freq
        gz += amp * dz * freq
        amp *= persistence
        freq *= lacunarity
    return gx, gy, gz


def distance(delta, function: str = "Euclidean") -> float:
    """Length of a coordinate difference under the named distance function."""
    if function == "Manhattan":
        return sum(abs(d) for d in delta)
    if function == "Chebyshev":
        return max(abs(d) for d in delta)
    squared = sum(d * d for d in delta)
    if function == "EuclideanSquared":
        return squared
    return math.sqrt(squared)


def combine_distances(d1: float, d2: float, return_type: str = "Distance",
                      cell_value: float = 0.0) -> float:
    """
    Reduce the two nearest feature distances to a noise value.

    Distance-based return types are offset by -1 so that points sitting on a
    feature point read -1.
    """
    if return_type == "CellValue":
        return cell_value
    if return_type == "Distance2":
        return d2 - 1.0
    if return_type == "Distance2Add":
        return (d1 + d2) * 0.5 - 1.0
    if return_type == "Distance2Sub":
        return d2 - d1 - 1.0
    if return_type == "Distance2Mul":
        return d1 * d2 * 0.5 - 1.0
    if return_type == "Distance2Div":
        return (d1 / d2 if d2 else 0.0) - 1.0
    return d1 - 1.0


def _feature_point(seed: int, cell: Tuple[int, ...], jitter: float):
    """Jittered feature point and cell value for an integer cell."""
    draws = list(islice(mulberry32(hash_cell(seed, *cell)), len(cell) + 1))
    point = tuple(c + r * jitter for c, r in zip(cell, draws))
    return point, draws[-1] * 2.0 - 1.0


def _cell_noise(seed: int, coords: Tuple[float, ...], return_type: str,
                distance_function: str, jitter: float) -> float:
    if not _finite(*coords):
        return math.nan
    base = tuple(math.floor(c) for c in coords)
    d1 = d2 = math.inf
    nearest_value = 0.0
    for offset in product((-1, 0, 1), repeat=len(coords)):
        cell = tuple(b + o for b, o in zip(base, offset))
        point, value = _feature_point(seed, cell, jitter)
        d = distance([c - p for c, p in zip(coords, point)], distance_function)
        if d < d1:
            d2, d1 = d1, d
            nearest_value = value
        elif d < d2:
            d2 = d
    return combine_distances(d1, d2, return_type, nearest_value)


def cell_noise_2d(seed: int, x: float, z: float, scale: float = 1.0,
                  return_type: str = "Distance", distance_function: str = "Euclidean",
                  jitter: float = 1.0) -> float:
    """Cell noise over the horizontal plane with one feature point per unit cell."""
    freq = _frequency(scale)
    return _cell_noise(seed, (x * freq, z * freq), return_type, distance_function, jitter)


def cell_noise_3d(seed: int, x: float, y: float, z: float, scale: float = 1.0,
                  return_type: str = "Distance", distance_function: str = "Euclidean",
                  jitter: float = 1.0) -> float:
    """Cell noise in 3D."""
    freq = _frequency(scale)
    return _cell_noise(seed, (x * freq, y * freq, z * freq), return_type, distance_function, jitter)
