"""
Deterministic seeding for noise nodes.

Seeds in density documents are free-form strings. They are hashed to 31-bit
integers with Johannes Baagøe's Alea mash so the same seed always yields the
same noise on every platform. Per-cell feature points of cell noise draw from
a mulberry32 stream keyed by the cell's integer coordinates.
"""

from functools import lru_cache
from typing import Iterator, Union

# Cell hashing primes, one per axis.
HASH_PRIME_X = 374761393
HASH_PRIME_Y = 668265263
HASH_PRIME_Z = 1103515245

_TWO_POW_32 = 4294967296.0
_TWO_POW_NEG_32 = 2.3283064365386963e-10

Seed = Union[str, int, float, None]


def _uint32(n) -> int:
    """Convert to unsigned 32-bit integer."""
    return int(n) & 0xFFFFFFFF


def _int32(n) -> int:
    """Wrap to a signed 32-bit integer."""
    n = int(n) & 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


class Alea:
    """
    Alea generator seeded from a string.

    Only used to turn seed strings into integers, so it exposes the bare
    ``random()`` step and nothing else.
    """

    def __init__(self, seed: str):
        mash_n = 0xEFC8249D

        def mash(data: str) -> float:
            nonlocal mash_n
            for char in data:
                mash_n += ord(char)
                h = 0.02519603282416938 * mash_n
                mash_n = _uint32(h)
                h -= mash_n
                h *= mash_n
                mash_n = _uint32(h)
                h -= mash_n
                mash_n += h * _TWO_POW_32
            return _uint32(mash_n) * _TWO_POW_NEG_32

        self.s0 = mash(" ")
        self.s1 = mash(" ")
        self.s2 = mash(" ")
        self.c = 1

        seed = str(seed)
        self.s0 = (self.s0 - mash(seed)) % 1.0
        self.s1 = (self.s1 - mash(seed)) % 1.0
        self.s2 = (self.s2 - mash(seed)) % 1.0

    def random(self) -> float:
        """Generate next random number in [0, 1)."""
        t = 2091639 * self.s0 + self.c * _TWO_POW_NEG_32
        self.s0 = self.s1
        self.s1 = self.s2
        self.c = int(t)
        self.s2 = t - self.c
        return self.s2


@lru_cache(maxsize=1024)
def _hash_string(seed: str) -> int:
    return int(Alea(seed).random() * 0x7FFFFFFF)


def seed_to_int(seed: Seed, default: str = "A") -> int:
    """
    Map a document seed to a non-negative 31-bit integer.

    Integers and integral strings pass through (masked to 31 bits); any other
    string is hashed. ``None`` and the empty string use ``default``.
    """
    if seed is None or seed == "":
        seed = default
    if isinstance(seed, bool):
        return int(seed)
    if isinstance(seed, (int, float)):
        return int(seed) & 0x7FFFFFFF
    text = str(seed).strip()
    if text.lstrip("-").isdigit():
        return int(text) & 0x7FFFFFFF
    return _hash_string(text)


def mulberry32(seed: int) -> Iterator[float]:
    """Infinite stream of floats in [0, 1) from the mulberry32 generator."""
    s = _int32(seed)
    while True:
        s = _int32(s + 0x6D2B79F5)
        u = s & 0xFFFFFFFF
        t = _imul(u ^ (u >> 15), 1 | u)
        t = (t + _imul(t ^ (t >> 7), 61 | t)) & 0xFFFFFFFF ^ t
        yield ((t ^ (t >> 14)) & 0xFFFFFFFF) / _TWO_POW_32


def _imul(a: int, b: int) -> int:
    return (a * b) & 0xFFFFFFFF


def hash_cell(seed: int, cx: int, cy: int, cz: int = 0) -> int:
    """Combine a seed with integer cell coordinates into a 32-bit stream key."""
    return _int32(seed + cx * HASH_PRIME_X + cy * HASH_PRIME_Y + cz * HASH_PRIME_Z)
