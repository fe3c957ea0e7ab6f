"""
Interpreter recursion headroom.

Parsing and evaluation recurse once per tree level, several Python frames per
level, so deep documents need more than the interpreter's default limit.
"""

import sys

# Python frames consumed per tree level by the parser and evaluator.
FRAMES_PER_LEVEL = 8


def ensure_recursion_limit(levels: int) -> None:
    """Raise the recursion limit so ``levels`` tree levels fit."""
    needed = levels * FRAMES_PER_LEVEL + 200
    if sys.getrecursionlimit() < needed:
        sys.setrecursionlimit(needed)
