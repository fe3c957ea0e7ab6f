"""
Lattice evaluation of a density graph.

Each Z-row of the lattice is evaluated by its own session, so rows can be
farmed out to a thread pool without sharing mutable state.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np
import structlog
from pydantic import BaseModel, Field, field_validator

from ..config import settings
from .context import ContextInputs
from .errors import DensityError
from .evaluator import Evaluator
from .resolver import ResolvedGraph
from .schema import DensityNode

logger = structlog.get_logger()


class SampleDomain(BaseModel):
    """Rectangular sample lattice; ``ny == 1`` gives a horizontal slice."""

    origin: Tuple[float, float, float] = Field((0.0, 0.0, 0.0), description="World coordinate of sample (0, 0, 0)")
    size: Tuple[int, int, int] = Field((16, 1, 16), description="Sample count along x, y and z")
    step: Tuple[float, float, float] = Field((1.0, 1.0, 1.0), description="Spacing between samples along x, y and z")

    @field_validator("size")
    @classmethod
    def _positive_size(cls, value):
        if any(n < 1 for n in value):
            raise ValueError("every size component must be at least 1")
        return value

    @property
    def point_count(self) -> int:
        nx, ny, nz = self.size
        return nx * ny * nz

    def axis(self, index: int) -> np.ndarray:
        return self.origin[index] + np.arange(self.size[index]) * self.step[index]


@dataclass
class PointFault:
    """An evaluation error recorded for one sample point."""
    index: Tuple[int, int, int]
    position: Tuple[float, float, float]
    kind: str
    message: str
    path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "index": list(self.index),
            "position": list(self.position),
            "kind": self.kind,
            "message": self.message,
            "path": self.path,
        }


@dataclass
class DensityGrid:
    """Sampled values, shaped ``(ny, nz, nx)``."""
    values: np.ndarray
    domain: SampleDomain
    faults: List[PointFault] = field(default_factory=list)

    @property
    def min_value(self) -> float:
        finite = self.values[np.isfinite(self.values)]
        return float(finite.min()) if finite.size else math.nan

    @property
    def max_value(self) -> float:
        finite = self.values[np.isfinite(self.values)]
        return float(finite.max()) if finite.size else math.nan


def _evaluate_row(evaluator: Evaluator, domain: SampleDomain, iz: int, on_error: str):
    """Evaluate every (y, x) sample of one Z-row in a fresh session."""
    session = evaluator.session(scope=("row", iz))
    xs, ys = domain.axis(0), domain.axis(1)
    z = float(domain.axis(2)[iz])
    row = np.empty((len(ys), len(xs)))
    faults = []
    for iy, y in enumerate(ys):
        for ix, x in enumerate(xs):
            try:
                row[iy, ix] = session.evaluate(float(x), float(y), z)
            except DensityError as e:
                if on_error == "raise":
                    raise
                row[iy, ix] = math.nan
                faults.append(PointFault((ix, iy, iz), (float(x), float(y), z), e.kind, e.message, e.path))
    return row, faults


def evaluate_grid(graph: Union[ResolvedGraph, DensityNode], domain: SampleDomain,
                  inputs: Optional[ContextInputs] = None, on_error: str = "raise",
                  workers: Optional[int] = None) -> DensityGrid:
    """
    Sample a density graph over a lattice.

    Args:
        graph: Resolved graph (an unresolved tree is resolved first)
        domain: Lattice to sample
        inputs: Context inputs shared by every row
        on_error: ``"raise"`` to propagate the first fault, ``"nan"`` to record it
        workers: Row worker threads, defaults to ``settings.grid_workers``

    Returns:
        DensityGrid with values shaped ``(ny, nz, nx)``
    """
    if on_error not in ("raise", "nan"):
        raise ValueError(f"on_error must be 'raise' or 'nan', got {on_error!r}")
    workers = workers or settings.grid_workers
    evaluator = Evaluator(graph, inputs)
    nx, ny, nz = domain.size

    logger.info("Evaluating density grid", points=domain.point_count, workers=workers)

    rows = range(nz)
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda iz: _evaluate_row(evaluator, domain, iz, on_error), rows))
    else:
        results = [_evaluate_row(evaluator, domain, iz, on_error) for iz in rows]

    values = np.empty((ny, nz, nx))
    faults: List[PointFault] = []
    for iz, (row, row_faults) in enumerate(results):
        values[:, iz, :] = row
        faults.extend(row_faults)

    grid = DensityGrid(values=values, domain=domain, faults=faults)
    logger.info(
        "Density grid complete",
        points=domain.point_count,
        faults=len(faults),
        min_value=grid.min_value,
        max_value=grid.max_value,
    )
    return grid
