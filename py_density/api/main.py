"""FastAPI preview service for density documents."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..config import settings
from ..core.context import ContextInputs
from ..core.errors import DensityError
from ..core.grid import SampleDomain, evaluate_grid
from ..core.resolver import ResolvedGraph, resolve
from ..core.schema import parse
from ..utils.log_config import configure_logging

configure_logging()

logger = structlog.get_logger()

app = FastAPI(
    title="Density Graph API",
    description="Parse, validate and sample density-function documents",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class ContextPayload(BaseModel):
    """JSON-expressible subset of the evaluation context inputs."""

    terrain: Optional[float] = Field(None, description="Constant terrain height")
    base_heights: Dict[str, float] = Field(default_factory=dict, description="Named base heights")
    distance_to_biome_edge: Optional[float] = Field(None, description="Constant distance to the biome edge")
    curves: Dict[str, Any] = Field(default_factory=dict, description="Named curve documents")
    positions: Dict[str, Any] = Field(default_factory=dict, description="Named point lists")
    anchor: Optional[List[float]] = Field(None, min_length=3, max_length=3, description="Initial anchor origin")
    switch_states: Dict[str, str] = Field(default_factory=dict, description="Initial switch states")


class ValidateRequest(BaseModel):
    document: Dict[str, Any] = Field(..., description="Density document root")


class ValidateResponse(BaseModel):
    valid: bool
    node_count: int = 0
    exports: List[str] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None


class EvaluateRequest(BaseModel):
    document: Dict[str, Any] = Field(..., description="Density document root")
    domain: SampleDomain = Field(default_factory=SampleDomain, description="Sample lattice")
    context: ContextPayload = Field(default_factory=ContextPayload, description="Context inputs")


class EvaluateResponse(BaseModel):
    values: List[List[List[Optional[float]]]]
    shape: List[int]
    min_value: Optional[float]
    max_value: Optional[float]
    faults: List[Dict[str, Any]]


def _build_graph(document: Dict[str, Any]) -> ResolvedGraph:
    try:
        return resolve(parse(document))
    except DensityError as e:
        logger.warning("Rejected density document", kind=e.kind, error=e.message, path=e.path)
        raise HTTPException(status_code=422, detail=e.to_dict())


def _finite_or_none(value: float) -> Optional[float]:
    return value if value == value and abs(value) != float("inf") else None


# API endpoints
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Density Graph API",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.post("/validate", response_model=ValidateResponse)
async def validate_document(request: ValidateRequest):
    """Parse and resolve a document without evaluating it."""
    try:
        graph = resolve(parse(request.document))
    except DensityError as e:
        return ValidateResponse(valid=False, error=e.to_dict())
    return ValidateResponse(valid=True, node_count=graph.node_count, exports=graph.registry.names())


@app.post("/evaluate", response_model=EvaluateResponse)
def evaluate_document(request: EvaluateRequest):
    """Sample a document over a lattice; per-point faults are reported, not raised."""
    if request.domain.point_count > settings.max_grid_points:
        raise HTTPException(
            status_code=400,
            detail=f"Domain has {request.domain.point_count} points, limit is {settings.max_grid_points}",
        )

    graph = _build_graph(request.document)
    try:
        inputs = ContextInputs(**request.context.model_dump())
    except DensityError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())

    logger.info("Evaluation requested", nodes=graph.node_count, size=list(request.domain.size))
    grid = evaluate_grid(graph, request.domain, inputs, on_error="nan")

    values = [[[_finite_or_none(v) for v in row] for row in plane] for plane in grid.values.tolist()]
    return EvaluateResponse(
        values=values,
        shape=list(grid.values.shape),
        min_value=_finite_or_none(grid.min_value),
        max_value=_finite_or_none(grid.max_value),
        faults=[fault.to_dict() for fault in grid.faults],
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
