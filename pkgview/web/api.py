"""Graph data routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from pkgview.models import Graph, PackageType

router = APIRouter()


class NodePayload(BaseModel):
    ImportPath: str
    Name: str
    PkgType: str


class EdgePayload(BaseModel):
    From: str
    To: str


class GraphPayload(BaseModel):
    nodes: list[NodePayload]
    edges: list[EdgePayload]


class SummaryPayload(BaseModel):
    nodes: dict[str, int]
    edges: int


def _graph(request: Request) -> Graph:
    graph = getattr(request.app.state, "graph", None)
    if graph is None:
        raise HTTPException(503, "Graph is not built yet")
    return graph


@router.get("/data", response_model=GraphPayload)
async def get_data(request: Request, response: Response):
    # Lets a UI dev server on another port read the data
    response.headers["Access-Control-Allow-Origin"] = "*"
    return _graph(request).to_dict()


@router.get("/api/summary", response_model=SummaryPayload)
async def get_summary(request: Request):
    graph = _graph(request)
    by_type = graph.nodes_by_type()
    return {
        "nodes": {t.value: len(by_type[t]) for t in PackageType},
        "edges": len(graph.edges),
    }
