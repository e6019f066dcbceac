"""FastAPI application factory."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from pkgview import __version__
from pkgview.models import Graph
from pkgview.web.api import router

STATIC_DIR = Path(__file__).parent / "static"


def create_app(graph: Graph) -> FastAPI:
    """Serve a finished graph. The graph is never rebuilt by the app."""
    app = FastAPI(title="pkgview", version=__version__)
    app.state.graph = graph

    @app.middleware("http")
    async def no_cache_static(request: Request, call_next):
        response: Response = await call_next(request)
        if request.url.path.endswith((".js", ".css", ".html")) or request.url.path == "/":
            response.headers["Cache-Control"] = "no-cache"
        return response

    app.include_router(router)

    # Static files (must be last, catches all unmatched routes)
    app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True), name="static")
    return app
