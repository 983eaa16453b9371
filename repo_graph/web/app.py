"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from repo_graph import __version__
from repo_graph.service import DependencyService
from repo_graph.web.api_cache import router as cache_router
from repo_graph.web.api_dependencies import router as dependencies_router


def create_app(service: DependencyService | None = None) -> FastAPI:
    """Build the app around ``service``, or a service configured from the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service.close()

    app = FastAPI(title="repo-graph", version=__version__, lifespan=lifespan)
    app.state.service = service or DependencyService()

    app.include_router(dependencies_router)
    app.include_router(cache_router)
    return app
