"""Cache administration API."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from repo_graph.errors import RepoGraphError
from repo_graph.service import DependencyService
from repo_graph.web.api_dependencies import get_service, http_error

router = APIRouter(prefix="/api/cache")


class InvalidateRequest(BaseModel):
    repository: str


@router.get("/stats")
async def stats(service: DependencyService = Depends(get_service)):
    return service.cache_stats()


@router.post("/cleanup")
async def cleanup(service: DependencyService = Depends(get_service)):
    removed = service.clean_expired()
    return {"removed": removed, "totalRemoved": sum(removed.values())}


@router.post("/clear")
async def clear(service: DependencyService = Depends(get_service)):
    service.clear_all()
    return {"cleared": True}


@router.post("/invalidate")
async def invalidate(req: InvalidateRequest, service: DependencyService = Depends(get_service)):
    try:
        removed = service.invalidate_repository(req.repository)
    except RepoGraphError as e:
        raise http_error(e)
    return {"repository": req.repository, "removed": removed}
