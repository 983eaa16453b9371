"""Dependency API: repository file listings and cross-repository analysis."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from repo_graph.errors import NotFoundError, RepoGraphError, UpstreamUnavailableError, ValidationError
from repo_graph.models import AnalysisRequest
from repo_graph.service import DependencyService

router = APIRouter(prefix="/api/dependencies")


class AnalyzeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repositories: list[str] = Field(default_factory=list)
    target_file: str = Field("", alias="targetFile")
    target_repo: str | None = Field(None, alias="targetRepo")
    organization: str | None = Field(None, alias="org")
    max_depth: int = Field(2, alias="maxDepth")
    include_method_level: bool = Field(True, alias="includeMethodLevel")
    include_content: bool = Field(False, alias="includeContent")
    include_dependents: bool = Field(False, alias="includeDependents")


def get_service(request: Request) -> DependencyService:
    return request.app.state.service


def http_error(e: RepoGraphError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(400, str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, UpstreamUnavailableError):
        return HTTPException(502, str(e))
    return HTTPException(500, str(e))


@router.get("")
async def list_files(
    repo: str = Query(""),
    org: str | None = Query(None),
    refresh: bool = Query(False),
    service: DependencyService = Depends(get_service),
):
    if not repo:
        raise HTTPException(400, "Repository name is required")
    try:
        return await service.list_repository_files(repo, org, force_refresh=refresh)
    except RepoGraphError as e:
        raise http_error(e)


@router.post("")
async def analyze(body: AnalyzeBody, service: DependencyService = Depends(get_service)):
    try:
        repositories = [service.parse_repository(r, body.organization) for r in body.repositories]
        target_repo = (
            service.parse_repository(body.target_repo, body.organization) if body.target_repo else None
        )
        request = AnalysisRequest(
            repositories=repositories,
            target_file=body.target_file,
            target_repo=target_repo,
            max_depth=body.max_depth,
            include_method_level=body.include_method_level,
            include_content=body.include_content,
            include_dependents=body.include_dependents,
        )
        graph = await service.analyze(request)
    except RepoGraphError as e:
        raise http_error(e)
    return graph.to_dict()
