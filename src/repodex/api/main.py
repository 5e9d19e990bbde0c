"""
FastAPI entrypoint for requesting and polling repository indexing jobs.

Responses expose job status and lightweight metadata only; indexed file
content never leaves the process through this API.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, status
from pydantic import BaseModel

from .dependencies import parse_repository_key, require_api_key
from ..errors import InvalidRepositoryKey, StoreIOError
from ..identity import DEFAULT_PROVIDER, RepositoryKey
from ..logger import configure_logging, get_logger
from ..services import IndexOrchestrator
from ..settings import settings
from ..storage import JobStatus, Metadata
from ..version import __version__

app = FastAPI(title="Repository Indexer", version=__version__)
orchestrator = IndexOrchestrator()
log = get_logger(__name__)

_START_MESSAGES = {
    JobStatus.INDEXING: "Indexing already in progress",
    JobStatus.READY: "Repository already indexed and up to date",
}


class IndexRequest(BaseModel):
    repository_key: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    force: bool = False
    uid: Optional[str] = None


class StatsResponse(BaseModel):
    total_files: int
    total_size: int
    indexed_files: int
    languages: Dict[str, int]
    extensions: Dict[str, int]
    average_file_size: int = 0
    largest_files: List[Dict[str, Any]] = []
    top_files: List[str] = []


class RepositoryInfoResponse(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    default_branch: Optional[str] = None
    stars: int = 0
    forks: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class IndexResponse(BaseModel):
    repository_key: str
    started: bool
    status: JobStatus
    message: str
    indexed_at: Optional[str] = None
    stats: Optional[StatsResponse] = None


class StatusResponse(BaseModel):
    repository_key: str
    status: JobStatus
    indexed_at: Optional[str] = None
    stats: Optional[StatsResponse] = None
    error: Optional[str] = None


class MetadataResponse(BaseModel):
    repository_key: str
    status: JobStatus
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    commit_fingerprint: Optional[str] = None
    indexed_at: Optional[str] = None
    stats: Optional[StatsResponse] = None
    repo_info: Optional[RepositoryInfoResponse] = None
    error: Optional[str] = None
    created_at: str
    updated_at: str


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post(
    "/repositories/index",
    response_model=IndexResponse,
    dependencies=[Depends(require_api_key)],
)
def request_index(request: IndexRequest) -> IndexResponse:
    key = _resolve_request_key(request)
    result = orchestrator.request_index(
        owner=key.owner,
        repo=key.repo,
        branch=request.branch or None,
        force=request.force,
        owner_uid=request.uid,
        provider=key.provider,
    )
    if result.started:
        return IndexResponse(
            repository_key=result.key,
            started=True,
            status=result.status,
            message="Indexing started",
        )

    metadata = _safe_metadata(result.key)
    return IndexResponse(
        repository_key=result.key,
        started=False,
        status=result.status,
        message=_START_MESSAGES.get(result.status, "Indexing not started"),
        indexed_at=metadata.indexed_at if metadata else None,
        stats=_stats_payload(metadata),
    )


@app.get(
    "/repositories/{repository_key}/status",
    response_model=StatusResponse,
    dependencies=[Depends(require_api_key)],
)
def repository_status(key: RepositoryKey = Depends(parse_repository_key)) -> StatusResponse:
    # Unknown repositories are idle, never 404.
    current = orchestrator.get_status(str(key))
    metadata = _safe_metadata(str(key))
    return StatusResponse(
        repository_key=str(key),
        status=current,
        indexed_at=metadata.indexed_at if metadata else None,
        stats=_stats_payload(metadata),
        error=metadata.error if metadata and current is JobStatus.ERROR else None,
    )


@app.get(
    "/repositories/{repository_key}/metadata",
    response_model=MetadataResponse,
    dependencies=[Depends(require_api_key)],
)
def repository_metadata(key: RepositoryKey = Depends(parse_repository_key)) -> MetadataResponse:
    metadata = _safe_metadata(str(key))
    if metadata is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Repository has no metadata"
        )
    return MetadataResponse(
        repository_key=metadata.key,
        status=metadata.status,
        owner=metadata.owner,
        repo=metadata.repo,
        branch=metadata.branch,
        commit_fingerprint=metadata.commit_fingerprint,
        indexed_at=metadata.indexed_at,
        stats=_stats_payload(metadata),
        repo_info=RepositoryInfoResponse(**asdict(metadata.repo_info)) if metadata.repo_info else None,
        error=metadata.error,
        created_at=metadata.created_at,
        updated_at=metadata.updated_at,
    )


def _resolve_request_key(request: IndexRequest) -> RepositoryKey:
    try:
        if request.repository_key:
            return RepositoryKey.parse(request.repository_key)
        if not request.owner or not request.repo:
            raise InvalidRepositoryKey(
                "owner and repo are required when repository_key is not provided"
            )
        return RepositoryKey(provider=DEFAULT_PROVIDER, owner=request.owner, repo=request.repo)
    except InvalidRepositoryKey as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc


def _safe_metadata(key: str) -> Optional[Metadata]:
    try:
        return orchestrator.get_metadata(key)
    except StoreIOError as exc:
        log.error("metadata_unreadable", key=key, error=str(exc))
        return None


def _stats_payload(metadata: Optional[Metadata]) -> Optional[StatsResponse]:
    if metadata is None or metadata.stats is None:
        return None
    stats: Dict[str, Any] = {
        "total_files": metadata.stats.total_files,
        "total_size": metadata.stats.total_size,
        "indexed_files": metadata.stats.indexed_files,
        "languages": dict(metadata.stats.languages),
        "extensions": dict(metadata.stats.extensions),
        "average_file_size": metadata.stats.average_file_size,
        "largest_files": list(metadata.stats.largest_files),
        "top_files": list(metadata.stats.top_files),
    }
    return StatsResponse(**stats)


def run() -> None:
    """CLI entrypoint to run the FastAPI server."""
    configure_logging(json_output=True)
    uvicorn.run(
        "repodex.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
