"""
Shared FastAPI dependencies (authentication, repository key parsing).
"""

from __future__ import annotations

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..errors import InvalidRepositoryKey
from ..identity import RepositoryKey
from ..settings import settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(api_key: str = Security(_api_key_header)) -> str | None:
    """
    Enforce optional API-key authentication.

    If ``REPODEX_API_KEY`` is configured the incoming request must provide the
    matching value in the ``X-API-Key`` header; otherwise the dependency is a
    no-op.
    """
    expected = settings.api_key
    if not expected:
        return None
    if api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
    return api_key


def parse_repository_key(repository_key: str) -> RepositoryKey:
    """Path parameter dependency: 400 for keys not shaped provider:owner:repo."""
    try:
        return RepositoryKey.parse(repository_key)
    except InvalidRepositoryKey as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
