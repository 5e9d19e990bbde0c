"""
Canonical repository keys.

A key has the shape ``provider:owner:repo`` (``github:acme:widgets``). The
same key is used for metadata, index records and lock markers; on disk it is
normalized into a single safe path segment.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidRepositoryKey

DEFAULT_PROVIDER = "github"
KEY_SEPARATOR = ":"

_PATH_SEPARATORS = ("/", "\\")
_RESERVED_SEGMENTS = frozenset({".", ".."})
_UNSAFE_CHARS = re.compile(r'[<>:"|?*/\\]')
_WHITESPACE = re.compile(r"\s+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


@dataclass(frozen=True)
class RepositoryKey:
    provider: str
    owner: str
    repo: str

    def __post_init__(self) -> None:
        for label, value in (("provider", self.provider), ("owner", self.owner), ("repo", self.repo)):
            if not isinstance(value, str) or not value.strip():
                raise InvalidRepositoryKey(f"{label} is required to build a repository key")
            if KEY_SEPARATOR in value:
                raise InvalidRepositoryKey(f"{label} may not contain '{KEY_SEPARATOR}': {value!r}")
            if any(sep in value for sep in _PATH_SEPARATORS) or value in _RESERVED_SEGMENTS:
                raise InvalidRepositoryKey(f"{label} is not a valid repository name segment: {value!r}")

    @classmethod
    def parse(cls, value: str) -> "RepositoryKey":
        """Parse ``provider:owner:repo``; anything else raises InvalidRepositoryKey."""
        if not isinstance(value, str) or not value:
            raise InvalidRepositoryKey("repository key must be a non-empty string")
        parts = value.split(KEY_SEPARATOR)
        if len(parts) != 3 or not all(part.strip() for part in parts):
            raise InvalidRepositoryKey(
                f"repository key must have the form provider:owner:repo, got {value!r}"
            )
        return cls(*parts)

    @classmethod
    def for_repository(cls, owner: str, repo: str, provider: str = DEFAULT_PROVIDER) -> "RepositoryKey":
        return cls(provider=provider, owner=owner, repo=repo)

    def __str__(self) -> str:
        return KEY_SEPARATOR.join((self.provider, self.owner, self.repo))

    @property
    def storage_name(self) -> str:
        return normalize_for_filesystem(str(self))


def is_valid_repository_key(value: str) -> bool:
    try:
        RepositoryKey.parse(value)
    except InvalidRepositoryKey:
        return False
    return True


def normalize_for_filesystem(key: str) -> str:
    """Turn a repository key into one path segment (``github:a:b`` -> ``github_a_b``)."""
    if not isinstance(key, str) or not key:
        raise InvalidRepositoryKey("repository key must be a non-empty string")
    normalized = key.replace(KEY_SEPARATOR, "__")
    normalized = _UNSAFE_CHARS.sub("_", normalized)
    normalized = _WHITESPACE.sub("_", normalized)
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized)
    if normalized in {".", ".."}:
        raise InvalidRepositoryKey(f"repository key cannot be used as a path: {key!r}")
    return normalized
