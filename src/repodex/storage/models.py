"""
Persisted record types: lightweight metadata and the heavyweight index.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class JobStatus(str, Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    READY = "ready"
    ERROR = "error"

    @classmethod
    def coerce(cls, value: Any) -> "JobStatus":
        """Map any stored value onto a status; unknown values read as idle."""
        if isinstance(value, JobStatus):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.IDLE


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Field names written by the previous storage format.
_LEGACY_METADATA_FIELDS = {
    "repositoryId": "key",
    "branchSha": "commit_fingerprint",
    "uid": "owner_uid",
    "indexedAt": "indexed_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "repoInfo": "repo_info",
}

_LEGACY_STATS_FIELDS = {
    "totalFiles": "total_files",
    "totalSize": "total_size",
    "indexedFiles": "indexed_files",
    "averageFileSize": "average_file_size",
    "largestFiles": "largest_files",
    "topFiles": "top_files",
}

_LEGACY_REPO_INFO_FIELDS = {
    "defaultBranch": "default_branch",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


@dataclass
class RepositoryStats:
    total_files: int = 0
    total_size: int = 0
    indexed_files: int = 0
    languages: Dict[str, int] = field(default_factory=dict)
    extensions: Dict[str, int] = field(default_factory=dict)
    average_file_size: int = 0
    largest_files: List[Dict[str, Any]] = field(default_factory=list)
    top_files: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RepositoryStats":
        data = {_LEGACY_STATS_FIELDS.get(name, name): value for name, value in payload.items()}
        known = {f.name for f in fields(cls)}
        return cls(**{name: value for name, value in data.items() if name in known})


@dataclass
class RepositoryInfo:
    """Descriptive fields reported by the host for a repository."""

    name: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    default_branch: Optional[str] = None
    stars: int = 0
    forks: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RepositoryInfo":
        return cls(
            name=payload.get("name"),
            description=payload.get("description"),
            language=payload.get("language"),
            default_branch=payload.get("default_branch"),
            stars=int(payload.get("stargazers_count") or 0),
            forks=int(payload.get("forks_count") or 0),
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RepositoryInfo":
        data = {_LEGACY_REPO_INFO_FIELDS.get(name, name): value for name, value in payload.items()}
        known = {f.name for f in fields(cls)}
        return cls(**{name: value for name, value in data.items() if name in known})


@dataclass
class Metadata:
    """Lightweight per-repository record polled by status checks."""

    key: str
    status: JobStatus = JobStatus.IDLE
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    commit_fingerprint: Optional[str] = None
    owner_uid: Optional[str] = None
    indexed_at: Optional[str] = None
    stats: Optional[RepositoryStats] = None
    repo_info: Optional[RepositoryInfo] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Metadata":
        data = {_LEGACY_METADATA_FIELDS.get(name, name): value for name, value in payload.items()}
        known = set(cls.field_names())
        data = {name: value for name, value in data.items() if name in known}
        data["status"] = JobStatus.coerce(data.get("status"))
        stats = data.get("stats")
        if isinstance(stats, Mapping):
            data["stats"] = RepositoryStats.from_dict(stats)
        elif not isinstance(stats, RepositoryStats):
            data["stats"] = None
        info = data.get("repo_info")
        if isinstance(info, Mapping):
            data["repo_info"] = RepositoryInfo.from_dict(info)
        elif not isinstance(info, RepositoryInfo):
            data["repo_info"] = None
        for stamp in ("created_at", "updated_at"):
            if not data.get(stamp):
                data.pop(stamp, None)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass
class IndexedFile:
    path: str
    blob_id: Optional[str]
    size: int
    content: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IndexedFile":
        return cls(
            path=payload["path"],
            blob_id=payload.get("blob_id", payload.get("sha")),
            size=int(payload.get("size") or 0),
            content=payload.get("content") or "",
        )


@dataclass
class IndexArtifact:
    """Heavyweight crawl output. Replaced wholesale, never patched."""

    files: List[IndexedFile]
    tree: Dict[str, Any]
    indexed_at: str
    branch: Optional[str]
    commit_fingerprint: Optional[str]

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IndexArtifact":
        return cls(
            files=[IndexedFile.from_dict(item) for item in payload.get("files") or []],
            tree=dict(payload.get("tree") or {}),
            indexed_at=payload.get("indexed_at") or payload.get("indexedAt") or "",
            branch=payload.get("branch"),
            commit_fingerprint=payload.get("commit_fingerprint", payload.get("branchSha")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
