"""
Filesystem store for per-repository indexing artifacts.

Each repository key owns a directory under the indexes root holding two
records: ``metadata.json`` (status, fingerprint, stats; polled often) and
``index.json`` (file list and tree; read only by internal consumers). Reads
fall back to the legacy document store and the legacy single-file index so
historical results stay usable without being rewritten.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..errors import StoreIOError
from ..identity import RepositoryKey, normalize_for_filesystem
from ..logger import get_logger
from ..settings import settings
from .legacy import JsonDocumentStore, LegacyDocumentStore
from .models import IndexArtifact, JobStatus, Metadata, utc_now_iso

log = get_logger(__name__)

METADATA_FILENAME = "metadata.json"
INDEX_FILENAME = "index.json"

# Status values written by the legacy document store.
_LEGACY_STATUS_MAP = {
    "completed": JobStatus.READY,
    "indexing": JobStatus.INDEXING,
    "error": JobStatus.ERROR,
}


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Return the decoded object at ``path``, None when the file is absent."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StoreIOError(f"Could not read {path.name}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise StoreIOError(f"Corrupt record {path.name}: {exc}") from exc
    if not isinstance(payload, dict):
        raise StoreIOError(f"Corrupt record {path.name}: expected an object")
    return payload


class ArtifactStore:
    """JSON-backed metadata and index records keyed by repository key."""

    def __init__(
        self,
        indexes_dir: Optional[Path] = None,
        legacy_store: Optional[LegacyDocumentStore] = None,
    ) -> None:
        self.indexes_dir = indexes_dir or settings.resolved_indexes_dir()
        if legacy_store is None and settings.legacy_store_dir is not None:
            legacy_store = JsonDocumentStore(settings.legacy_store_dir)
        self.legacy_store = legacy_store

    def repository_dir(self, key: str) -> Path:
        return self.indexes_dir / normalize_for_filesystem(key)

    def metadata_path(self, key: str) -> Path:
        return self.repository_dir(key) / METADATA_FILENAME

    def index_path(self, key: str) -> Path:
        return self.repository_dir(key) / INDEX_FILENAME

    def legacy_index_path(self, key: str) -> Path:
        # The legacy layout used the raw key as the file name.
        return self.indexes_dir / f"{RepositoryKey.parse(key)}.json"

    def get_status(self, key: str) -> JobStatus:
        """Current job status for ``key``. Never raises; anything unknown is idle."""
        try:
            metadata = self.get_metadata(key)
        except Exception as exc:
            log.error("status_read_failed", key=key, error=str(exc))
            return JobStatus.IDLE
        if metadata is not None:
            return metadata.status
        return self._legacy_status(key)

    def _legacy_status(self, key: str) -> JobStatus:
        if self.legacy_store is None:
            return JobStatus.IDLE
        try:
            document = self.legacy_store.fetch(key)
        except Exception as exc:
            log.warning("legacy_status_read_failed", key=key, error=str(exc))
            return JobStatus.IDLE
        if not document:
            return JobStatus.IDLE
        status = _LEGACY_STATUS_MAP.get(str(document.get("status")), JobStatus.IDLE)
        if status is JobStatus.READY:
            log.info("legacy_completed_mapped_to_ready", key=key)
        return status

    def get_metadata(self, key: str) -> Optional[Metadata]:
        payload = _read_json(self.metadata_path(key))
        if payload is None:
            return None
        payload.setdefault("key", key)
        try:
            return Metadata.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise StoreIOError(f"Corrupt metadata for {key}: {exc}") from exc

    def save_metadata(self, key: str, patch: Mapping[str, Any]) -> Metadata:
        """Merge ``patch`` onto the stored record and write it back."""
        unknown = set(patch) - set(Metadata.field_names())
        if unknown:
            raise ValueError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")

        current = self.get_metadata(key)
        merged: Dict[str, Any] = current.to_dict() if current else {}
        merged.update(patch)
        merged["key"] = key
        merged["updated_at"] = utc_now_iso()
        metadata = Metadata.from_dict(merged)

        _write_json_atomic(self.metadata_path(key), metadata.to_dict())
        log.info("metadata_saved", key=key, status=metadata.status.value)
        return metadata

    def update_status(self, key: str, status: JobStatus, **patch: Any) -> Metadata:
        """Record a status transition; the only way statuses change."""
        return self.save_metadata(key, {**patch, "status": JobStatus(status)})

    def get_indexed_fingerprint(self, key: str) -> Optional[str]:
        metadata = self.get_metadata(key)
        return metadata.commit_fingerprint if metadata else None

    def get_index(self, key: str) -> Optional[IndexArtifact]:
        """
        Load the full index for internal consumers.

        The result carries raw file content and must not be handed to
        untrusted callers.
        """
        payload = _read_json(self.index_path(key))
        if payload is not None:
            log.info("index_loaded", key=key, path=str(self.index_path(key)))
            return self._to_artifact(key, payload)

        legacy_path = self.legacy_index_path(key)
        payload = _read_json(legacy_path)
        if payload is None:
            log.info("index_not_found", key=key)
            return None
        log.info("legacy_index_loaded", key=key, path=str(legacy_path))
        if not ("files" in payload and "tree" in payload):
            log.warning("legacy_index_shape_adapted", key=key, fields=sorted(payload))
        return self._to_artifact(key, payload)

    @staticmethod
    def _to_artifact(key: str, payload: Mapping[str, Any]) -> IndexArtifact:
        try:
            return IndexArtifact.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreIOError(f"Corrupt index for {key}: {exc}") from exc

    def save_index(self, key: str, artifact: IndexArtifact) -> None:
        path = self.index_path(key)
        _write_json_atomic(path, artifact.to_dict())
        log.info("index_saved", key=key, path=str(path), files=len(artifact.files))

    def exists(self, key: str) -> bool:
        return self.index_path(key).is_file()

    def delete(self, key: str) -> None:
        """Remove every primary record for ``key``. Legacy records are left alone."""
        repo_dir = self.repository_dir(key)
        if not repo_dir.exists():
            return
        shutil.rmtree(repo_dir)
        log.info("repository_deleted", key=key, path=str(repo_dir))
