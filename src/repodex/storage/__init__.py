"""
Persistence for repository indexing: artifact records, legacy reads and locks.
"""

from .artifacts import ArtifactStore
from .legacy import JsonDocumentStore, LegacyDocumentStore
from .locks import LockInfo, LockManager, LockResult
from .models import IndexArtifact, IndexedFile, JobStatus, Metadata, RepositoryInfo, RepositoryStats

__all__ = [
    "ArtifactStore",
    "IndexArtifact",
    "IndexedFile",
    "JobStatus",
    "JsonDocumentStore",
    "LegacyDocumentStore",
    "LockInfo",
    "LockManager",
    "LockResult",
    "Metadata",
    "RepositoryInfo",
    "RepositoryStats",
]
