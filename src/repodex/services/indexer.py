"""
Repository indexing job orchestration.
"""
from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..errors import FetchError, StoreIOError
from ..identity import DEFAULT_PROVIDER, RepositoryKey
from ..ingestion import RepositoryFetcher
from ..logger import get_logger, job_context
from ..settings import settings
from ..storage import ArtifactStore, IndexArtifact, JobStatus, LockManager, Metadata
from ..storage.models import parse_timestamp, utc_now_iso

log = get_logger(__name__)


@dataclass
class IndexRequestResult:
    started: bool
    status: JobStatus
    key: str


class IndexOrchestrator:
    """
    Decides whether an index request starts, skips or is rejected, and runs
    accepted jobs in the background.

    At most one job per repository key runs at a time (guarded by the lock
    manager); a ``ready`` repository whose branch still points at the indexed
    commit is never crawled again unless ``force`` is set. Every metadata
    write on the request path happens while the lock is held.
    """

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        locks: Optional[LockManager] = None,
        fetcher: Optional[RepositoryFetcher] = None,
        executor: Optional[Executor] = None,
        lock_timeout: Optional[float] = None,
        stale_after: Optional[float] = None,
    ) -> None:
        self.store = store or ArtifactStore()
        self.locks = locks or LockManager()
        self.fetcher = fetcher or RepositoryFetcher()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(1, settings.index_workers), thread_name_prefix="repodex-index"
        )
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.lock_timeout
        self.stale_after = stale_after if stale_after is not None else settings.stale_job_after

    def request_index(
        self,
        owner: str,
        repo: str,
        branch: Optional[str] = None,
        force: bool = False,
        owner_uid: Optional[str] = None,
        provider: str = DEFAULT_PROVIDER,
    ) -> IndexRequestResult:
        key = str(RepositoryKey(provider=provider, owner=owner, repo=repo))
        status = self.store.get_status(key)
        seen_fingerprint = self._indexed_fingerprint(key)

        if status is JobStatus.INDEXING and not self._is_abandoned(key):
            log.info("index_already_running", key=key)
            return IndexRequestResult(started=False, status=JobStatus.INDEXING, key=key)

        if status is JobStatus.READY and not force:
            if self._is_up_to_date(key, owner, repo, branch):
                return IndexRequestResult(started=False, status=JobStatus.READY, key=key)

        # An abandoned record is only taken over when nobody else is starting it.
        timeout = 0 if status is JobStatus.INDEXING else self.lock_timeout
        lock = self.locks.acquire(key, timeout=timeout)
        if not lock.acquired:
            log.warning("index_lock_unavailable", key=key)
            return IndexRequestResult(started=False, status=JobStatus.INDEXING, key=key)

        skipped: Optional[IndexRequestResult] = None
        try:
            skipped = self._recheck_locked(key, owner, repo, branch, force, status, seen_fingerprint)
            if skipped is None:
                self.store.update_status(
                    key,
                    JobStatus.INDEXING,
                    owner=owner,
                    repo=repo,
                    branch=branch,
                    owner_uid=owner_uid,
                    created_at=utc_now_iso(),
                    error=None,
                )
                self.executor.submit(self._run_job, key, owner, repo, branch)
        except Exception:
            self.locks.release(key)
            raise

        if skipped is not None:
            self.locks.release(key)
            return skipped

        log.info("index_started", key=key, branch=branch or "default", force=force, previous=status.value)
        return IndexRequestResult(started=True, status=JobStatus.INDEXING, key=key)

    def _recheck_locked(
        self,
        key: str,
        owner: str,
        repo: str,
        branch: Optional[str],
        force: bool,
        seen_status: JobStatus,
        seen_fingerprint: Optional[str],
    ) -> Optional[IndexRequestResult]:
        """
        Re-read the record now that the lock is held. Another worker may have
        started or finished a job between the first read and the acquire; a
        returned result means this request must not start.
        """
        current = self.store.get_status(key)
        if current is JobStatus.INDEXING:
            if not self._is_abandoned(key, lock_held=True):
                return IndexRequestResult(started=False, status=JobStatus.INDEXING, key=key)
            log.warning("abandoned_job_reclaimed", key=key)
            return None

        if force or current is not JobStatus.READY:
            return None
        fingerprint = self._indexed_fingerprint(key)
        if (current, fingerprint) == (seen_status, seen_fingerprint):
            return None
        log.info("index_finished_while_waiting", key=key, sha=fingerprint)
        if self._is_up_to_date(key, owner, repo, branch):
            return IndexRequestResult(started=False, status=JobStatus.READY, key=key)
        return None

    def _indexed_fingerprint(self, key: str) -> Optional[str]:
        try:
            return self.store.get_indexed_fingerprint(key)
        except StoreIOError as exc:
            log.warning("indexed_fingerprint_unreadable", key=key, error=str(exc))
            return None

    def _is_up_to_date(self, key: str, owner: str, repo: str, branch: Optional[str]) -> bool:
        try:
            current = self.fetcher.resolve(owner, repo, branch).fingerprint
        except FetchError as exc:
            log.warning("fingerprint_check_failed", key=key, error=str(exc))
            return False
        indexed = self._indexed_fingerprint(key)
        if indexed and current == indexed:
            log.info("index_cache_hit", key=key, sha=current)
            return True
        log.info("index_fingerprint_changed", key=key, old_sha=indexed, new_sha=current)
        return False

    def _is_abandoned(self, key: str, lock_held: bool = False) -> bool:
        """
        An ``indexing`` record is abandoned when no worker can still own it:
        the lock marker is free (or held by the caller) and the record has not
        moved for ``stale_after`` seconds. An ``indexing`` status that only
        exists in the legacy store was written by the previous system and is
        always abandoned.
        """
        if not lock_held and self.locks.is_locked(key):
            return False
        try:
            metadata = self.store.get_metadata(key)
        except StoreIOError:
            return False
        if metadata is None:
            return True
        updated = parse_timestamp(metadata.updated_at)
        if updated is None:
            return False
        age = (datetime.now(timezone.utc) - updated).total_seconds()
        return age >= self.stale_after

    def _run_job(self, key: str, owner: str, repo: str, branch: Optional[str]) -> None:
        with job_context(key):
            try:
                log.info("index_job_started")
                resolution = self.fetcher.resolve(owner, repo, branch)
                info = resolution.info or self.fetcher.describe(owner, repo)
                crawl = self.fetcher.crawl(owner, repo, resolution.fingerprint)
                stats = self.fetcher.stats(crawl.entries, crawl.files)
                indexed_at = utc_now_iso()

                self.store.save_index(
                    key,
                    IndexArtifact(
                        files=crawl.files,
                        tree=crawl.tree,
                        indexed_at=indexed_at,
                        branch=resolution.branch,
                        commit_fingerprint=resolution.fingerprint,
                    ),
                )
                self.store.update_status(
                    key,
                    JobStatus.READY,
                    branch=resolution.branch,
                    commit_fingerprint=resolution.fingerprint,
                    stats=stats,
                    repo_info=info,
                    indexed_at=indexed_at,
                    error=None,
                )
                log.info("index_job_completed", total_files=stats.total_files, indexed_files=stats.indexed_files)
            except Exception as exc:
                log.exception("index_job_failed", error=str(exc))
                self._record_failure(key, exc)
            finally:
                self.locks.release(key)

    def _record_failure(self, key: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        try:
            self.store.update_status(key, JobStatus.ERROR, error=message)
        except Exception as store_exc:
            log.error("index_failure_not_recorded", error=str(store_exc))

    def get_status(self, key: str) -> JobStatus:
        return self.store.get_status(key)

    def get_metadata(self, key: str) -> Optional[Metadata]:
        return self.store.get_metadata(key)

    def get_index(self, key: str) -> Optional[IndexArtifact]:
        """Internal only: the index contains raw file content."""
        return self.store.get_index(key)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
