"""
File-backed advisory locks for indexing jobs.

A lock is a marker file created with exclusive-create semantics; the marker
existing means the lock is held. This is a single-host mutex, shared safely by
threads and by processes pointing at the same locks directory.
"""

from __future__ import annotations

import json
import os
import socket
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ..identity import normalize_for_filesystem
from ..logger import get_logger
from ..settings import settings
from .models import utc_now_iso

log = get_logger(__name__)


@dataclass
class LockInfo:
    key: str
    acquired_at: str
    holder_id: str
    pid: int


@dataclass
class LockResult:
    acquired: bool
    path: Path


class LockManager:
    """Exclusive, named, bounded-wait mutex."""

    def __init__(
        self,
        locks_dir: Optional[Path] = None,
        poll_interval: Optional[float] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self.locks_dir = locks_dir or settings.resolved_locks_dir()
        self.poll_interval = poll_interval if poll_interval is not None else settings.lock_poll_interval
        self.default_timeout = default_timeout if default_timeout is not None else settings.lock_timeout
        self.holder_id = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    def lock_path(self, key: str) -> Path:
        return self.locks_dir / f"{normalize_for_filesystem(key)}.lock"

    def acquire(self, key: str, timeout: Optional[float] = None) -> LockResult:
        """
        Try to create the marker for ``key``, polling until ``timeout`` seconds pass.

        At least one attempt is made even when ``timeout`` is zero. Returns
        ``acquired=False`` once the deadline passes; never waits indefinitely.
        """
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_path(key)
        wait = self.default_timeout if timeout is None else max(0.0, timeout)
        deadline = time.monotonic() + wait

        while True:
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                time.sleep(min(self.poll_interval, remaining))
                continue

            info = LockInfo(key=key, acquired_at=utc_now_iso(), holder_id=self.holder_id, pid=os.getpid())
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(asdict(info), handle, indent=2)
            log.info("lock_acquired", key=key, path=str(path), holder=self.holder_id)
            return LockResult(acquired=True, path=path)

        log.warning("lock_timeout", key=key, timeout=wait)
        return LockResult(acquired=False, path=path)

    def release(self, key: str) -> None:
        path = self.lock_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            log.warning("lock_missing_on_release", key=key, path=str(path))
            return
        except OSError as exc:
            log.error("lock_release_failed", key=key, error=str(exc))
            raise
        log.info("lock_released", key=key, path=str(path))

    def is_locked(self, key: str) -> bool:
        return self.lock_path(key).exists()

    def holder(self, key: str) -> Optional[LockInfo]:
        """Return who holds ``key``; None when free or the marker is unreadable."""
        try:
            payload = json.loads(self.lock_path(key).read_text(encoding="utf-8"))
            return LockInfo(**payload)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, TypeError):
            # The holder may still be writing the marker.
            return None
