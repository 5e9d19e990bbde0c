import json
import threading
import time

from repodex.storage import LockManager


def test_acquire_creates_marker_with_holder(locks: LockManager) -> None:
    result = locks.acquire("github:acme:widgets", timeout=0)
    assert result.acquired
    assert locks.is_locked("github:acme:widgets")
    payload = json.loads(result.path.read_text())
    assert payload["key"] == "github:acme:widgets"
    assert payload["holder_id"] == locks.holder_id
    holder = locks.holder("github:acme:widgets")
    assert holder is not None and holder.acquired_at == payload["acquired_at"]


def test_held_lock_times_out(locks: LockManager) -> None:
    assert locks.acquire("github:acme:widgets").acquired
    started = time.monotonic()
    second = locks.acquire("github:acme:widgets", timeout=0.15)
    elapsed = time.monotonic() - started
    assert not second.acquired
    assert elapsed >= 0.15
    assert len(list(locks.locks_dir.iterdir())) == 1


def test_acquire_after_release_succeeds(locks: LockManager) -> None:
    assert locks.acquire("github:acme:widgets").acquired
    locks.release("github:acme:widgets")
    assert not locks.is_locked("github:acme:widgets")
    assert locks.acquire("github:acme:widgets", timeout=0).acquired


def test_waiter_gets_lock_once_released(locks: LockManager) -> None:
    assert locks.acquire("github:acme:widgets").acquired
    timer = threading.Timer(0.05, locks.release, args=("github:acme:widgets",))
    timer.start()
    try:
        assert locks.acquire("github:acme:widgets", timeout=2).acquired
    finally:
        timer.join()


def test_release_of_missing_lock_is_not_an_error(locks: LockManager) -> None:
    locks.release("github:acme:never-locked")
    assert locks.holder("github:acme:never-locked") is None


def test_keys_are_independent(locks: LockManager) -> None:
    assert locks.acquire("github:acme:widgets", timeout=0).acquired
    assert locks.acquire("github:acme:gadgets", timeout=0).acquired


def test_only_one_of_many_threads_wins(locks: LockManager) -> None:
    results = []
    barrier = threading.Barrier(8)

    def contend() -> None:
        barrier.wait()
        results.append(locks.acquire("github:acme:widgets", timeout=0).acquired)

    threads = [threading.Thread(target=contend) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count(True) == 1
