"""Shared fixtures: an in-memory repository host and deterministic job execution."""

from __future__ import annotations

import base64
import re
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import pytest

from repodex.ingestion import RepositoryFetcher
from repodex.services import IndexOrchestrator
from repodex.storage import ArtifactStore, LockManager

API_URL = "https://api.github.test"

_REPO_ROUTE = re.compile(r"^/repos/(?P<owner>[^/]+)/(?P<repo>[^/]+)(?P<rest>/.*)?$")


@dataclass
class HostCall:
    path: str
    params: Dict[str, str]
    authorized: bool


class StubResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "", malformed: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self._malformed = malformed

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._malformed:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


@dataclass
class HostedRepository:
    default_branch: str = "main"
    private: bool = False
    branches: Dict[str, str] = field(default_factory=dict)
    trees: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)


class FakeGitHubSession:
    """Answers the handful of GitHub REST routes the fetcher uses and records every call."""

    def __init__(self, token: Optional[str] = None) -> None:
        self.token = token
        self.repositories: Dict[Tuple[str, str], HostedRepository] = {}
        self.calls: List[HostCall] = []
        self.broken_routes: Dict[str, int] = {}
        self.malformed_routes: set = set()

    def add_repository(
        self,
        owner: str,
        repo: str,
        files: Dict[str, Optional[str]],
        branch: str = "main",
        sha: str = "abc123",
        private: bool = False,
    ) -> HostedRepository:
        hosted = HostedRepository(default_branch=branch, private=private)
        hosted.branches[branch] = sha
        hosted.trees[sha] = dict(files)
        self.repositories[(owner, repo)] = hosted
        return hosted

    def push(self, owner: str, repo: str, sha: str, files: Dict[str, Optional[str]], branch: Optional[str] = None) -> None:
        hosted = self.repositories[(owner, repo)]
        hosted.branches[branch or hosted.default_branch] = sha
        hosted.trees[sha] = dict(files)

    def count(self, fragment: str) -> int:
        return sum(1 for call in self.calls if fragment in call.path)

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, str]] = None, timeout: Any = None) -> StubResponse:
        assert url.startswith(API_URL), url
        path = url[len(API_URL):]
        headers = headers or {}
        authorization = headers.get("Authorization")
        self.calls.append(HostCall(path=path, params=dict(params or {}), authorized=bool(authorization)))

        if path in self.broken_routes:
            return StubResponse(self.broken_routes[path], text="boom")
        if path in self.malformed_routes:
            return StubResponse(200, malformed=True)

        match = _REPO_ROUTE.match(path)
        hosted = self.repositories.get((match["owner"], match["repo"])) if match else None
        if hosted is None:
            return StubResponse(404, text='{"message": "Not Found"}')
        if hosted.private and authorization != f"Bearer {self.token}":
            return StubResponse(404, text='{"message": "Not Found"}')
        return self._route(hosted, match["repo"], match["rest"] or "", params or {})

    def _route(self, hosted: HostedRepository, repo_name: str, rest: str, params: Dict[str, str]) -> StubResponse:
        if rest == "":
            return StubResponse(
                200,
                {
                    "name": repo_name,
                    "description": f"The {repo_name} project",
                    "language": "Python",
                    "default_branch": hosted.default_branch,
                    "stargazers_count": 7,
                    "forks_count": 2,
                    "created_at": "2024-01-01T00:00:00Z",
                    "updated_at": "2024-06-01T00:00:00Z",
                },
            )
        if rest.startswith("/branches/"):
            name = unquote(rest[len("/branches/"):])
            if name not in hosted.branches:
                return StubResponse(404, text='{"message": "Branch not found"}')
            return StubResponse(200, {"name": name, "commit": {"sha": hosted.branches[name]}})
        if rest.startswith("/git/trees/"):
            sha = rest[len("/git/trees/"):]
            if sha not in hosted.trees:
                return StubResponse(404, text='{"message": "Not Found"}')
            return StubResponse(200, {"sha": sha, "tree": _tree_entries(hosted.trees[sha]), "truncated": False})
        if rest.startswith("/contents/"):
            file_path = unquote(rest[len("/contents/"):])
            files = hosted.trees.get(params.get("ref", ""), {})
            content = files.get(file_path)
            if content is None:
                return StubResponse(500, text="content unavailable")
            encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
            return StubResponse(200, {"path": file_path, "encoding": "base64", "content": encoded})
        return StubResponse(404, text='{"message": "Not Found"}')


def _tree_entries(files: Dict[str, Optional[str]]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    seen_dirs = set()
    for index, (path, content) in enumerate(files.items()):
        parent = path.rsplit("/", 1)[0] if "/" in path else None
        if parent and parent not in seen_dirs:
            seen_dirs.add(parent)
            entries.append({"path": parent, "type": "tree", "sha": f"tree{index:037d}"})
        entries.append(
            {
                "path": path,
                "type": "blob",
                "sha": f"{index:040d}",
                "size": len((content or "x" * 10).encode("utf-8")),
            }
        )
    return entries


class ManualExecutor(Executor):
    """Queues submitted jobs until the test runs them explicitly."""

    def __init__(self) -> None:
        self.pending: List[Tuple[Future, Callable[..., Any], tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self) -> None:
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:  # pragma: no cover - surfaced through the future
                future.set_exception(exc)


@pytest.fixture
def github() -> FakeGitHubSession:
    return FakeGitHubSession(token="fallback-token")


@pytest.fixture
def fetcher(github: FakeGitHubSession) -> RepositoryFetcher:
    return RepositoryFetcher(session=github, api_url=API_URL, token="fallback-token", timeout=5)


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(indexes_dir=tmp_path / "indexes")


@pytest.fixture
def locks(tmp_path: Path) -> LockManager:
    return LockManager(locks_dir=tmp_path / "locks", poll_interval=0.01, default_timeout=0.2)


@pytest.fixture
def executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def orchestrator(
    store: ArtifactStore,
    locks: LockManager,
    fetcher: RepositoryFetcher,
    executor: ManualExecutor,
) -> IndexOrchestrator:
    return IndexOrchestrator(
        store=store,
        locks=locks,
        fetcher=fetcher,
        executor=executor,
        lock_timeout=0.1,
        stale_after=60,
    )
