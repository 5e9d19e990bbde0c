import pytest
import requests

from repodex.errors import AuthorizationError, HostResponseError, ResolutionError, TransientNetworkError
from repodex.ingestion import RepositoryFetcher
from repodex.storage import IndexedFile

from conftest import API_URL, FakeGitHubSession, StubResponse

SHA = "9" * 40


def test_resolve_uses_default_branch(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"a.py": "x"}, branch="trunk", sha="abc123")
    resolution = fetcher.resolve("acme", "widgets")
    assert (resolution.branch, resolution.fingerprint) == ("trunk", "abc123")
    assert [call.path for call in github.calls] == [
        "/repos/acme/widgets",
        "/repos/acme/widgets/branches/trunk",
    ]


def test_resolve_explicit_branch_skips_repository_lookup(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"a.py": "x"}, branch="main", sha="abc123")
    assert fetcher.resolve("acme", "widgets", "main").fingerprint == "abc123"
    assert github.count("/branches/") == 1
    assert github.count("/repos/acme/widgets") == 1


def test_full_fingerprint_short_circuits(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    resolution = fetcher.resolve("acme", "widgets", SHA)
    assert resolution.fingerprint == SHA
    assert github.calls == []


def test_unknown_branch_is_a_resolution_error(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"a.py": "x"})
    with pytest.raises(ResolutionError):
        fetcher.resolve("acme", "widgets", "does-not-exist")


def test_private_repository_retries_with_fallback_token(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "secret", {"a.py": "x"}, private=True)
    assert fetcher.resolve("acme", "secret").fingerprint == "abc123"
    assert [call.authorized for call in github.calls] == [False, True, False, True]


def test_private_repository_without_token_fails(github: FakeGitHubSession) -> None:
    github.add_repository("acme", "secret", {"a.py": "x"}, private=True)
    anonymous = RepositoryFetcher(session=github, api_url=API_URL, token="", timeout=5)
    with pytest.raises(ResolutionError):
        anonymous.resolve("acme", "secret")
    assert all(not call.authorized for call in github.calls)


def test_rejected_credentials_raise_authorization_error(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.broken_routes["/repos/acme/widgets"] = 403
    with pytest.raises(AuthorizationError) as excinfo:
        fetcher.resolve("acme", "widgets")
    assert excinfo.value.status_code == 403
    assert len(github.calls) == 2


def test_network_failure_is_transient(fetcher: RepositoryFetcher, monkeypatch: pytest.MonkeyPatch) -> None:
    def unreachable(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(fetcher.session, "get", unreachable)
    with pytest.raises(TransientNetworkError):
        fetcher.resolve("acme", "widgets")


def test_crawl_selects_bounded_allow_listed_prefix(github: FakeGitHubSession) -> None:
    files = {
        "README.md": "# widgets",
        "src/app.py": "print('hello')",
        "assets/logo.png": "binary",
        "src/big.ts": "x" * 50,
        "src/late.py": "never fetched",
    }
    github.add_repository("acme", "widgets", files)
    fetcher = RepositoryFetcher(session=github, api_url=API_URL, token=None, timeout=5, max_files=4, max_content_chars=20)

    result = fetcher.crawl("acme", "widgets", "abc123")

    assert [entry["path"] for entry in result.entries] == list(files)
    assert [item.path for item in result.files] == ["README.md", "src/app.py", "src/big.ts"]
    assert result.files[2].content == "x" * 20
    assert result.files[0].blob_id == result.entries[0]["sha"]
    assert github.count("/contents/") == 3
    tree_call = next(call for call in github.calls if "/git/trees/" in call.path)
    assert tree_call.params == {"recursive": "1"}


def test_crawl_skips_files_that_fail_to_download(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"ok.py": "fine", "broken.py": None, "also_ok.md": "fine"})
    result = fetcher.crawl("acme", "widgets", "abc123")
    assert [item.path for item in result.files] == ["ok.py", "also_ok.md"]
    assert len(result.entries) == 3


def test_crawl_rejects_malformed_tree(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"a.py": "x"})
    github.malformed_routes.add("/repos/acme/widgets/git/trees/abc123")
    with pytest.raises(HostResponseError):
        fetcher.crawl("acme", "widgets", "abc123")


def test_crawl_rejects_tree_without_entries(fetcher: RepositoryFetcher, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(fetcher.session, "get", lambda *args, **kwargs: StubResponse(200, {"sha": "abc123"}))
    with pytest.raises(HostResponseError):
        fetcher.crawl("acme", "widgets", "abc123")


def test_stats_aggregates_tree_and_fetched_files() -> None:
    entries = [
        {"path": "src/app.py", "size": 10},
        {"path": "src/util.PY", "size": 5},
        {"path": "web/index.tsx", "size": 7},
        {"path": "Makefile", "size": 3},
        {"path": "docs/guide.rst"},
    ]
    fetched = [IndexedFile(path="src/app.py", blob_id=None, size=10, content="")]

    stats = RepositoryFetcher.stats(entries, fetched)

    assert stats.total_files == 5
    assert stats.total_size == 25
    assert stats.indexed_files == 1
    assert stats.extensions == {"py": 2, "tsx": 1, "no-ext": 1, "rst": 1}
    assert stats.languages == {"Python": 2, "TypeScript": 1, "Other": 2}


def test_default_branch_resolution_keeps_repository_info(github: FakeGitHubSession, fetcher: RepositoryFetcher) -> None:
    github.add_repository("acme", "widgets", {"a.py": "x"})
    info = fetcher.resolve("acme", "widgets").info
    assert info is not None
    assert (info.name, info.language, info.default_branch) == ("widgets", "Python", "main")
    assert (info.stars, info.forks) == (7, 2)
    assert fetcher.resolve("acme", "widgets", "main").info is None


def test_describe_rejects_non_object_payload(fetcher: RepositoryFetcher, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(fetcher.session, "get", lambda *args, **kwargs: StubResponse(200, ["not", "a", "repo"]))
    with pytest.raises(HostResponseError):
        fetcher.describe("acme", "widgets")


def test_stats_derives_size_summaries() -> None:
    entries = [{"path": f"f{index}.py", "size": size} for index, size in enumerate([10, 40, 25])]
    fetched = [
        IndexedFile(path="f0.py", blob_id=None, size=10, content=""),
        IndexedFile(path="f1.py", blob_id=None, size=40, content=""),
        IndexedFile(path="f2.py", blob_id=None, size=25, content=""),
    ]

    stats = RepositoryFetcher.stats(entries, fetched)

    assert stats.average_file_size == 25
    assert [item["path"] for item in stats.largest_files] == ["f1.py", "f2.py", "f0.py"]
    assert stats.largest_files[0]["size"] == 40
    assert stats.top_files == ["f0.py", "f1.py", "f2.py"]
    assert RepositoryFetcher.stats([], []).average_file_size == 0
