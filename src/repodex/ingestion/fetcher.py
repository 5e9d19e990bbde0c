"""
Repository fetching against a GitHub-compatible REST API.

The fetcher resolves a branch to a commit fingerprint, lists the full tree at
that commit and downloads a bounded selection of text files. Every request is
first sent without credentials; a configured fallback token is used only when
the host answers 401/403/404, which keeps public repositories zero-config.
"""
from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import quote

import requests

from ..errors import (
    AuthorizationError,
    FetchError,
    HostResponseError,
    PartialContentError,
    ResolutionError,
    TransientNetworkError,
)
from ..logger import get_logger
from ..settings import settings
from ..storage.models import IndexedFile, RepositoryInfo, RepositoryStats

log = get_logger(__name__)

FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{40}$")
FALLBACK_STATUSES = frozenset({401, 403, 404})
NO_EXTENSION = "no-ext"
LARGEST_FILES_LIMIT = 10
TOP_FILES_LIMIT = 20

LANGUAGE_BY_EXTENSION: Mapping[str, str] = {
    "js": "JavaScript",
    "jsx": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "py": "Python",
    "java": "Java",
    "go": "Go",
    "rs": "Rust",
    "md": "Markdown",
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
    "txt": "Text",
}


def file_extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return NO_EXTENSION
    return name.rsplit(".", 1)[-1].lower() or NO_EXTENSION


def is_commit_fingerprint(value: Optional[str]) -> bool:
    return bool(value and FINGERPRINT_PATTERN.match(value))


@dataclass
class Resolution:
    branch: str
    fingerprint: str
    # Set when resolution had to read the repository record anyway.
    info: Optional[RepositoryInfo] = None


@dataclass
class CrawlResult:
    tree: Dict[str, Any]
    entries: List[Dict[str, Any]] = field(default_factory=list)
    files: List[IndexedFile] = field(default_factory=list)


class RepositoryFetcher:
    """Reads repositories from the hosting API."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_files: Optional[int] = None,
        max_content_chars: Optional[int] = None,
        extensions: Optional[Iterable[str]] = None,
    ) -> None:
        self.session = session or requests.Session()
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.token = token if token is not None else settings.github_token
        self.timeout = timeout or settings.request_timeout
        self.max_files = max_files if max_files is not None else settings.crawl_max_files
        self.max_content_chars = (
            max_content_chars if max_content_chars is not None else settings.crawl_max_content_chars
        )
        self.extensions = frozenset(
            ext.lstrip(".").lower() for ext in (extensions or settings.crawl_extensions)
        )
        self.base_headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": settings.github_user_agent,
        }

    def _send(self, url: str, params: Optional[Dict[str, str]], headers: Dict[str, str]) -> requests.Response:
        try:
            return self.session.get(url, headers=headers, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientNetworkError(f"Repository host unreachable: {exc}") from exc

    def _get_json(self, path: str, params: Optional[Dict[str, str]] = None, context: str = "request") -> Any:
        url = f"{self.api_url}{path}"
        response = self._send(url, params, dict(self.base_headers))
        if response.status_code in FALLBACK_STATUSES and self.token:
            log.info("public_access_denied_retrying_with_token", status=response.status_code, path=path)
            headers = {**self.base_headers, "Authorization": f"Bearer {self.token}"}
            response = self._send(url, params, headers)

        if not response.ok:
            detail = (response.text or "").strip()[:200]
            message = f"Error fetching {context}: {response.status_code}"
            if detail:
                message = f"{message} - {detail}"
            if response.status_code in (401, 403):
                raise AuthorizationError(message, status_code=response.status_code)
            if response.status_code == 404:
                raise ResolutionError(message, status_code=response.status_code)
            raise HostResponseError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise HostResponseError(f"Malformed response for {context}: {exc}") from exc

    def resolve(self, owner: str, repo: str, branch: Optional[str] = None) -> Resolution:
        """Resolve ``branch`` (default branch when omitted) to a commit fingerprint."""
        if is_commit_fingerprint(branch):
            return Resolution(branch=branch, fingerprint=branch)  # type: ignore[arg-type]

        base = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        resolved_branch = branch
        info: Optional[RepositoryInfo] = None
        if not resolved_branch:
            info = self.describe(owner, repo)
            resolved_branch = info.default_branch
            if not resolved_branch:
                raise ResolutionError("Could not determine the branch to index")

        branch_info = self._get_json(
            f"{base}/branches/{quote(resolved_branch, safe='')}", context=f"branch {resolved_branch}"
        )
        commit = branch_info.get("commit") if isinstance(branch_info, dict) else None
        fingerprint = commit.get("sha") if isinstance(commit, dict) else None
        if not fingerprint:
            raise ResolutionError(f"Could not resolve branch {resolved_branch} to a commit")

        log.info("branch_resolved", owner=owner, repo=repo, branch=resolved_branch, sha=fingerprint)
        return Resolution(branch=resolved_branch, fingerprint=fingerprint, info=info)

    def describe(self, owner: str, repo: str) -> RepositoryInfo:
        """Fetch the repository record (name, description, default branch, counters)."""
        base = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        payload = self._get_json(base, context="repository info")
        if not isinstance(payload, dict):
            raise HostResponseError("Malformed repository info: expected an object")
        return RepositoryInfo.from_api(payload)

    def crawl(self, owner: str, repo: str, fingerprint: str) -> CrawlResult:
        """List the tree at ``fingerprint`` and download the selected files."""
        base = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        tree = self._get_json(
            f"{base}/git/trees/{fingerprint}", params={"recursive": "1"}, context="tree"
        )
        if not isinstance(tree, dict) or not isinstance(tree.get("tree"), list):
            raise HostResponseError("Malformed tree listing: missing 'tree' entries")
        if tree.get("truncated"):
            log.warning("tree_listing_truncated", owner=owner, repo=repo, sha=fingerprint)

        entries = [item for item in tree["tree"] if isinstance(item, dict) and item.get("type") == "blob"]
        selected = [
            entry for entry in entries[: self.max_files] if file_extension(entry.get("path", "")) in self.extensions
        ]
        log.info("crawl_started", owner=owner, repo=repo, blobs=len(entries), selected=len(selected))

        files: List[IndexedFile] = []
        for entry in selected:
            try:
                files.append(self._fetch_file(base, entry, fingerprint))
            except FetchError as exc:
                log.warning("file_fetch_skipped", path=entry.get("path"), error=str(exc))

        log.info("crawl_completed", owner=owner, repo=repo, fetched=len(files))
        return CrawlResult(tree=tree, entries=entries, files=files)

    def _fetch_file(self, base: str, entry: Mapping[str, Any], fingerprint: str) -> IndexedFile:
        path = entry["path"]
        try:
            payload = self._get_json(
                f"{base}/contents/{quote(path)}", params={"ref": fingerprint}, context=f"file {path}"
            )
        except FetchError as exc:
            raise PartialContentError(path, str(exc), status_code=exc.status_code) from exc

        if not isinstance(payload, dict) or payload.get("encoding") != "base64" or not payload.get("content"):
            raise PartialContentError(path, f"No base64 content returned for {path}")
        try:
            raw = base64.b64decode(payload["content"])
        except (binascii.Error, ValueError) as exc:
            raise PartialContentError(path, f"Undecodable content for {path}: {exc}") from exc

        content = raw.decode("utf-8", errors="replace")
        return IndexedFile(
            path=path,
            blob_id=entry.get("sha"),
            size=int(entry.get("size") or 0),
            content=content[: self.max_content_chars],
        )

    @staticmethod
    def stats(entries: Sequence[Mapping[str, Any]], fetched: Sequence[IndexedFile]) -> RepositoryStats:
        """Aggregate counts over every blob in the tree and the files downloaded."""
        total_size = sum(int(entry.get("size") or 0) for entry in entries)
        largest = sorted(fetched, key=lambda item: item.size, reverse=True)[:LARGEST_FILES_LIMIT]
        stats = RepositoryStats(
            total_files=len(entries),
            total_size=total_size,
            indexed_files=len(fetched),
            average_file_size=round(total_size / len(entries)) if entries else 0,
            largest_files=[{"path": item.path, "size": item.size} for item in largest],
            top_files=[item.path for item in fetched[:TOP_FILES_LIMIT]],
        )
        for entry in entries:
            ext = file_extension(entry.get("path", ""))
            stats.extensions[ext] = stats.extensions.get(ext, 0) + 1
            language = LANGUAGE_BY_EXTENSION.get(ext, "Other")
            stats.languages[language] = stats.languages.get(language, 0) + 1
        return stats
