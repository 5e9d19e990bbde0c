"""
Centralized application settings.

The configuration is shared across CLI, API, and background indexing workers.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[attr-defined]

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CRAWL_EXTENSIONS: List[str] = [
    "js",
    "ts",
    "jsx",
    "tsx",
    "py",
    "java",
    "go",
    "rs",
    "md",
    "json",
    "yaml",
    "yml",
    "txt",
]


class AppSettings(BaseSettings):
    """Project-wide settings loaded from env or .env files."""

    model_config = SettingsConfigDict(
        env_prefix="REPODEX_",
        env_nested_delimiter="__",
        extra="allow",
        populate_by_name=True,
    )

    workspace_root: Path = Path("./workspace")
    indexes_dir: Optional[Path] = None
    locks_dir: Optional[Path] = None
    legacy_store_dir: Optional[Path] = None
    github_api_url: str = "https://api.github.com"
    github_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REPODEX_GITHUB_TOKEN", "GITHUB_TOKEN", "github_token"),
    )
    github_user_agent: str = "repodex-indexer"
    request_timeout: float = 30.0
    crawl_max_files: int = 100
    crawl_max_content_chars: int = 10000
    crawl_extensions: List[str] = list(DEFAULT_CRAWL_EXTENSIONS)
    lock_timeout: float = 30.0
    lock_poll_interval: float = 0.5
    stale_job_after: float = 3600.0
    index_workers: int = 4
    api_key: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    def resolved_indexes_dir(self) -> Path:
        return self.indexes_dir or (self.workspace_root / "indexes")

    def resolved_locks_dir(self) -> Path:
        return self.locks_dir or (self.workspace_root / "locks")


_CONFIG_ENV_VAR = "REPODEX_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repodex_settings.toml")


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from the primary TOML file on disk."""
    candidates: List[Path] = []
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}

    workspace = raw.get("workspace", {})
    if "root" in workspace:
        data["workspace_root"] = workspace["root"]

    storage = raw.get("storage", {})
    if "indexes_dir" in storage:
        data["indexes_dir"] = _blank_to_none(storage["indexes_dir"])
    if "legacy_store_dir" in storage:
        data["legacy_store_dir"] = _blank_to_none(storage["legacy_store_dir"])

    github = raw.get("github", {})
    if github:
        if "api_url" in github:
            data["github_api_url"] = github["api_url"]
        if "token" in github:
            data["github_token"] = _blank_to_none(github["token"])
        if "user_agent" in github:
            data["github_user_agent"] = github["user_agent"]
        if "request_timeout" in github:
            data["request_timeout"] = float(github["request_timeout"])

    crawl = raw.get("crawl", {})
    if crawl:
        if "max_files" in crawl:
            data["crawl_max_files"] = int(crawl["max_files"])
        if "max_content_chars" in crawl:
            data["crawl_max_content_chars"] = int(crawl["max_content_chars"])
        if "extensions" in crawl:
            data["crawl_extensions"] = [
                str(ext).lstrip(".").lower() for ext in crawl["extensions"]
            ]

    locks = raw.get("locks", {})
    if locks:
        if "dir" in locks:
            data["locks_dir"] = _blank_to_none(locks["dir"])
        if "timeout" in locks:
            data["lock_timeout"] = float(locks["timeout"])
        if "poll_interval" in locks:
            data["lock_poll_interval"] = float(locks["poll_interval"])

    jobs = raw.get("jobs", {})
    if jobs:
        if "stale_after" in jobs:
            data["stale_job_after"] = float(jobs["stale_after"])
        if "workers" in jobs:
            data["index_workers"] = int(jobs["workers"])

    api_section = raw.get("api", {})
    if api_section:
        if "host" in api_section:
            data["api_host"] = api_section["host"]
        if "port" in api_section:
            data["api_port"] = int(api_section["port"])

    general = raw.get("general", {})
    if "api_key" in general:
        data["api_key"] = _blank_to_none(general["api_key"])

    return data


def load_settings() -> AppSettings:
    raw = _load_toml_config()
    flattened = _flatten_config(raw)
    return AppSettings(**flattened)


settings = load_settings()
