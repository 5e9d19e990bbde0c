"""
Read-only access to the document store used before filesystem metadata.

Historical records are never rewritten; the artifact store only consults them
when no primary metadata exists for a key.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from ..identity import normalize_for_filesystem
from ..logger import get_logger

log = get_logger(__name__)


class LegacyDocumentStore(Protocol):
    def fetch(self, key: str) -> Optional[Mapping[str, Any]]:
        """Return the legacy document for ``key`` or None when there is none."""


class JsonDocumentStore:
    """Legacy documents exported as one JSON file per repository key."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def document_path(self, key: str) -> Path:
        return self.root / f"{normalize_for_filesystem(key)}.json"

    def fetch(self, key: str) -> Optional[Mapping[str, Any]]:
        path = self.document_path(key)
        if not path.is_file():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, Mapping):
            raise ValueError(f"legacy document for {key} is not an object")
        log.debug("legacy_document_loaded", key=key, path=str(path))
        return payload
