"""Persistence helpers for pending suggestion snapshots."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Protocol

from .settings import _SETTINGS_DIR

__all__ = [
    "InMemorySuggestionStore",
    "PersistenceError",
    "SuggestionCacheStore",
    "SuggestionStore",
]

LOGGER = logging.getLogger(__name__)
_CACHE_FILENAME = "suggestion_cache.json"
_CACHE_VERSION = 1


def _default_cache_path() -> Path:
    return _SETTINGS_DIR / _CACHE_FILENAME


class PersistenceError(RuntimeError):
    """Raised when the suggestion cache cannot be read or written."""


class SuggestionStore(Protocol):
    """One snapshot slot per document key."""

    def load(self, key: str) -> dict[str, Any] | None:
        ...

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemorySuggestionStore:
    """Process-local store for tests and sessions that should not touch disk."""

    def __init__(self) -> None:
        self._slots: dict[str, dict[str, Any]] = {}

    def load(self, key: str) -> dict[str, Any] | None:
        snapshot = self._slots.get(key)
        return json.loads(json.dumps(snapshot)) if snapshot is not None else None

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None:
        self._slots[key] = json.loads(json.dumps(dict(snapshot)))

    def delete(self, key: str) -> None:
        self._slots.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._slots)


class SuggestionCacheStore:
    """JSON file holding one snapshot slot per document key.

    Writes are last-writer-wins and atomic (temporary file then replace).
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _default_cache_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, key: str) -> dict[str, Any] | None:
        documents = self._read_documents()
        snapshot = documents.get(key)
        if isinstance(snapshot, Mapping):
            return dict(snapshot)
        return None

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None:
        documents = self._read_documents()
        documents[key] = dict(snapshot)
        self._write_documents(documents)

    def delete(self, key: str) -> None:
        documents = self._read_documents()
        if documents.pop(key, None) is not None:
            self._write_documents(documents)

    def _write_documents(self, documents: Mapping[str, Any]) -> None:
        payload = {"version": _CACHE_VERSION, "documents": dict(documents)}
        body = json.dumps(payload, indent=2, sort_keys=True)
        tmp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(body, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write suggestion cache {self._path}: {exc}") from exc

    def _read_documents(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise PersistenceError(f"Unable to read suggestion cache {self._path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Suggestion cache %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, Mapping):
            return {}
        documents = data.get("documents")
        if not isinstance(documents, Mapping):
            return {}
        return {key: value for key, value in documents.items() if isinstance(key, str)}
