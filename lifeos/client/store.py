"""
Local persistence for the LifeOS client.

A small key-value contract (get / set / delete) that the local mirror and the
outbox are written against. Values are JSON-compatible.

  MemoryLocalStore — tests and throwaway sessions
  FileLocalStore   — one JSON file per user under ~/.lifeos, survives restarts

File layout:
  {
    "lf:events:authoritative": [...],
    "lf:events:speculative": [...],
    "lf:cursor": 42,
    "lf:outbox": [...],
    "lf:today": {...}
  }
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

KEY_PREFIX = "lf:"


class LocalStore:
    """Abstract key-value store."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


class MemoryLocalStore(LocalStore):
    """In-process store. Values are copied in and out so callers cannot alias them."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileLocalStore(LocalStore):
    """
    JSON file store, one file per user.

    Every write replaces the whole file atomically (write to a temp file, then
    os.replace), so a crash mid-write leaves the previous version intact.
    """

    def __init__(self, user_id: str, directory: Path | None = None):
        self.directory = directory or Path.home() / ".lifeos"
        self.path = self.directory / f"{user_id}.json"
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load the store from disk."""
        if not self.path.exists():
            return
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            # Keep the unreadable file for inspection and start empty
            aside = self.path.with_suffix(".corrupt")
            logger.warning("store: %s is unreadable (%s), moved to %s", self.path, e, aside)
            os.replace(self.path, aside)
            return
        if isinstance(data, dict):
            self._data = data

    def _save(self) -> None:
        """Save the store to disk with owner-only permissions."""
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        tmp.chmod(0o600)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._save()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save()

    def keys(self) -> list[str]:
        return sorted(self._data)
