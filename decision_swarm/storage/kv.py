"""Key-value persistence: JSON files on disk, or a dict for tests."""

from __future__ import annotations

import copy
import json
import os
import re
from pathlib import Path
from typing import Any

from decision_swarm.errors import PersistenceError

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


def _safe_key(key: str) -> str:
    safe = _UNSAFE_RE.sub("_", key).strip(".")
    if not safe:
        raise PersistenceError(f"Invalid store key: {key!r}")
    return safe


class JsonFileStore:
    """One JSON document per key under a directory.

    Writes go through a temp file and ``os.replace`` so a crash never leaves
    a half-written document. Every failure surfaces as PersistenceError.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        return self._root / f"{_safe_key(key)}.json"

    def save(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not save {key!r}: {exc}") from exc

    def load(self, key: str) -> Any | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Could not load {key!r}: {exc}") from exc

    def list(self) -> list[str]:
        if not self._root.exists():
            return []
        try:
            return sorted(p.stem for p in self._root.glob("*.json"))
        except OSError as exc:
            raise PersistenceError(f"Could not list {self._root}: {exc}") from exc

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Could not delete {key!r}: {exc}") from exc
        return True


class InMemoryStore:
    """Dict-backed store. Values are deep-copied in and out, like a real store."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def save(self, key: str, value: Any) -> None:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc
        self._data[key] = copy.deepcopy(value)

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def list(self) -> list[str]:
        return sorted(self._data)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None
