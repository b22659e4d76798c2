"""Persistence backends for LearningState."""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path

from decision_swarm.contracts import KeyValueStore, LearningState
from decision_swarm.errors import PersistenceError

STATE_VERSION = 1


def empty_state() -> LearningState:
    return {
        "version": STATE_VERSION,
        "total_feedback": 0,
        "correct_feedback": 0,
        "role_stats": {},
        "rules": [],
        "cases": [],
        "history": [],
    }


def _coerce(data: object) -> LearningState:
    """Fill missing keys from an empty state. Non-dict input is a corrupt store."""
    if not isinstance(data, dict):
        raise PersistenceError(f"Learning state must be an object, got {type(data).__name__}")
    state = empty_state()
    for key in state:
        if key in data:
            state[key] = data[key]  # type: ignore[literal-required]
    return state


class JsonFileLearningRepository:
    """Single JSON file, human-readable.

    Same layout as the session files: a missing file opens as an empty
    state, a corrupt or unreadable one raises PersistenceError.
    """

    _FILENAME = "learning.json"

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir)

    @property
    def path(self) -> Path:
        return self._dir / self._FILENAME

    def open(self) -> LearningState:
        if not self.path.exists():
            return empty_state()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}") from exc
        return _coerce(data)

    def flush(self, state: LearningState) -> None:
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc


class KeyValueLearningRepository:
    """LearningState stored as one document in a KeyValueStore."""

    def __init__(self, kv: KeyValueStore, *, key: str = "learning") -> None:
        self._kv = kv
        self._key = key

    def open(self) -> LearningState:
        data = self._kv.load(self._key)
        if data is None:
            return empty_state()
        return _coerce(data)

    def flush(self, state: LearningState) -> None:
        self._kv.save(self._key, state)


class InMemoryLearningRepository:
    def __init__(self, state: LearningState | None = None) -> None:
        self._state = copy.deepcopy(state) if state is not None else None
        self.flush_count = 0

    def open(self) -> LearningState:
        if self._state is None:
            return empty_state()
        return copy.deepcopy(self._state)

    def flush(self, state: LearningState) -> None:
        self._state = copy.deepcopy(state)
        self.flush_count += 1
