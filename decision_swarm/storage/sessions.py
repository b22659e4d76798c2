"""Session persistence for completed (or failed) workflow runs."""

from __future__ import annotations

import sys
from typing import Any

from decision_swarm.contracts import KeyValueStore
from decision_swarm.errors import PersistenceError


class SessionStore:
    """Stores serialized WorkflowRuns under ``session-<run id>`` keys.

    Reads degrade to None / [] on a store error, with a warning on stderr.
    Writes return False on failure so a run never fails because of storage.
    """

    _PREFIX = "session-"

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def _key(self, session_id: str) -> str:
        return f"{self._PREFIX}{session_id}"

    def save(self, session: dict[str, Any]) -> bool:
        try:
            self._kv.save(self._key(session["id"]), session)
        except PersistenceError as exc:
            print(f"WARNING: session {session.get('id')} not saved: {exc}", file=sys.stderr)
            return False
        return True

    def get(self, session_id: str) -> dict[str, Any] | None:
        try:
            data = self._kv.load(self._key(session_id))
        except PersistenceError as exc:
            print(f"WARNING: session {session_id} unreadable: {exc}", file=sys.stderr)
            return None
        return data if isinstance(data, dict) else None

    def list(self) -> list[dict[str, Any]]:
        """Session summaries, newest first."""
        try:
            keys = [k for k in self._kv.list() if k.startswith(self._PREFIX)]
        except PersistenceError as exc:
            print(f"WARNING: session list unavailable: {exc}", file=sys.stderr)
            return []

        summaries = []
        for key in keys:
            session = self.get(key[len(self._PREFIX) :])
            if session is None:
                continue
            summaries.append(
                {
                    "id": session.get("id", ""),
                    "mode": session.get("mode", ""),
                    "status": session.get("status", ""),
                    "query": session.get("input", "")[:80],
                    "created_at": session.get("created_at", ""),
                    "roles": len(session.get("results", {})),
                }
            )
        summaries.sort(key=lambda s: s["created_at"], reverse=True)
        return summaries

    def delete(self, session_id: str) -> bool:
        try:
            return self._kv.delete(self._key(session_id))
        except PersistenceError as exc:
            print(f"WARNING: session {session_id} not deleted: {exc}", file=sys.stderr)
            return False
