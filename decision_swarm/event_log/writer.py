"""Append-only call log: one entry per provider attempt."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from decision_swarm.contracts import CallLogEntry


class CallLog:
    """In-memory call log, mirrored to JSONL when a directory is given.

    File writes are best-effort: a failed write keeps the in-memory entry
    and disables the file mirror for the rest of the run.
    """

    _FILENAME = "calls.jsonl"

    def __init__(self, log_dir: str | Path | None = None, run_id: str = "") -> None:
        self._entries: list[CallLogEntry] = []
        self._dir: Path | None = None
        if log_dir is not None:
            self._dir = Path(log_dir) / run_id if run_id else Path(log_dir)
            self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path | None:
        return self._dir / self._FILENAME if self._dir is not None else None

    @property
    def entries(self) -> list[CallLogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: CallLogEntry) -> None:
        """Append a single entry, and a JSON line if file-backed."""
        self._entries.append(entry)
        if self.path is None:
            return
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as exc:
            print(f"WARNING: call log write failed ({exc}); keeping in memory only", file=sys.stderr)
            self._dir = None

    def for_role(self, role_id: str) -> list[CallLogEntry]:
        return [e for e in self._entries if e["role_id"] == role_id]

    def read_all(self) -> list[CallLogEntry]:
        """Read entries back from disk. Skips corrupt lines, returns [] on missing file."""
        if self.path is None or not self.path.exists():
            return []
        entries: list[CallLogEntry] = []
        try:
            for line in self.path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        except OSError:
            return []
        return entries

    @staticmethod
    def make_entry(
        *,
        role_id: str,
        provider: str,
        model: str,
        success: bool,
        latency_ms: int,
        fallback: bool,
        error: str | None = None,
    ) -> CallLogEntry:
        """Factory for creating a CallLogEntry with timestamp."""
        return CallLogEntry(
            role_id=role_id,
            provider=provider,
            model=model,
            success=success,
            latency_ms=latency_ms,
            fallback=fallback,
            error=error,
            ts=datetime.now(timezone.utc).isoformat(),
        )
