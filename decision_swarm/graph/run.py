"""WorkflowRun: one request, its status, role results and aggregate metadata."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from decision_swarm.contracts import (
    PreCheck,
    ProgressEvent,
    RoleResult,
    RunMode,
    RunStatus,
    SearchResult,
    Topic,
    VerificationReport,
)
from decision_swarm.errors import InvalidTransition

_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_metadata() -> dict[str, Any]:
    return {
        "total_latency_ms": 0,
        "model_calls": 0,
        "fallback_count": 0,
        "failed_roles": [],
        "sources_by_tier": {},
        "banned_warnings": [],
        "corrections": [],
        "blocking_violations": [],
        "regenerations": 0,
    }


@dataclass
class WorkflowRun:
    input: str
    mode: RunMode = RunMode.FORWARD
    id: str = field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    status: RunStatus = RunStatus.PENDING
    created_at: str = field(default_factory=_now)
    finished_at: str | None = None
    project: str = ""
    topics: list[Topic] = field(default_factory=list)
    batches: list[list[int]] = field(default_factory=list)
    pre_check: PreCheck | None = None
    search_results: list[SearchResult] = field(default_factory=list)
    results: dict[str, RoleResult] = field(default_factory=dict)
    verification: VerificationReport | None = None
    decision: str = ""
    report: str = ""
    error: str | None = None
    progress: list[ProgressEvent] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=_empty_metadata)

    def transition(self, status: RunStatus) -> None:
        """Move forward through pending -> running -> completed | failed."""
        status = RunStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"{self.id}: {self.status.value} -> {status.value}")
        self.status = status
        if status in (RunStatus.COMPLETED, RunStatus.FAILED):
            self.finished_at = _now()

    @property
    def is_finished(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def record(self, key: str, result: RoleResult) -> None:
        """Store a role result under its key and fold it into the metadata."""
        self.results[key] = result
        meta = self.metadata
        meta["total_latency_ms"] += result["latency_ms"]
        meta["model_calls"] += 1
        if result["used_fallback"]:
            meta["fallback_count"] += 1
        if not result["success"]:
            meta["failed_roles"].append(key)
        meta["corrections"].extend(result.get("corrections", []))
        meta["regenerations"] += result.get("regenerations", 0)
        if result.get("blocked"):
            meta["blocking_violations"].append(key)

    def successful(self) -> list[tuple[str, RoleResult]]:
        """(key, result) for every successful role, in execution order."""
        return [(k, r) for k, r in self.results.items() if r["success"]]

    def to_dict(self) -> dict[str, Any]:
        # Round-trip through JSON so str enums become plain strings
        return json.loads(json.dumps(asdict(self), ensure_ascii=False))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowRun:
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["mode"] = RunMode(kwargs.get("mode", RunMode.FORWARD))
        kwargs["status"] = RunStatus(kwargs.get("status", RunStatus.PENDING))
        return cls(**kwargs)
