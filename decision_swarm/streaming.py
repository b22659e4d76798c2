"""Streaming display for real-time progress during graph execution."""

from __future__ import annotations

import sys
from typing import Any

# Human-readable labels for graph node names
NODE_LABELS: dict[str, str] = {
    "analyze_intent": "Analyzing intent",
    "research": "Searching sources",
    "execute_roles": "Running analysts",
    "verify": "Verifying data",
    "quality_review": "Quality review",
    "decide": "Final decision",
    "report": "Generating report",
}


class StreamDisplay:
    """Prints progress events and node updates from LangGraph astream to stderr."""

    def __init__(self, *, verbose: bool = False) -> None:
        self._verbose = verbose
        self._last_progress = -1

    def _print(self, msg: str) -> None:
        print(msg, file=sys.stderr, flush=True)

    def handle_progress(self, event: dict[str, Any]) -> None:
        """Handle a progress event ({progress, current_status, step_name})."""
        progress = event.get("progress", 0)
        status = event.get("current_status", "")
        # Progress never moves backwards on screen
        self._last_progress = max(self._last_progress, progress)
        self._print(f"  [{self._last_progress:3d}%] {status}")

    def handle_update(self, update: dict[str, Any]) -> None:
        """Handle an 'updates' stream event (node_name -> state_update)."""
        for node_name, state_delta in update.items():
            label = NODE_LABELS.get(node_name, node_name)
            if self._verbose:
                self._print(f"    done: {label}")
                if isinstance(state_delta, dict):
                    self._print_details(state_delta)

    def _print_details(self, state_delta: dict) -> None:
        counts: dict[str, str] = {}
        if "search_results" in state_delta:
            counts["results"] = str(len(state_delta["search_results"]))
        if "completed_roles" in state_delta:
            counts["roles"] = str(len(state_delta["completed_roles"]))
        if "topics" in state_delta:
            counts["topics"] = str(len(state_delta["topics"]))
        if state_delta.get("mode"):
            counts["mode"] = state_delta["mode"]

        if counts:
            detail = ", ".join(f"{k}={v}" for k, v in counts.items())
            self._print(f"    -> {detail}")
