"""DecisionState: the single state object flowing through the graph."""

from __future__ import annotations

import operator
from typing import Annotated, TypedDict

from decision_swarm.contracts import SearchResult, Topic, VerificationReport

# --- Scalar reducers (last-write-wins) ---


def _replace(existing: str, new: str) -> str:
    return new


def _replace_bool(existing: bool, new: bool) -> bool:
    return new


def _replace_list(existing: list, new: list) -> list:
    return new


def _replace_dict(existing: dict, new: dict) -> dict:
    return new


# --- Graph State ---


class DecisionState(TypedDict):
    # Input (set once)
    request: Annotated[str, _replace]
    mode: Annotated[str, _replace]

    # Intent analysis
    project: Annotated[str, _replace]
    topics: Annotated[list[Topic], _replace_list]
    batches: Annotated[list[list[int]], _replace_list]
    constraint_block: Annotated[str, _replace]

    # Research (accumulate)
    search_results: Annotated[list[SearchResult], operator.add]

    # Role execution: result keys in completion order (results live on the run)
    completed_roles: Annotated[list[str], operator.add]
    has_analysis: Annotated[bool, _replace_bool]

    # Verification + output
    verification: Annotated[VerificationReport, _replace_dict]
    decision: Annotated[str, _replace]
    final_report: Annotated[str, _replace]
