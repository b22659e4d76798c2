"""Exception hierarchy."""

from __future__ import annotations


class DecisionSwarmError(Exception):
    """Base class for every error raised by decision_swarm."""


class ProviderError(DecisionSwarmError):
    """A single model-completion attempt failed.

    Always recoverable: the fallback chain advances to the next candidate.
    ``kind`` is one of timeout, rate_limit, auth, content_policy, network,
    http, malformed, missing_credential.
    """

    def __init__(self, kind: str, message: str, *, provider: str = "", model: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.model = model

    def __str__(self) -> str:
        prefix = f"{self.provider}/{self.model}: " if self.provider else ""
        return f"{prefix}[{self.kind}] {self.args[0]}"


class PersistenceError(DecisionSwarmError):
    """A store read or write failed. Callers degrade to an empty/default state."""


class DependencyCycleError(DecisionSwarmError):
    """Topic dependencies contain a cycle (or reference each other circularly)."""

    def __init__(self, members: list[int]) -> None:
        self.members = sorted(members)
        ids = ", ".join(str(m) for m in self.members)
        super().__init__(f"Topic dependency cycle among topics: {ids}")


class InvalidTransition(DecisionSwarmError):
    """A WorkflowRun status change that would move backwards or skip a state."""
