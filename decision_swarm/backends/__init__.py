"""Search backend registry."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from decision_swarm.contracts import SearchResult
from decision_swarm.verification.sources import classify_source

if TYPE_CHECKING:
    from decision_swarm.contracts import SearchBackend

_REGISTRY: dict[str, type] = {}


def register_backend(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_backend(name: str, **kwargs) -> "SearchBackend":
    if name not in _REGISTRY:
        available = ", ".join(_REGISTRY) or "(none)"
        raise KeyError(f"Unknown backend {name!r}. Available: {available}")
    return _REGISTRY[name](**kwargs)


def available_backends() -> list[str]:
    return list(_REGISTRY)


def make_result(
    *,
    backend: str,
    url: str,
    title: str,
    snippet: str,
    rank: int,
    published: str | None = None,
) -> SearchResult:
    """Build a SearchResult stamped with its source tier."""
    result = SearchResult(
        id=f"sr-{uuid.uuid4().hex[:8]}",
        url=url,
        title=title,
        snippet=snippet,
        backend=backend,
        rank=rank,
        tier=classify_source(url),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    if published:
        result["published"] = published
    return result
