"""SearchGatewayAggregator: fan a query out to independent backends and merge."""

from __future__ import annotations

import asyncio
import sys

from decision_swarm.config import Settings
from decision_swarm.contracts import SearchBackend, SearchResult
from decision_swarm.utils.text import is_duplicate, normalize_url
from decision_swarm.verification.sources import SourceClassifier

from . import get_backend


class SearchGatewayAggregator:
    """Queries >= 2 search backends concurrently, merges, dedups, drops banned.

    A failing or slow backend contributes nothing; it never fails the search.
    Banned sources are removed with a recorded warning.
    """

    def __init__(
        self,
        backends: list[SearchBackend],
        *,
        num_results: int = 5,
        timeout: float = 30.0,
        classifier: SourceClassifier | None = None,
    ) -> None:
        names = {b.name for b in backends}
        if len(names) < 2:
            raise ValueError(
                f"At least two independent search backends are required, got {sorted(names)}"
            )
        self.backends = list(backends)
        self.num_results = num_results
        self.timeout = timeout
        self.classifier = classifier or SourceClassifier()

    @property
    def banned_warnings(self) -> list[str]:
        return list(self.classifier.warnings)

    async def search(self, query: str) -> list[SearchResult]:
        outcomes = await asyncio.gather(
            *(
                asyncio.wait_for(b.search(query, num_results=self.num_results), self.timeout)
                for b in self.backends
            ),
            return_exceptions=True,
        )

        merged: list[SearchResult] = []
        for backend, outcome in zip(self.backends, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                print(
                    f"WARNING: {backend.name} search failed: {type(outcome).__name__}: {outcome}",
                    file=sys.stderr,
                )
                continue
            merged.extend(outcome)

        # Stable sort interleaves backends rank by rank
        merged.sort(key=lambda r: r["rank"])
        # Banned results go before dedup so they never claim a URL or title slot
        kept, _banned = self.classifier.partition([r for r in merged if r.get("url")])

        seen_urls: set[str] = set()
        seen_titles: list[str] = []
        unique: list[SearchResult] = []
        for result in kept:
            key = normalize_url(result["url"])
            if key in seen_urls:
                continue
            title = result.get("title", "")
            if title and is_duplicate(title, seen_titles, threshold=0.85):
                continue
            seen_urls.add(key)
            if title:
                seen_titles.append(title)
            unique.append(result)
        return unique


def build_aggregator(settings: Settings) -> SearchGatewayAggregator | None:
    """Aggregator over every configured backend, or None if fewer than two are set up."""
    # Import backends to trigger registration
    import decision_swarm.backends.searxng  # noqa: F401
    import decision_swarm.backends.serper  # noqa: F401
    import decision_swarm.backends.tavily  # noqa: F401

    names = settings.available_backends()
    if len(names) < 2:
        return None

    kwargs = {
        "tavily": {"api_key": settings.tavily_api_key},
        "serper": {"api_key": settings.serper_api_key},
        "searxng": {"base_url": settings.searxng_url},
    }
    backends = [get_backend(name, **kwargs.get(name, {})) for name in names]
    return SearchGatewayAggregator(
        backends, num_results=settings.search_results, timeout=settings.provider_timeout
    )
