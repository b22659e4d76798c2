"""Tavily search backend."""

from __future__ import annotations

import sys

from decision_swarm.contracts import SearchResult

from . import make_result, register_backend


class TavilyBackend:
    name: str = "tavily"

    def __init__(self, *, api_key: str = "") -> None:
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            from tavily import AsyncTavilyClient

            self._client = AsyncTavilyClient(api_key=self.api_key)
        return self._client

    async def search(self, query: str, *, num_results: int = 5) -> list[SearchResult]:
        try:
            client = self._get_client()
            response = await client.search(query, max_results=num_results, search_depth="basic")
        except Exception as exc:  # SDK raises its own error types plus httpx errors
            print(f"WARNING: tavily search failed: {exc}", file=sys.stderr)
            return []

        return [
            make_result(
                backend=self.name,
                url=item.get("url", ""),
                title=item.get("title", ""),
                snippet=item.get("content", ""),
                rank=rank,
                published=item.get("published_date"),
            )
            for rank, item in enumerate(response.get("results", [])[:num_results], start=1)
        ]

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        try:
            self._get_client()
            return True
        except Exception:
            return False


register_backend("tavily", TavilyBackend)
