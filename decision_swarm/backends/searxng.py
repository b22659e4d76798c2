"""SearXNG search backend."""

from __future__ import annotations

import sys

import httpx

from decision_swarm.contracts import SearchResult

from . import make_result, register_backend


class SearXNGBackend:
    name: str = "searxng"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:8080",
        language: str = "zh-CN",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.language = language
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, *, num_results: int = 5) -> list[SearchResult]:
        params = {"q": query, "format": "json", "pageno": 1, "language": self.language}
        try:
            resp = await self._client.get(f"{self.base_url}/search", params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            print(f"WARNING: searxng search failed: {exc}", file=sys.stderr)
            return []

        return [
            make_result(
                backend=self.name,
                url=item.get("url", ""),
                title=item.get("title", ""),
                snippet=item.get("content", ""),
                rank=rank,
                published=item.get("publishedDate"),
            )
            for rank, item in enumerate(data.get("results", [])[:num_results], start=1)
        ]

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get(
                f"{self.base_url}/search",
                params={"q": "test", "format": "json"},
            )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False


register_backend("searxng", SearXNGBackend)
