"""Serper (Google SERP API) search backend."""

from __future__ import annotations

import sys

import httpx

from decision_swarm.contracts import SearchResult

from . import make_result, register_backend

SERPER_URL = "https://google.serper.dev/search"


class SerperBackend:
    name: str = "serper"

    def __init__(
        self,
        *,
        api_key: str = "",
        gl: str = "cn",
        hl: str = "zh-cn",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.gl = gl
        self.hl = hl
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, *, num_results: int = 5) -> list[SearchResult]:
        try:
            resp = await self._client.post(
                SERPER_URL,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json={"q": query, "num": num_results, "gl": self.gl, "hl": self.hl},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            print(f"WARNING: serper search failed: {exc}", file=sys.stderr)
            return []

        return [
            make_result(
                backend=self.name,
                url=item.get("link", ""),
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                rank=item.get("position", rank),
                published=item.get("date"),
            )
            for rank, item in enumerate(data.get("organic", [])[:num_results], start=1)
        ]

    async def health_check(self) -> bool:
        return bool(self.api_key)


register_backend("serper", SerperBackend)
