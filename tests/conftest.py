"""Test fixtures and fakes."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from decision_swarm.config import Settings
from decision_swarm.contracts import RoleResult, SearchResult, Tier


class FakeCaller:
    """Stands in for ProviderFallbackCaller.

    ``responses`` maps role id to: a string (always returned), a list of
    strings (returned in order, the last one repeats), None (a failed
    call), or an exception instance (raised).
    """

    def __init__(self, responses: dict | None = None, default: str = "分析完成，建议轻资产运营。") -> None:
        self.responses = dict(responses or {})
        self.default = default
        self.calls: list[tuple[str, str]] = []

    async def call(self, role_id, system_prompt, user_message, candidates, *, timeout=None):
        self.calls.append((role_id, user_message))
        response = self.responses.get(role_id, self.default)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, BaseException):
            raise response
        ts = datetime.now(timezone.utc).isoformat()
        if response is None:
            return RoleResult(
                role_id=role_id,
                content="",
                model="",
                provider="",
                latency_ms=0,
                used_fallback=False,
                fallback_level=-1,
                success=False,
                error="all providers failed: fake",
                timestamp=ts,
            )
        return RoleResult(
            role_id=role_id,
            content=response,
            model="fake-model",
            provider="fake",
            latency_ms=10,
            used_fallback=False,
            fallback_level=0,
            success=True,
            error=None,
            timestamp=ts,
        )

    def messages_for(self, role_id: str) -> list[str]:
        return [msg for rid, msg in self.calls if rid == role_id]


class FakeBackend:
    """Search backend returning canned results, or raising."""

    def __init__(self, name: str, results: list[SearchResult] | None = None, error=None) -> None:
        self.name = name
        self.results = results or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str, *, num_results: int = 5) -> list[SearchResult]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.results[:num_results]]

    async def health_check(self) -> bool:
        return self.error is None


def make_search_result(
    url: str,
    title: str = "",
    snippet: str = "",
    *,
    backend: str = "fake",
    rank: int = 1,
    published: str | None = None,
) -> SearchResult:
    result = SearchResult(
        id=f"sr-{abs(hash(url)) % 10**8:08d}",
        url=url,
        title=title or url,
        snippet=snippet,
        backend=backend,
        rank=rank,
        tier=Tier.TIER3,
        timestamp="2026-10-01T00:00:00+00:00",
    )
    if published:
        result["published"] = published
    return result


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        deepseek_api_key="test-key",
        siliconflow_api_key="",
        kimi_api_key="",
        zhipu_api_key="",
        aliyun_api_key="",
        baidu_api_key="",
        anthropic_api_key="",
        tavily_api_key="",
        serper_api_key="",
        searxng_url="",
        provider_timeout=30.0,
        max_investment=130000.0,
        roi_months=12,
        monthly_reserve=5000.0,
        correction_policy="correct",
        max_regenerations=1,
        cycle_policy="raise",
        data_dir=str(tmp_path / "data"),
        run_log_dir=str(tmp_path / "runs"),
        profile_path="",
    )


@pytest.fixture
def fake_caller() -> FakeCaller:
    return FakeCaller()


@pytest.fixture
def sample_search_results() -> list[SearchResult]:
    return [
        make_search_result(
            "https://www.stats.gov.cn/sj/zxfb/202510/t20251010.html",
            "2025年前三季度再生资源统计公报",
            "全国废塑料回收行业产值达到102亿元，同比上升",
            backend="serper",
            rank=1,
            published="2026-10-10",
        ),
        make_search_result(
            "https://www.reuters.com/markets/china-recycling",
            "China recycling sector report",
            "Industry revenue hit 9.8 billion yuan this year",
            backend="tavily",
            rank=1,
            published="2026-10-08",
        ),
        make_search_result(
            "https://www.caixin.com/2026-10-05/recycling.html",
            "财新观察",
            "市场容量估算约99亿元，华东地区占比最高",
            backend="serper",
            rank=2,
            published="2026-10-05",
        ),
    ]
