"""Tests for ProviderFallbackCaller: ordered fallback, logging, error kinds."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from decision_swarm.contracts import ModelCandidate
from decision_swarm.event_log.writer import CallLog
from decision_swarm.providers.caller import ProviderFallbackCaller, extract_json

# --- Helpers ---

_ALL_KEYS = {
    "siliconflow": "key-siliconflow",
    "deepseek": "key-deepseek",
    "kimi": "key-kimi",
}

_CHAIN = [
    ModelCandidate(provider="siliconflow", model="deepseek-v3"),
    ModelCandidate(provider="deepseek", model="deepseek-chat"),
    ModelCandidate(provider="kimi", model="moonshot-k2.5"),
]


def _ok(text: str = "分析结果") -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def _make_caller(handler, *, keys: dict[str, str] | None = None, timeout: float = 5.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    log = CallLog()
    caller = ProviderFallbackCaller(
        api_keys=_ALL_KEYS if keys is None else keys,
        call_log=log,
        timeout=timeout,
        http_client=client,
    )
    return caller, log, client


def _by_host(responses: dict[str, httpx.Response]):
    def handler(request: httpx.Request) -> httpx.Response:
        for host, response in responses.items():
            if request.url.host.endswith(host):
                return response
        return httpx.Response(404, text="unexpected host")

    return handler


# --- Fallback order ---


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_first_candidate_answers(self):
        """No failures: fallback_level 0 and a single log entry."""
        caller, log, client = _make_caller(_by_host({"siliconflow.cn": _ok("第一")}))
        result = await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is True
        assert result["content"] == "第一"
        assert result["fallback_level"] == 0
        assert result["used_fallback"] is False
        assert result["provider"] == "siliconflow"
        assert len(log) == 1
        assert log.entries[0]["fallback"] is False

    @pytest.mark.asyncio
    async def test_k_failures_then_success(self):
        """Two failing providers then one that answers: level 2, three log entries."""
        handler = _by_host(
            {
                "siliconflow.cn": httpx.Response(500, text="upstream error"),
                "deepseek.com": httpx.Response(429, text="slow down"),
                "moonshot.cn": _ok("第三"),
            }
        )
        caller, log, client = _make_caller(handler)
        result = await caller.call("financial_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is True
        assert result["content"] == "第三"
        assert result["fallback_level"] == 2
        assert result["used_fallback"] is True
        assert result["model"] == "moonshot-k2.5"

        entries = log.for_role("financial_analyst")
        assert len(entries) == 3
        assert [e["success"] for e in entries] == [False, False, True]
        assert [e["fallback"] for e in entries] == [False, True, True]
        assert "[http]" in entries[0]["error"]
        assert "[rate_limit]" in entries[1]["error"]
        assert entries[2]["error"] is None

    @pytest.mark.asyncio
    async def test_candidates_tried_in_order(self):
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(503, text="unavailable")

        caller, _, client = _make_caller(handler)
        await caller.call("copilot", "sys", "user", _CHAIN)
        await client.aclose()

        assert hosts == ["api.siliconflow.cn", "api.deepseek.com", "api.moonshot.cn"]

    @pytest.mark.asyncio
    async def test_missing_credential_skipped_without_log(self):
        """A candidate with no key is never called and never logged."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            return _ok("来自deepseek")

        caller, log, client = _make_caller(handler, keys={"deepseek": "key-deepseek"})
        result = await caller.call("risk_assessor", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is True
        assert result["provider"] == "deepseek"
        assert result["fallback_level"] == 1
        assert seen == ["api.deepseek.com"]
        assert len(log) == 1

    @pytest.mark.asyncio
    async def test_unknown_provider_skipped(self):
        chain = [ModelCandidate(provider="nonexistent", model="x"), *_CHAIN]
        caller, log, client = _make_caller(_by_host({"siliconflow.cn": _ok()}))
        result = await caller.call("copilot", "sys", "user", chain)
        await client.aclose()

        assert result["success"] is True
        assert result["fallback_level"] == 1
        assert len(log) == 1

    @pytest.mark.asyncio
    async def test_exhausted_chain_fails(self, capsys):
        caller, log, client = _make_caller(lambda request: httpx.Response(500, text="down"))
        result = await caller.call("decision_advisor", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is False
        assert result["content"] == ""
        assert result["fallback_level"] == -1
        assert result["error"].startswith("all providers failed:")
        assert "kimi/moonshot-k2.5" in result["error"]
        assert len(log) == 3
        assert "WARNING: decision_advisor attempt 3 failed" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_no_credentials_at_all(self):
        caller, log, client = _make_caller(lambda request: _ok(), keys={})
        result = await caller.call("copilot", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is False
        assert "[missing_credential] KIMI_API_KEY not set" in result["error"]
        assert len(log) == 0

    @pytest.mark.asyncio
    async def test_empty_candidate_list(self):
        caller, _, client = _make_caller(lambda request: _ok())
        result = await caller.call("copilot", "sys", "user", [])
        await client.aclose()

        assert result["success"] is False
        assert "no model candidates" in result["error"]


# --- Error classification ---


class TestErrorKinds:
    @pytest.mark.asyncio
    async def test_timeout_falls_through(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host.endswith("siliconflow.cn"):
                await asyncio.sleep(1.0)
            return _ok("快速回答")

        caller, log, client = _make_caller(handler, timeout=0.05)
        result = await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is True
        assert result["fallback_level"] == 1
        assert "[timeout] no response within 0.05s" in log.entries[0]["error"]

    @pytest.mark.asyncio
    async def test_content_policy(self):
        handler = _by_host(
            {
                "siliconflow.cn": httpx.Response(400, text='{"error": "content_filter triggered"}'),
                "deepseek.com": _ok(),
            }
        )
        caller, log, client = _make_caller(handler)
        await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert "[content_policy]" in log.entries[0]["error"]

    @pytest.mark.asyncio
    async def test_auth_error(self):
        handler = _by_host(
            {"siliconflow.cn": httpx.Response(401, text="bad key"), "deepseek.com": _ok()}
        )
        caller, log, client = _make_caller(handler)
        await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert "[auth]" in log.entries[0]["error"]

    @pytest.mark.asyncio
    async def test_malformed_and_empty_bodies(self):
        handler = _by_host(
            {
                "siliconflow.cn": httpx.Response(200, json={"choices": []}),
                "deepseek.com": _ok("   "),
                "moonshot.cn": _ok("最终"),
            }
        )
        caller, log, client = _make_caller(handler)
        result = await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["fallback_level"] == 2
        assert "[malformed]" in log.entries[0]["error"]
        assert "empty content" in log.entries[1]["error"]

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host.endswith("siliconflow.cn"):
                raise httpx.ConnectError("connection refused", request=request)
            return _ok()

        caller, log, client = _make_caller(handler)
        result = await caller.call("market_analyst", "sys", "user", _CHAIN)
        await client.aclose()

        assert result["success"] is True
        assert "[network]" in log.entries[0]["error"]


# --- Request shape ---


class TestRequestShape:
    @pytest.mark.asyncio
    async def test_openai_compatible_payload(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return _ok()

        caller, _, client = _make_caller(handler, keys={"deepseek": "key-deepseek"})
        await caller.call("market_analyst", "系统提示", "用户消息", _CHAIN[1:2])
        await client.aclose()

        request = captured[0]
        assert str(request.url) == "https://api.deepseek.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer key-deepseek"
        body = json.loads(request.content)
        assert body["model"] == "deepseek-chat"
        assert body["messages"][0] == {"role": "system", "content": "系统提示"}
        assert body["messages"][1] == {"role": "user", "content": "用户消息"}


class TestExtractJson:
    def test_fenced_block(self):
        text = '```json\n{"mode": "reverse"}\n```'
        assert extract_json(text) == '{"mode": "reverse"}'

    def test_prose_wrapped(self):
        text = '好的，分析如下：{"mode": "forward", "topics": ["a"]} 以上。'
        assert extract_json(text) == '{"mode": "forward", "topics": ["a"]}'

    def test_no_json(self):
        assert extract_json("没有结构化输出") == ""
