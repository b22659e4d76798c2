"""ProviderFallbackCaller: ordered fallback chain across model providers."""

from __future__ import annotations

import asyncio
import sys
import time
from datetime import datetime, timezone

import anthropic
import httpx

from decision_swarm.contracts import ModelCandidate, RoleResult
from decision_swarm.errors import ProviderError
from decision_swarm.event_log.writer import CallLog
from decision_swarm.providers import ProviderSpec, get_provider

_CONTENT_POLICY_MARKERS = ("content_filter", "content policy", "sensitive", "敏感", "违规内容")


def extract_json(text: str) -> str:
    """Extract JSON from model response, handling fenced blocks and prose wrapping."""
    cleaned = text.strip()

    # Handle ```json fenced blocks
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        json_lines = []
        for line in lines:
            if line.strip() == "```":
                break
            json_lines.append(line)
        cleaned = "\n".join(json_lines).strip()

    if cleaned.startswith("{") or cleaned.startswith("["):
        return cleaned

    # Reasoning models often wrap the object in prose
    start = cleaned.find("{")
    if start != -1:
        depth = 0
        for i in range(start, len(cleaned)):
            if cleaned[i] == "{":
                depth += 1
            elif cleaned[i] == "}":
                depth -= 1
                if depth == 0:
                    return cleaned[start : i + 1]
        return cleaned[start:]

    return ""


def _status_kind(status_code: int, body: str) -> str:
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "rate_limit"
    lowered = body.lower()
    if status_code in (400, 451) and any(m in lowered for m in _CONTENT_POLICY_MARKERS):
        return "content_policy"
    return "http"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProviderFallbackCaller:
    """Tries (provider, model) candidates strictly in order until one answers.

    Candidates without a credential are skipped without a call and without a
    log entry. Every attempted call appends exactly one CallLog entry.
    """

    def __init__(
        self,
        *,
        api_keys: dict[str, str],
        call_log: CallLog | None = None,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_keys = {k: v for k, v in api_keys.items() if v}
        self.call_log = call_log if call_log is not None else CallLog()
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout + 5.0))
        self._anthropic_clients: dict[str, anthropic.AsyncAnthropic] = {}

    def has_credential(self, provider: str) -> bool:
        return bool(self._api_keys.get(provider))

    async def call(
        self,
        role_id: str,
        system_prompt: str,
        user_message: str,
        candidates: list[ModelCandidate] | tuple[ModelCandidate, ...],
        *,
        timeout: float | None = None,
    ) -> RoleResult:
        """Run the fallback chain for one role invocation.

        Returns a successful RoleResult from the first candidate that answers,
        with fallback_level set to that candidate's index, or a failed
        RoleResult carrying the last error once the chain is exhausted.
        """
        limit = timeout or self.timeout
        last_error = "no model candidates configured"

        for index, candidate in enumerate(candidates):
            provider = candidate["provider"]
            model = candidate["model"]

            try:
                spec = get_provider(provider)
            except KeyError as exc:
                last_error = str(exc)
                continue
            if not self.has_credential(provider):
                last_error = f"{provider}/{model}: [missing_credential] {spec.api_key_env} not set"
                continue

            start = time.monotonic()
            try:
                content = await asyncio.wait_for(
                    self._complete(spec, model, system_prompt, user_message),
                    timeout=limit,
                )
            except asyncio.TimeoutError:
                error = str(
                    ProviderError(
                        "timeout", f"no response within {limit:g}s", provider=provider, model=model
                    )
                )
            except ProviderError as exc:
                error = str(exc)
            else:
                latency_ms = int((time.monotonic() - start) * 1000)
                self.call_log.append(
                    CallLog.make_entry(
                        role_id=role_id,
                        provider=provider,
                        model=model,
                        success=True,
                        latency_ms=latency_ms,
                        fallback=index > 0,
                    )
                )
                return RoleResult(
                    role_id=role_id,
                    content=content,
                    model=model,
                    provider=provider,
                    latency_ms=latency_ms,
                    used_fallback=index > 0,
                    fallback_level=index,
                    success=True,
                    error=None,
                    timestamp=_now(),
                )

            latency_ms = int((time.monotonic() - start) * 1000)
            self.call_log.append(
                CallLog.make_entry(
                    role_id=role_id,
                    provider=provider,
                    model=model,
                    success=False,
                    latency_ms=latency_ms,
                    fallback=index > 0,
                    error=error,
                )
            )
            print(f"WARNING: {role_id} attempt {index + 1} failed: {error}", file=sys.stderr)
            last_error = error

        return RoleResult(
            role_id=role_id,
            content="",
            model="",
            provider="",
            latency_ms=0,
            used_fallback=False,
            fallback_level=-1,
            success=False,
            error=f"all providers failed: {last_error}",
            timestamp=_now(),
        )

    async def _complete(
        self, spec: ProviderSpec, model: str, system_prompt: str, user_message: str
    ) -> str:
        if spec.kind == "anthropic":
            return await self._complete_anthropic(spec, model, system_prompt, user_message)
        return await self._complete_openai(spec, model, system_prompt, user_message)

    async def _complete_openai(
        self, spec: ProviderSpec, model: str, system_prompt: str, user_message: str
    ) -> str:
        """POST an OpenAI-compatible chat completion and return the message text."""
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._api_keys[spec.name]}",
            "Content-Type": "application/json",
        }
        try:
            resp = await self._http.post(
                f"{spec.base_url.rstrip('/')}/chat/completions", json=payload, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "timeout", str(exc) or "request timed out", provider=spec.name, model=model
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                "network", str(exc) or type(exc).__name__, provider=spec.name, model=model
            ) from exc

        if not resp.is_success:
            body = resp.text
            raise ProviderError(
                _status_kind(resp.status_code, body),
                f"HTTP {resp.status_code}: {body[:200]}",
                provider=spec.name,
                model=model,
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                "malformed", f"unexpected response body: {resp.text[:200]}", provider=spec.name,
                model=model,
            ) from exc
        if not isinstance(content, str) or not content.strip():
            raise ProviderError("malformed", "empty content", provider=spec.name, model=model)
        return content

    async def _complete_anthropic(
        self, spec: ProviderSpec, model: str, system_prompt: str, user_message: str
    ) -> str:
        key = self._api_keys[spec.name]
        client = self._anthropic_clients.get(key)
        if client is None:
            client = anthropic.AsyncAnthropic(api_key=key)
            self._anthropic_clients[key] = client

        try:
            response = await client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            )
        except anthropic.RateLimitError as exc:
            raise ProviderError("rate_limit", str(exc), provider=spec.name, model=model) from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise ProviderError("auth", str(exc), provider=spec.name, model=model) from exc
        except anthropic.APITimeoutError as exc:
            raise ProviderError("timeout", str(exc), provider=spec.name, model=model) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderError("network", str(exc), provider=spec.name, model=model) from exc
        except anthropic.APIError as exc:
            raise ProviderError("http", str(exc), provider=spec.name, model=model) from exc

        text = ""
        for block in response.content:
            if block.type == "text":
                text += block.text
        if not text.strip():
            raise ProviderError("malformed", "empty content", provider=spec.name, model=model)
        return text

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
        for client in self._anthropic_clients.values():
            await client.close()
