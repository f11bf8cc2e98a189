"""Generation service: the LLM collaborator behind the orchestrator.

The orchestrator depends only on the GenerationService protocol:

    async def __call__(self, prompt: Prompt, temperature: float | None = None)
        -> Completion | None: ...

None is the single "every provider failed" signal. Anything else (slow
responses, provider-level retries) stays inside the implementation.

Implementations provided:

    ChatProvider: one HTTP backend; supports OpenAI-compatible
        chat completions and KoboldCpp. Raises LLMError.
    FallbackGenerationService: tries ChatProviders in order (primary first),
        retries a temporary rate limit once, and skips
        providers whose circuit breaker is open.

Tests use stub services (plain async callables) instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel

from encounter_forge.models import ProviderLabel
from encounter_forge.prompts import Prompt

logger = logging.getLogger(__name__)


class Completion(BaseModel):
    text: str
    provider: ProviderLabel = "primary"


# ---------------------------------------------------------------------------
# Protocol: every generation service must match this signature
# ---------------------------------------------------------------------------

class GenerationService(Protocol):
    async def __call__(
        self, prompt: Prompt, temperature: float | None = None
    ) -> Completion | None: ...


# ---------------------------------------------------------------------------
# LLMError: raised by ChatProvider for all connection and protocol failures
# ---------------------------------------------------------------------------

ErrorKind = Literal[
    "quota_exhausted",
    "rate_limit",
    "invalid_token",
    "payment_required",
    "server_error",
    "timeout",
    "network_error",
    "unknown",
]


class LLMError(RuntimeError):
    """Raised when an LLM backend cannot be reached or returns an error."""

    def __init__(self, message: str, kind: ErrorKind = "unknown", status: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


def classify_status(status: int, body: str = "") -> ErrorKind:
    if status == 402:
        return "payment_required"
    if status == 429:
        lower = body.lower()
        if "quota" in lower or "exhausted" in lower or "billing" in lower:
            return "quota_exhausted"
        return "rate_limit"
    if status in (401, 403):
        return "invalid_token"
    if status in (500, 502, 503, 504):
        return "server_error"
    return "unknown"


# ---------------------------------------------------------------------------
# ChatProvider: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["openai", "koboldcpp"]


class ChatProvider:
    """Async HTTP client for one text-generation backend.

    Supported formats:
      "openai"    : POST {base}/chat/completions  {"model", "messages", "temperature"}
                     Response: {"choices": [{"message": {"content": "..."}}]}
      "koboldcpp" : POST {base}/api/v1/generate   {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}

    Args:
        name:            Label used in logs and circuit-breaker bookkeeping.
        provider_url:    Base URL, e.g. "https://generativelanguage.googleapis.com/v1beta/openai".
        api_key:         Bearer token, or empty string if not required.
        model:           Model identifier, sent by the openai format only.
        label:           "primary" or "alternative", reported back to callers.
        provider_format: Wire format. Defaults to "openai".
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        name: str,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        label: ProviderLabel = "primary",
        provider_format: ProviderFormat = "openai",
        timeout: float = 120.0,
    ) -> None:
        self.name = name
        self.label = label
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._format = provider_format
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: Prompt, temperature: float | None) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "koboldcpp":
            url = f"{self._base_url}/api/v1/generate"
            body: dict = {"prompt": f"{prompt.system}\n\n{prompt.user}"}
            if temperature is not None:
                body["temperature"] = temperature
            return url, body

        # openai (default)
        url = f"{self._base_url}/chat/completions"
        body = {
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
        }
        if self._model:
            body["model"] = self._model
        if temperature is not None:
            body["temperature"] = temperature
        return url, body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "koboldcpp":
            results = data.get("results")
            if not results or "text" not in results[0]:
                raise LLMError("Unexpected response format from KoboldCpp backend")
            return results[0]["text"]

        choices = data.get("choices")
        if not choices or "content" not in (choices[0].get("message") or {}):
            raise LLMError("Unexpected response format from OpenAI-compatible backend")
        return choices[0]["message"]["content"] or ""

    async def __call__(self, prompt: Prompt, temperature: float | None = None) -> str:
        url, body = self._build_request(prompt, temperature)
        logger.debug("llm call provider=%s url=%s prompt_len=%d",
                     self.name, url, len(prompt.system) + len(prompt.user))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}",
                           kind="network_error") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise LLMError(
                f"LLM backend returned HTTP {status}",
                kind=classify_status(status, e.response.text),
                status=status,
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s", kind="timeout") from e
        except httpx.RequestError as e:
            raise LLMError(f"Network error talking to LLM backend at {self._base_url}: {e}",
                           kind="network_error") from e

        try:
            text = self._parse_response(resp.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise LLMError(f"Unexpected response format from LLM backend: {e}") from e
        logger.debug("llm response provider=%s len=%d", self.name, len(text))
        return text


# ---------------------------------------------------------------------------
# CircuitBreaker: per-provider failure tracking
# ---------------------------------------------------------------------------

class CircuitBreaker:
    """Opens after `threshold` failures inside `window` seconds; closes
    again once `cooldown` seconds have passed."""

    def __init__(
        self,
        threshold: int = 3,
        window: float = 600.0,
        cooldown: float = 300.0,
        clock=time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.window = window
        self.cooldown = cooldown
        self._clock = clock
        self._failures: list[float] = []
        self._opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self._clock() - self._opened_at >= self.cooldown:
            self._opened_at = None
            self._failures = []
            return False
        return True

    def record_failure(self) -> None:
        now = self._clock()
        self._failures = [t for t in self._failures if now - t < self.window]
        self._failures.append(now)
        if len(self._failures) >= self.threshold and self._opened_at is None:
            self._opened_at = now

    def record_success(self) -> None:
        self._failures = []
        self._opened_at = None


# ---------------------------------------------------------------------------
# FallbackGenerationService: the production GenerationService
# ---------------------------------------------------------------------------

class FallbackGenerationService:
    """Tries each provider in order and returns the first completion.

    Only a temporary rate limit is retried (once, after `retry_delay`
    seconds). Quota, auth, payment, timeout and server failures move straight
    on to the next provider. Returns None when every provider failed.
    """

    def __init__(self, providers: Sequence[ChatProvider], retry_delay: float = 2.0) -> None:
        self._providers = list(providers)
        self._retry_delay = retry_delay
        self._breakers: dict[str, CircuitBreaker] = {p.name: CircuitBreaker() for p in self._providers}

    @property
    def providers(self) -> list[ChatProvider]:
        return list(self._providers)

    async def _try(self, provider: ChatProvider, prompt: Prompt, temperature: float | None) -> str | None:
        try:
            return await provider(prompt, temperature)
        except LLMError as e:
            logger.warning("provider %s failed: %s (%s)", provider.name, e, e.kind)
            if e.kind != "rate_limit":
                return None
        await asyncio.sleep(self._retry_delay)
        try:
            return await provider(prompt, temperature)
        except LLMError as e:
            logger.warning("provider %s retry failed: %s (%s)", provider.name, e, e.kind)
            return None

    async def __call__(self, prompt: Prompt, temperature: float | None = None) -> Completion | None:
        for provider in self._providers:
            breaker = self._breakers[provider.name]
            if breaker.is_open:
                logger.info("skipping provider %s: circuit open", provider.name)
                continue
            text = await self._try(provider, prompt, temperature)
            if text is not None:
                breaker.record_success()
                return Completion(text=text, provider=provider.label)
            breaker.record_failure()
        logger.error("all generation providers failed")
        return None
