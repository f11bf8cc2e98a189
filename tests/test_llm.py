"""Tests for encounter_forge.llm: ChatProvider, CircuitBreaker and
FallbackGenerationService."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from encounter_forge.llm import (
    ChatProvider,
    CircuitBreaker,
    Completion,
    FallbackGenerationService,
    LLMError,
    classify_status,
)
from encounter_forge.prompts import Prompt

PROMPT = Prompt(system="You design encounters.", user="Four level 5 adventurers.")


def _mock_response(body: dict, status: int = 200, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


# ---------------------------------------------------------------------------
# classify_status
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("status, body, kind", [
    (402, "", "payment_required"),
    (429, "Too many requests, slow down", "rate_limit"),
    (429, "Resource has been exhausted (e.g. check quota).", "quota_exhausted"),
    (429, "Please check your BILLING details", "quota_exhausted"),
    (401, "", "invalid_token"),
    (403, "", "invalid_token"),
    (500, "", "server_error"),
    (503, "", "server_error"),
    (418, "", "unknown"),
])
def test_classify_status(status, body, kind):
    assert classify_status(status, body) == kind


# ---------------------------------------------------------------------------
# ChatProvider: OpenAI format
# ---------------------------------------------------------------------------

class TestChatProviderOpenAI:
    @pytest.fixture
    def provider(self) -> ChatProvider:
        return ChatProvider(
            name="gemini",
            provider_url="http://localhost:8080/v1/",
            api_key="secret",
            model="gemini-2.5-pro",
        )

    async def test_happy_path(self, provider: ChatProvider) -> None:
        body = {"choices": [{"message": {"content": "# ⚔️ Ambush"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider(PROMPT)
        assert result == "# ⚔️ Ambush"

    async def test_posts_to_chat_completions(self, provider: ChatProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT)
        url = mock_post.call_args[0][0]
        assert url == "http://localhost:8080/v1/chat/completions"

    async def test_sends_messages_model_and_temperature(self, provider: ChatProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT, temperature=0.8)
        sent_body = mock_post.call_args.kwargs["json"]
        assert sent_body["model"] == "gemini-2.5-pro"
        assert sent_body["temperature"] == 0.8
        assert sent_body["messages"] == [
            {"role": "system", "content": PROMPT.system},
            {"role": "user", "content": PROMPT.user},
        ]

    async def test_temperature_omitted_when_none(self, provider: ChatProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT)
        assert "temperature" not in mock_post.call_args.kwargs["json"]

    async def test_bearer_token_sent(self, provider: ChatProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT)
        headers = mock_post.call_args.kwargs["headers"]
        assert headers.get("Authorization") == "Bearer secret"

    async def test_rate_limit_classified(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=429, text="slow down"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="HTTP 429") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "rate_limit"
        assert exc_info.value.status == 429

    async def test_quota_classified(self, provider: ChatProvider) -> None:
        resp = _mock_response({}, status=429, text='{"error": "quota exceeded"}')
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError) as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "quota_exhausted"

    async def test_malformed_response_raises_llm_error(self, provider: ChatProvider) -> None:
        body = {"results": [{"text": "kobold format accidentally"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await provider(PROMPT)


# ---------------------------------------------------------------------------
# ChatProvider: KoboldCpp format
# ---------------------------------------------------------------------------

class TestChatProviderKoboldCpp:
    @pytest.fixture
    def provider(self) -> ChatProvider:
        return ChatProvider(
            name="local",
            provider_url="http://localhost:5001",
            label="alternative",
            provider_format="koboldcpp",
        )

    async def test_happy_path(self, provider: ChatProvider) -> None:
        body = {"results": [{"text": "# Goblin Ambush"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider(PROMPT)
        assert result == "# Goblin Ambush"

    async def test_posts_joined_prompt(self, provider: ChatProvider) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT)
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"
        assert mock_post.call_args.kwargs["json"] == {
            "prompt": f"{PROMPT.system}\n\n{PROMPT.user}",
        }

    async def test_no_auth_header_when_no_api_key(self, provider: ChatProvider) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider(PROMPT)
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    async def test_connect_error_raises_llm_error(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Cannot connect") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "network_error"

    async def test_timeout_raises_llm_error(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="timed out") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "timeout"

    async def test_server_error(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="HTTP 503") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "server_error"

    async def test_malformed_response_raises_llm_error(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await provider(PROMPT)

    async def test_read_error_raises_llm_error(self, provider: ChatProvider) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadError("connection reset"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Network error") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "network_error"

    async def test_non_json_body_raises_llm_error(self, provider: ChatProvider) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("Expecting value")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError, match="Unexpected response format") as exc_info:
                await provider(PROMPT)
        assert exc_info.value.kind == "unknown"

    async def test_non_dict_body_raises_llm_error(self, provider: ChatProvider) -> None:
        resp = _mock_response({})
        resp.json.return_value = ["not", "an", "object"]
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await provider(PROMPT)


# ---------------------------------------------------------------------------
# CircuitBreaker
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    def test_opens_after_threshold(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        assert not breaker.is_open
        breaker.record_failure()
        assert breaker.is_open

    def test_failures_outside_window_forgotten(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.now = 601
        breaker.record_failure()
        assert not breaker.is_open

    def test_closes_after_cooldown(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.now = 299
        assert breaker.is_open
        clock.now = 300
        assert not breaker.is_open

    def test_cooldown_clears_failure_history(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.now = 300
        assert not breaker.is_open
        breaker.record_failure()
        breaker.record_failure()
        assert not breaker.is_open
        breaker.record_failure()
        assert breaker.is_open

    def test_success_resets(self) -> None:
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert not breaker.is_open


# ---------------------------------------------------------------------------
# FallbackGenerationService
# ---------------------------------------------------------------------------

class FakeProvider:
    """Stands in for ChatProvider: returns or raises the queued outcomes in order."""

    def __init__(self, name: str, outcomes: list, label: str = "primary") -> None:
        self.name = name
        self.label = label
        self.outcomes = list(outcomes)
        self.calls: list[float | None] = []

    async def __call__(self, prompt: Prompt, temperature: float | None = None) -> str:
        self.calls.append(temperature)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestFallbackGenerationService:
    async def test_primary_success(self) -> None:
        primary = FakeProvider("primary", ["encounter text"])
        alternative = FakeProvider("alt", ["unused"], label="alternative")
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        result = await service(PROMPT, temperature=0.8)
        assert result == Completion(text="encounter text", provider="primary")
        assert primary.calls == [0.8]
        assert alternative.calls == []

    async def test_falls_back_to_alternative(self) -> None:
        primary = FakeProvider("primary", [LLMError("down", kind="server_error")])
        alternative = FakeProvider("alt", ["fallback text"], label="alternative")
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        result = await service(PROMPT)
        assert result.provider == "alternative"
        assert result.text == "fallback text"
        assert len(primary.calls) == 1

    async def test_rate_limit_retried_once(self) -> None:
        primary = FakeProvider("primary", [LLMError("slow", kind="rate_limit"), "second try"])
        service = FallbackGenerationService([primary], retry_delay=0)
        result = await service(PROMPT)
        assert result.text == "second try"
        assert len(primary.calls) == 2

    async def test_rate_limit_retry_failure_moves_on(self) -> None:
        primary = FakeProvider("primary", [LLMError("slow", kind="rate_limit")])
        alternative = FakeProvider("alt", ["ok"], label="alternative")
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        result = await service(PROMPT)
        assert result.provider == "alternative"
        assert len(primary.calls) == 2

    async def test_quota_not_retried(self) -> None:
        primary = FakeProvider("primary", [LLMError("quota", kind="quota_exhausted")])
        service = FallbackGenerationService([primary], retry_delay=0)
        assert await service(PROMPT) is None
        assert len(primary.calls) == 1

    async def test_all_fail_returns_none(self) -> None:
        primary = FakeProvider("primary", [LLMError("bad token", kind="invalid_token")])
        alternative = FakeProvider("alt", [LLMError("offline", kind="network_error")],
                                   label="alternative")
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        assert await service(PROMPT) is None

    async def test_no_providers_returns_none(self) -> None:
        service = FallbackGenerationService([])
        assert await service(PROMPT) is None
        assert service.providers == []

    async def test_open_circuit_skips_provider(self) -> None:
        primary = FakeProvider("primary", [LLMError("down", kind="server_error")])
        alternative = FakeProvider("alt", ["ok"], label="alternative")
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        for _ in range(3):
            await service(PROMPT)
        assert len(primary.calls) == 3

        result = await service(PROMPT)
        assert result.provider == "alternative"
        assert len(primary.calls) == 3
        assert len(alternative.calls) == 4

    async def test_transport_error_falls_back_to_alternative(self) -> None:
        primary = ChatProvider(name="primary", provider_url="http://primary.local/v1")
        alternative = ChatProvider(name="alt", provider_url="http://alt.local/v1", label="alternative")
        body = {"choices": [{"message": {"content": "fallback encounter"}}]}
        mock_post = AsyncMock(side_effect=[
            httpx.ReadError("connection reset"),
            _mock_response(body),
        ])
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        with patch("httpx.AsyncClient.post", mock_post):
            result = await service(PROMPT)
        assert result == Completion(text="fallback encounter", provider="alternative")
        assert mock_post.call_args[0][0] == "http://alt.local/v1/chat/completions"

    async def test_non_json_body_falls_back_to_alternative(self) -> None:
        primary = ChatProvider(name="primary", provider_url="http://primary.local/v1")
        alternative = ChatProvider(name="alt", provider_url="http://alt.local/v1", label="alternative")
        broken = _mock_response({})
        broken.json.side_effect = ValueError("Expecting value")
        body = {"choices": [{"message": {"content": "fallback encounter"}}]}
        mock_post = AsyncMock(side_effect=[broken, _mock_response(body)])
        service = FallbackGenerationService([primary, alternative], retry_delay=0)
        with patch("httpx.AsyncClient.post", mock_post):
            result = await service(PROMPT)
        assert result.provider == "alternative"
        assert result.text == "fallback encounter"

    async def test_transport_errors_everywhere_return_none(self) -> None:
        providers = [
            ChatProvider(name="primary", provider_url="http://primary.local/v1"),
            ChatProvider(name="alt", provider_url="http://alt.local/v1", label="alternative"),
        ]
        mock_post = AsyncMock(side_effect=httpx.RemoteProtocolError("peer closed"))
        service = FallbackGenerationService(providers, retry_delay=0)
        with patch("httpx.AsyncClient.post", mock_post):
            assert await service(PROMPT) is None
        assert mock_post.call_count == 2
