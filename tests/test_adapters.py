"""Tests for the Provider Adapters (mocked HTTP)."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.tutor.adapters import (
    ADAPTER_REGISTRY,
    CohereAdapter,
    GeminiAdapter,
    GroqAdapter,
    get_adapter,
)
from app.tutor.errors import (
    AuthorizationFailed,
    CredentialExhausted,
    MalformedUpstreamResponse,
    ProviderTimeout,
    RateLimited,
    UpstreamError,
)
from app.tutor.key_rotation import KeyRotationLedger
from app.tutor.types import AttachedFile, ChatMessage, ChatRole, CompletionRequest, ProviderKind


def _make_httpx_response(status_code: int, json_data: dict | None = None, text: str = "") -> httpx.Response:
    """Create a proper httpx.Response with request set."""
    request = httpx.Request("POST", "https://example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def _mock_gemini_response(text="Step 1: apply Newton's second law."):
    return _make_httpx_response(
        200,
        json_data={"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]},
    )


def _mock_openai_response(text="The answer is 42."):
    return _make_httpx_response(
        200,
        json_data={"choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}]},
    )


def _mock_client(mock_client_cls, response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return mock_client


HISTORY = (
    ChatMessage(ChatRole.USER, "What is torque?"),
    ChatMessage(ChatRole.ASSISTANT, "Torque is the rotational analogue of force."),
)


def _request(**kwargs) -> CompletionRequest:
    defaults = {
        "system_prompt": "You are a JEE tutor.",
        "current_message": "Find the torque on the rod.",
        "temperature": 0.7,
        "max_tokens": 4096,
    }
    defaults.update(kwargs)
    return CompletionRequest(**defaults)


# ==========================================================================
# Test: Gemini
# ==========================================================================


class TestGeminiAdapter:
    @pytest.mark.asyncio
    async def test_success(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger(["gem-key-1"]))

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_gemini_response())
            result = await adapter.complete(_request(conversation_history=HISTORY))

        assert result.text == "Step 1: apply Newton's second law."
        assert result.provider_name == "Gemini"
        assert result.model_id == "gemini-2.0-flash"
        assert result.elapsed_ms >= 0

        call = mock_client.post.call_args
        assert call.args[0].endswith("/v1/models/gemini-2.0-flash:generateContent")
        assert call.kwargs["params"] == {"key": "gem-key-1"}
        payload = call.kwargs["json"]
        prompt = payload["contents"][0]["parts"][0]["text"]
        assert prompt.startswith("You are a JEE tutor.")
        assert "PREVIOUS CONVERSATION:" in prompt
        assert "Assistant: Torque is the rotational analogue of force." in prompt
        assert "User: Find the torque on the rod." in prompt
        assert payload["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 4096}

    @pytest.mark.asyncio
    async def test_image_sent_as_inline_data(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger(["gem-key-1"]))
        image = AttachedFile(
            name="q.png",
            mime_type="image/png",
            base64_content="data:image/png;base64," + base64.b64encode(b"png").decode(),
        )

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_gemini_response())
            await adapter.complete(_request(attached_files=(image,)))

        parts = mock_client.post.call_args.kwargs["json"]["contents"][0]["parts"]
        assert len(parts) == 2
        assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": base64.b64encode(b"png").decode()}}
        assert "ATTACHED FILES: q.png (image/png)" in parts[0]["text"]

    @pytest.mark.asyncio
    async def test_no_credential_skips_network(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger([]))

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            with pytest.raises(CredentialExhausted):
                await adapter.complete(_request())

        mock_client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_rotates_keys(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger(["key-a", "key-b"]))

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_gemini_response())
            await adapter.complete(_request())
            await adapter.complete(_request())

        used = [c.kwargs["params"]["key"] for c in mock_client.post.call_args_list]
        assert used == ["key-a", "key-b"]

    @pytest.mark.asyncio
    async def test_blocked_prompt_is_malformed(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger(["gem-key-1"]))
        blocked = _make_httpx_response(200, json_data={"promptFeedback": {"blockReason": "SAFETY"}})

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, blocked)
            with pytest.raises(MalformedUpstreamResponse, match="SAFETY"):
                await adapter.complete(_request())

    @pytest.mark.asyncio
    async def test_candidate_without_text_is_malformed(self):
        adapter = GeminiAdapter(ledger=KeyRotationLedger(["gem-key-1"]))
        empty = _make_httpx_response(200, json_data={"candidates": [{"finishReason": "SAFETY"}]})

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, empty)
            with pytest.raises(MalformedUpstreamResponse):
                await adapter.complete(_request())


# ==========================================================================
# Test: HTTP error mapping (shared by all adapters)
# ==========================================================================


class TestErrorMapping:
    @pytest.fixture
    def adapter(self):
        return GroqAdapter(api_key="gsk-test")

    @pytest.mark.asyncio
    async def test_429_rate_limited(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(429, text="rate limited"))
            with pytest.raises(RateLimited) as exc_info:
                await adapter.complete(_request())

        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "Groq"
        assert exc_info.value.reason == "rate_limited"

    @pytest.mark.asyncio
    async def test_403_authorization_failed(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(403, text="forbidden"))
            with pytest.raises(AuthorizationFailed):
                await adapter.complete(_request())

    @pytest.mark.asyncio
    async def test_500_upstream_error_with_excerpt(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(500, text="E" * 1000))
            with pytest.raises(UpstreamError) as exc_info:
                await adapter.complete(_request())

        err = exc_info.value
        assert err.status_code == 500
        assert err.transient is True
        assert "500" in str(err)
        assert "E" * 200 in str(err)
        assert "E" * 201 not in str(err)

    @pytest.mark.asyncio
    async def test_400_is_not_transient(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(400, text="bad request"))
            with pytest.raises(UpstreamError) as exc_info:
                await adapter.complete(_request())

        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_httpx_timeout(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.ReadTimeout("timeout"))
            with pytest.raises(ProviderTimeout):
                await adapter.complete(_request())

    @pytest.mark.asyncio
    async def test_deadline_cancels_slow_call(self):
        adapter = GroqAdapter(api_key="gsk-test", timeout=0.05)

        async def _slow_post(*args, **kwargs):
            await asyncio.sleep(5)

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, side_effect=_slow_post)
            with pytest.raises(ProviderTimeout):
                await adapter.complete(_request())

        mock_client.__aexit__.assert_awaited()

    @pytest.mark.asyncio
    async def test_transport_error(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.ConnectError("connection refused"))
            with pytest.raises(UpstreamError) as exc_info:
                await adapter.complete(_request())

        assert exc_info.value.status_code == 0
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_invalid_json(self, adapter):
        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, text="<html>oops</html>"))
            with pytest.raises(MalformedUpstreamResponse):
                await adapter.complete(_request())


# ==========================================================================
# Test: Cohere
# ==========================================================================


class TestCohereAdapter:
    @pytest.mark.asyncio
    async def test_payload_shape(self):
        adapter = CohereAdapter(api_key="co-test")

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"text": "Answer"}))
            result = await adapter.complete(_request(conversation_history=HISTORY))

        assert result.text == "Answer"
        call = mock_client.post.call_args
        assert call.args[0] == "https://api.cohere.ai/v1/chat"
        assert call.kwargs["headers"]["Authorization"] == "Bearer co-test"
        payload = call.kwargs["json"]
        assert payload["model"] == "command-r-08-2024"
        assert payload["preamble"] == "You are a JEE tutor."
        assert [m["role"] for m in payload["chat_history"]] == ["USER", "CHATBOT"]
        assert payload["message"].startswith("Find the torque on the rod.")
        assert "CONVERSATION CONTEXT" in payload["message"]

    @pytest.mark.asyncio
    async def test_no_history_omits_chat_history(self):
        adapter = CohereAdapter(api_key="co-test")

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"text": "Answer"}))
            await adapter.complete(_request())

        payload = mock_client.post.call_args.kwargs["json"]
        assert "chat_history" not in payload
        assert "CONVERSATION CONTEXT" not in payload["message"]

    @pytest.mark.asyncio
    async def test_image_ocr_text_in_message(self):
        adapter = CohereAdapter(api_key="co-test")
        image = AttachedFile(
            name="q.png", mime_type="image/png", base64_content=base64.b64encode(b"png").decode(), size_bytes=2048
        )

        with (
            patch("app.tutor.preprocessor._run_ocr", return_value="A block of mass 2 kg slides down"),
            patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls,
        ):
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"text": "Answer"}))
            await adapter.complete(_request(attached_files=(image,)))

        message = mock_client.post.call_args.kwargs["json"]["message"]
        assert "ATTACHED FILES ANALYSIS" in message
        assert "--- FILE: q.png (image/png, 2KB) ---" in message
        assert "A block of mass 2 kg slides down" in message

    @pytest.mark.asyncio
    async def test_response_field_fallbacks(self):
        adapter = CohereAdapter(api_key="co-test")
        assert adapter.parse_response({"message": "from message"}) == "from message"
        assert adapter.parse_response({"response": "from response"}) == "from response"
        with pytest.raises(MalformedUpstreamResponse):
            adapter.parse_response({"generation_id": "abc"})


# ==========================================================================
# Test: Groq
# ==========================================================================


class TestGroqAdapter:
    @pytest.mark.asyncio
    async def test_success(self):
        adapter = GroqAdapter(api_key="gsk-test")

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_openai_response())
            result = await adapter.complete(_request(conversation_history=HISTORY))

        assert result.text == "The answer is 42."
        assert result.model_id == "llama-3.1-8b-instant"
        call = mock_client.post.call_args
        assert call.args[0] == "https://api.groq.com/openai/v1/chat/completions"
        messages = call.kwargs["json"]["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"].startswith("Find the torque on the rod.")

    @pytest.mark.asyncio
    async def test_missing_choices_is_malformed(self):
        adapter = GroqAdapter(api_key="gsk-test")

        with patch("app.tutor.adapters.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"choices": []}))
            with pytest.raises(MalformedUpstreamResponse):
                await adapter.complete(_request())

    def test_capabilities_text_only(self):
        caps = GroqAdapter.capabilities
        assert caps.supports_files is False
        assert caps.supports_images is False
        assert caps.supports_history is True


# ==========================================================================
# Test: Adapter registry
# ==========================================================================


class TestAdapterRegistry:
    def test_all_kinds_registered(self):
        assert set(ADAPTER_REGISTRY) == set(ProviderKind)

    def test_get_adapter(self):
        adapter = get_adapter(ProviderKind.GROQ, api_key="gsk-test", timeout=5)
        assert isinstance(adapter, GroqAdapter)
        assert adapter.timeout == 5

    def test_default_timeouts(self):
        assert GeminiAdapter(ledger=KeyRotationLedger([])).timeout == 60
        assert CohereAdapter(api_key="x").timeout == 30
        assert GroqAdapter(api_key="x").timeout == 15
