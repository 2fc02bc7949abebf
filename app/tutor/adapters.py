"""Provider Adapters: protocol-level handling for each completion provider.

Each adapter translates a CompletionRequest into its provider's HTTP protocol,
sends it under a hard deadline and returns a CompletionResult. Failures are
raised as typed ProviderErrors so the dispatcher can log them and move on.

Provider-specific behaviors:
  - Gemini: key rotation via KeyRotationLedger, conversation flattened into a
    single prompt, images forwarded as inline_data, PDF text extracted
  - Cohere: native chat_history + preamble, images OCR'd into the message
  - Groq: OpenAI-compatible chat completions, text only
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from app.tutor.errors import (
    AuthorizationFailed,
    CredentialExhausted,
    MalformedUpstreamResponse,
    ProviderTimeout,
    RateLimited,
    UpstreamError,
)
from app.tutor.key_rotation import KeyRotationLedger
from app.tutor.preprocessor import FilePreprocessor
from app.tutor.types import (
    AttachmentKind,
    ChatRole,
    CompletionRequest,
    CompletionResult,
    ProcessedAttachment,
    ProviderCapabilities,
    ProviderKind,
)

logger = logging.getLogger(__name__)

CONVERSATION_CONTEXT_NOTE = (
    "CONVERSATION CONTEXT: This is part of an ongoing conversation. Use previous context to "
    "provide better, more personalized responses while solving this specific problem."
)


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters."""

    kind: ProviderKind
    display_name: str = ""
    default_model: str = ""
    default_timeout: float = 30.0
    speed: str = ""
    capabilities: ProviderCapabilities = ProviderCapabilities()

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        timeout: float | None = None,
        preprocessor: FilePreprocessor | None = None,
        **kwargs,
    ):
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout if timeout is not None else self.default_timeout
        self.preprocessor = preprocessor or FilePreprocessor()

    @property
    def name(self) -> str:
        return self.display_name or self.kind.value

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Run one completion and wrap the text in a CompletionResult."""
        start = time.monotonic()
        text = await self._complete(request)
        return CompletionResult(
            text=text,
            provider_name=self.name,
            model_id=self.model,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    @abstractmethod
    async def _complete(self, request: CompletionRequest) -> str:
        """Send the request and return the response text."""
        ...

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST JSON under the adapter's deadline.

        The in-flight call is cancelled when the deadline passes and the
        client is closed on every path.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await asyncio.wait_for(
                    client.post(
                        url,
                        json=payload,
                        params=params,
                        headers={"Content-Type": "application/json", **(headers or {})},
                    ),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProviderTimeout(f"{self.name} timeout after {self.timeout:.0f}s", provider=self.name) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{self.name} transport error: {e}", provider=self.name) from e

        self._raise_for_status(resp)

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedUpstreamResponse(f"{self.name} returned invalid JSON", provider=self.name) from e
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse(f"{self.name} returned a non-object JSON body", provider=self.name)
        return data

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if resp.is_success:
            return
        if status == 429:
            raise RateLimited(f"{self.name} rate limit exceeded", provider=self.name, status_code=status)
        if status == 403:
            raise AuthorizationFailed(
                f"{self.name} API key invalid or quota exceeded", provider=self.name, status_code=status
            )
        raise UpstreamError(
            f"{self.name} API error: {status} - {resp.text[:200]}", provider=self.name, status_code=status
        )

    def _with_context_note(self, request: CompletionRequest, message: str) -> str:
        if request.conversation_history:
            return f"{message}\n\n{CONVERSATION_CONTEXT_NOTE}"
        return message


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI)
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseProviderAdapter):
    """Google Gemini adapter with key rotation and multimodal input."""

    kind = ProviderKind.GEMINI
    display_name = "Gemini"
    default_model = "gemini-2.0-flash"
    default_timeout = 60.0
    speed = "Fast (200+ tokens/sec) - Vision + PDF Support"
    capabilities = ProviderCapabilities(
        supports_files=True,
        supports_images=True,
        supports_pdfs=True,
        supports_history=True,
    )
    api_url_template = "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent"

    def __init__(self, ledger: KeyRotationLedger, **kwargs):
        super().__init__(**kwargs)
        self.ledger = ledger

    async def _complete(self, request: CompletionRequest) -> str:
        api_key = await self.ledger.acquire()
        if api_key is None:
            raise CredentialExhausted("All Gemini API keys exhausted for this window", provider=self.name)

        attachments = await self.preprocessor.process_all(request.attached_files, self.capabilities)
        payload = self.build_payload(request, attachments)
        logger.debug("Sending to Gemini: %d parts", len(payload["contents"][0]["parts"]))

        data = await self._post_json(
            self.api_url_template.format(model=self.model),
            payload,
            params={"key": api_key},
        )
        return self.parse_response(data)

    def build_payload(self, request: CompletionRequest, attachments: list[ProcessedAttachment]) -> dict:
        prompt = ""
        if request.system_prompt:
            prompt += f"{request.system_prompt}\n\n"

        if request.conversation_history:
            prompt += "PREVIOUS CONVERSATION:\n"
            for msg in request.conversation_history:
                if msg.role == ChatRole.USER:
                    prompt += f"User: {msg.content}\n\n"
                elif msg.role == ChatRole.ASSISTANT:
                    prompt += f"Assistant: {msg.content}\n\n"
            prompt += "[End of previous conversation]\n\n"

        prompt += f"User: {request.current_message}\n\n"

        if request.attached_files:
            file_list = ", ".join(f.label for f in request.attached_files)
            prompt += (
                f"ATTACHED FILES: {file_list}\n"
                "IMPORTANT: The user has attached files. Analyze the attached files and answer based on "
                "their content. Do NOT ask the user to provide the files again.\n"
            )

        inline_parts = []
        for item in attachments:
            if item.kind == AttachmentKind.INLINE:
                inline_parts.append({"inline_data": {"mime_type": item.mime_type, "data": item.data}})
            else:
                prompt += f"\n{item.text}\n"

        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}, *inline_parts]}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }

    def parse_response(self, data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason", "")
            if block_reason:
                raise MalformedUpstreamResponse(f"Gemini blocked the prompt: {block_reason}", provider=self.name)
            raise MalformedUpstreamResponse("Invalid response format from Gemini API", provider=self.name)

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text_parts = [p["text"] for p in parts if isinstance(p, dict) and "text" in p]
        if not text_parts:
            finish_reason = candidate.get("finishReason", "")
            raise MalformedUpstreamResponse(
                f"Gemini response has no text (finishReason={finish_reason or 'unknown'})", provider=self.name
            )
        return "".join(text_parts)


# ---------------------------------------------------------------------------
# Cohere Adapter
# ---------------------------------------------------------------------------

_COHERE_DEFAULT_PREAMBLE = "You are an expert JEE/NEET tutor. Provide accurate, step-by-step solutions."


class CohereAdapter(BaseProviderAdapter):
    """Cohere chat adapter. Images are OCR'd into the message text."""

    kind = ProviderKind.COHERE
    display_name = "Cohere"
    default_model = "command-r-08-2024"
    default_timeout = 30.0
    speed = "Very Fast (300+ tokens/sec)"
    capabilities = ProviderCapabilities(
        supports_files=True,
        supports_images=False,
        supports_pdfs=True,
        supports_history=True,
    )
    api_url = "https://api.cohere.ai/v1/chat"

    async def _complete(self, request: CompletionRequest) -> str:
        attachments = await self.preprocessor.process_all(request.attached_files, self.capabilities)
        payload = self.build_payload(request, attachments)
        data = await self._post_json(
            self.api_url,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return self.parse_response(data)

    def build_payload(self, request: CompletionRequest, attachments: list[ProcessedAttachment]) -> dict:
        message = request.current_message
        if attachments:
            message += self._file_context(request, attachments)
        message = self._with_context_note(request, message)

        payload: dict[str, Any] = {
            "model": self.model,
            "message": message,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": False,
            "preamble": request.system_prompt or _COHERE_DEFAULT_PREAMBLE,
        }

        history = [
            {"role": "USER" if m.role == ChatRole.USER else "CHATBOT", "message": m.content}
            for m in request.conversation_history
            if m.role in (ChatRole.USER, ChatRole.ASSISTANT)
        ]
        if history:
            payload["chat_history"] = history
        return payload

    @staticmethod
    def _file_context(request: CompletionRequest, attachments: list[ProcessedAttachment]) -> str:
        sizes = {f.name: f.size_bytes for f in request.attached_files}
        types = {f.name: f.mime_type for f in request.attached_files}
        context = "\n\nATTACHED FILES ANALYSIS:\n"
        for item in attachments:
            size_kb = round(sizes.get(item.file_name, 0) / 1024)
            context += f"\n--- FILE: {item.file_name} ({types.get(item.file_name, 'unknown')}, {size_kb}KB) ---\n"
            context += f"{item.text}\n"

        if all(item.is_degraded for item in attachments):
            context += (
                "\nIMPORTANT: The uploaded file(s) could not be processed directly. Still help the user by "
                "asking them to describe the content, paste any text, equations or problem statements, and "
                "describe any diagrams, graphs or images.\n"
            )
        return context

    def parse_response(self, data: dict) -> str:
        for field_name in ("text", "message", "response"):
            value = data.get(field_name)
            if isinstance(value, str) and value:
                return value
        raise MalformedUpstreamResponse("Invalid response format from Cohere API", provider=self.name)


# ---------------------------------------------------------------------------
# Groq Adapter (OpenAI-compatible)
# ---------------------------------------------------------------------------


class GroqAdapter(BaseProviderAdapter):
    """Groq adapter: OpenAI chat completions, text only."""

    kind = ProviderKind.GROQ
    display_name = "Groq"
    default_model = "llama-3.1-8b-instant"
    default_timeout = 15.0
    speed = "Ultra Fast (500+ tokens/sec)"
    capabilities = ProviderCapabilities(
        supports_files=False,
        supports_images=False,
        supports_pdfs=False,
        supports_history=True,
    )
    api_url = "https://api.groq.com/openai/v1/chat/completions"

    async def _complete(self, request: CompletionRequest) -> str:
        payload = self.build_payload(request)
        data = await self._post_json(
            self.api_url,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return self.parse_response(data)

    def build_payload(self, request: CompletionRequest) -> dict:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend({"role": m.role.value, "content": m.content} for m in request.conversation_history)
        messages.append({"role": "user", "content": self._with_context_note(request, request.current_message)})

        return {
            "model": self.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": False,
        }

    def parse_response(self, data: dict) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedUpstreamResponse("Invalid response format from Groq API", provider=self.name) from e
        if not isinstance(content, str):
            raise MalformedUpstreamResponse("Groq response content is not text", provider=self.name)
        return content


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[ProviderKind, type[BaseProviderAdapter]] = {
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.COHERE: CohereAdapter,
    ProviderKind.GROQ: GroqAdapter,
}


def get_adapter(kind: ProviderKind, **kwargs) -> BaseProviderAdapter:
    """Factory: get the appropriate adapter for a provider kind."""
    cls = ADAPTER_REGISTRY.get(kind)
    if cls is None:
        raise ValueError(f"No adapter registered for provider: {kind}")
    return cls(**kwargs)
