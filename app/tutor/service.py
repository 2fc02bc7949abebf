"""Tutor service: inbound guidance, status snapshot and provider probes."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import datetime, timezone

from app.core.metrics import GUIDANCE_SERVED
from app.tutor.dispatcher import FallbackDispatcher
from app.tutor.errors import AllProvidersExhausted, ProviderError
from app.tutor.fallback import LocalFallbackGenerator
from app.tutor.prompts import analyze_complexity, build_system_prompt, detect_subject
from app.tutor.registry import ProviderRegistry
from app.tutor.types import (
    AttachedFile,
    ChatMessage,
    CompletionRequest,
    GuidanceResult,
    ProviderKind,
)

logger = logging.getLogger(__name__)

DEFAULT_FILES_MESSAGE = "Please analyze the attached files."
PROBE_PROMPT = "Say 'Hello from {name}!' in exactly those words."


class TutorService:
    """Answers tutoring queries through the provider chain.

    ``get_guidance`` never raises for provider failures: when nothing answers
    it returns the local fallback text with ``provider_name == "fallback"``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        dispatcher: FallbackDispatcher | None = None,
        fallback: LocalFallbackGenerator | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ):
        self.registry = registry
        self.dispatcher = dispatcher or FallbackDispatcher(registry)
        self.fallback = fallback or LocalFallbackGenerator()
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings, registry: ProviderRegistry | None = None) -> TutorService:
        registry = registry or ProviderRegistry.from_settings(settings)
        return cls(
            registry,
            dispatcher=FallbackDispatcher(registry, retries=settings.adapter_retries),
            temperature=settings.guidance_temperature,
            max_tokens=settings.guidance_max_tokens,
        )

    async def get_guidance(
        self,
        query: str,
        files: Sequence[AttachedFile] = (),
        history: Sequence[ChatMessage] = (),
        preferred_provider: str | None = None,
    ) -> GuidanceResult:
        query = query or ""
        subject = detect_subject(query)
        complexity = analyze_complexity(query)

        request = CompletionRequest(
            system_prompt=build_system_prompt(complexity, subject),
            conversation_history=tuple(history),
            current_message=query or DEFAULT_FILES_MESSAGE,
            attached_files=tuple(files),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        logger.info(
            "Guidance request: subject=%s complexity=%s history=%d files=%d providers=%d",
            subject,
            complexity,
            len(history),
            len(files),
            len(self.registry),
        )

        start = time.monotonic()
        try:
            if preferred_provider and preferred_provider.lower() != "auto":
                completion = await self.dispatcher.dispatch_preferred(request, preferred_provider)
            else:
                completion = await self.dispatcher.dispatch(request)
        except AllProvidersExhausted as e:
            logger.warning("Using local fallback guidance: %s", e)
            text = self.fallback.generate(query, subject=subject)
            GUIDANCE_SERVED.labels(provider="fallback").inc()
            return GuidanceResult(
                guidance_text=text,
                provider_name="fallback",
                model_name=self.fallback.model,
                elapsed_ms=int((time.monotonic() - start) * 1000),
                speed=self.fallback.speed,
                detected_subject=subject,
                problem_complexity=complexity,
                conversation_length=len(history),
                attempts=e.attempts,
            )

        descriptor = self.registry.get(completion.provider_name)
        GUIDANCE_SERVED.labels(provider=descriptor.kind.value if descriptor else completion.provider_name).inc()
        return GuidanceResult(
            guidance_text=completion.text,
            provider_name=completion.provider_name,
            model_name=completion.model_id,
            elapsed_ms=completion.elapsed_ms,
            speed=descriptor.speed if descriptor else "",
            detected_subject=subject,
            problem_complexity=complexity,
            conversation_length=len(history),
            attempts=completion.attempts,
        )

    def get_status(self) -> dict:
        """Snapshot of configured providers and the key rotation ledger."""
        ledger = self.registry.ledger
        return {
            "providers": self.registry.to_list(),
            "total_providers": len(self.registry),
            "gemini_configured": self.registry.is_configured(ProviderKind.GEMINI),
            "cohere_configured": self.registry.is_configured(ProviderKind.COHERE),
            "groq_configured": self.registry.is_configured(ProviderKind.GROQ),
            "gemini_key_rotation": ledger.get_stats() if ledger is not None and len(ledger) else None,
            "fallback_mode": len(self.registry) == 0,
            "server_time": datetime.now(timezone.utc).isoformat(),
        }

    async def probe_providers(self) -> list[dict]:
        """Send a tiny prompt to every configured provider, bypassing fallback."""
        results = []
        for descriptor in self.registry:
            request = CompletionRequest(
                current_message=PROBE_PROMPT.format(name=descriptor.name),
                temperature=0.1,
                max_tokens=50,
            )
            start = time.monotonic()
            try:
                completion = await descriptor.adapter.complete(request)
            except Exception as e:
                if not isinstance(e, ProviderError):
                    logger.exception("Unexpected error probing %s", descriptor.name)
                logger.warning("Probe of %s failed: %s", descriptor.name, e)
                results.append(
                    {
                        "name": descriptor.name,
                        "model": descriptor.model_id,
                        "status": "failed",
                        "error": str(e),
                        "reason": getattr(e, "reason", "upstream_error"),
                        "response_time_ms": int((time.monotonic() - start) * 1000),
                    }
                )
                continue
            results.append(
                {
                    "name": descriptor.name,
                    "model": descriptor.model_id,
                    "status": "success",
                    "response": completion.text,
                    "response_time_ms": completion.elapsed_ms,
                }
            )
        return results
