"""Fallback Dispatcher: tries providers in priority order until one answers.

State per dispatch call:
    PENDING -> TRYING(i) -> SUCCESS
                         -> TRYING(i+1) -> ... -> ALL_FAILED

The first success wins; providers are never raced or aggregated. Every
per-provider failure is logged, counted and swallowed. Only exhaustion of the
whole chain surfaces, as AllProvidersExhausted carrying the last failure.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import replace

from app.core.metrics import ALL_EXHAUSTED, PROVIDER_ATTEMPTS, PROVIDER_FAILURES, PROVIDER_LATENCY
from app.tutor.errors import AllProvidersExhausted, AuthorizationFailed, ProviderError, UpstreamError
from app.tutor.preprocessor import detect_kind
from app.tutor.registry import ProviderRegistry
from app.tutor.types import (
    AttachedFile,
    CompletionRequest,
    CompletionResult,
    DispatchState,
    ProviderAttempt,
    ProviderDescriptor,
)

logger = logging.getLogger(__name__)


def attachment_note(request: CompletionRequest) -> str:
    """Note telling a text-only model which files the user uploaded."""
    listing = ", ".join(f.label for f in request.attached_files)
    return (
        f"[Note: User uploaded files: {listing}. Please acknowledge that you cannot process these files "
        "and ask the user to describe the content instead.]"
    )


async def _flatten_images(
    descriptor: ProviderDescriptor,
    request: CompletionRequest,
    images: list[AttachedFile],
) -> CompletionRequest:
    preprocessor = descriptor.adapter.preprocessor
    fragments = [(await preprocessor.process(f, descriptor.capabilities)).text for f in images]
    logger.info("%s has no vision; sending %d image(s) as OCR text", descriptor.name, len(images))
    message = "\n\n".join([request.current_message, *fragments])
    remaining = tuple(f for f in request.attached_files if f not in images)
    return replace(request, attached_files=remaining, current_message=message)


class FallbackDispatcher:
    """Ordered provider fallback over a ProviderRegistry.

    ``retries`` adds extra attempts on the same provider for transient
    failures only (timeouts, transport errors, 5xx). The default of 0 means
    exactly one attempt per provider per dispatch.
    """

    def __init__(self, registry: ProviderRegistry, retries: int = 0):
        self.registry = registry
        self.retries = max(0, retries)

    @staticmethod
    async def prepare_request(descriptor: ProviderDescriptor, request: CompletionRequest) -> CompletionRequest:
        """Shape the request to what the provider can accept.

        Providers without file support get a note instead of the files.
        File-capable providers without vision get images flattened into the
        message as OCR text, so they never receive an image attachment.
        """
        caps = descriptor.capabilities
        if request.attached_files and not caps.supports_files:
            logger.info(
                "%s does not support files; sending %d attachment(s) as a note",
                descriptor.name,
                len(request.attached_files),
            )
            request = request.without_attachments(attachment_note(request))
        elif not caps.supports_images:
            images = [f for f in request.attached_files if detect_kind(f) == "image"]
            if images:
                request = await _flatten_images(descriptor, request, images)
        if request.conversation_history and not caps.supports_history:
            request = replace(request, conversation_history=())
        return request

    async def dispatch(self, request: CompletionRequest) -> CompletionResult:
        """Try every configured provider in priority order."""
        return await self._run(self.registry.descriptors, request)

    async def dispatch_preferred(self, request: CompletionRequest, name: str) -> CompletionResult:
        """Try the named provider first, then the full dispatch chain.

        An unknown name falls straight through to ``dispatch``.
        """
        preferred = self.registry.get(name)
        if preferred is None:
            logger.warning("Preferred provider %r is not configured; using automatic selection", name)
            return await self.dispatch(request)

        attempts: list[ProviderAttempt] = []
        try:
            return await self._attempt(preferred, request, attempts)
        except ProviderError as e:
            logger.info("Selected provider %s failed; falling back to automatic selection", preferred.name)
            return await self._run(self.registry.descriptors, request, attempts=attempts, last_error=e)

    async def _run(
        self,
        descriptors: Sequence[ProviderDescriptor],
        request: CompletionRequest,
        attempts: list[ProviderAttempt] | None = None,
        last_error: ProviderError | None = None,
    ) -> CompletionResult:
        attempts = attempts if attempts is not None else []
        state = DispatchState.PENDING

        for index, descriptor in enumerate(descriptors):
            state = DispatchState.TRYING
            logger.debug("Dispatch %s(%d): %s", state.value, index, descriptor.name)
            try:
                result = await self._attempt(descriptor, request, attempts)
            except ProviderError as e:
                last_error = e
                continue
            state = DispatchState.SUCCESS
            logger.debug("Dispatch %s via %s", state.value, descriptor.name)
            return result

        state = DispatchState.ALL_FAILED
        logger.debug("Dispatch %s after %d attempt(s)", state.value, len(attempts))
        ALL_EXHAUSTED.inc()
        logger.error(
            "All AI providers failed (%d attempt(s))",
            len(attempts),
            extra={
                "event": "all_exhausted",
                "reason": last_error.reason if last_error else "no_providers",
                "attempt": len(attempts),
            },
        )
        raise AllProvidersExhausted(last_error, attempts) from last_error

    async def _attempt(
        self,
        descriptor: ProviderDescriptor,
        request: CompletionRequest,
        attempts: list[ProviderAttempt],
    ) -> CompletionResult:
        """Call one provider, with optional retries on transient errors."""
        prepared = await self.prepare_request(descriptor, request)
        name = descriptor.name
        label = descriptor.kind.value

        for attempt in range(self.retries + 1):
            PROVIDER_ATTEMPTS.labels(provider=label).inc()
            logger.info(
                "Trying %s (%s)",
                name,
                descriptor.model_id,
                extra={"event": "provider_attempt", "provider": name, "attempt": attempt + 1},
            )
            start = time.monotonic()
            try:
                result = await descriptor.adapter.complete(prepared)
            except Exception as e:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                error = self._as_provider_error(e, name)
                attempts.append(ProviderAttempt(name, error.reason, str(error), elapsed_ms))
                PROVIDER_FAILURES.labels(provider=label, reason=error.reason).inc()
                logger.log(
                    logging.ERROR if isinstance(error, AuthorizationFailed) else logging.WARNING,
                    "%s failed: %s",
                    name,
                    error,
                    extra={
                        "event": "provider_failure",
                        "provider": name,
                        "reason": error.reason,
                        "elapsed_ms": elapsed_ms,
                        "attempt": attempt + 1,
                    },
                )
                if error.transient and attempt < self.retries:
                    continue
                if error is e:
                    raise
                raise error from e

            PROVIDER_LATENCY.labels(provider=label).observe(result.elapsed_ms / 1000)
            logger.info(
                "%s responded in %dms",
                name,
                result.elapsed_ms,
                extra={
                    "event": "provider_success",
                    "provider": name,
                    "elapsed_ms": result.elapsed_ms,
                    "attempt": attempt + 1,
                },
            )
            result.attempts = list(attempts)
            return result

        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _as_provider_error(exc: Exception, provider: str) -> ProviderError:
        if isinstance(exc, ProviderError):
            if not exc.provider:
                exc.provider = provider
            return exc
        logger.exception("Unexpected error from %s", provider)
        return UpstreamError(f"{provider} unexpected error: {exc}", provider=provider)
