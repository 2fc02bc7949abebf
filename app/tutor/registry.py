"""Provider Registry: ordered set of configured providers.

Built once at startup from settings. A provider is included only when its
credential(s) are present; the order of iteration is the dispatch order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

from app.tutor.adapters import BaseProviderAdapter, get_adapter
from app.tutor.key_rotation import KeyRotationLedger
from app.tutor.preprocessor import FilePreprocessor
from app.tutor.types import ProviderDescriptor, ProviderKind

logger = logging.getLogger(__name__)

DEFAULT_PRIORITIES: dict[ProviderKind, int] = {
    ProviderKind.GEMINI: 1,
    ProviderKind.COHERE: 2,
    ProviderKind.GROQ: 3,
}


def describe(adapter: BaseProviderAdapter, priority: int) -> ProviderDescriptor:
    """Wrap an adapter in an immutable descriptor."""
    return ProviderDescriptor(
        name=adapter.name,
        kind=adapter.kind,
        priority=priority,
        capabilities=adapter.capabilities,
        model_id=adapter.model,
        adapter=adapter,
        speed=adapter.speed,
    )


class ProviderRegistry:
    """Immutable, priority-ordered list of provider descriptors.

    Usage:
        registry = ProviderRegistry.from_settings(settings)
        for descriptor in registry:
            ...
    """

    def __init__(self, descriptors: Sequence[ProviderDescriptor] = (), ledger: KeyRotationLedger | None = None):
        # sorted() is stable, so equal priorities keep insertion order
        self._descriptors: tuple[ProviderDescriptor, ...] = tuple(sorted(descriptors, key=lambda d: d.priority))
        self.ledger = ledger

    @classmethod
    def from_settings(
        cls,
        settings,
        ledger: KeyRotationLedger | None = None,
        preprocessor: FilePreprocessor | None = None,
    ) -> ProviderRegistry:
        preprocessor = preprocessor or FilePreprocessor.from_settings(settings)
        if ledger is None:
            ledger = KeyRotationLedger(
                settings.gemini_api_keys,
                quota=settings.key_quota_per_window,
                window_seconds=settings.key_window_seconds,
            )

        descriptors: list[ProviderDescriptor] = []

        if len(ledger):
            adapter = get_adapter(
                ProviderKind.GEMINI,
                ledger=ledger,
                model=settings.gemini_model,
                timeout=settings.gemini_timeout_seconds,
                preprocessor=preprocessor,
            )
            descriptors.append(describe(adapter, DEFAULT_PRIORITIES[ProviderKind.GEMINI]))

        for kind, api_key, model, timeout in (
            (ProviderKind.COHERE, settings.cohere_api_key, settings.cohere_model, settings.cohere_timeout_seconds),
            (ProviderKind.GROQ, settings.groq_api_key, settings.groq_model, settings.groq_timeout_seconds),
        ):
            api_key = (api_key or "").strip()
            if not api_key:
                continue
            adapter = get_adapter(kind, api_key=api_key, model=model, timeout=timeout, preprocessor=preprocessor)
            descriptors.append(describe(adapter, DEFAULT_PRIORITIES[kind]))

        registry = cls(descriptors, ledger=ledger)
        if registry:
            logger.info("AI providers initialized: %s", ", ".join(d.name for d in registry))
        else:
            logger.warning("No AI providers configured; guidance will use the local fallback")
        return registry

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def descriptors(self) -> tuple[ProviderDescriptor, ...]:
        return self._descriptors

    def get(self, name: str) -> ProviderDescriptor | None:
        """Find a provider by display name or kind, case-insensitively."""
        wanted = (name or "").strip().lower()
        for d in self._descriptors:
            if wanted in (d.name.lower(), d.kind.value):
                return d
        return None

    def is_configured(self, kind: ProviderKind) -> bool:
        return any(d.kind == kind for d in self._descriptors)

    def to_list(self) -> list[dict]:
        return [d.to_dict() for d in self._descriptors]

