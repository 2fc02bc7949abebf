from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.api_tokens = ""

from app.main import app  # noqa: E402
from app.tutor.adapters import BaseProviderAdapter  # noqa: E402
from app.tutor.registry import DEFAULT_PRIORITIES, ProviderRegistry, describe  # noqa: E402
from app.tutor.service import TutorService  # noqa: E402
from app.tutor.types import CompletionRequest, ProviderCapabilities, ProviderKind  # noqa: E402


class ScriptedAdapter(BaseProviderAdapter):
    """Adapter that replays scripted outcomes instead of calling the network.

    Each outcome is either response text or an exception to raise. The last
    outcome repeats once the script runs out.
    """

    def __init__(
        self,
        kind: ProviderKind,
        outcomes: list,
        capabilities: ProviderCapabilities | None = None,
        name: str = "",
    ):
        super().__init__(api_key="test-key", model=f"{kind.value}-test-model")
        self.kind = kind
        self.display_name = name or kind.value.title()
        if capabilities is not None:
            self.capabilities = capabilities
        self.outcomes = list(outcomes)
        self.requests: list[CompletionRequest] = []

    async def _complete(self, request: CompletionRequest) -> str:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def make_provider():
    """Factory: build a ProviderDescriptor around a ScriptedAdapter."""

    def _make(
        kind: ProviderKind,
        *outcomes,
        priority: int | None = None,
        capabilities: ProviderCapabilities | None = None,
        name: str = "",
    ):
        adapter = ScriptedAdapter(kind, list(outcomes) or ["ok"], capabilities=capabilities, name=name)
        return describe(adapter, priority if priority is not None else DEFAULT_PRIORITIES[kind])

    return _make


@pytest.fixture
def empty_registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
async def client(empty_registry: ProviderRegistry) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan, so wire app.state by hand
    app.state.provider_registry = empty_registry
    app.state.tutor_service = TutorService(empty_registry)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
