"""Error taxonomy for the AI tutoring router.

Every per-provider failure derives from ``ProviderError`` and carries a short
``reason`` used as a log field and a metric label. The dispatcher catches all
of them; only ``AllProvidersExhausted`` reaches its caller.
"""

from __future__ import annotations

from app.tutor.types import ProviderAttempt


class ProviderError(Exception):
    """Base class for a failed completion attempt against one provider."""

    reason = "upstream_error"
    transient = False  # Eligible for the optional in-adapter retry

    def __init__(self, message: str, provider: str = "", status_code: int = 0):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class CredentialExhausted(ProviderError):
    """Every rotated credential is blocked for the current window."""

    reason = "credential_exhausted"


class RateLimited(ProviderError):
    """Upstream answered HTTP 429."""

    reason = "rate_limited"


class AuthorizationFailed(ProviderError):
    """Upstream answered HTTP 403, most likely a broken credential."""

    reason = "authorization_failed"


class UpstreamError(ProviderError):
    """Any other non-success status or transport failure."""

    reason = "upstream_error"

    def __init__(self, message: str, provider: str = "", status_code: int = 0):
        super().__init__(message, provider=provider, status_code=status_code)
        # Transport errors (no status) and 5xx are worth a retry
        self.transient = status_code == 0 or status_code >= 500


class MalformedUpstreamResponse(ProviderError):
    """Success status but the envelope lacks the expected fields."""

    reason = "malformed_response"


class ProviderTimeout(ProviderError):
    """The call exceeded the provider's deadline and was cancelled."""

    reason = "timeout"
    transient = True


class PreprocessingDegraded(Exception):
    """An attachment could not be fully processed.

    Never escapes the preprocessor; it is turned into a note in the prompt.
    """


class AllProvidersExhausted(Exception):
    """Every configured provider failed (or none is configured).

    ``last_error`` is the failure of the last provider tried.
    """

    def __init__(self, last_error: ProviderError | None = None, attempts: list[ProviderAttempt] | None = None):
        self.last_error = last_error
        self.attempts = attempts or []
        if last_error is None:
            message = "No AI providers available"
        else:
            message = f"All AI providers failed; last: {last_error.provider or 'unknown'}: {last_error}"
        super().__init__(message)

    @property
    def reason(self) -> str:
        return self.last_error.reason if self.last_error else "no_providers"
