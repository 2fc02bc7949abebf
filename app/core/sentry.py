"""Sentry error tracking integration.

Initializes Sentry SDK if SENTRY_DSN env variable is set.
Gemini takes its API key as a ``key=`` query parameter, so outgoing URLs in
breadcrumbs and request data are scrubbed before an event leaves the process.
"""

import logging
import re

from app.core.config import settings

logger = logging.getLogger(__name__)

_KEY_PARAM = re.compile(r"((?:^|[?&])key=)[^&\s]+")


def _scrub(value):
    if isinstance(value, str):
        return _KEY_PARAM.sub(r"\1[Filtered]", value)
    return value


def scrub_credentials(event: dict, hint: dict | None = None) -> dict:
    """Sentry ``before_send`` hook: mask provider keys in URLs."""
    for crumb in (event.get("breadcrumbs") or {}).get("values", []):
        data = crumb.get("data") or {}
        for field in ("url", "http.query"):
            if field in data:
                data[field] = _scrub(data[field])

    request = event.get("request") or {}
    for field in ("url", "query_string"):
        if field in request:
            request[field] = _scrub(request[field])
    return event


def init_sentry() -> None:
    """Initialize Sentry if SENTRY_DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_credentials,
        integrations=[FastApiIntegration(transaction_style="endpoint")],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
