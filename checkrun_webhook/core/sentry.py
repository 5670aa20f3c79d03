"""Sentry SDK integration for the check-run webhook service.

Captures exceptions and performance traces without leaking secrets.

Key decisions:
  - `send_default_pii=False`: no caller data sent by default.
  - `before_send` hook scrubs any event field whose key contains a
    sensitive keyword (private_key, secret, password, token, dsn,
    signature). Webhook secrets and App private keys live in the
    environment, and an accidental `extra=` must not ship them.
  - `traces_sample_rate=0.1`: 10% of transactions sampled.
  - No-op when SENTRY_DSN is empty so local and CI runs never need it.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.redis import RedisIntegration

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = frozenset(
    {"private_key", "secret", "password", "token", "dsn", "signature", "authorization"}
)


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """Sentry before_send hook: redact values for sensitive keys.

    Walks the event's `extra`, `request.data` and `request.headers` dicts
    and replaces the values of any key matching a sensitive keyword with
    "[REDACTED]".
    """
    _scrub_dict(event.get("extra", {}))
    request = event.get("request", {})
    for section in ("data", "headers"):
        value = request.get(section, {})
        if isinstance(value, dict):
            _scrub_dict(value)
    return event


def _scrub_dict(d: dict[str, Any]) -> None:
    """Recursively redact sensitive values in-place."""
    for key in list(d.keys()):
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            d[key] = "[REDACTED]"
        elif isinstance(d[key], dict):
            _scrub_dict(d[key])


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialise the Sentry SDK.

    Called from `create_app()`. If `dsn` is empty, this is a no-op.
    """
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured: skipping initialisation")
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(),
            HttpxIntegration(),
            RedisIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
