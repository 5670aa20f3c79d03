"""Structured JSON logging via structlog.

Configures structlog once at application startup. All subsequent calls to
`structlog.get_logger()` (or `logging.getLogger()` via the stdlib bridge)
will use this configuration.

Renderer selection:
  debug=True: `ConsoleRenderer` with colours for local development.
  debug=False: `JSONRenderer` for machine-parseable logs in production.

ContextVar injection:
  `request_id` comes from `checkrun_webhook.core.middleware` and
  `delivery_id` (GitHub's X-GitHub-Delivery header) is bound by the
  webhook route, so every line logged while handling one delivery can be
  matched to the entry in the GitHub App's "Recent deliveries" page.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

from checkrun_webhook.core.middleware import get_request_id

_HANDLER_NAME = "checkrun_webhook.stdout"

_delivery_id_var: ContextVar[str] = ContextVar("delivery_id", default="")


def get_delivery_id() -> str:
    """Return the current GitHub delivery ID, or empty string if not set."""
    return _delivery_id_var.get()


def bind_delivery_id(delivery_id: str) -> None:
    _delivery_id_var.set(delivery_id)


def _inject_context_vars(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: inject request_id and delivery_id from ContextVars."""
    request_id = get_request_id()
    delivery_id = get_delivery_id()
    if request_id:
        event_dict["request_id"] = request_id
    if delivery_id:
        event_dict["delivery_id"] = delivery_id
    return event_dict


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog for the application lifetime.

    Call once from `create_app()` before any routers are registered.
    Calling multiple times is safe: structlog is idempotent.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context_vars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging → structlog. Module loggers in this package use
    # `logging.getLogger(__name__)`, so routing them through the same
    # processors is what puts request_id on their lines.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    handler.set_name(_HANDLER_NAME)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
