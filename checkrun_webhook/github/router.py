"""GitHub webhook and check-run report endpoints.

The webhook endpoint is public (no auth dependency) but verifies the
X-Hub-Signature-256 header against every configured App secret before
anything else happens.

The report endpoint is called from CI jobs. The owner segment of the path
picks the GitHub App credentials; when INTERNAL_APP_SECRET is set the call
must also carry it as a bearer token.

Each POST builds a tagged request (WebhookDelivery / ReportRequest) once
and hands it to the matching flow in ``checkrun_webhook.github.service``.
Flow results come back as plain-text responses.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Request
from fastapi.responses import PlainTextResponse

from checkrun_webhook.core.circuit_breaker import CircuitBreaker, get_circuit_breaker
from checkrun_webhook.core.config import Settings, get_settings
from checkrun_webhook.core.errors import OrchestratorError
from checkrun_webhook.core.limiter import limiter
from checkrun_webhook.core.logging import bind_delivery_id
from checkrun_webhook.github.credentials import CredentialRegistry, load_credential_registry
from checkrun_webhook.github.schemas import ReportReachabilityResponse, RequiredChecksSummary
from checkrun_webhook.github.service import (
    Outcome,
    ReportRequest,
    WebhookDelivery,
    initialize_check_runs,
    report_check_run,
    summarize_required_checks,
)
from checkrun_webhook.idempotency.store import IdempotencyStore, get_idempotency_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/github-webhook", tags=["github"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_credential_registry(
    settings: Settings = Depends(get_settings),
) -> CredentialRegistry:
    return load_credential_registry(settings)


def get_store(settings: Settings = Depends(get_settings)) -> IdempotencyStore:
    return get_idempotency_store(settings)


def get_github_breaker(settings: Settings = Depends(get_settings)) -> CircuitBreaker:
    return get_circuit_breaker(
        "github",
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout=settings.circuit_recovery_seconds,
    )


def _webhook_rate_limit() -> str:
    return get_settings().webhook_rate_limit


def _to_response(outcome: Outcome) -> PlainTextResponse:
    return PlainTextResponse(outcome.message, status_code=outcome.status_code)


# ---------------------------------------------------------------------------
# Webhooks (public, signature-verified)
# ---------------------------------------------------------------------------


@router.post("", response_class=PlainTextResponse)
@limiter.limit(_webhook_rate_limit)
async def handle_webhook(
    request: Request,
    x_hub_signature_256: str = Header(default=""),
    x_github_event: str = Header(default=""),
    x_github_delivery: str = Header(default=""),
    settings: Settings = Depends(get_settings),
    registry: CredentialRegistry = Depends(get_credential_registry),
    store: IdempotencyStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_github_breaker),
) -> PlainTextResponse:
    """Handle a GitHub App delivery.

    Only ``check_suite`` with action ``requested`` does work: it queues
    one check run per configured name for the suite's head commit. Every
    other signed delivery is acknowledged with 200 and ignored.
    """
    if x_github_delivery:
        bind_delivery_id(x_github_delivery)

    # Signature is computed over the raw bytes, so never re-serialise.
    body = await request.body()
    delivery = WebhookDelivery(
        event=x_github_event,
        signature=x_hub_signature_256,
        body=body,
        delivery_id=x_github_delivery,
    )
    outcome = await initialize_check_runs(delivery, registry, store, settings, breaker)
    return _to_response(outcome)


# ---------------------------------------------------------------------------
# Reports (called from CI)
# ---------------------------------------------------------------------------


@router.get("/report", response_model=ReportReachabilityResponse)
async def report_reachability() -> ReportReachabilityResponse:
    """Reachability check for CI before it starts reporting."""
    return ReportReachabilityResponse(
        message="GitHub webhook report endpoint is accessible",
        timestamp=datetime.now(timezone.utc).isoformat(),
        status="ready",
    )


@router.post("/{owner}/report", response_class=PlainTextResponse)
@limiter.limit(_webhook_rate_limit)
async def handle_report(
    request: Request,
    owner: str,
    authorization: str = Header(default=""),
    settings: Settings = Depends(get_settings),
    registry: CredentialRegistry = Depends(get_credential_registry),
    store: IdempotencyStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_github_breaker),
) -> PlainTextResponse:
    """Move one named check run to the reported status/conclusion."""
    body = await request.body()
    report = ReportRequest(owner=owner, body=body, authorization=authorization)
    outcome = await report_check_run(report, registry, store, settings, breaker)
    return _to_response(outcome)


# ---------------------------------------------------------------------------
# Merge readiness (read-only)
# ---------------------------------------------------------------------------


@router.get("/{owner}/checks/{sha}", response_model=RequiredChecksSummary)
async def get_required_checks(
    owner: str,
    sha: str = Path(pattern=r"^[0-9a-fA-F]{4,40}$"),
    settings: Settings = Depends(get_settings),
    registry: CredentialRegistry = Depends(get_credential_registry),
    breaker: CircuitBreaker = Depends(get_github_breaker),
) -> RequiredChecksSummary:
    """Whether every configured check run on *sha* completed successfully."""
    try:
        return await summarize_required_checks(owner, sha, registry, settings, breaker)
    except OrchestratorError as exc:
        if exc.status_code >= 500:
            logger.error("Readiness lookup failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=exc.status_code, detail=exc.response_text) from exc
