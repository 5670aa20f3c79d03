"""Check-run orchestration.

Two independent flows, each taking its collaborators as arguments:

Flow A (``initialize_check_runs``): a signed ``check_suite`` / ``requested``
delivery creates one queued check run per configured name for the head
commit, once per SHA.

Flow B (``report_check_run``): a CI job reports status/conclusion for one
named check run; the run is looked up on the commit and updated, once per
(run id, status, conclusion).

Both flows return an ``Outcome`` and never raise: validation and auth
problems are answered before any side effect, upstream failures are logged
with full detail and answered with a generic 500. Status transition
legality (queued → in_progress → completed) is left to GitHub.
"""

import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from checkrun_webhook.core.circuit_breaker import CircuitBreaker
from checkrun_webhook.core.config import Settings
from checkrun_webhook.core.errors import (
    AuthError,
    ConfigurationError,
    NotFoundError,
    OrchestratorError,
    UpstreamError,
    ValidationError,
)
from checkrun_webhook.github import checks
from checkrun_webhook.github.client import (
    create_app_client,
    create_installation_client,
    get_repo_installation_id,
)
from checkrun_webhook.github.credentials import CredentialRegistry
from checkrun_webhook.github.schemas import CheckRunReport, RequiredChecksSummary
from checkrun_webhook.github.webhooks import (
    is_check_suite_requested,
    parse_check_suite_event,
    verify_webhook_signature,
)
from checkrun_webhook.idempotency.store import (
    IdempotencyStore,
    check_update_key,
    checks_created_key,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WebhookDelivery:
    """A raw GitHub delivery, as received on the default route."""

    event: str
    signature: str
    body: bytes
    delivery_id: str = ""


@dataclass(frozen=True)
class ReportRequest:
    """A CI report call for ``/{owner}/report``."""

    owner: str
    body: bytes
    authorization: str = ""


@dataclass(frozen=True)
class Outcome:
    status_code: int
    message: str


async def _run_flow(name: str, flow: Callable[[], Awaitable[Outcome]]) -> Outcome:
    """Convert every exception escaping *flow* into a terminal Outcome."""
    try:
        return await flow()
    except OrchestratorError as exc:
        if exc.status_code >= 500:
            logger.error("%s failed: %s", name, exc, exc_info=True)
        else:
            logger.warning("%s rejected (%d): %s", name, exc.status_code, exc)
        return Outcome(exc.status_code, exc.response_text)
    except Exception:
        logger.exception("%s failed with an unexpected error", name)
        return Outcome(500, "Internal error")


def _split_repository(full_name: str) -> tuple[str, str]:
    owner, _, repo = full_name.partition("/")
    if not owner or not repo or "/" in repo:
        raise ConfigurationError(
            f"GITHUB_REPOSITORY must be 'owner/repo', got {full_name!r}"
        )
    return owner, repo


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def _release(store: IdempotencyStore, key: str) -> None:
    """Drop a claim after its mutation failed. The original error wins."""
    try:
        await store.delete(key)
    except UpstreamError:
        logger.warning("Could not release idempotency key %s", key, exc_info=True)


# ---------------------------------------------------------------------------
# Flow A: batch initialisation on check_suite requested
# ---------------------------------------------------------------------------


async def initialize_check_runs(
    delivery: WebhookDelivery,
    registry: CredentialRegistry,
    store: IdempotencyStore,
    settings: Settings,
    breaker: CircuitBreaker,
) -> Outcome:
    async def flow() -> Outcome:
        if not verify_webhook_signature(
            delivery.body, delivery.signature, registry.webhook_secrets()
        ):
            raise AuthError("invalid webhook signature")

        try:
            payload = json.loads(delivery.body)
        except ValueError as exc:
            raise ValidationError("payload is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")

        if not is_check_suite_requested(delivery.event, payload):
            logger.info(
                "Event ignored: %s/%s", delivery.event, payload.get("action")
            )
            return Outcome(200, "Event ignored")

        event = parse_check_suite_event(payload)
        if event is None:
            logger.warning("check_suite delivery missing sha/owner/repo/installation")
            return Outcome(400, "Missing required payload data")

        profile = registry.resolve(event.owner)

        key = checks_created_key(event.head_sha)
        if await store.check_and_set(key, settings.checks_created_ttl_seconds):
            logger.info("Checks already created for %s", event.head_sha)
            return Outcome(200, "Checks already created for this SHA.")

        logger.info(
            "Creating %d check runs for %s/%s@%s",
            len(settings.check_names),
            event.owner,
            event.repo,
            event.head_sha[:7],
        )

        # Sequential: the first failure stops the batch. Runs created
        # before it are kept and the key is released, so a redelivery
        # repeats the whole batch.
        try:
            async with breaker:
                client = await create_installation_client(
                    profile, event.installation_id, settings
                )
                for check_name in settings.check_names:
                    await checks.create_check_run(
                        client,
                        event.owner,
                        event.repo,
                        name=check_name,
                        head_sha=event.head_sha,
                        status="queued",
                        output={
                            "title": f"{check_name} - Queued",
                            "summary": f"{check_name} has been queued and will start shortly.",
                        },
                    )
        except Exception:
            await _release(store, key)
            raise

        logger.info("All check runs created for %s", event.head_sha)
        return Outcome(200, "All check runs created")

    return await _run_flow("check_suite delivery", flow)


# ---------------------------------------------------------------------------
# Flow B: single check-run status report
# ---------------------------------------------------------------------------


def _authorize_report(authorization: str, settings: Settings) -> None:
    expected = settings.internal_app_secret
    if not expected:
        return
    scheme, _, provided = authorization.partition(" ")
    if scheme.lower() != "bearer" or not provided:
        raise AuthError("missing bearer token on report call")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthError("invalid bearer token on report call")


def _parse_report(body: bytes) -> CheckRunReport:
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ValidationError("body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("body must be a JSON object")
    try:
        return CheckRunReport.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        raise ValidationError(f"{field}: {first['msg']}") from exc


async def report_check_run(
    request: ReportRequest,
    registry: CredentialRegistry,
    store: IdempotencyStore,
    settings: Settings,
    breaker: CircuitBreaker,
) -> Outcome:
    async def flow() -> Outcome:
        _authorize_report(request.authorization, settings)

        profile = registry.resolve(request.owner)
        report = _parse_report(request.body)
        name = report.name or settings.default_check_name
        owner, repo = _split_repository(settings.github_repository)

        logger.info(
            "Processing check update for %r (%s/%s)",
            name,
            report.status,
            report.conclusion,
        )

        async with breaker:
            app_client = create_app_client(profile, settings)
            installation_id = await get_repo_installation_id(app_client, owner, repo)
            client = await create_installation_client(profile, installation_id, settings)
            runs = await checks.list_check_runs_for_ref(client, owner, repo, report.sha)

        check_run = checks.find_check_run(runs, name)
        if check_run is None:
            raise NotFoundError(f'Check run "{name}" not found for sha {report.sha}')

        key = check_update_key(check_run["id"], report.status, report.conclusion)
        if await store.check_and_set(key, settings.check_update_ttl_seconds):
            logger.info("Duplicate check update skipped for %r", name)
            return Outcome(200, "Duplicate check update skipped.")

        output: Optional[dict] = None
        if report.title or report.summary:
            output = {"title": report.title or name, "summary": report.summary or ""}

        try:
            async with breaker:
                await checks.update_check_run(
                    client,
                    owner,
                    repo,
                    check_run_id=check_run["id"],
                    status=report.status,
                    conclusion=report.conclusion,
                    completed_at=_utc_timestamp() if report.conclusion else None,
                    output=output,
                    details_url=report.details_url,
                )
        except Exception:
            await _release(store, key)
            raise

        return Outcome(200, "Check run updated")

    return await _run_flow("check run report", flow)


# ---------------------------------------------------------------------------
# Merge readiness (read-only)
# ---------------------------------------------------------------------------


def evaluate_required_checks(
    sha: str,
    runs: list[dict],
    required: list[str],
) -> RequiredChecksSummary:
    """Classify each required check name against the runs on a commit."""
    results: dict[str, str] = {}
    missing: list[str] = []
    failed: list[str] = []
    pending: list[str] = []

    for name in required:
        run = checks.find_check_run(runs, name)
        if run is None:
            results[name] = "missing"
            missing.append(name)
        elif run.get("status") != "completed":
            results[name] = "in_progress"
            pending.append(name)
        elif run.get("conclusion") != "success":
            results[name] = run.get("conclusion") or "unknown"
            failed.append(name)
        else:
            results[name] = "success"

    return RequiredChecksSummary(
        sha=sha,
        all_checks_passed=not (missing or failed or pending),
        check_results=results,
        missing_checks=missing,
        failed_checks=failed,
        pending_checks=pending,
        total_checks=len(required),
        completed_checks=len(required) - len(missing) - len(pending),
    )


async def summarize_required_checks(
    owner: str,
    sha: str,
    registry: CredentialRegistry,
    settings: Settings,
    breaker: CircuitBreaker,
) -> RequiredChecksSummary:
    """Readiness of the configured check names on *sha*.

    Raises OrchestratorError subclasses; the router maps them.
    """
    profile = registry.resolve(owner)
    repo_owner, repo = _split_repository(settings.github_repository)

    async with breaker:
        app_client = create_app_client(profile, settings)
        installation_id = await get_repo_installation_id(app_client, repo_owner, repo)
        client = await create_installation_client(profile, installation_id, settings)
        runs = await checks.list_check_runs_for_ref(client, repo_owner, repo, sha)

    summary = evaluate_required_checks(sha, runs, settings.check_names)
    logger.info(
        "Check readiness for %s: %d/%d completed, %s",
        sha[:7],
        summary.completed_checks,
        summary.total_checks,
        "ready" if summary.all_checks_passed else "not ready",
    )
    return summary
