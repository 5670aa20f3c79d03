"""Check Runs API wrapper.

Thin forwarding layer over the GitHub Checks REST endpoints. Upstream
errors propagate unchanged as ``UpstreamError``; retrying is the webhook
sender's job, made safe by the orchestrator's idempotency keys.
"""

import logging
from typing import Optional

from checkrun_webhook.github.client import GitHubClient

logger = logging.getLogger(__name__)

CHECK_RUN_STATUSES = ("queued", "in_progress", "completed")
CHECK_RUN_CONCLUSIONS = (
    "action_required",
    "cancelled",
    "failure",
    "neutral",
    "success",
    "skipped",
    "stale",
    "timed_out",
)

_PER_PAGE = 100


async def create_check_run(
    client: GitHubClient,
    owner: str,
    repo: str,
    name: str,
    head_sha: str,
    status: str = "queued",
    output: Optional[dict] = None,
) -> dict:
    """POST /repos/{owner}/{repo}/check-runs: returns the created run."""
    payload: dict = {"name": name, "head_sha": head_sha, "status": status}
    if output is not None:
        payload["output"] = output

    run = await client.post(f"/repos/{owner}/{repo}/check-runs", json=payload)
    logger.info("Created check run %r (%s) for %s", name, run.get("id"), head_sha[:7])
    return run


async def list_check_runs_for_ref(
    client: GitHubClient,
    owner: str,
    repo: str,
    ref: str,
) -> list[dict]:
    """GET /repos/{owner}/{repo}/commits/{ref}/check-runs, all pages.

    Other CI systems attach their own runs to the same commit, so callers
    must filter by name themselves.
    """
    runs: list[dict] = []
    page = 1
    while True:
        data = await client.get(
            f"/repos/{owner}/{repo}/commits/{ref}/check-runs",
            params={"per_page": _PER_PAGE, "page": page},
        )
        batch = data.get("check_runs", [])
        runs.extend(batch)
        total = data.get("total_count", len(runs))
        if not batch or len(batch) < _PER_PAGE or len(runs) >= total:
            break
        page += 1

    logger.debug("Retrieved %d check runs for %s", len(runs), ref)
    return runs


def find_check_run(runs: list[dict], name: str) -> Optional[dict]:
    """First run called *name*, or None."""
    return next((run for run in runs if run.get("name") == name), None)


async def update_check_run(
    client: GitHubClient,
    owner: str,
    repo: str,
    check_run_id: int,
    status: Optional[str] = None,
    conclusion: Optional[str] = None,
    completed_at: Optional[str] = None,
    output: Optional[dict] = None,
    details_url: Optional[str] = None,
) -> dict:
    """PATCH /repos/{owner}/{repo}/check-runs/{check_run_id}.

    ``conclusion`` and ``completed_at`` travel together and only with a
    terminal (or omitted) status. Unset fields are left out of the body
    so GitHub keeps their current values.
    """
    if conclusion is not None and status not in (None, "completed"):
        raise ValueError(
            f"conclusion {conclusion!r} requires status 'completed', got {status!r}"
        )
    if completed_at is not None and conclusion is None:
        raise ValueError("completed_at requires a conclusion")

    payload: dict = {}
    if status is not None:
        payload["status"] = status
    if conclusion is not None:
        payload["conclusion"] = conclusion
        if completed_at is not None:
            payload["completed_at"] = completed_at
    if output is not None:
        payload["output"] = output
    if details_url is not None:
        payload["details_url"] = details_url

    run = await client.patch(
        f"/repos/{owner}/{repo}/check-runs/{check_run_id}", json=payload
    )
    logger.info(
        "Updated check run %s to status=%s conclusion=%s",
        check_run_id,
        status,
        conclusion,
    )
    return run
