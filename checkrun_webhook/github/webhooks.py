"""GitHub webhook handling.

Verifies webhook signatures and extracts the fields needed from a
``check_suite`` delivery. Webhook secrets are shared between GitHub and
this service; they must never be logged or exposed.

The endpoint serves several GitHub Apps and cannot tell which one sent a
delivery until the signature checks out, so verification runs against
every configured secret and succeeds if any of them matches.

Signature verification uses HMAC-SHA256 as specified by GitHub:
https://docs.github.com/en/webhooks/using-webhooks/validating-webhook-deliveries
"""

import hashlib
import hmac
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


def _signature_matches(secret: str, payload_body: bytes, received: str) -> bool:
    expected = hmac.new(
        secret.encode("utf-8"),
        payload_body,
        hashlib.sha256,
    ).hexdigest()
    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(expected, received)


def verify_webhook_signature(
    payload_body: bytes,
    signature_header: str,
    secrets: Iterable[str],
) -> bool:
    """Verify that a webhook payload was signed with one of *secrets*.

    Args:
        payload_body: Raw request body bytes, exactly as received.
        signature_header: Value of the X-Hub-Signature-256 header.
        secrets: Candidate webhook secrets, one per GitHub App.

    Returns:
        True if any candidate produces the received signature. False when
        the header is missing or malformed, no secret is configured, or
        every check fails or errors.
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False

    received = signature_header.removeprefix("sha256=")
    for secret in secrets:
        if not secret:
            continue
        try:
            if _signature_matches(secret, payload_body, received):
                return True
        except (TypeError, ValueError):
            # Non-ASCII hex in the header makes compare_digest raise
            logger.warning("Signature check errored", exc_info=True)
    return False


@dataclass(frozen=True)
class CheckSuiteRequested:
    head_sha: str
    owner: str
    repo: str
    installation_id: int


def is_check_suite_requested(event: str, payload: dict) -> bool:
    return event == "check_suite" and payload.get("action") == "requested"


def _section(container: dict, key: str) -> dict:
    value = container.get(key)
    return value if isinstance(value, dict) else {}


def _installation_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value) or None
    return None


def parse_check_suite_event(payload: dict) -> Optional[CheckSuiteRequested]:
    """Extract sha, owner, repo and installation id from a check_suite event.

    Returns None if any of them is missing or has the wrong type.
    """
    repository = _section(payload, "repository")

    head_sha = _section(payload, "check_suite").get("head_sha")
    owner = _section(repository, "owner").get("login")
    repo = repository.get("name")
    installation_id = _installation_id(_section(payload, "installation").get("id"))

    if not all(isinstance(v, str) and v for v in (head_sha, owner, repo)):
        return None
    if installation_id is None:
        return None

    return CheckSuiteRequested(
        head_sha=head_sha,
        owner=owner,
        repo=repo,
        installation_id=installation_id,
    )
