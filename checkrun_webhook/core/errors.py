"""Error taxonomy for the check-run orchestrator.

Each error carries the HTTP status it maps to and the text returned to the
caller. The internal message (``str(exc)``) is for logs only; upstream
failures never leak their detail into ``response_text``.
"""

from typing import Optional


class OrchestratorError(Exception):
    status_code = 500
    response_text = "Internal error"


class ValidationError(OrchestratorError):
    """Missing or malformed input. Detected before any side effect."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.response_text = f"Validation error: {message}"


class UnsupportedOwnerError(ValidationError):
    def __init__(self, owner: str) -> None:
        super().__init__(f"unsupported repository owner {owner!r}")
        self.owner = owner
        self.response_text = "Unsupported repository owner"


class AuthError(OrchestratorError):
    status_code = 401
    response_text = "Unauthorized"


class NotFoundError(OrchestratorError):
    status_code = 404

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.response_text = message


class ConfigurationError(OrchestratorError):
    response_text = "Configuration error"


class UpstreamError(OrchestratorError):
    """A GitHub or key-value store call failed."""

    def __init__(self, message: str, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamAuthError(UpstreamError):
    """App JWT signing or installation token exchange failed."""


class ServiceUnavailableError(OrchestratorError):
    status_code = 503
    response_text = "Service temporarily unavailable"
