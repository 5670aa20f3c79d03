"""Pydantic schemas for the webhook and report endpoints."""

import re
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

_SHA_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")

CheckRunStatus = Literal["queued", "in_progress", "completed"]
CheckRunConclusion = Literal[
    "action_required",
    "cancelled",
    "failure",
    "neutral",
    "success",
    "skipped",
    "stale",
    "timed_out",
]


class CheckRunReport(BaseModel):
    """Body of POST /api/github-webhook/{owner}/report.

    Sent by CI jobs to move one named check run along
    queued → in_progress → completed(conclusion).
    """

    sha: str
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    status: Optional[CheckRunStatus] = None
    conclusion: Optional[CheckRunConclusion] = None
    title: Optional[str] = Field(default=None, max_length=200)
    summary: Optional[str] = Field(default=None, max_length=1000)
    details_url: Optional[str] = None

    @field_validator("sha")
    @classmethod
    def validate_sha(cls, v: str) -> str:
        if not _SHA_RE.match(v):
            raise ValueError("must be a 4-40 character hex commit SHA")
        return v.lower()

    @field_validator("details_url")
    @classmethod
    def validate_details_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def conclusion_requires_completed(self) -> "CheckRunReport":
        if self.conclusion is not None and self.status not in (None, "completed"):
            raise ValueError("conclusion is only allowed with status 'completed'")
        return self


class ReportReachabilityResponse(BaseModel):
    message: str
    timestamp: str
    status: str


class RequiredChecksSummary(BaseModel):
    """Merge-readiness view of the configured check names for one commit."""

    sha: str
    all_checks_passed: bool
    check_results: dict[str, str]
    missing_checks: list[str]
    failed_checks: list[str]
    pending_checks: list[str]
    total_checks: int
    completed_checks: int
