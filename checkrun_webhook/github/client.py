"""GitHub API client factory.

Uses httpx for async HTTP calls. A ``GitHubClient`` is bound to one bearer
token: either the App JWT (only good for installation discovery and token
exchange) or an installation access token (used for every Check Run
mutation). Clients live for a single request and are never cached.

Two factories mirror the two token kinds:
1. ``create_app_client(profile)``: authenticated as the App itself
2. ``create_installation_client(profile, installation_id)``: exchanges
   the App JWT for an installation token and returns a client scoped to it

Nothing here retries. HTTP failures become ``UpstreamError`` (or
``UpstreamAuthError`` while obtaining credentials) and propagate.
"""

import logging
from typing import Any, Optional

import httpx

from checkrun_webhook.core.config import Settings, get_settings
from checkrun_webhook.core.errors import UpstreamAuthError, UpstreamError
from checkrun_webhook.github.auth import create_app_jwt
from checkrun_webhook.github.credentials import CredentialProfile

logger = logging.getLogger(__name__)


class GitHubClient:
    """Minimal REST client bound to one token."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.github.com",
        api_version: str = "2022-11-28",
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._token = token

    @classmethod
    def from_settings(cls, token: str, settings: Optional[Settings] = None) -> "GitHubClient":
        settings = settings or get_settings()
        return cls(
            token,
            base_url=settings.github_api_url,
            api_version=settings.github_api_version,
            timeout=settings.github_timeout_seconds,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.api_version,
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self.headers,
                    params=params,
                    json=json,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise UpstreamError(
                    f"GitHub {method} {path} failed with {exc.response.status_code}",
                    upstream_status=exc.response.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                raise UpstreamError(f"GitHub {method} {path} failed: {exc!r}") from exc

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)


def create_app_client(
    profile: CredentialProfile,
    settings: Optional[Settings] = None,
) -> GitHubClient:
    """Client authenticated as the GitHub App (JWT bearer)."""
    return GitHubClient.from_settings(create_app_jwt(profile), settings)


async def get_repo_installation_id(
    app_client: GitHubClient,
    owner: str,
    repo: str,
) -> int:
    """GET /repos/{owner}/{repo}/installation: the App's installation id."""
    try:
        data = await app_client.get(f"/repos/{owner}/{repo}/installation")
    except UpstreamError as exc:
        raise UpstreamAuthError(
            f"installation lookup for {owner}/{repo} failed: {exc}",
            upstream_status=exc.upstream_status,
        ) from exc

    installation_id = (data or {}).get("id")
    if not installation_id:
        raise UpstreamAuthError(f"no installation id returned for {owner}/{repo}")

    logger.info("Found installation %s for %s/%s", installation_id, owner, repo)
    return int(installation_id)


async def get_installation_token(
    profile: CredentialProfile,
    installation_id: int,
    settings: Optional[Settings] = None,
) -> str:
    """Exchange a GitHub App JWT for an installation access token.

    Installation tokens are scoped to the repos the installation grants
    and expire after 1 hour; we only ever hold one for a single request.
    """
    app_client = create_app_client(profile, settings)
    try:
        data = await app_client.post(
            f"/app/installations/{installation_id}/access_tokens"
        )
    except UpstreamError as exc:
        raise UpstreamAuthError(
            f"token exchange for installation {installation_id} failed: {exc}",
            upstream_status=exc.upstream_status,
        ) from exc

    token = (data or {}).get("token")
    if not token:
        raise UpstreamAuthError(
            f"no token returned for installation {installation_id}"
        )
    return token


async def create_installation_client(
    profile: CredentialProfile,
    installation_id: int,
    settings: Optional[Settings] = None,
) -> GitHubClient:
    """Client scoped to one installation, used for all Check Run calls."""
    token = await get_installation_token(profile, installation_id, settings)
    return GitHubClient.from_settings(token, settings)
