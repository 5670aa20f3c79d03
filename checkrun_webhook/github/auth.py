"""GitHub App authentication.

Handles JWT generation for GitHub App auth. The private key comes from the
caller's credential profile: never from source control.

GitHub App auth flow:
1. Generate a JWT signed with the App's private key
2. Exchange the JWT for a short-lived installation access token
3. Use the installation token for API calls scoped to that installation
"""

import time

import jwt

from checkrun_webhook.core.errors import UpstreamAuthError
from checkrun_webhook.github.credentials import CredentialProfile


def create_app_jwt(profile: CredentialProfile) -> str:
    """Create a JWT for authenticating as the GitHub App.

    JWTs are valid for up to 10 minutes. We use 9 minutes
    to avoid clock-skew rejections.
    """
    if not profile.has_app_credentials:
        raise UpstreamAuthError(
            f"GitHub App credentials not configured for profile {profile.name}"
        )

    now = int(time.time())
    payload = {
        "iat": now - 60,  # Backdate 60s to handle clock skew
        "exp": now + (9 * 60),  # 9 minutes
        "iss": profile.app_id,
    }

    try:
        return jwt.encode(payload, profile.private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise UpstreamAuthError(
            f"could not sign App JWT for profile {profile.name}: {exc}"
        ) from exc
