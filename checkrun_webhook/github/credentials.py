"""GitHub App credential profiles and owner resolution.

Several GitHub Apps (one per organisation) post to the same endpoint.
Each App has its own credential profile, read from the environment:

    {PREFIX}_GITHUB_APP_ID
    {PREFIX}_GITHUB_PRIVATE_KEY      PEM contents, newlines escaped as \\n
    {PREFIX}_GITHUB_WEBHOOK_SECRET

Which profile serves a repository owner is decided by the
``owner_identifiers`` setting: the first identifier that appears
(case-insensitively) in the owner login selects its profile. Secrets and
keys must never be logged.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from checkrun_webhook.core.config import Settings
from checkrun_webhook.core.errors import ConfigurationError, UnsupportedOwnerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialProfile:
    name: str
    app_id: str
    private_key: str = field(repr=False)
    webhook_secret: str = field(default="", repr=False)

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.app_id and self.private_key)


class CredentialRegistry:
    """Owner login → credential profile lookup."""

    def __init__(
        self,
        profiles: Mapping[str, CredentialProfile],
        identifiers: Mapping[str, str],
    ) -> None:
        unknown = set(identifiers.values()) - set(profiles)
        if unknown:
            raise ConfigurationError(
                f"owner identifiers reference unknown profiles: {sorted(unknown)}"
            )
        self._profiles = dict(profiles)
        self._identifiers = [(key.lower(), value) for key, value in identifiers.items()]

    def find(self, owner: str) -> CredentialProfile | None:
        lowered = owner.lower()
        for identifier, profile_name in self._identifiers:
            if identifier and identifier in lowered:
                return self._profiles[profile_name]
        return None

    def resolve(self, owner: str) -> CredentialProfile:
        """Return the profile for *owner* with usable App credentials.

        Raises UnsupportedOwnerError when no identifier matches and
        ConfigurationError when the matched profile has no app id or key.
        """
        profile = self.find(owner)
        if profile is None:
            raise UnsupportedOwnerError(owner)
        if not profile.has_app_credentials:
            raise ConfigurationError(
                f"missing GitHub App credentials for profile {profile.name}"
            )
        return profile

    def webhook_secrets(self) -> list[str]:
        """Every configured webhook secret, in profile order."""
        return [p.webhook_secret for p in self._profiles.values() if p.webhook_secret]


def _unescape_pem(value: str) -> str:
    return value.replace("\\n", "\n")


def load_profile(prefix: str, environ: Mapping[str, str]) -> CredentialProfile:
    prefix = prefix.upper()
    return CredentialProfile(
        name=prefix,
        app_id=environ.get(f"{prefix}_GITHUB_APP_ID", "").strip(),
        private_key=_unescape_pem(environ.get(f"{prefix}_GITHUB_PRIVATE_KEY", "")),
        webhook_secret=environ.get(f"{prefix}_GITHUB_WEBHOOK_SECRET", ""),
    )


def load_credential_registry(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> CredentialRegistry:
    """Build the registry from settings plus the process environment."""
    if environ is None:
        environ = os.environ

    profiles: dict[str, CredentialProfile] = {}
    for prefix in settings.owner_identifiers.values():
        if prefix not in profiles:
            profiles[prefix] = load_profile(prefix, environ)
            if not profiles[prefix].webhook_secret:
                logger.debug("No webhook secret configured for profile %s", prefix)

    return CredentialRegistry(profiles, settings.owner_identifiers)
