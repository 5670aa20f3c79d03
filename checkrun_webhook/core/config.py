from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHECK_NAMES = [
    "ci-checks",
    "playwright-tests (chromium)",
    "playwright-tests (webkit)",
    "playwright-tests (firefox)",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    GitHub App credentials are NOT fields here: each credential profile
    is read from ``{PREFIX}_GITHUB_APP_ID``, ``{PREFIX}_GITHUB_PRIVATE_KEY``
    and ``{PREFIX}_GITHUB_WEBHOOK_SECRET`` by
    ``checkrun_webhook.github.credentials.load_credential_registry``.

    Owner routing
    ─────────────
    ``OWNER_IDENTIFIERS`` is a JSON object mapping a lowercase substring
    of the repository owner login to a profile prefix, e.g.
    ``{"303devs": "303DEVS", "chie": "CHIELEPHANT"}``. Order matters:
    the first substring found in the owner login wins.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Owner substring -> credential profile prefix.
    owner_identifiers: dict[str, str] = {
        "303devs": "303DEVS",
        "chie": "CHIELEPHANT",
    }

    @field_validator("owner_identifiers", mode="after")
    @classmethod
    def lowercase_identifiers(cls, v: dict[str, str]) -> dict[str, str]:
        return {key.lower(): value.upper() for key, value in v.items()}

    # GitHub: target repository for report calls, in "owner/repo" form.
    github_repository: str = ""
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"
    github_timeout_seconds: float = 10.0

    # Check runs created when a check suite is requested.
    check_names: list[str] = list(DEFAULT_CHECK_NAMES)
    default_check_name: str = "ci-checks"

    # Idempotency store: "redis" in deployments, "memory" for local dev.
    idempotency_backend: str = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_token: str = ""
    redis_timeout_seconds: float = 5.0
    checks_created_ttl_seconds: int = 3600
    check_update_ttl_seconds: int = 600

    # Bearer secret required on report calls. Blank disables the check.
    internal_app_secret: str = ""

    # Rate limiting: SlowAPI format, e.g. "100/minute".
    webhook_rate_limit: str = "100/minute"

    # Circuit breaker around GitHub calls.
    circuit_failure_threshold: int = 5
    circuit_recovery_seconds: float = 60.0

    # Sentry: leave blank to disable error capture.
    sentry_dsn: str = ""

    # App
    debug: bool = True


def get_settings() -> Settings:
    return Settings()
