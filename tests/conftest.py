"""Shared test fixtures for the check-run webhook test suite.

GitHub is never contacted: the `github` fixture patches the client
factory and the Checks API wrapper functions with mocks. The idempotency
store is an in-memory instance per test, and each test gets its own
circuit breaker so failures never leak between tests.
"""

import hashlib
import hmac
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

from checkrun_webhook.core.circuit_breaker import CircuitBreaker
from checkrun_webhook.core.config import Settings, get_settings
from checkrun_webhook.github.credentials import CredentialProfile, CredentialRegistry
from checkrun_webhook.github.router import (
    get_credential_registry,
    get_github_breaker,
    get_store,
)
from checkrun_webhook.idempotency.store import MemoryIdempotencyStore
from checkrun_webhook.main import create_app

SECRET_303 = "webhook-secret-303devs"
SECRET_CHIE = "webhook-secret-chielephant"
TARGET_REPOSITORY = "303devs/threejs-shirt"


def _generate_test_private_key() -> str:
    """Generate a valid RSA private key for testing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return pem.decode()


TEST_PRIVATE_KEY = _generate_test_private_key()


def _sign(body: bytes, secret: str = SECRET_303) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


@pytest.fixture
def sign():
    """Signer for webhook bodies; defaults to the 303DEVS App secret."""
    return _sign


@pytest.fixture
def webhook_secrets() -> dict[str, str]:
    return {"303DEVS": SECRET_303, "CHIELEPHANT": SECRET_CHIE}


@pytest.fixture(scope="session")
def private_key() -> str:
    return TEST_PRIVATE_KEY


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        github_repository=TARGET_REPOSITORY,
        idempotency_backend="memory",
        internal_app_secret="",
        sentry_dsn="",
        debug=False,
    )


@pytest.fixture
def registry() -> CredentialRegistry:
    profiles = {
        "303DEVS": CredentialProfile("303DEVS", "1001", TEST_PRIVATE_KEY, SECRET_303),
        "CHIELEPHANT": CredentialProfile("CHIELEPHANT", "2002", TEST_PRIVATE_KEY, SECRET_CHIE),
    }
    return CredentialRegistry(profiles, {"303devs": "303DEVS", "chie": "CHIELEPHANT"})


@pytest.fixture
def store() -> MemoryIdempotencyStore:
    return MemoryIdempotencyStore()


@pytest.fixture
def breaker() -> CircuitBreaker:
    return CircuitBreaker("github-test", failure_threshold=3, recovery_timeout=60)


@dataclass
class GitHubMocks:
    create_app_client: MagicMock
    get_repo_installation_id: AsyncMock
    create_installation_client: AsyncMock
    create_check_run: AsyncMock
    list_check_runs_for_ref: AsyncMock
    update_check_run: AsyncMock
    installation_client: object


@pytest.fixture
def github():
    """Patch every GitHub call the orchestrator makes.

    `list_check_runs_for_ref` returns an empty list by default; tests set
    `github.list_check_runs_for_ref.return_value` to the runs they need.
    """
    installation_client = object()
    with (
        patch(
            "checkrun_webhook.github.service.create_app_client",
            return_value=object(),
        ) as create_app_client,
        patch(
            "checkrun_webhook.github.service.get_repo_installation_id",
            new_callable=AsyncMock,
            return_value=77,
        ) as get_installation,
        patch(
            "checkrun_webhook.github.service.create_installation_client",
            new_callable=AsyncMock,
            return_value=installation_client,
        ) as create_installation,
        patch(
            "checkrun_webhook.github.checks.create_check_run",
            new_callable=AsyncMock,
            side_effect=lambda *a, **kw: {"id": 1, "name": kw.get("name")},
        ) as create_run,
        patch(
            "checkrun_webhook.github.checks.list_check_runs_for_ref",
            new_callable=AsyncMock,
            return_value=[],
        ) as list_runs,
        patch(
            "checkrun_webhook.github.checks.update_check_run",
            new_callable=AsyncMock,
            return_value={"id": 42},
        ) as update_run,
    ):
        yield GitHubMocks(
            create_app_client=create_app_client,
            get_repo_installation_id=get_installation,
            create_installation_client=create_installation,
            create_check_run=create_run,
            list_check_runs_for_ref=list_runs,
            update_check_run=update_run,
            installation_client=installation_client,
        )


# ---------------------------------------------------------------------------
# App + HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def app(settings, registry, store, breaker):
    """Create the FastAPI app with every collaborator overridden.

    The SlowAPI limiter keeps in-memory buckets on a module-level
    singleton, so it is reset before each test.
    """
    from checkrun_webhook.core.limiter import limiter

    limiter.reset()

    test_app = create_app()
    test_app.dependency_overrides[get_settings] = lambda: settings
    test_app.dependency_overrides[get_credential_registry] = lambda: registry
    test_app.dependency_overrides[get_store] = lambda: store
    test_app.dependency_overrides[get_github_breaker] = lambda: breaker
    return test_app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
