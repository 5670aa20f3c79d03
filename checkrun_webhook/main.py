import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from checkrun_webhook.core.config import get_settings
from checkrun_webhook.core.errors import OrchestratorError
from checkrun_webhook.core.limiter import limiter
from checkrun_webhook.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from checkrun_webhook.github.router import router as github_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    _app = FastAPI(
        title="Check Run Webhook",
        description="Creates and updates GitHub Check Runs from App webhooks and CI reports",
        version="0.1.0",
    )

    # ---------------------------------------------------------------------------
    # Rate limiter state: SlowAPI reads limiter from app.state
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ---------------------------------------------------------------------------
    # Errors raised while resolving dependencies, outside any flow
    # ---------------------------------------------------------------------------

    @_app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> PlainTextResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        else:
            logger.warning("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc)
        return PlainTextResponse(exc.response_text, status_code=exc.status_code)

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------

    # SlowAPI: must be before security headers so 429s also get security headers
    _app.add_middleware(SlowAPIMiddleware)

    # Security headers on every response
    _app.add_middleware(SecurityHeadersMiddleware)

    # Request ID: inject / forward X-Request-ID and bind to ContextVar
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from checkrun_webhook.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    # ---------------------------------------------------------------------------
    # Logging: configure structlog before any routers log anything
    # ---------------------------------------------------------------------------
    from checkrun_webhook.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(github_router)

    return _app


app = create_app()
