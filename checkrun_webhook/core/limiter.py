"""SlowAPI rate limiter singleton.

Webhook deliveries and report calls are unauthenticated at the limiter
stage, so the key is the caller's IP. Behind a proxy (Vercel, a load
balancer) the socket peer is the proxy itself, so X-Forwarded-For and
X-Real-IP win when present.

Usage in route handlers:
    from checkrun_webhook.core.limiter import limiter

    @router.post("/some-endpoint")
    @limiter.limit(_webhook_rate_limit)
    async def handler(request: Request, ...):
        ...

The `Request` parameter is required by SlowAPI even if the handler doesn't
use it directly: it uses it to extract the key.
"""

from slowapi import Limiter


def _client_ip_key(request) -> str:
    """Key function: rate-limit per originating client IP."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First hop is the original client
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_client_ip_key, default_limits=[])
