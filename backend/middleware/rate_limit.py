"""
Inbound API Rate Limiting

Per-client sliding-window limits applied to the public routes.

Usage:
    from middleware.rate_limit import enforce_api_rate_limit

    router = APIRouter(dependencies=[Depends(enforce_api_rate_limit)])

The limiters are built once at startup and stored on ``app.state``:
``api_limiter`` for the API routes and ``webhook_limiter`` for inbound
webhooks, which arrive in provider bursts from a few sender IPs and get
their own, higher ceiling. Rejections raise RateLimitError, rendered by
the application's error handler as 429 with Retry-After and
X-RateLimit-Reset headers.
"""

import logging
import time
from typing import Dict, Optional

from fastapi import Request

from utils.errors import RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60


def get_client_ip(request: Request) -> str:
    """Client IP, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host
    return "unknown"


def rate_limit_headers(retry_after: Optional[float], now: Optional[float] = None) -> Dict[str, str]:
    """Headers sent with a 429. X-RateLimit-Reset is epoch milliseconds."""
    seconds = int(retry_after or DEFAULT_RETRY_AFTER)
    now = time.time() if now is None else now
    return {
        "Retry-After": str(seconds),
        "X-RateLimit-Reset": str(int((now + seconds) * 1000)),
    }


def _enforce(request: Request, limiter_name: str):
    limiter = getattr(request.app.state, limiter_name, None)
    if limiter is None:
        return

    client_ip = get_client_ip(request)
    decision = limiter.check(client_ip)
    if not decision.allowed:
        logger.warning(
            f"Rate limit [{limiter.name}] exceeded for {client_ip}",
            extra={"client_ip": client_ip, "path": request.url.path, "retry_after": decision.retry_after}
        )
        raise RateLimitError(retry_after=decision.retry_after)


async def enforce_api_rate_limit(request: Request):
    """FastAPI dependency: reject the request if its client is over the API limit."""
    _enforce(request, "api_limiter")


async def enforce_webhook_rate_limit(request: Request):
    """FastAPI dependency: same check against the webhook limiter."""
    _enforce(request, "webhook_limiter")
