"""
Resilience Status Router

- GET /api/resilience/breakers - Circuit breaker state per dependency
- GET /api/resilience/limiters - Keys tracked by each rate limiter
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(prefix="/resilience", tags=["Resilience"])


@router.get("/breakers")
async def list_breakers(request: Request):
    breakers = request.app.state.breakers.snapshot_all()
    return {
        "breakers": breakers,
        "open": sorted(name for name, b in breakers.items() if b["state"] != "closed"),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/limiters")
async def list_limiters(request: Request):
    state = request.app.state
    limiters = [state.api_limiter, state.webhook_limiter, state.integration_limiter]
    return {
        "limiters": [
            {
                "name": limiter.name,
                "max_requests": limiter.max_requests,
                "window_seconds": limiter.window_seconds,
                "tracked_keys": len(limiter.tracked_keys()),
            }
            for limiter in limiters
        ]
    }
