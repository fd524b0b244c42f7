from .webhooks import router as webhooks_router
from .resilience import router as resilience_router

__all__ = [
    'webhooks_router',
    'resilience_router',
]
