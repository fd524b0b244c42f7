from .connection import get_engine, get_session_factory, init_db, check_db, dispose_engine, Base

from .webhook_models import WebhookEventDB

__all__ = [
    'get_engine', 'get_session_factory', 'init_db', 'check_db', 'dispose_engine', 'Base',
    # Webhook idempotency
    'WebhookEventDB',
]
