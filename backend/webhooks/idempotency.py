"""
Webhook idempotency stores.

The contract is a single atomic "insert if absent" on the composite key
source + event id. Duplicate deliveries may arrive at the same moment
from different network paths, so the check and the insert must be one
operation at the storage layer (a unique index), never a read followed
by a write in application memory.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Set

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webhooks.models import WebhookEnvelope

logger = logging.getLogger(__name__)


class IdempotencyStore(ABC):
    """Durable, shared record of which webhook events have been seen."""

    @abstractmethod
    async def record_if_absent(self, envelope: WebhookEnvelope) -> bool:
        """
        Atomically record the envelope's key.

        Returns:
            True if this call created the record, False if it already existed
        """


class InMemoryIdempotencyStore(IdempotencyStore):
    """Process-local store for tests and single-instance development."""

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    async def record_if_absent(self, envelope: WebhookEnvelope) -> bool:
        with self._lock:
            if envelope.idempotency_key in self._keys:
                return False
            self._keys.add(envelope.idempotency_key)
            return True

    def __len__(self) -> int:
        return len(self._keys)


class SqlIdempotencyStore(IdempotencyStore):
    """
    PostgreSQL-backed store using the unique index on
    ``webhook_events.idempotency_key``.
    """

    INSERT_QUERY = text("""
        INSERT INTO public.webhook_events
        (id, idempotency_key, source, event_id, kind, first_seen_at)
        VALUES (:id, :idempotency_key, :source, :event_id, :kind, :first_seen_at)
        ON CONFLICT (idempotency_key) DO NOTHING
        RETURNING id
    """)

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def record_if_absent(self, envelope: WebhookEnvelope) -> bool:
        async with self._session_factory() as session:
            try:
                result = await session.execute(self.INSERT_QUERY, {
                    'id': str(uuid.uuid4()),
                    'idempotency_key': envelope.idempotency_key,
                    'source': envelope.source,
                    'event_id': envelope.event_id,
                    'kind': envelope.kind,
                    'first_seen_at': datetime.now(timezone.utc),
                })
                row = result.fetchone()
                await session.commit()
            except IntegrityError:
                # Lost a race on a backend without ON CONFLICT semantics
                await session.rollback()
                logger.info(f"Duplicate webhook {envelope.idempotency_key} (unique violation)")
                return False

        if row is None:
            logger.info(f"Duplicate webhook {envelope.idempotency_key}")
            return False
        return True
