"""
Webhook Idempotency Database Models

Tables:
- webhook_events: one row per (source, event id) ever accepted.
  The unique index on idempotency_key is what makes duplicate
  deliveries detectable across processes and restarts.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventDB(Base):
    """First sighting of an inbound webhook event."""
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    # "<source>:<event_id>"
    idempotency_key = Column(String(512), nullable=False)
    source = Column(String(50), nullable=False)
    event_id = Column(String(255), nullable=False)
    kind = Column(String(255), nullable=False, default="unknown")
    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("uq_webhook_events_idempotency_key", "idempotency_key", unique=True),
        Index("idx_webhook_events_source", "source"),
        Index("idx_webhook_events_first_seen", "first_seen_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "idempotency_key": self.idempotency_key,
            "source": self.source,
            "event_id": self.event_id,
            "kind": self.kind,
            "first_seen_at": self.first_seen_at.isoformat() if self.first_seen_at else None,
        }
