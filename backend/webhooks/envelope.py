"""
Normalise an inbound webhook POST into a WebhookEnvelope.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from webhooks.models import WebhookEnvelope

EVENT_ID_HEADER = "x-event-id"
UNKNOWN_KIND = "unknown"


def _event_id(headers: Mapping[str, str], body: Mapping[str, Any]) -> str:
    header_value = None
    for key, value in headers.items():
        if key.lower() == EVENT_ID_HEADER:
            header_value = value
            break
    if header_value:
        return str(header_value)

    for field_name in ("id", "eventId"):
        value = body.get(field_name)
        if value:
            return str(value)

    return str(uuid.uuid4())


def build_envelope(
    source: str,
    headers: Mapping[str, str],
    body: Optional[Mapping[str, Any]],
    received_at: Optional[datetime] = None,
) -> WebhookEnvelope:
    """
    Build the envelope for one delivery.

    - event id: ``X-Event-Id`` header, then body ``id``, then body ``eventId``,
      then a generated id
    - kind: body ``type``, else ``"unknown"``
    - received_at: now, ISO-8601 UTC
    """
    body = body or {}
    received_at = received_at or datetime.now(timezone.utc)

    return WebhookEnvelope(
        source=source,
        event_id=_event_id(headers, body),
        kind=str(body.get("type") or UNKNOWN_KIND),
        received_at=received_at.isoformat(),
        payload=dict(body),
    )
