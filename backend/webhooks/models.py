"""
Webhook ingestion data classes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping


@dataclass(frozen=True)
class WebhookEnvelope:
    """One inbound delivery, normalised. Immutable after creation."""
    source: str
    event_id: str
    kind: str
    received_at: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        return f"{self.source}:{self.event_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "event_id": self.event_id,
            "kind": self.kind,
            "received_at": self.received_at,
            "payload": dict(self.payload),
        }


@dataclass
class OrchestrationResult:
    """Per-consumer failures for one envelope. Empty means full success."""
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class IngestResult:
    """Outcome of ingest(). Always acknowledged once idempotency is recorded."""
    acknowledged: bool = True
    duplicate: bool = False
    errors: List[str] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": self.acknowledged}
        if self.errors:
            body["orchestrationErrors"] = list(self.errors)
        return body
