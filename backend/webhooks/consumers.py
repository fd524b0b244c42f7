"""
Downstream consumers of inbound webhook events.

Fixed, ordered fan-out:
1. evidence  - audit/evidence sink            POST {EVIDENCE_SERVICE_URL}/ingest
2. ledger    - transaction events only         POST {LEDGER_SERVICE_URL}/ingest
3. chronicle - event log                       POST {CHRONICLE_SERVICE_URL}/entries
4. logic     - rules evaluation                POST {LOGIC_SERVICE_URL}/evaluate
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from webhooks.models import WebhookEnvelope


@dataclass(frozen=True)
class Consumer:
    """A downstream HTTP endpoint that receives every (matching) envelope."""
    name: str
    url: Optional[str]
    kind_prefixes: Tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def applies_to(self, envelope: WebhookEnvelope) -> bool:
        """Unconditional consumers have no prefixes; others match on event kind."""
        if not self.kind_prefixes:
            return True
        return envelope.kind.startswith(self.kind_prefixes)


def _endpoint(base_url: str, path: str) -> Optional[str]:
    if not base_url:
        return None
    return base_url.rstrip("/") + path


def build_default_consumers(settings) -> List[Consumer]:
    return [
        Consumer("evidence", _endpoint(settings.EVIDENCE_SERVICE_URL, "/ingest")),
        Consumer("ledger", _endpoint(settings.LEDGER_SERVICE_URL, "/ingest"),
                 kind_prefixes=settings.ledger_event_prefixes),
        Consumer("chronicle", _endpoint(settings.CHRONICLE_SERVICE_URL, "/entries")),
        Consumer("logic", _endpoint(settings.LOGIC_SERVICE_URL, "/evaluate")),
    ]
