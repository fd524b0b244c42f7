"""
Webhook Idempotency & Orchestration Dispatcher

Flow for each inbound envelope:

1. Idempotency - atomically record source + event id. A duplicate is
   acknowledged immediately with no side effects.
2. Orchestration - fan the envelope out to every applicable consumer,
   concurrently, each call going through the resilient executor and
   bounded by its own hard timeout. A failing consumer never stops the
   others; its failure becomes a "<consumer>: <reason>" string.
3. Acknowledge - always, once step 1 succeeded. Errors are returned in
   the response and raised as an out-of-band alert.

Delivery to consumers is therefore at-most-once per event, even when the
external source redelivers the same webhook many times.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from utils.errors import ResilienceError
from resilience.http_client import ResilientHttpClient
from sentry_integration import report_orchestration_errors
from webhooks.consumers import Consumer
from webhooks.idempotency import IdempotencyStore
from webhooks.models import IngestResult, OrchestrationResult, WebhookEnvelope

logger = logging.getLogger(__name__)

DEFAULT_CONSUMER_TIMEOUT = 30.0  # seconds

AlertHook = Callable[[str, str, str, List[str]], object]


def describe_failure(error: BaseException) -> str:
    """Short human-readable reason for an orchestration error string."""
    if isinstance(error, ResilienceError):
        return error.message
    return str(error) or type(error).__name__


class WebhookDispatcher:
    """
    Deduplicates inbound webhook envelopes and dispatches new ones to
    the downstream consumers.
    """

    def __init__(
        self,
        store: IdempotencyStore,
        http: ResilientHttpClient,
        consumers: Sequence[Consumer],
        consumer_timeout: float = DEFAULT_CONSUMER_TIMEOUT,
        alert: Optional[AlertHook] = report_orchestration_errors,
    ):
        self.store = store
        self.http = http
        self.consumers = list(consumers)
        self.consumer_timeout = consumer_timeout
        self.alert = alert

    async def ingest(self, envelope: WebhookEnvelope) -> IngestResult:
        """
        Process one delivery.

        Raises only if the idempotency record cannot be written; in that
        case the event was not acknowledged and the sender should retry.
        """
        is_new = await self.store.record_if_absent(envelope)
        if not is_new:
            logger.info(
                f"Duplicate webhook {envelope.idempotency_key} acknowledged without dispatch",
                extra={"source": envelope.source, "event_id": envelope.event_id}
            )
            return IngestResult(acknowledged=True, duplicate=True)

        result = await self.orchestrate(envelope)
        return IngestResult(acknowledged=True, errors=result.errors)

    async def orchestrate(self, envelope: WebhookEnvelope) -> OrchestrationResult:
        """Fan the envelope out to all applicable consumers and collect failures."""
        outcomes = await asyncio.gather(
            *(self._dispatch(consumer, envelope) for consumer in self.consumers)
        )
        errors = [outcome for outcome in outcomes if outcome is not None]

        if errors:
            logger.error(
                f"Webhook orchestration errors for {envelope.idempotency_key}: {errors}",
                extra={
                    "source": envelope.source,
                    "event_id": envelope.event_id,
                    "kind": envelope.kind,
                    "orchestration_errors": errors,
                }
            )
            if self.alert is not None:
                self.alert(envelope.source, envelope.event_id, envelope.kind, errors)
        else:
            logger.info(f"Webhook {envelope.idempotency_key} ({envelope.kind}) dispatched")

        return OrchestrationResult(errors=errors)

    async def _dispatch(self, consumer: Consumer, envelope: WebhookEnvelope) -> Optional[str]:
        if not consumer.applies_to(envelope):
            return None
        if not consumer.configured:
            logger.debug(f"Consumer {consumer.name} not configured, skipping")
            return None

        try:
            await asyncio.wait_for(
                self.http.post_json(
                    consumer.url,
                    envelope.to_dict(),
                    dependency=consumer.name,
                    headers={"X-Event-Id": envelope.event_id, "X-Event-Source": envelope.source},
                ),
                timeout=self.consumer_timeout,
            )
        except asyncio.TimeoutError:
            return f"{consumer.name}: timed out after {self.consumer_timeout:g}s"
        except Exception as error:
            return f"{consumer.name}: {describe_failure(error)}"

        return None
