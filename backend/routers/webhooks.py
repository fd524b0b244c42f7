"""
Inbound Webhook Router

One endpoint per external event source. Every delivery is deduplicated
on (source, event id) and, if new, fanned out to the downstream
consumers before the acknowledgment is returned.

Endpoints:
- POST /api/webhooks/mercury
- POST /api/webhooks/stripe
- POST /api/webhooks/wave
- POST /api/webhooks/doorloop

Response (202):
    {"received": true}
    {"received": true, "orchestrationErrors": ["ledger: HTTP 503", ...]}

Consumer failures never turn into a non-2xx response; senders would
otherwise redeliver and amplify the failure.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request, status

from middleware.rate_limit import enforce_webhook_rate_limit
from utils.errors import ValidationError
from webhooks.dispatcher import WebhookDispatcher
from webhooks.envelope import build_envelope

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
    dependencies=[Depends(enforce_webhook_rate_limit)],
)

WEBHOOK_SOURCES = ("mercury", "stripe", "wave", "doorloop")


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


async def read_json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body", fields={"body": "must be a JSON object"})
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body", fields={"body": "must be a JSON object"})
    return body


async def receive_webhook(source: str, request: Request, dispatcher: WebhookDispatcher) -> dict:
    body = await read_json_body(request)
    envelope = build_envelope(source, request.headers, body)

    logger.info(
        f"Webhook received: {envelope.idempotency_key} ({envelope.kind})",
        extra={"source": source, "event_id": envelope.event_id, "kind": envelope.kind}
    )

    result = await dispatcher.ingest(envelope)
    return result.to_response()


def _register(source: str):
    async def endpoint(request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
        return await receive_webhook(source, request, dispatcher)

    endpoint.__name__ = f"receive_{source}_webhook"
    router.add_api_route(
        f"/{source}",
        endpoint,
        methods=["POST"],
        status_code=status.HTTP_202_ACCEPTED,
        summary=f"Receive {source.capitalize()} webhook",
    )


for _source in WEBHOOK_SOURCES:
    _register(_source)
