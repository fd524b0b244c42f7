"""
Webhook Idempotency & Orchestration Module

Receives inbound event envelopes from external services (Mercury,
Stripe, Wave, DoorLoop), deduplicates them and fans each new one out to
the downstream consumers (evidence, ledger, chronicle, logic).
"""

from webhooks.models import WebhookEnvelope, OrchestrationResult, IngestResult
from webhooks.envelope import build_envelope
from webhooks.idempotency import IdempotencyStore, InMemoryIdempotencyStore, SqlIdempotencyStore
from webhooks.consumers import Consumer, build_default_consumers
from webhooks.dispatcher import WebhookDispatcher

__all__ = [
    'WebhookEnvelope',
    'OrchestrationResult',
    'IngestResult',
    'build_envelope',
    'IdempotencyStore',
    'InMemoryIdempotencyStore',
    'SqlIdempotencyStore',
    'Consumer',
    'build_default_consumers',
    'WebhookDispatcher',
]
