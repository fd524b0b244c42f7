"""
Unit Tests for Webhook Idempotency & Orchestration

Tests:
- Exactly-once dispatch per (source, event id), sequential and concurrent
- Consumer failures collected as "<consumer>: <reason>" strings
- Ledger consumer only for transaction events
- Per-consumer timeout
- Out-of-band alerting

Run with: pytest tests/test_webhook_dispatcher.py -v
"""

import asyncio

import httpx
import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from unittest.mock import AsyncMock, MagicMock

from database.webhook_models import WebhookEventDB
from migrations.create_webhook_events_table import create_webhook_tables
from resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from resilience.executor import ResilientCallExecutor
from resilience.http_client import ResilientHttpClient
from resilience.retry import RetryConfig
from utils.errors import IntegrationError
from webhooks.consumers import Consumer, build_default_consumers
from webhooks.dispatcher import WebhookDispatcher
from webhooks.envelope import build_envelope
from webhooks.idempotency import InMemoryIdempotencyStore


def envelope(event_id="evt_1", kind="mercury.transaction.created", source="mercury"):
    return build_envelope(source, {}, {"id": event_id, "type": kind})


class HostRouter:
    """MockTransport handler answering with a fixed status per host."""

    def __init__(self, statuses):
        self.statuses = statuses
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.host)
        return httpx.Response(self.statuses.get(request.url.host, 200))


def make_http(handler, fake_sleep, clock, breakers=None, timeout=30.0):
    executor = ResilientCallExecutor(
        breakers if breakers is not None else CircuitBreakerRegistry(clock=clock),
        default_retry=RetryConfig(max_retries=0),
        sleep=fake_sleep,
    )
    return ResilientHttpClient(
        executor,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        timeout=timeout,
    )


class TestIdempotency:
    """Duplicate deliveries reach consumers at most once."""

    @pytest.fixture
    def http(self):
        http = MagicMock()
        http.post_json = AsyncMock(return_value=httpx.Response(200))
        return http

    @pytest.fixture
    def dispatcher(self, http):
        consumers = [Consumer("evidence", "http://evidence.local/ingest")]
        return WebhookDispatcher(InMemoryIdempotencyStore(), http, consumers, alert=None)

    @pytest.mark.asyncio
    async def test_sequential_duplicate_is_acknowledged_without_dispatch(self, dispatcher, http):
        first = await dispatcher.ingest(envelope())
        second = await dispatcher.ingest(envelope())

        assert first.to_response() == {"received": True}
        assert second.to_response() == {"received": True}
        assert second.duplicate is True
        assert http.post_json.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_dispatch_once(self, dispatcher, http):
        results = await asyncio.gather(*(dispatcher.ingest(envelope()) for _ in range(10)))

        assert all(r.acknowledged for r in results)
        assert sum(not r.duplicate for r in results) == 1
        assert http.post_json.await_count == 1

    @pytest.mark.asyncio
    async def test_same_event_id_from_different_sources_is_distinct(self, dispatcher, http):
        await dispatcher.ingest(envelope(source="mercury"))
        await dispatcher.ingest(envelope(source="stripe"))

        assert http.post_json.await_count == 2

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, http):
        store = MagicMock()
        store.record_if_absent = AsyncMock(side_effect=RuntimeError("db down"))
        dispatcher = WebhookDispatcher(store, http, [Consumer("evidence", "http://e/ingest")], alert=None)

        with pytest.raises(RuntimeError):
            await dispatcher.ingest(envelope())

        http.post_json.assert_not_awaited()


class TestOrchestration:
    """Fan-out to consumers and error aggregation."""

    @pytest.mark.asyncio
    async def test_failed_consumer_reported_others_still_called(self, fake_sleep, clock):
        router = HostRouter({"a.local": 500, "b.local": 200})
        http = make_http(router, fake_sleep, clock)
        consumers = [Consumer("A", "http://a.local/ingest"), Consumer("B", "http://b.local/ingest")]
        alert = MagicMock()
        dispatcher = WebhookDispatcher(InMemoryIdempotencyStore(), http, consumers, alert=alert)

        result = await dispatcher.ingest(envelope())

        assert result.to_response() == {"received": True, "orchestrationErrors": ["A: HTTP 500"]}
        assert sorted(router.calls) == ["a.local", "b.local"]
        alert.assert_called_once_with("mercury", "evt_1", "mercury.transaction.created", ["A: HTTP 500"])

    @pytest.mark.asyncio
    async def test_errors_keep_consumer_order(self):
        http = MagicMock()

        async def post_json(url, payload, **kwargs):
            if "first" in url:
                await asyncio.sleep(0.01)
                raise IntegrationError.from_status("first", 503)
            raise IntegrationError("connection reset", dependency="second")

        http.post_json = post_json
        consumers = [Consumer("first", "http://first/ingest"), Consumer("second", "http://second/ingest")]
        dispatcher = WebhookDispatcher(InMemoryIdempotencyStore(), http, consumers, alert=None)

        result = await dispatcher.orchestrate(envelope())

        assert result.errors == ["first: HTTP 503", "second: connection reset"]
        assert not result.ok

    @pytest.mark.asyncio
    async def test_ledger_only_receives_transaction_events(self):
        http = MagicMock()
        http.post_json = AsyncMock(return_value=httpx.Response(200))
        consumers = [
            Consumer("evidence", "http://evidence/ingest"),
            Consumer("ledger", "http://ledger/ingest", kind_prefixes=("mercury.transaction",)),
        ]
        dispatcher = WebhookDispatcher(InMemoryIdempotencyStore(), http, consumers, alert=None)

        await dispatcher.ingest(envelope("evt_1", kind="mercury.transaction.created"))
        await dispatcher.ingest(envelope("evt_2", kind="mercury.account.updated"))

        urls = [call.args[0] for call in http.post_json.await_args_list]
        assert urls.count("http://ledger/ingest") == 1
        assert urls.count("http://evidence/ingest") == 2

    @pytest.mark.asyncio
    async def test_unconfigured_consumer_is_skipped(self):
        http = MagicMock()
        http.post_json = AsyncMock(return_value=httpx.Response(200))
        consumers = [Consumer("evidence", None), Consumer("chronicle", "http://chronicle/entries")]
        dispatcher = WebhookDispatcher(InMemoryIdempotencyStore(), http, consumers, alert=None)

        result = await dispatcher.ingest(envelope())

        assert result.errors == []
        assert http.post_json.await_count == 1

    @pytest.mark.asyncio
    async def test_slow_consumer_times_out(self):
        http = MagicMock()

        async def post_json(url, payload, **kwargs):
            if "slow" in url:
                await asyncio.sleep(5)
            return httpx.Response(200)

        http.post_json = post_json
        consumers = [Consumer("slow", "http://slow/ingest"), Consumer("fast", "http://fast/ingest")]
        dispatcher = WebhookDispatcher(
            InMemoryIdempotencyStore(), http, consumers, consumer_timeout=0.05, alert=None
        )

        result = await dispatcher.ingest(envelope())

        assert result.errors == ["slow: timed out after 0.05s"]

    @pytest.mark.asyncio
    async def test_hanging_consumer_counts_against_its_breaker(self, fake_sleep, clock):
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "slow.local":
                await asyncio.sleep(5)
            return httpx.Response(200)

        breakers = CircuitBreakerRegistry(failure_threshold=5, clock=clock)
        http = make_http(handler, fake_sleep, clock, breakers=breakers, timeout=0.01)
        consumers = [Consumer("slow", "http://slow.local/ingest"), Consumer("fast", "http://fast.local/ingest")]
        dispatcher = WebhookDispatcher(
            InMemoryIdempotencyStore(), http, consumers, consumer_timeout=1.0, alert=None
        )

        for i in range(5):
            result = await dispatcher.ingest(envelope(f"evt_{i}"))
            assert result.errors == ["slow: timed out after 0.01s"]

        assert breakers.get("slow").snapshot().state == CircuitState.OPEN
        assert breakers.get("fast").snapshot().consecutive_failures == 0

        result = await dispatcher.ingest(envelope("evt_5"))
        assert result.errors == ["slow: Circuit breaker is open for slow"]

    @pytest.mark.asyncio
    async def test_envelope_and_event_headers_sent(self):
        http = MagicMock()
        http.post_json = AsyncMock(return_value=httpx.Response(200))
        dispatcher = WebhookDispatcher(
            InMemoryIdempotencyStore(), http, [Consumer("logic", "http://logic/evaluate")], alert=None
        )

        await dispatcher.ingest(envelope())

        call = http.post_json.await_args
        assert call.args[1]["event_id"] == "evt_1"
        assert call.args[1]["source"] == "mercury"
        assert call.kwargs["dependency"] == "logic"
        assert call.kwargs["headers"] == {"X-Event-Id": "evt_1", "X-Event-Source": "mercury"}


class TestDefaultConsumers:

    def test_order_paths_and_prefixes(self):
        settings = MagicMock(
            EVIDENCE_SERVICE_URL="http://evidence/",
            LEDGER_SERVICE_URL="http://ledger",
            CHRONICLE_SERVICE_URL="http://chronicle",
            LOGIC_SERVICE_URL="",
            ledger_event_prefixes=("mercury.transaction",),
        )

        consumers = build_default_consumers(settings)

        assert [c.name for c in consumers] == ["evidence", "ledger", "chronicle", "logic"]
        assert consumers[0].url == "http://evidence/ingest"
        assert consumers[1].url == "http://ledger/ingest"
        assert consumers[2].url == "http://chronicle/entries"
        assert consumers[3].configured is False
        assert consumers[1].kind_prefixes == ("mercury.transaction",)


class TestWebhookEventsSchema:
    """The migration builds webhook_events from the model, unique key included."""

    @pytest.fixture
    def engine(self):
        engine = create_engine("sqlite://")
        yield engine
        engine.dispose()

    def test_migration_creates_table_and_indexes(self, engine):
        with engine.begin() as conn:
            create_webhook_tables(conn)

        inspector = inspect(engine)
        indexes = {ix["name"]: ix for ix in inspector.get_indexes("webhook_events")}

        assert "webhook_events" in inspector.get_table_names()
        assert indexes["uq_webhook_events_idempotency_key"]["unique"]
        assert indexes["uq_webhook_events_idempotency_key"]["column_names"] == ["idempotency_key"]
        assert {"idx_webhook_events_source", "idx_webhook_events_first_seen"} <= set(indexes)

    def test_migration_is_rerunnable(self, engine):
        with engine.begin() as conn:
            create_webhook_tables(conn)
        with engine.begin() as conn:
            create_webhook_tables(conn)

        assert inspect(engine).get_table_names() == ["webhook_events"]

    def test_duplicate_idempotency_key_rejected(self, engine):
        with engine.begin() as conn:
            create_webhook_tables(conn)

        with Session(engine) as session:
            session.add(WebhookEventDB(idempotency_key="mercury:evt_1", source="mercury", event_id="evt_1"))
            session.commit()

            session.add(WebhookEventDB(idempotency_key="mercury:evt_1", source="mercury", event_id="evt_1"))
            with pytest.raises(IntegrityError):
                session.commit()
