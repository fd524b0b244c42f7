"""
HTTP tests for the webhook, reconciliation and resilience routers

Builds a minimal app with the real routers and error handlers and
in-memory services on app.state, so no database or network is needed.

Run with: pytest tests/test_api_routes.py -v
"""

import httpx
import pytest
from fastapi import APIRouter, Depends, FastAPI
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from middleware.rate_limit import enforce_api_rate_limit
from reconciliation import ReconciliationService, SourceRegistry, reconciliation_router
from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.rate_limiter import SlidingWindowRateLimiter
from routers import resilience_router, webhooks_router
from utils.error_handlers import register_error_handlers
from webhooks.consumers import Consumer
from webhooks.dispatcher import WebhookDispatcher
from webhooks.idempotency import InMemoryIdempotencyStore


def build_app(http, api_limit=100, webhook_limit=1000):
    app = FastAPI()
    api_router = APIRouter(prefix="/api")
    api_router.include_router(webhooks_router)
    api_router.include_router(reconciliation_router, dependencies=[Depends(enforce_api_rate_limit)])
    api_router.include_router(resilience_router)
    app.include_router(api_router)
    register_error_handlers(app)

    app.state.breakers = CircuitBreakerRegistry()
    app.state.api_limiter = SlidingWindowRateLimiter(api_limit, 60.0, name="api")
    app.state.webhook_limiter = SlidingWindowRateLimiter(webhook_limit, 60.0, name="webhook")
    app.state.integration_limiter = SlidingWindowRateLimiter(30, 60.0, name="integration")
    app.state.webhook_dispatcher = WebhookDispatcher(
        InMemoryIdempotencyStore(),
        http,
        [
            Consumer("evidence", "http://evidence/ingest"),
            Consumer("ledger", "http://ledger/ingest", kind_prefixes=("mercury.transaction",)),
        ],
        alert=None,
    )
    app.state.reconciliation_service = ReconciliationService(SourceRegistry())
    return app


@pytest.fixture
def http():
    http = MagicMock()
    http.post_json = AsyncMock(return_value=httpx.Response(200))
    return http


@pytest.fixture
def client(http):
    return TestClient(build_app(http))


class TestWebhookRoutes:

    @pytest.mark.parametrize("source", ["mercury", "stripe", "wave", "doorloop"])
    def test_each_source_acknowledged(self, client, source):
        response = client.post(f"/api/webhooks/{source}", json={"id": "evt_1", "type": "x.created"})

        assert response.status_code == 202
        assert response.json() == {"received": True}

    def test_unknown_source_not_routed(self, client):
        response = client.post("/api/webhooks/paypal", json={"id": "evt_1"})
        assert response.status_code in (404, 405)

    def test_duplicate_delivery_dispatched_once(self, client, http):
        for _ in range(3):
            response = client.post(
                "/api/webhooks/mercury",
                json={"type": "mercury.transaction.created"},
                headers={"X-Event-Id": "evt_42"},
            )
            assert response.status_code == 202
            assert response.json() == {"received": True}

        urls = [call.args[0] for call in http.post_json.await_args_list]
        assert urls == ["http://evidence/ingest", "http://ledger/ingest"]

    def test_consumer_failure_still_acknowledged(self, client, http):
        async def post_json(url, payload, **kwargs):
            if "ledger" in url:
                raise RuntimeError("HTTP 503")
            return httpx.Response(200)

        http.post_json = post_json

        response = client.post("/api/webhooks/mercury", json={"id": "evt_9", "type": "mercury.transaction.created"})

        assert response.status_code == 202
        assert response.json() == {"received": True, "orchestrationErrors": ["ledger: HTTP 503"]}

    def test_invalid_json_is_validation_error(self, client):
        response = client.post(
            "/api/webhooks/stripe",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_non_object_json_is_validation_error(self, client):
        response = client.post("/api/webhooks/stripe", json=[1, 2, 3])
        assert response.status_code == 400


class TestRateLimiting:

    def test_over_limit_gets_429_with_headers(self, http):
        client = TestClient(build_app(http, api_limit=2))

        for _ in range(2):
            assert client.get("/api/reconciliation/status").status_code == 200
        response = client.get("/api/reconciliation/status")

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["retryAfter"] > 0
        assert int(response.headers["Retry-After"]) > 0
        assert "X-RateLimit-Reset" in response.headers

    def test_limit_is_per_client_ip(self, http):
        client = TestClient(build_app(http, api_limit=1))

        assert client.get("/api/reconciliation/status", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
        assert client.get("/api/reconciliation/status", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 200
        assert client.get("/api/reconciliation/status", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429

    def test_webhook_burst_not_bound_by_api_limit(self, http):
        client = TestClient(build_app(http, api_limit=2))

        for i in range(10):
            assert client.post("/api/webhooks/stripe", json={"id": f"evt_{i}"}).status_code == 202
        assert client.get("/api/reconciliation/status").status_code == 200

    def test_webhooks_have_their_own_ceiling(self, http):
        client = TestClient(build_app(http, api_limit=100, webhook_limit=3))

        for i in range(3):
            assert client.post("/api/webhooks/wave", json={"id": f"e{i}"}).status_code == 202
        response = client.post("/api/webhooks/wave", json={"id": "e3"})

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert client.get("/api/reconciliation/status").status_code == 200

    def test_limiters_listed(self, client):
        body = client.get("/api/resilience/limiters").json()

        assert [limiter["name"] for limiter in body["limiters"]] == ["api", "webhook", "integration"]
        assert body["limiters"][1]["max_requests"] == 1000


class TestReconciliationRoutes:

    LEDGER = [
        {"id": "L1", "date": "2024-01-10", "amount": "100.00", "description": "RENT JAN"},
        {"id": "L2", "date": "2024-01-12", "amount": "4700.00", "description": "Client payment"},
    ]
    STATEMENT = [
        {"id": "ext1", "date": "2024-01-11", "amount": "100.00", "description": "Rent January payment"},
    ]

    def test_match(self, client):
        response = client.post("/api/reconciliation/match", json={
            "ledger_transactions": self.LEDGER,
            "statement_transactions": self.STATEMENT,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["matches"][0]["ledger_id"] == "L1"
        assert body["matches"][0]["statement_id"] == "ext1"
        assert body["matches"][0]["confidence"] == 0.95
        assert [t["id"] for t in body["unmatched_ledger"]] == ["L2"]

    def test_reconcile(self, client):
        response = client.post("/api/reconciliation/reconcile", json={
            "account_id": "acct_1",
            "statement_balance": "5000.00",
            "period_start": "2024-01-01",
            "period_end": "2024-01-31",
            "ledger_transactions": self.LEDGER,
            "statement_transactions": self.STATEMENT,
            "include_suggestions": True,
        })

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["book_balance"] == "4800.00"
        assert summary["difference"] == "200.00"
        assert summary["matched_count"] == 1
        assert response.json()["suggestions"] == []

    def test_reconcile_missing_account_is_400(self, client):
        response = client.post("/api/reconciliation/reconcile", json={
            "statement_balance": "0",
            "period_start": "2024-01-01",
            "period_end": "2024-01-31",
        })

        assert response.status_code == 400
        assert "account_id" in response.json()["fields"]

    def test_malformed_amount_is_400(self, client):
        response = client.post("/api/reconciliation/match", json={
            "ledger_transactions": [{"id": "L1", "date": "2024-01-10", "amount": "lots"}],
        })

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_source_is_400(self, client):
        response = client.post("/api/reconciliation/match", json={"source": "PAYPAL"})
        assert response.status_code == 400
        assert "source" in response.json()["fields"]

    def test_suggestions(self, client):
        response = client.post("/api/reconciliation/suggestions", json={
            "ledger_transactions": [{"id": "L1", "date": "2024-01-01", "amount": 30, "description": "gym membership"}],
            "statement_transactions": [{"id": "S1", "date": "2024-01-07", "amount": 30, "description": "gym membrshp"}],
        })

        body = response.json()
        assert body["count"] == 1
        assert body["suggestions"][0]["reason"].startswith("Amount match + 6 days apart")

    def test_portfolio_report(self, client):
        account = {
            "statement_balance": "100.00",
            "period_start": "2024-01-01",
            "period_end": "2024-01-31",
            "ledger_transactions": [self.LEDGER[0]],
            "statement_transactions": self.STATEMENT,
        }
        response = client.post("/api/reconciliation/report", json={
            "accounts": [
                {**account, "account_id": "a"},
                {**account, "account_id": "b", "statement_balance": "150.00"},
            ]
        })

        body = response.json()
        assert body["total_difference"] == "50.00"
        assert body["fully_reconciled"] == 1
        assert body["needs_attention"] == 1

    def test_sources_and_status(self, client):
        sources = client.get("/api/reconciliation/sources").json()
        assert {s["source"] for s in sources["sources"]} == {"MERCURY", "WAVE", "STRIPE", "DOORLOOP", "MANUAL"}

        status = client.get("/api/reconciliation/status").json()
        assert status["status"] == "operational"


class TestResilienceRoutes:

    def test_breaker_snapshot(self, client):
        client.app.state.breakers.get("ledger")

        body = client.get("/api/resilience/breakers").json()

        assert body["breakers"]["ledger"]["state"] == "closed"
        assert body["open"] == []
