"""
Reconciliation API Endpoints

REST API for the reconciliation engine:
- POST /api/reconciliation/match - Match ledger against statement transactions
- POST /api/reconciliation/reconcile - Reconcile one account for a period
- POST /api/reconciliation/suggestions - Suggested matches for review
- POST /api/reconciliation/report - Portfolio report across accounts
- GET /api/reconciliation/sources - List supported sources
- GET /api/reconciliation/status - Module status

All computation happens on the transactions supplied in the request;
nothing is persisted.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from utils.errors import ValidationError
from reconciliation.models import LedgerTransaction, StatementTransaction
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.source_registry import StatementSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request Models ====================

class LedgerTransactionIn(BaseModel):
    id: str
    date: date
    amount: Decimal
    description: str = ""
    external_reference: Optional[str] = Field(default=None, description="Statement transaction id, if known")

    def to_domain(self) -> LedgerTransaction:
        return LedgerTransaction(
            id=self.id,
            date=self.date,
            amount=self.amount,
            description=self.description,
            external_reference=self.external_reference or None,
        )


class StatementTransactionIn(BaseModel):
    id: str
    date: date
    amount: Decimal
    description: str = ""

    def to_domain(self) -> StatementTransaction:
        return StatementTransaction(
            id=self.id,
            date=self.date,
            amount=self.amount,
            description=self.description,
        )


class MatchRequest(BaseModel):
    """Request to match two transaction lists."""
    source: str = Field(default="MANUAL", description="Statement source (MERCURY, WAVE, STRIPE, DOORLOOP, MANUAL)")
    ledger_transactions: List[LedgerTransactionIn] = Field(default_factory=list)
    statement_transactions: List[StatementTransactionIn] = Field(default_factory=list)


class ReconcileRequest(MatchRequest):
    """Request to reconcile one account."""
    # Optional here so a missing value surfaces as a field-level ValidationError
    account_id: Optional[str] = None
    statement_balance: Decimal
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    include_suggestions: bool = Field(default=False, description="Also suggest matches for the unmatched remainder")


class PortfolioReportRequest(BaseModel):
    """Request to reconcile several accounts and roll them up."""
    accounts: List[ReconcileRequest]
    tolerance: Optional[Decimal] = Field(default=None, description="Largest difference still treated as reconciled")


# ==================== Helpers ====================

def get_reconciliation_service(request: Request) -> ReconciliationService:
    return request.app.state.reconciliation_service


def parse_source(value: str) -> StatementSource:
    try:
        return StatementSource(value.upper())
    except ValueError:
        raise ValidationError(
            "Invalid source",
            fields={"source": f"must be one of {[s.value for s in StatementSource]}"},
        )


def _reconcile(service: ReconciliationService, body: ReconcileRequest):
    return service.reconcile(
        account_id=body.account_id,
        statement_balance=body.statement_balance,
        statement_transactions=[t.to_domain() for t in body.statement_transactions],
        ledger_transactions=[t.to_domain() for t in body.ledger_transactions],
        period_start=body.period_start,
        period_end=body.period_end,
        source=parse_source(body.source),
    )


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status(service: ReconciliationService = Depends(get_reconciliation_service)):
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "features": {
            "reference_matching": True,
            "amount_date_matching": True,
            "description_matching": True,
            "suggestions": True,
            "portfolio_report": True
        },
        "sources_enabled": [s.value for s in service.registry.get_enabled_sources()],
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/sources", summary="List supported sources")
async def list_sources(service: ReconciliationService = Depends(get_reconciliation_service)):
    """
    List all supported statement sources with their matching thresholds.
    """
    configs = service.registry.get_all_configs()
    return {
        "sources": [cfg.to_dict() for cfg in configs],
        "enabled_count": len(service.registry.get_enabled_sources())
    }


@router.post("/match", summary="Match transactions")
async def match_transactions(
    body: MatchRequest,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    match_set = service.match(
        [t.to_domain() for t in body.ledger_transactions],
        [t.to_domain() for t in body.statement_transactions],
        parse_source(body.source),
    )
    return match_set.to_dict()


@router.post("/reconcile", summary="Reconcile an account")
async def reconcile_account(
    body: ReconcileRequest,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """
    Reconcile one account for a period.

    Unmatched transactions and a non-zero difference are reported, not
    rejected. Only malformed input returns an error.
    """
    report = _reconcile(service, body)
    response = report.to_dict()

    if body.include_suggestions:
        suggestions = service.suggest_matches(
            report.match_set.unmatched_ledger,
            report.match_set.unmatched_statement,
            source=parse_source(body.source),
            account_id=body.account_id,
        )
        response["suggestions"] = [s.to_dict() for s in suggestions]

    return response


@router.post("/suggestions", summary="Suggest matches")
async def suggest_matches(
    body: MatchRequest,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """Ranked candidate pairs. Advisory only; no match is recorded."""
    suggestions = service.suggest_matches(
        [t.to_domain() for t in body.ledger_transactions],
        [t.to_domain() for t in body.statement_transactions],
        source=parse_source(body.source),
    )
    return {
        "suggestions": [s.to_dict() for s in suggestions],
        "count": len(suggestions)
    }


@router.post("/report", summary="Portfolio reconciliation report")
async def portfolio_report(
    body: PortfolioReportRequest,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    summaries = [_reconcile(service, account).summary for account in body.accounts]
    portfolio = service.summarize_portfolio(summaries, tolerance=body.tolerance)
    logger.info(
        f"Portfolio report: {portfolio.fully_reconciled} reconciled, "
        f"{portfolio.needs_attention} need attention"
    )
    return portfolio.to_dict()
