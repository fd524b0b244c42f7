"""
Reconciliation Service

Business logic for the reconciliation engine:
- Matching ledger transactions against a statement feed
- Account reconciliation summaries (balance drift + unmatched counts)
- Suggested matches for human review
- Manual matches recorded by a reviewer
- Portfolio roll-up across accounts
- Audit logging

Reconciliation is a reporting function. Unmatched transactions and
balance differences are returned as data, never raised; only malformed
input is an error.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from utils.errors import ValidationError
from reconciliation.matching_rules.tiered_rules import TieredMatchingRules
from reconciliation.models import (
    LedgerTransaction,
    Match,
    MatchSet,
    MatchSuggestion,
    MatchType,
    PortfolioReconciliation,
    ReconciliationReport,
    ReconciliationSummary,
    StatementTransaction,
    parse_amount,
)
from reconciliation.source_registry import SourceRegistry, StatementSource

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    RUN_STARTED = "reconciliation.run_started"
    RUN_COMPLETED = "reconciliation.run_completed"
    SUGGESTIONS_GENERATED = "reconciliation.suggestions_generated"
    MANUAL_MATCH_CREATED = "reconciliation.manual_match_created"


def log_reconciliation_event(
    event_type: str,
    account_id: Optional[str],
    details: Dict[str, Any],
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "account_id": account_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


class ReconciliationService:
    """
    Service for reconciling internal books against external statements.

    Stateless between runs; construct once and share.
    """

    def __init__(self, registry: Optional[SourceRegistry] = None):
        self.registry = registry or SourceRegistry()

    def rules_for(self, source: StatementSource = StatementSource.MANUAL) -> TieredMatchingRules:
        return TieredMatchingRules(self.registry.get_matching_config(source))

    def match(
        self,
        ledger_transactions: Sequence[LedgerTransaction],
        statement_transactions: Sequence[StatementTransaction],
        source: StatementSource = StatementSource.MANUAL,
    ) -> MatchSet:
        """Pair ledger and statement transactions using the source's thresholds."""
        return self.rules_for(source).match(ledger_transactions, statement_transactions)

    def reconcile(
        self,
        account_id: str,
        statement_balance: Union[Decimal, float, str],
        statement_transactions: Sequence[StatementTransaction],
        ledger_transactions: Sequence[LedgerTransaction],
        period_start: date,
        period_end: date,
        source: StatementSource = StatementSource.MANUAL,
    ) -> ReconciliationReport:
        """
        Reconcile one account for one period.

        Ledger transactions dated outside [period_start, period_end] are
        ignored for both matching and the book balance.

        Raises:
            ValidationError: missing account id or period_end before period_start
        """
        self._validate_run(account_id, period_start, period_end)
        statement_balance = parse_amount(statement_balance, "statement_balance")

        in_period = [t for t in ledger_transactions if period_start <= t.date <= period_end]

        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_STARTED,
            account_id,
            {
                "source": source.value,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "ledger_transactions": len(in_period),
                "excluded_out_of_period": len(ledger_transactions) - len(in_period),
                "statement_transactions": len(statement_transactions),
            }
        )

        match_set = self.match(in_period, statement_transactions, source)

        book_balance = sum((t.amount for t in in_period), Decimal("0"))
        summary = ReconciliationSummary(
            account_id=account_id,
            statement_balance=statement_balance,
            book_balance=book_balance,
            difference=statement_balance - book_balance,
            matched_count=len(match_set.matches),
            unmatched_ledger_count=len(match_set.unmatched_ledger),
            unmatched_statement_count=len(match_set.unmatched_statement),
            period_start=period_start,
            period_end=period_end,
        )

        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_COMPLETED,
            account_id,
            {
                "matched": summary.matched_count,
                "unmatched_ledger": summary.unmatched_ledger_count,
                "unmatched_statement": summary.unmatched_statement_count,
                "difference": str(summary.difference),
            }
        )

        if not summary.is_balanced:
            logger.warning(
                f"Account {account_id} differs from statement by {summary.difference}",
                extra={"account_id": account_id, "difference": str(summary.difference)}
            )

        return ReconciliationReport(summary=summary, match_set=match_set)

    def suggest_matches(
        self,
        unmatched_ledger: Sequence[LedgerTransaction],
        unmatched_statement: Sequence[StatementTransaction],
        source: StatementSource = StatementSource.MANUAL,
        account_id: Optional[str] = None,
    ) -> List[MatchSuggestion]:
        """Ranked candidate pairs for review. Never alters any match set."""
        suggestions = self.rules_for(source).suggest_matches(unmatched_ledger, unmatched_statement)

        log_reconciliation_event(
            ReconciliationAuditEvent.SUGGESTIONS_GENERATED,
            account_id,
            {
                "source": source.value,
                "unmatched_ledger": len(unmatched_ledger),
                "unmatched_statement": len(unmatched_statement),
                "suggestions": len(suggestions),
            }
        )
        return suggestions

    def manual_match(
        self,
        match_set: MatchSet,
        ledger_id: str,
        statement_id: str,
        actor: str = "system",
    ) -> Match:
        """
        Record a reviewer's match between two unmatched transactions.

        Mutates ``match_set`` in place: the pair leaves the unmatched lists
        and a MANUAL match with confidence 1.0 is appended.

        Raises:
            ValidationError: either id is already matched or not in the set
        """
        errors = {}
        if ledger_id in match_set.matched_ledger_ids():
            errors["ledger_id"] = f"{ledger_id} is already matched"
        if statement_id in match_set.matched_statement_ids():
            errors["statement_id"] = f"{statement_id} is already matched"

        ledger = next((t for t in match_set.unmatched_ledger if t.id == ledger_id), None)
        statement = next((t for t in match_set.unmatched_statement if t.id == statement_id), None)
        if ledger is None and "ledger_id" not in errors:
            errors["ledger_id"] = f"{ledger_id} is not an unmatched ledger transaction"
        if statement is None and "statement_id" not in errors:
            errors["statement_id"] = f"{statement_id} is not an unmatched statement transaction"

        if errors:
            raise ValidationError("Cannot create manual match", fields=errors)

        match = Match(ledger, statement, 1.0, MatchType.MANUAL, "manual")
        match_set.unmatched_ledger.remove(ledger)
        match_set.unmatched_statement.remove(statement)
        match_set.matches.append(match)

        log_reconciliation_event(
            ReconciliationAuditEvent.MANUAL_MATCH_CREATED,
            None,
            {"ledger_id": ledger_id, "statement_id": statement_id},
            actor=actor,
        )
        return match

    def summarize_portfolio(
        self,
        summaries: Sequence[ReconciliationSummary],
        tolerance: Optional[Union[Decimal, float, str]] = None,
    ) -> PortfolioReconciliation:
        """
        Roll up account summaries.

        An account is fully reconciled when its absolute difference is
        within ``tolerance`` and nothing is left unmatched on either side.
        """
        if tolerance is None:
            tolerance = self.registry.default_matching.amount_tolerance
        else:
            tolerance = parse_amount(tolerance, "tolerance")

        fully_reconciled = 0
        for summary in summaries:
            balanced = abs(summary.difference) < tolerance
            if balanced and not summary.unmatched_ledger_count and not summary.unmatched_statement_count:
                fully_reconciled += 1

        return PortfolioReconciliation(
            accounts=list(summaries),
            total_difference=sum((s.difference for s in summaries), Decimal("0")),
            fully_reconciled=fully_reconciled,
            needs_attention=len(summaries) - fully_reconciled,
        )

    @staticmethod
    def _validate_run(account_id: str, period_start: date, period_end: date):
        errors = {}
        if not account_id or not str(account_id).strip():
            errors["account_id"] = "account_id is required"
        if period_start is None:
            errors["period_start"] = "period_start is required"
        if period_end is None:
            errors["period_end"] = "period_end is required"
        if period_start is not None and period_end is not None and period_end < period_start:
            errors["period_end"] = "period_end must not be before period_start"
        if errors:
            raise ValidationError("Invalid reconciliation request", fields=errors)
