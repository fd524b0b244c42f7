"""
Reconciliation Data Models

Transactions from both sides of a reconciliation, the matches between
them, and the summaries produced for an account or a portfolio.

Money is always ``Decimal``. Dates are calendar dates; a timestamp
supplied as input is truncated to its date.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from utils.errors import ValidationError


def parse_date(value: Any, field_name: str = "date") -> date:
    """Coerce an ISO string, datetime or date to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date_parser.isoparse(value).date()
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid {field_name}",
        fields={field_name: f"expected an ISO date, got {value!r}"},
    )


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce a number or numeric string to Decimal without float rounding."""
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}", fields={field_name: "is required"})
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(
            f"Invalid {field_name}",
            fields={field_name: f"expected a number, got {value!r}"},
        )


def _require_id(data: Dict[str, Any]) -> str:
    txn_id = data.get("id")
    if txn_id is None or str(txn_id) == "":
        raise ValidationError("Transaction id is required", fields={"id": "is required"})
    return str(txn_id)


@dataclass(frozen=True)
class LedgerTransaction:
    """A transaction as recorded in the books."""
    id: str
    date: date
    amount: Decimal
    description: str = ""
    external_reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerTransaction":
        reference = (
            data.get("external_reference")
            or data.get("externalId")
            or data.get("external_id")
        )
        return cls(
            id=_require_id(data),
            date=parse_date(data.get("date")),
            amount=parse_amount(data.get("amount")),
            description=data.get("description") or "",
            external_reference=str(reference) if reference else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "amount": str(self.amount),
            "description": self.description,
            "external_reference": self.external_reference,
        }


@dataclass(frozen=True)
class StatementTransaction:
    """A transaction as reported by the bank or payment provider."""
    id: str
    date: date
    amount: Decimal
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatementTransaction":
        return cls(
            id=_require_id(data),
            date=parse_date(data.get("date")),
            amount=parse_amount(data.get("amount")),
            description=data.get("description") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "amount": str(self.amount),
            "description": self.description,
        }


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"


@dataclass(frozen=True)
class Match:
    """One ledger transaction paired with one statement transaction."""
    ledger: LedgerTransaction
    statement: StatementTransaction
    confidence: float
    match_type: MatchType
    rule: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledger_id": self.ledger.id,
            "statement_id": self.statement.id,
            "confidence": round(self.confidence, 4),
            "match_type": self.match_type.value,
            "rule": self.rule,
            "amount": str(self.ledger.amount),
        }


@dataclass
class MatchSet:
    """
    Result of matching two transaction lists.

    Every input transaction appears exactly once, either in a match or
    in the unmatched list for its side.
    """
    matches: List[Match] = field(default_factory=list)
    unmatched_ledger: List[LedgerTransaction] = field(default_factory=list)
    unmatched_statement: List[StatementTransaction] = field(default_factory=list)

    def matched_ledger_ids(self) -> set:
        return {m.ledger.id for m in self.matches}

    def matched_statement_ids(self) -> set:
        return {m.statement.id for m in self.matches}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "unmatched_ledger": [t.to_dict() for t in self.unmatched_ledger],
            "unmatched_statement": [t.to_dict() for t in self.unmatched_statement],
        }


@dataclass(frozen=True)
class MatchSuggestion:
    """A candidate pairing offered to a human reviewer."""
    ledger_id: str
    statement_id: str
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ledger_id": self.ledger_id,
            "statement_id": self.statement_id,
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
        }


@dataclass
class ReconciliationSummary:
    account_id: str
    statement_balance: Decimal
    book_balance: Decimal
    difference: Decimal
    matched_count: int
    unmatched_ledger_count: int
    unmatched_statement_count: int
    period_start: date
    period_end: date

    @property
    def is_balanced(self) -> bool:
        return self.difference == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "statement_balance": str(self.statement_balance),
            "book_balance": str(self.book_balance),
            "difference": str(self.difference),
            "matched_count": self.matched_count,
            "unmatched_ledger_count": self.unmatched_ledger_count,
            "unmatched_statement_count": self.unmatched_statement_count,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "is_balanced": self.is_balanced,
        }


@dataclass
class ReconciliationReport:
    """Summary plus the match set it was computed from."""
    summary: ReconciliationSummary
    match_set: MatchSet

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            **self.match_set.to_dict(),
        }


@dataclass
class PortfolioReconciliation:
    """Roll-up of several account summaries."""
    accounts: List[ReconciliationSummary]
    total_difference: Decimal
    fully_reconciled: int
    needs_attention: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": [a.to_dict() for a in self.accounts],
            "total_difference": str(self.total_difference),
            "fully_reconciled": self.fully_reconciled,
            "needs_attention": self.needs_attention,
        }
