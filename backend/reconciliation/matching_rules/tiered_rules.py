"""
Tiered Matching Rules

Pairs ledger transactions with statement transactions in three ordered
tiers. A transaction consumed by an earlier tier is never offered to a
later one, so every transaction ends up in at most one match.

Tier 1 - Reference (confidence 1.0):
    ledger.external_reference == statement.id
Tier 2 - Amount + date (confidence 0.95):
    |amount diff| < tolerance and date gap <= 2 days.
    First qualifying statement transaction in input order wins.
Tier 3 - Description (confidence = similarity):
    amount within tolerance, date gap <= 5 days, similarity > 0.6.
    Best-scoring statement transaction per ledger transaction; ties keep
    the earlier one.

Matching is greedy and order-dependent, not a globally optimal
assignment.
"""

from typing import List, Optional, Sequence

from reconciliation.models import (
    LedgerTransaction,
    Match,
    MatchSet,
    MatchSuggestion,
    MatchType,
    StatementTransaction,
)
from reconciliation.similarity import description_similarity
from reconciliation.source_registry import MatchingConfig

REFERENCE_CONFIDENCE = 1.0
AMOUNT_DATE_CONFIDENCE = 0.95

RULE_REFERENCE = "reference"
RULE_AMOUNT_DATE = "amount_date"
RULE_DESCRIPTION = "description"


def days_apart(ledger: LedgerTransaction, statement: StatementTransaction) -> int:
    return abs((ledger.date - statement.date).days)


class TieredMatchingRules:
    """
    Matching engine for one reconciliation run.

    Stateless apart from its config; safe to share.
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()

    def amounts_match(self, ledger: LedgerTransaction, statement: StatementTransaction) -> bool:
        return abs(ledger.amount - statement.amount) < self.config.amount_tolerance

    def match(
        self,
        ledger_transactions: Sequence[LedgerTransaction],
        statement_transactions: Sequence[StatementTransaction],
    ) -> MatchSet:
        """
        Run all three tiers.

        Returns:
            MatchSet whose unmatched lists keep the input order
        """
        ledger_pool: List[LedgerTransaction] = list(ledger_transactions)
        statement_pool: List[StatementTransaction] = list(statement_transactions)
        matches: List[Match] = []

        matches.extend(self._match_by_reference(ledger_pool, statement_pool))
        matches.extend(self._match_by_amount_and_date(ledger_pool, statement_pool))
        matches.extend(self._match_by_description(ledger_pool, statement_pool))

        return MatchSet(
            matches=matches,
            unmatched_ledger=ledger_pool,
            unmatched_statement=statement_pool,
        )

    def _match_by_reference(
        self,
        ledger_pool: List[LedgerTransaction],
        statement_pool: List[StatementTransaction],
    ) -> List[Match]:
        matches = []
        for ledger in list(ledger_pool):
            if not ledger.external_reference:
                continue
            statement = next(
                (s for s in statement_pool if s.id == ledger.external_reference),
                None,
            )
            if statement is None:
                continue
            matches.append(Match(ledger, statement, REFERENCE_CONFIDENCE, MatchType.EXACT, RULE_REFERENCE))
            ledger_pool.remove(ledger)
            statement_pool.remove(statement)
        return matches

    def _match_by_amount_and_date(
        self,
        ledger_pool: List[LedgerTransaction],
        statement_pool: List[StatementTransaction],
    ) -> List[Match]:
        window = self.config.exact_date_window_days
        matches = []
        for ledger in list(ledger_pool):
            for statement in statement_pool:
                if self.amounts_match(ledger, statement) and days_apart(ledger, statement) <= window:
                    matches.append(Match(ledger, statement, AMOUNT_DATE_CONFIDENCE, MatchType.EXACT, RULE_AMOUNT_DATE))
                    ledger_pool.remove(ledger)
                    statement_pool.remove(statement)
                    break
        return matches

    def _match_by_description(
        self,
        ledger_pool: List[LedgerTransaction],
        statement_pool: List[StatementTransaction],
    ) -> List[Match]:
        window = self.config.fuzzy_date_window_days
        threshold = self.config.fuzzy_threshold
        matches = []
        for ledger in list(ledger_pool):
            best: Optional[StatementTransaction] = None
            best_score = 0.0
            for statement in statement_pool:
                if not self.amounts_match(ledger, statement) or days_apart(ledger, statement) > window:
                    continue
                score = description_similarity(ledger.description, statement.description)
                if score > threshold and (best is None or score > best_score):
                    best, best_score = statement, score

            if best is not None:
                matches.append(Match(ledger, best, best_score, MatchType.FUZZY, RULE_DESCRIPTION))
                ledger_pool.remove(ledger)
                statement_pool.remove(best)
        return matches

    def suggest_matches(
        self,
        unmatched_ledger: Sequence[LedgerTransaction],
        unmatched_statement: Sequence[StatementTransaction],
    ) -> List[MatchSuggestion]:
        """
        Candidate pairs for human review, highest confidence first.

        Advisory only: a transaction may appear in several suggestions and
        nothing is committed.
        """
        window = self.config.suggestion_date_window_days
        threshold = self.config.suggestion_threshold
        suggestions = []

        for ledger in unmatched_ledger:
            for statement in unmatched_statement:
                if not self.amounts_match(ledger, statement):
                    continue
                gap = days_apart(ledger, statement)
                if gap > window:
                    continue
                score = description_similarity(ledger.description, statement.description)
                if score > threshold:
                    suggestions.append(MatchSuggestion(
                        ledger_id=ledger.id,
                        statement_id=statement.id,
                        confidence=score,
                        reason=(
                            f"Amount match + {gap} days apart + "
                            f"{int(score * 100)}% description similarity"
                        ),
                    ))

        # sort is stable, so equal scores keep input order
        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions
