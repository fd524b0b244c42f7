"""
Reconciliation Engine Module

Matches internal ledger transactions against external statement feeds:
- Reference, amount + date and description-similarity tiers
- Account summaries with balance difference and unmatched counts
- Suggested matches for review
- Portfolio roll-up across accounts
- Audit trail for every run
"""

from reconciliation.source_registry import (
    StatementSource,
    MatchingConfig,
    SourceConfig,
    SourceRegistry,
)
from reconciliation.models import (
    LedgerTransaction,
    StatementTransaction,
    MatchType,
    Match,
    MatchSet,
    MatchSuggestion,
    ReconciliationSummary,
    ReconciliationReport,
    PortfolioReconciliation,
)
from reconciliation.matching_rules.tiered_rules import TieredMatchingRules
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Source Registry
    'StatementSource',
    'MatchingConfig',
    'SourceConfig',
    'SourceRegistry',
    # Models
    'LedgerTransaction',
    'StatementTransaction',
    'MatchType',
    'Match',
    'MatchSet',
    'MatchSuggestion',
    'ReconciliationSummary',
    'ReconciliationReport',
    'PortfolioReconciliation',
    # Matching Rules
    'TieredMatchingRules',
    # Service
    'ReconciliationService',
    # Router
    'reconciliation_router'
]
