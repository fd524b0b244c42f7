"""
Reconciliation Source Registry

Registry of the external statement feeds reconciliation runs against,
and the matching thresholds used for each.

Supported Sources:
- MERCURY: Mercury bank statements
- WAVE: Wave accounting exports
- STRIPE: Stripe balance transactions
- DOORLOOP: DoorLoop property-management ledgers
- MANUAL: Statements keyed in by hand

Every source starts from the same defaults; the thresholds are
configuration (RECON_* settings), not law.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class StatementSource(str, Enum):
    """Recognised statement feeds."""
    MERCURY = "MERCURY"
    WAVE = "WAVE"
    STRIPE = "STRIPE"
    DOORLOOP = "DOORLOOP"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class MatchingConfig:
    """
    Thresholds for the three matching tiers and for suggestions.

    Tier 2 (exact): |amount diff| < amount_tolerance, date gap <= exact_date_window_days
    Tier 3 (fuzzy): same amount, date gap <= fuzzy_date_window_days, similarity > fuzzy_threshold
    Suggestions:    same amount, date gap <= suggestion_date_window_days, similarity > suggestion_threshold
    """
    amount_tolerance: Decimal = Decimal("0.01")
    exact_date_window_days: int = 2
    fuzzy_date_window_days: int = 5
    fuzzy_threshold: float = 0.6
    suggestion_threshold: float = 0.4
    suggestion_date_window_days: int = 7

    @classmethod
    def from_settings(cls, settings) -> "MatchingConfig":
        return cls(
            amount_tolerance=Decimal(str(settings.RECON_AMOUNT_TOLERANCE)),
            exact_date_window_days=settings.RECON_EXACT_DATE_WINDOW_DAYS,
            fuzzy_date_window_days=settings.RECON_FUZZY_DATE_WINDOW_DAYS,
            fuzzy_threshold=settings.RECON_FUZZY_THRESHOLD,
            suggestion_threshold=settings.RECON_SUGGESTION_THRESHOLD,
            suggestion_date_window_days=settings.RECON_SUGGESTION_DATE_WINDOW_DAYS,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_tolerance": str(self.amount_tolerance),
            "exact_date_window_days": self.exact_date_window_days,
            "fuzzy_date_window_days": self.fuzzy_date_window_days,
            "fuzzy_threshold": self.fuzzy_threshold,
            "suggestion_threshold": self.suggestion_threshold,
            "suggestion_date_window_days": self.suggestion_date_window_days,
        }


@dataclass
class SourceConfig:
    """
    Configuration for a statement source.
    """
    source: StatementSource
    display_name: str
    enabled: bool
    matching: MatchingConfig = field(default_factory=MatchingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "display_name": self.display_name,
            "enabled": self.enabled,
            "matching": self.matching.to_dict(),
        }


_DISPLAY_NAMES = {
    StatementSource.MERCURY: "Mercury Bank",
    StatementSource.WAVE: "Wave Accounting",
    StatementSource.STRIPE: "Stripe Balance",
    StatementSource.DOORLOOP: "DoorLoop Ledger",
    StatementSource.MANUAL: "Manual Statement",
}


class SourceRegistry:
    """
    Source configurations, looked up by the reconciliation service.
    """

    def __init__(self, default_matching: Optional[MatchingConfig] = None):
        matching = default_matching or MatchingConfig()
        self.default_matching = matching
        self._configs: Dict[StatementSource, SourceConfig] = {
            source: SourceConfig(source=source, display_name=name, enabled=True, matching=matching)
            for source, name in _DISPLAY_NAMES.items()
        }

    @classmethod
    def from_settings(cls, settings) -> "SourceRegistry":
        return cls(default_matching=MatchingConfig.from_settings(settings))

    def get_matching_config(self, source: Optional[StatementSource]) -> MatchingConfig:
        """Thresholds for a source; unknown or missing sources get the defaults."""
        cfg = self._configs.get(source) if source else None
        return cfg.matching if cfg else self.default_matching

    def get_all_configs(self) -> List[SourceConfig]:
        return list(self._configs.values())

    def get_enabled_sources(self) -> List[StatementSource]:
        return [cfg.source for cfg in self._configs.values() if cfg.enabled]

    def update_matching(self, source: StatementSource, **kwargs):
        """Override thresholds for one source."""
        cfg = self._configs.get(source)
        if cfg is None:
            return
        cfg.matching = replace(cfg.matching, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            source.value: cfg.to_dict()
            for source, cfg in self._configs.items()
        }
