"""
Matching Rules Module
"""

from .tiered_rules import TieredMatchingRules, days_apart

__all__ = ["TieredMatchingRules", "days_apart"]
