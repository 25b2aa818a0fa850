"""
Candidate filtering for decision sessions.

Hard filters exclude items outright; soft filters only rank them.
Opening hours are evaluated in each item's own timezone.
"""

from tribepick.filtering.criteria import (
    ActivityLookup,
    EvaluationContext,
    haversine_miles,
    passes,
)
from tribepick.filtering.engine import (
    FilterMetrics,
    evaluate,
    evaluate_item,
    get_filter_metrics,
    reset_filter_metrics,
)
from tribepick.filtering.opening_hours import duration_until, is_open_for, parse_clock

__all__ = [
    "ActivityLookup",
    "EvaluationContext",
    "FilterMetrics",
    "duration_until",
    "evaluate",
    "evaluate_item",
    "get_filter_metrics",
    "haversine_miles",
    "is_open_for",
    "parse_clock",
    "passes",
    "reset_filter_metrics",
]
