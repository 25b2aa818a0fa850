"""
Filter Engine: hard exclusion plus weighted soft scoring.

INVARIANTS:
- Items failing any hard filter never appear in the result
- Every priority score lies in [0, 1]
- Output is ordered by score descending, then fewer soft violations,
  then input order
- Same items + config + activity snapshot -> same result (deterministic)

Scoring:
    weight_i = 1 / (priority_i + 1)
    score = sum(weight of passed soft filters) / sum(weight of all soft filters)
    score = 1.0 when no soft filters are configured
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from tribepick.filtering.criteria import ActivityLookup, EvaluationContext, passes
from tribepick.models.filters import FilterConfiguration, FilterVerdict, SoftFilterOutcome
from tribepick.models.item import CandidateItem

logger = logging.getLogger(__name__)


@dataclass
class FilterMetrics:
    """Metrics recorded per engine run."""

    total_items: int = 0
    hard_filters: int = 0
    soft_filters: int = 0
    hard_excluded: int = 0
    survivors: int = 0


# Module-level metrics accumulator
_metrics_history: list[FilterMetrics] = []


def get_filter_metrics() -> list[FilterMetrics]:
    """Get all recorded metrics."""
    return _metrics_history.copy()


def reset_filter_metrics() -> None:
    """Reset metrics history (for testing)."""
    _metrics_history.clear()


def evaluate_item(
    item: CandidateItem,
    config: FilterConfiguration,
    context: EvaluationContext,
) -> FilterVerdict:
    """
    Evaluate one item against every criterion.

    Criteria run in ascending priority order. The first hard failure ends
    evaluation and yields a verdict with passed_hard=False.
    """
    outcomes: list[SoftFilterOutcome] = []

    for criterion in config.ordered():
        ok = passes(criterion, item, context)
        if criterion.is_hard:
            if not ok:
                return FilterVerdict(item_id=item.id, passed_hard=False, priority_score=0.0)
            continue
        outcomes.append(
            SoftFilterOutcome(criterion_id=criterion.id, passed=ok, weight=criterion.weight)
        )

    total_weight = sum(o.weight for o in outcomes)
    passed_weight = sum(o.weight for o in outcomes if o.passed)
    score = passed_weight / total_weight if total_weight > 0 else 1.0

    return FilterVerdict(
        item_id=item.id,
        passed_hard=True,
        soft_outcomes=tuple(outcomes),
        violation_count=sum(1 for o in outcomes if not o.passed),
        priority_score=min(1.0, max(0.0, score)),
    )


def evaluate(
    items: Iterable[CandidateItem],
    config: FilterConfiguration,
    activity: ActivityLookup | None = None,
    now: datetime | None = None,
) -> list[FilterVerdict]:
    """
    Filter and rank candidate items.

    Args:
        items: Candidate snapshot from the item provider
        config: Filter configuration
        activity: Recent-activity lookup for RecentActivity filters
        now: Evaluation time for opening-hours checks (default: now, UTC)

    Returns:
        Verdicts for items passing all hard filters, best first
    """
    context = EvaluationContext(now=now or datetime.now(UTC), activity=activity)
    item_list = list(items)

    metrics = FilterMetrics(
        total_items=len(item_list),
        hard_filters=sum(1 for c in config.criteria if c.is_hard),
        soft_filters=len(config.soft_criteria()),
    )

    survivors: list[tuple[int, FilterVerdict]] = []
    for position, item in enumerate(item_list):
        verdict = evaluate_item(item, config, context)
        if verdict.passed_hard:
            survivors.append((position, verdict))

    survivors.sort(key=lambda pv: (-pv[1].priority_score, pv[1].violation_count, pv[0]))

    metrics.survivors = len(survivors)
    metrics.hard_excluded = metrics.total_items - metrics.survivors
    _metrics_history.append(metrics)

    logger.info(
        "filter_engine_evaluated",
        extra={
            "total": metrics.total_items,
            "hard_filters": metrics.hard_filters,
            "soft_filters": metrics.soft_filters,
            "hard_excluded": metrics.hard_excluded,
            "survivors": metrics.survivors,
        },
    )

    return [verdict for _, verdict in survivors]
