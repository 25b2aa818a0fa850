"""
Per-kind filter checks.

Each check answers one question: does this item satisfy this criterion?
Checks are pure. The only external input is the read-only activity
lookup used by RecentActivity.

Missing item data and unrecognized kinds pass: the engine favors
inclusion over silently excluding items it cannot judge.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from tribepick.filtering.opening_hours import duration_until, is_open_for
from tribepick.models.filters import (
    CategoryCriteria,
    DietaryCriteria,
    FilterCriterion,
    LocationCriteria,
    OpeningHoursCriteria,
    RecentActivityCriteria,
    TagsCriteria,
)
from tribepick.models.item import CandidateItem, Location

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8


class ActivityLookup(Protocol):
    """Read-only recent-activity query used by RecentActivity filters."""

    def has_recent_activity(
        self,
        item_id: str,
        user_id: str,
        tribe_id: str | None,
        since_days: int,
    ) -> bool: ...


@dataclass(frozen=True)
class EvaluationContext:
    """Inputs shared by every check in one engine run."""

    now: datetime
    activity: ActivityLookup | None = None


def _lower(values: frozenset[str]) -> set[str]:
    return {v.lower() for v in values}


def haversine_miles(a: Location, b: Location) -> float:
    """Great-circle distance between two points in miles."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(h)))


def _check_category(item: CandidateItem, criteria: CategoryCriteria) -> bool:
    if item.category is None:
        return True
    category = item.category.lower()
    if criteria.include and category not in _lower(criteria.include):
        return False
    return category not in _lower(criteria.exclude)


def _check_dietary(item: CandidateItem, criteria: DietaryCriteria) -> bool:
    return _lower(criteria.required) <= _lower(item.dietary)


def _check_location(item: CandidateItem, criteria: LocationCriteria) -> bool:
    if item.location is None:
        return True
    return haversine_miles(criteria.center, item.location) <= criteria.max_distance_miles


def _check_recent_activity(
    item: CandidateItem,
    criteria: RecentActivityCriteria,
    context: EvaluationContext,
) -> bool:
    if context.activity is None:
        return True
    return not context.activity.has_recent_activity(
        item.id, criteria.user_id, criteria.tribe_id, criteria.days
    )


def _check_opening_hours(
    item: CandidateItem,
    criteria: OpeningHoursCriteria,
    context: EvaluationContext,
) -> bool:
    reference = criteria.reference_time or context.now
    if criteria.open_until is not None:
        duration = duration_until(reference, criteria.open_until, criteria.requester_timezone)
    else:
        duration = timedelta(minutes=criteria.open_for_minutes or 0)
    return is_open_for(item.business_hours, reference, duration)


def _check_tags(item: CandidateItem, criteria: TagsCriteria) -> bool:
    tags = _lower(item.tags)
    if not _lower(criteria.required) <= tags:
        return False
    return not (_lower(criteria.excluded) & tags)


def passes(criterion: FilterCriterion, item: CandidateItem, context: EvaluationContext) -> bool:
    """
    Check an item against a single criterion.

    Returns True for unrecognized kinds.
    """
    payload = criterion.criteria

    if isinstance(payload, CategoryCriteria):
        return _check_category(item, payload)
    if isinstance(payload, DietaryCriteria):
        return _check_dietary(item, payload)
    if isinstance(payload, LocationCriteria):
        return _check_location(item, payload)
    if isinstance(payload, RecentActivityCriteria):
        return _check_recent_activity(item, payload, context)
    if isinstance(payload, OpeningHoursCriteria):
        return _check_opening_hours(item, payload, context)
    if isinstance(payload, TagsCriteria):
        return _check_tags(item, payload)

    # Unknown filter kind - pass
    logger.debug(
        "filter_kind_unrecognized",
        extra={"criterion_id": criterion.id, "kind": criterion.kind},
    )
    return True
