"""
Filter configuration and verdict models.

A FilterConfiguration is an ordered set of FilterCriterion. Each criterion
carries a kind-specific payload; the payload type is the tagged variant
that the filter engine dispatches on.

INVARIANTS:
- Criterion ids are unique within a configuration
- Priority 0 is evaluated (and weighted) first
- Every verdict score lies in [0, 1]
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tribepick.models.failure import FailureKind, KnownError
from tribepick.models.item import Location


class FilterKind(str, Enum):
    """Supported filter kinds."""

    CATEGORY = "category"
    DIETARY = "dietary"
    LOCATION = "location"
    RECENT_ACTIVITY = "recent_activity"
    OPENING_HOURS = "opening_hours"
    TAGS = "tags"


class InvalidFilterError(KnownError):
    """Raised when a filter configuration is malformed."""

    def __init__(self, criterion_id: str, reason: str):
        self.criterion_id = criterion_id
        self.reason = reason
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=f"Filter '{criterion_id}' is invalid: {reason}",
            detail=reason,
            suggestion="Fix the filter definition and create the session again.",
        )


# =============================================================================
# CRITERIA PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class CategoryCriteria:
    """Include and/or exclude item categories."""

    include: frozenset[str] = frozenset()
    exclude: frozenset[str] = frozenset()


@dataclass(frozen=True)
class DietaryCriteria:
    """All listed dietary flags must be present on the item."""

    required: frozenset[str] = frozenset()


@dataclass(frozen=True)
class LocationCriteria:
    """Item must lie within `max_distance_miles` of `center`."""

    center: Location
    max_distance_miles: float


@dataclass(frozen=True)
class RecentActivityCriteria:
    """Exclude items visited by the user (or tribe) in the last `days` days."""

    user_id: str
    days: int
    tribe_id: str | None = None


@dataclass(frozen=True)
class OpeningHoursCriteria:
    """
    Item must be open now and stay open.

    Exactly one of `open_for_minutes` or `open_until` is set. `open_until`
    is a wall-clock time in `requester_timezone`. `reference_time` pins
    "now" for evaluation; when None the engine's clock is used.
    """

    requester_timezone: str = "UTC"
    open_for_minutes: int | None = None
    open_until: time | None = None
    reference_time: datetime | None = None


@dataclass(frozen=True)
class TagsCriteria:
    """Required and excluded tags."""

    required: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()


CriteriaPayload = (
    CategoryCriteria
    | DietaryCriteria
    | LocationCriteria
    | RecentActivityCriteria
    | OpeningHoursCriteria
    | TagsCriteria
    | dict[str, Any]
)

_PAYLOAD_TYPES: dict[FilterKind, type] = {
    FilterKind.CATEGORY: CategoryCriteria,
    FilterKind.DIETARY: DietaryCriteria,
    FilterKind.LOCATION: LocationCriteria,
    FilterKind.RECENT_ACTIVITY: RecentActivityCriteria,
    FilterKind.OPENING_HOURS: OpeningHoursCriteria,
    FilterKind.TAGS: TagsCriteria,
}


@dataclass(frozen=True)
class FilterCriterion:
    """
    A single filter in a configuration.

    Attributes:
        id: Unique id within the configuration
        kind: FilterKind value. Unrecognized kinds are kept with a raw
            dict payload and always pass.
        is_hard: Hard filters exclude; soft filters only score
        priority: 0 = evaluated and weighted first
        criteria: Kind-specific payload
        description: Human-readable summary
    """

    id: str
    kind: str
    is_hard: bool
    priority: int
    criteria: CriteriaPayload
    description: str = ""

    @property
    def weight(self) -> float:
        """Soft-filter weight: 1 / (priority + 1)."""
        return 1.0 / (self.priority + 1)

    def is_known_kind(self) -> bool:
        """True if the engine knows how to evaluate this criterion."""
        return self.kind in {k.value for k in FilterKind}


@dataclass(frozen=True)
class FilterConfiguration:
    """Ordered set of filter criteria."""

    criteria: tuple[FilterCriterion, ...] = ()

    def ordered(self) -> list[FilterCriterion]:
        """Criteria in evaluation order (ascending priority, stable)."""
        return sorted(self.criteria, key=lambda c: c.priority)

    def soft_criteria(self) -> list[FilterCriterion]:
        return [c for c in self.ordered() if not c.is_hard]

    def by_kind(self, kind: FilterKind) -> list[FilterCriterion]:
        return [c for c in self.criteria if c.kind == kind.value]


# =============================================================================
# VERDICTS
# =============================================================================


@dataclass(frozen=True)
class SoftFilterOutcome:
    """Result of one soft filter for one item."""

    criterion_id: str
    passed: bool
    weight: float


@dataclass(frozen=True)
class FilterVerdict:
    """
    Per-item filtering result.

    Only items passing all hard filters are returned by the engine, so
    `passed_hard` is True for every verdict that leaves it.
    """

    item_id: str
    passed_hard: bool
    soft_outcomes: tuple[SoftFilterOutcome, ...] = field(default_factory=tuple)
    violation_count: int = 0
    priority_score: float = 1.0


# =============================================================================
# VALIDATION
# =============================================================================


def _valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _validate_payload(criterion: FilterCriterion) -> None:
    payload = criterion.criteria
    cid = criterion.id

    expected = _PAYLOAD_TYPES.get(FilterKind(criterion.kind))
    if expected is not None and not isinstance(payload, expected):
        raise InvalidFilterError(cid, f"payload does not match kind '{criterion.kind}'")

    if isinstance(payload, CategoryCriteria):
        if not payload.include and not payload.exclude:
            raise InvalidFilterError(cid, "category filter needs include or exclude values")
    elif isinstance(payload, DietaryCriteria):
        if not payload.required:
            raise InvalidFilterError(cid, "dietary filter needs at least one requirement")
    elif isinstance(payload, LocationCriteria):
        if payload.max_distance_miles <= 0:
            raise InvalidFilterError(cid, "max distance must be positive")
        if not -90.0 <= payload.center.latitude <= 90.0:
            raise InvalidFilterError(cid, "center latitude out of range")
        if not -180.0 <= payload.center.longitude <= 180.0:
            raise InvalidFilterError(cid, "center longitude out of range")
    elif isinstance(payload, RecentActivityCriteria):
        if not payload.user_id:
            raise InvalidFilterError(cid, "recent activity filter needs a user id")
        if payload.days < 1:
            raise InvalidFilterError(cid, "recent activity window must be at least one day")
    elif isinstance(payload, OpeningHoursCriteria):
        has_duration = payload.open_for_minutes is not None
        has_until = payload.open_until is not None
        if has_duration == has_until:
            raise InvalidFilterError(cid, "set exactly one of open_for_minutes or open_until")
        minutes = payload.open_for_minutes
        if minutes is not None and (isinstance(minutes, bool) or not isinstance(minutes, int)):
            raise InvalidFilterError(cid, "open_for_minutes must be an integer")
        if minutes is not None and minutes < 0:
            raise InvalidFilterError(cid, "open_for_minutes must not be negative")
        if not _valid_timezone(payload.requester_timezone):
            raise InvalidFilterError(cid, f"unknown timezone '{payload.requester_timezone}'")
        if payload.reference_time is not None and payload.reference_time.tzinfo is None:
            raise InvalidFilterError(cid, "reference_time must be timezone-aware")
    elif isinstance(payload, TagsCriteria):
        if not payload.required and not payload.excluded:
            raise InvalidFilterError(cid, "tags filter needs required or excluded tags")


def validate_configuration(config: FilterConfiguration) -> None:
    """
    Validate a filter configuration before a session is created.

    Unrecognized kinds are accepted; the engine lets them pass.

    Raises:
        InvalidFilterError: On duplicate ids, negative priority, or a
            payload inconsistent with its kind
    """
    seen: set[str] = set()
    for criterion in config.criteria:
        if not criterion.id:
            raise InvalidFilterError("<unnamed>", "criterion id is required")
        if criterion.id in seen:
            raise InvalidFilterError(criterion.id, "duplicate criterion id")
        seen.add(criterion.id)

        if criterion.priority < 0:
            raise InvalidFilterError(criterion.id, "priority must be zero or greater")

        if criterion.is_known_kind():
            _validate_payload(criterion)


# =============================================================================
# SERIALIZATION (for persistence)
# =============================================================================


def _sorted_list(values: frozenset[str]) -> list[str]:
    return sorted(values)


def criterion_to_dict(criterion: FilterCriterion) -> dict[str, Any]:
    """Serialize a criterion to plain JSON-compatible data."""
    payload = criterion.criteria
    data: dict[str, Any]

    if isinstance(payload, CategoryCriteria):
        data = {"include": _sorted_list(payload.include), "exclude": _sorted_list(payload.exclude)}
    elif isinstance(payload, DietaryCriteria):
        data = {"required": _sorted_list(payload.required)}
    elif isinstance(payload, LocationCriteria):
        data = {
            "center": {
                "latitude": payload.center.latitude,
                "longitude": payload.center.longitude,
            },
            "max_distance_miles": payload.max_distance_miles,
        }
    elif isinstance(payload, RecentActivityCriteria):
        data = {"user_id": payload.user_id, "tribe_id": payload.tribe_id, "days": payload.days}
    elif isinstance(payload, OpeningHoursCriteria):
        data = {
            "requester_timezone": payload.requester_timezone,
            "open_for_minutes": payload.open_for_minutes,
            "open_until": payload.open_until.strftime("%H:%M") if payload.open_until else None,
            "reference_time": (
                payload.reference_time.isoformat() if payload.reference_time else None
            ),
        }
    elif isinstance(payload, TagsCriteria):
        data = {
            "required": _sorted_list(payload.required),
            "excluded": _sorted_list(payload.excluded),
        }
    else:
        data = dict(payload)

    return {
        "id": criterion.id,
        "kind": criterion.kind,
        "is_hard": criterion.is_hard,
        "priority": criterion.priority,
        "description": criterion.description,
        "criteria": data,
    }


def _string_set(data: dict[str, Any], key: str) -> frozenset[str]:
    values = data.get(key) or ()
    if isinstance(values, str) or not isinstance(values, list | tuple | set | frozenset):
        raise TypeError(f"{key} must be a list of strings")
    if not all(isinstance(v, str) for v in values):
        raise TypeError(f"{key} must be a list of strings")
    return frozenset(values)


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        raise TypeError(f"{key} must be an integer")
    return value


def _payload_from_dict(kind: str, data: dict[str, Any]) -> CriteriaPayload:
    if kind == FilterKind.CATEGORY:
        return CategoryCriteria(
            include=_string_set(data, "include"),
            exclude=_string_set(data, "exclude"),
        )
    if kind == FilterKind.DIETARY:
        return DietaryCriteria(required=_string_set(data, "required"))
    if kind == FilterKind.LOCATION:
        center = data.get("center") or {}
        return LocationCriteria(
            center=Location(
                latitude=float(center.get("latitude", 0.0)),
                longitude=float(center.get("longitude", 0.0)),
            ),
            max_distance_miles=float(data.get("max_distance_miles", 0.0)),
        )
    if kind == FilterKind.RECENT_ACTIVITY:
        return RecentActivityCriteria(
            user_id=data.get("user_id", ""),
            tribe_id=data.get("tribe_id"),
            days=int(data.get("days", 0)),
        )
    if kind == FilterKind.OPENING_HOURS:
        until = data.get("open_until")
        reference = data.get("reference_time")
        return OpeningHoursCriteria(
            requester_timezone=data.get("requester_timezone") or "UTC",
            open_for_minutes=_optional_int(data, "open_for_minutes"),
            open_until=time.fromisoformat(until) if until else None,
            reference_time=datetime.fromisoformat(reference) if reference else None,
        )
    if kind == FilterKind.TAGS:
        return TagsCriteria(
            required=_string_set(data, "required"),
            excluded=_string_set(data, "excluded"),
        )
    return dict(data)


def criterion_from_dict(data: dict[str, Any]) -> FilterCriterion:
    """
    Deserialize a criterion produced by `criterion_to_dict`.

    Raises:
        InvalidFilterError: A payload field has the wrong type or format
    """
    kind = data["kind"]
    try:
        criteria = _payload_from_dict(kind, data.get("criteria") or {})
        priority = int(data.get("priority", 0))
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidFilterError(data["id"], str(e)) from e
    return FilterCriterion(
        id=data["id"],
        kind=kind,
        is_hard=bool(data.get("is_hard", False)),
        priority=priority,
        criteria=criteria,
        description=data.get("description", ""),
    )


def configuration_to_list(config: FilterConfiguration) -> list[dict[str, Any]]:
    return [criterion_to_dict(c) for c in config.criteria]


def configuration_from_list(data: list[dict[str, Any]]) -> FilterConfiguration:
    return FilterConfiguration(criteria=tuple(criterion_from_dict(d) for d in data))
