"""
Candidate item snapshot.

Items are supplied read-only by the list/item provider. The engine never
mutates them; it only reads category, tags, dietary flags, location and
business hours while filtering.
"""

from dataclasses import dataclass, field
from typing import Any

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class Location:
    """A point on the globe in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class DayHours:
    """
    Opening hours for a single weekday.

    Attributes:
        open: Local opening time as "HH:MM"
        close: Local closing time as "HH:MM". A close earlier than open
            means the item closes after midnight.
        closed: True if the item does not open at all on this day
    """

    open: str | None = None
    close: str | None = None
    closed: bool = False


@dataclass(frozen=True)
class BusinessHours:
    """
    Weekly business hours in the item's own timezone.

    Defaulting:
    - A weekday missing from `days` is treated as open
    - `days` values of None are treated as open
    """

    timezone: str
    days: dict[str, DayHours | None] = field(default_factory=dict)

    def for_weekday(self, weekday: int) -> DayHours | None:
        """Hours for a weekday index (Monday = 0)."""
        return self.days.get(WEEKDAYS[weekday % 7])


@dataclass(frozen=True)
class CandidateItem:
    """
    Read-only view of a candidate (restaurant, activity, ...).

    Attributes:
        id: Provider-assigned identifier
        name: Display name
        category: Cuisine or activity category, if known
        tags: Free-form descriptive tags
        dietary: Dietary flags such as "vegetarian" or "gluten_free"
        location: Coordinates, if known
        business_hours: Weekly hours with timezone; None means always open
    """

    id: str
    name: str = ""
    category: str | None = None
    tags: frozenset[str] = frozenset()
    dietary: frozenset[str] = frozenset()
    location: Location | None = None
    business_hours: BusinessHours | None = None


def item_from_dict(item_id: str, data: dict[str, Any]) -> CandidateItem:
    """
    Build a CandidateItem from a loosely-structured provider record.

    Unknown keys are ignored; missing keys fall back to defaults.
    """
    location = None
    raw_location = data.get("location")
    if isinstance(raw_location, dict):
        lat = raw_location.get("latitude")
        lon = raw_location.get("longitude")
        if lat is not None and lon is not None:
            location = Location(latitude=float(lat), longitude=float(lon))

    hours = None
    raw_hours = data.get("business_hours")
    if isinstance(raw_hours, dict) and raw_hours.get("timezone"):
        days: dict[str, DayHours | None] = {}
        for day_name, day_data in (raw_hours.get("days") or {}).items():
            if not isinstance(day_data, dict):
                days[day_name.lower()] = None
                continue
            days[day_name.lower()] = DayHours(
                open=day_data.get("open"),
                close=day_data.get("close"),
                closed=bool(day_data.get("closed", False)),
            )
        hours = BusinessHours(timezone=raw_hours["timezone"], days=days)

    return CandidateItem(
        id=item_id,
        name=data.get("name", ""),
        category=data.get("category"),
        tags=frozenset(data.get("tags") or ()),
        dietary=frozenset(data.get("dietary") or ()),
        location=location,
        business_hours=hours,
    )
