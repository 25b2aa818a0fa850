"""
Timezone-aware business-hours evaluation.

Both sides of the check are converted into the item's own timezone before
comparing. Hours are handled as minute offsets from local midnight of the
requested start; a close time earlier than the open time is pushed to the
next day (+24h).

DEFAULT POLICY (inclusion-biased):
- No business hours at all -> open
- Weekday missing from the hours -> open
- Unparseable times or an unknown timezone -> open
- open == close -> open around the clock
"""

import logging
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tribepick.models.item import BusinessHours, DayHours

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# A window of (open_minute, close_minute) relative to local midnight
Window = tuple[float, float]


def parse_clock(value: str | None) -> int | None:
    """
    Parse "HH:MM" into minutes after midnight.

    Accepts "24:00" as end of day. Returns None for anything unparseable.
    """
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 24 and 0 <= minutes < 60):
        return None
    if hours == 24 and minutes != 0:
        return None
    return hours * 60 + minutes


def _day_window(day: DayHours) -> Window | None:
    """
    Window for one day, or None when the day should be treated as open.

    Raises no errors: unparseable hours collapse to None (open).
    """
    opens = parse_clock(day.open)
    closes = parse_clock(day.close)
    if opens is None or closes is None:
        return None
    if opens == closes:
        return None
    if closes < opens:
        closes += MINUTES_PER_DAY
    return (float(opens), float(closes))


def _windows_for(hours: BusinessHours, local_start: datetime) -> list[Window] | None:
    """
    Collect the windows that can cover a request starting at `local_start`.

    Returns None if the item counts as open regardless of the request.
    """
    weekday = local_start.weekday()
    today = hours.for_weekday(weekday)
    if today is None:
        return None
    if today.closed:
        windows: list[Window] = []
    else:
        window = _day_window(today)
        if window is None:
            return None
        windows = [window]

    # Overnight tail carried into this morning: prefer the previous day's own
    # hours, fall back to today's pattern when the previous day is unlisted.
    previous = hours.for_weekday(weekday - 1)
    tail_source = previous if previous is not None else today
    if not tail_source.closed:
        tail = _day_window(tail_source)
        if tail is not None and tail[1] > MINUTES_PER_DAY:
            windows.append((tail[0] - MINUTES_PER_DAY, tail[1] - MINUTES_PER_DAY))

    return windows


def is_open_for(
    hours: BusinessHours | None,
    start: datetime,
    duration: timedelta,
) -> bool:
    """
    Check whether an item is open from `start` for `duration`.

    Args:
        hours: Item business hours (None = always open)
        start: Timezone-aware start of the requested interval
        duration: How long the item must stay open

    Returns:
        True if the whole interval lies inside one opening window
    """
    if hours is None:
        return True

    try:
        item_tz = ZoneInfo(hours.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("opening_hours_unknown_timezone", extra={"timezone": hours.timezone})
        return True

    local_start = start.astimezone(item_tz)
    windows = _windows_for(hours, local_start)
    if windows is None:
        return True

    start_minute = (
        local_start.hour * 60 + local_start.minute + local_start.second / 60.0
    )
    end_minute = start_minute + duration.total_seconds() / 60.0

    return any(opens <= start_minute and end_minute <= closes for opens, closes in windows)


def duration_until(reference: datetime, until: time, requester_timezone: str) -> timedelta:
    """
    Time from `reference` until the wall-clock `until` in the requester's zone.

    If `until` is not after the reference's local time, it refers to the
    next day.
    """
    requester_tz = ZoneInfo(requester_timezone)
    local_reference = reference.astimezone(requester_tz)
    target = datetime.combine(local_reference.date(), until, tzinfo=requester_tz)
    if target <= local_reference:
        target = datetime.combine(
            local_reference.date() + timedelta(days=1), until, tzinfo=requester_tz
        )
    return target - local_reference
