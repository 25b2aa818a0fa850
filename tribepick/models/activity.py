from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ActivityStatus(str, Enum):
    """Whether a logged visit happened, is planned, or was called off."""

    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass
class ActivityEntry:
    """
    A record that a user (or tribe) did something with an item.

    Attributes:
        id: Entry identifier
        item_id: The list item that was visited
        user_id: User the activity belongs to
        tribe_id: Tribe the activity was shared with, if any
        activity_type: e.g. "visited"
        status: Tentative for future plans, confirmed once it happened
        completed_at: When it happened (or is scheduled)
        recorded_by: User who logged the entry
        participants: Users who took part
        decision_session_id: Session that produced this choice, if any
    """

    id: str
    item_id: str
    user_id: str
    activity_type: str
    status: ActivityStatus
    completed_at: datetime
    recorded_by: str
    tribe_id: str | None = None
    participants: list[str] = field(default_factory=list)
    decision_session_id: str | None = None
