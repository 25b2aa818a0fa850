"""
Collaborator contracts for the decision service.

The engine depends on three outside systems, expressed as protocols:
- ItemProvider: read-only candidate snapshots
- ActivityProvider: recent-visit lookups and activity logging
- SessionRepository: atomic load/save of a DecisionSession

In-memory implementations are provided for tests and local use; the SQL
implementations live in tribepick.db.operations.
"""

import copy
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from tribepick.models.activity import ActivityEntry, ActivityStatus
from tribepick.models.item import CandidateItem
from tribepick.models.session import DecisionSession


class ItemProvider(Protocol):
    """Source of candidate item snapshots."""

    async def get_items(self, item_ids: list[str]) -> list[CandidateItem]: ...


class ActivityProvider(Protocol):
    """Recent activity queries and activity logging."""

    async def recent_item_ids(
        self,
        user_id: str,
        tribe_id: str | None,
        since: datetime,
    ) -> set[str]: ...

    async def record_activity(self, entry: ActivityEntry) -> None: ...


class SessionRepository(Protocol):
    """Persistence for decision sessions."""

    async def load(self, session_id: str, for_update: bool = False) -> DecisionSession | None: ...

    async def save(self, session: DecisionSession) -> None: ...

    async def commit(self) -> None: ...


# =============================================================================
# RECENT ACTIVITY SNAPSHOT
# =============================================================================


class RecentActivitySnapshot:
    """
    Pre-fetched recent activity for one filter run.

    The filter engine is synchronous and pure, so recent activity is
    fetched up front for every (user, tribe, days) window the configuration
    asks about, then answered from memory.
    """

    def __init__(self) -> None:
        self._windows: dict[tuple[str, str | None, int], set[str]] = {}

    def add_window(
        self,
        user_id: str,
        tribe_id: str | None,
        since_days: int,
        item_ids: Iterable[str],
    ) -> None:
        self._windows[(user_id, tribe_id, since_days)] = set(item_ids)

    def has_window(self, user_id: str, tribe_id: str | None, since_days: int) -> bool:
        return (user_id, tribe_id, since_days) in self._windows

    def has_recent_activity(
        self,
        item_id: str,
        user_id: str,
        tribe_id: str | None,
        since_days: int,
    ) -> bool:
        return item_id in self._windows.get((user_id, tribe_id, since_days), set())


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemoryActivityProvider:
    """Activity log kept in a list."""

    def __init__(self, entries: Iterable[ActivityEntry] = ()) -> None:
        self.entries: list[ActivityEntry] = list(entries)

    async def recent_item_ids(
        self,
        user_id: str,
        tribe_id: str | None,
        since: datetime,
    ) -> set[str]:
        return {
            e.item_id
            for e in self.entries
            if e.status != ActivityStatus.CANCELLED
            and e.completed_at >= since
            and (e.user_id == user_id or (tribe_id is not None and e.tribe_id == tribe_id))
        }

    async def record_activity(self, entry: ActivityEntry) -> None:
        self.entries.append(entry)


class InMemorySessionRepository:
    """
    Session store backed by a dict.

    Sessions are deep-copied on the way in and out so callers cannot
    mutate stored state without an explicit save.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, DecisionSession] = {}
        self.commits = 0

    async def load(self, session_id: str, for_update: bool = False) -> DecisionSession | None:
        stored = self._sessions.get(session_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def save(self, session: DecisionSession) -> None:
        self._sessions[session.id] = copy.deepcopy(session)

    async def commit(self) -> None:
        self.commits += 1
