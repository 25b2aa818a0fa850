"""
Database operations for decision sessions and activity entries.

Converts between the DecisionSession aggregate and its row, and provides
the SQL-backed SessionRepository and ActivityProvider.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tribepick.models.activity import ActivityEntry, ActivityStatus
from tribepick.models.db import ActivityEntryDB, DecisionSessionDB
from tribepick.models.filters import configuration_from_list, configuration_to_list
from tribepick.models.session import (
    AlgorithmParameters,
    DecisionSession,
    HistoryEvent,
    HistoryEventKind,
    SessionStatus,
    SkipRecord,
    SkipType,
)


def _utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _utc_or_none(value: datetime | None) -> datetime | None:
    return _utc(value) if value is not None else None


def _iso(value: datetime) -> str:
    return value.isoformat()


def _from_iso(value: str) -> datetime:
    return _utc(datetime.fromisoformat(value))


# --- Session <-> row ---


def _skip_to_dict(record: SkipRecord) -> dict[str, Any]:
    return {
        "participant": record.participant,
        "round": record.round,
        "turn_index": record.turn_index,
        "skip_type": record.skip_type.value,
        "timestamp": _iso(record.timestamp),
        "resolved": record.resolved,
        "resolved_item_id": record.resolved_item_id,
    }


def _skip_from_dict(data: dict[str, Any]) -> SkipRecord:
    return SkipRecord(
        participant=data["participant"],
        round=data["round"],
        turn_index=data["turn_index"],
        skip_type=SkipType(data["skip_type"]),
        timestamp=_from_iso(data["timestamp"]),
        resolved=data.get("resolved", False),
        resolved_item_id=data.get("resolved_item_id"),
    )


def _event_to_dict(event: HistoryEvent) -> dict[str, Any]:
    return {
        "kind": event.kind.value,
        "timestamp": _iso(event.timestamp),
        "participant": event.participant,
        "item_id": event.item_id,
        "round": event.round,
        "turn_index": event.turn_index,
        "catch_up": event.catch_up,
    }


def _event_from_dict(data: dict[str, Any]) -> HistoryEvent:
    return HistoryEvent(
        kind=HistoryEventKind(data["kind"]),
        timestamp=_from_iso(data["timestamp"]),
        participant=data.get("participant"),
        item_id=data.get("item_id"),
        round=data.get("round", 0),
        turn_index=data.get("turn_index", 0),
        catch_up=data.get("catch_up", False),
    )


def session_to_row(session: DecisionSession) -> DecisionSessionDB:
    """Convert a domain session to a database row."""
    params = session.params
    return DecisionSessionDB(
        id=session.id,
        status=session.status.value,
        participants=list(session.participants),
        source_item_ids=list(session.source_item_ids),
        filter_config=configuration_to_list(session.filter_config),
        requested_k=session.requested_k,
        requested_m=session.requested_m,
        turn_timeout_seconds=session.turn_timeout.total_seconds(),
        session_timeout_seconds=session.session_timeout.total_seconds(),
        param_k=params.k if params else None,
        param_n=params.n if params else None,
        param_m=params.m if params else None,
        elimination_order=list(session.elimination_order),
        current_round=session.current_round,
        current_turn_index=session.current_turn_index,
        turn_started_at=session.turn_started_at,
        skip_records=[_skip_to_dict(r) for r in session.skip_records],
        skip_counts=dict(session.skip_count_by_participant),
        initial_candidates=list(session.initial_candidates),
        candidate_set=list(session.candidate_set),
        candidate_scores=dict(session.candidate_scores),
        history=[_event_to_dict(e) for e in session.elimination_history],
        final_selection=session.final_selection,
        runners_up=list(session.runners_up),
        is_pinned=session.is_pinned,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
        completed_at=session.completed_at,
    )


def row_to_session(row: DecisionSessionDB) -> DecisionSession:
    """Convert a database row to a domain session."""
    params = None
    if row.param_k is not None and row.param_n is not None and row.param_m is not None:
        params = AlgorithmParameters(k=row.param_k, n=row.param_n, m=row.param_m)

    return DecisionSession(
        id=row.id,
        participants=list(row.participants),
        source_item_ids=list(row.source_item_ids),
        filter_config=configuration_from_list(row.filter_config or []),
        requested_k=row.requested_k,
        requested_m=row.requested_m,
        turn_timeout=timedelta(seconds=row.turn_timeout_seconds),
        session_timeout=timedelta(seconds=row.session_timeout_seconds),
        created_at=_utc(row.created_at),
        last_activity_at=_utc(row.last_activity_at),
        status=SessionStatus(row.status),
        params=params,
        elimination_order=list(row.elimination_order or []),
        current_round=row.current_round,
        current_turn_index=row.current_turn_index,
        turn_started_at=_utc_or_none(row.turn_started_at),
        skip_records=[_skip_from_dict(r) for r in row.skip_records or []],
        skip_count_by_participant=dict(row.skip_counts or {}),
        initial_candidates=list(row.initial_candidates or []),
        candidate_set=list(row.candidate_set or []),
        candidate_scores=dict(row.candidate_scores or {}),
        elimination_history=[_event_from_dict(e) for e in row.history or []],
        final_selection=row.final_selection,
        runners_up=list(row.runners_up or []),
        is_pinned=row.is_pinned,
        completed_at=_utc_or_none(row.completed_at),
    )


# --- Session Operations ---


async def get_session_row(
    session: AsyncSession,
    session_id: str,
    for_update: bool = False,
) -> DecisionSessionDB | None:
    """
    Get a decision session row by id.

    With for_update the row is locked until the transaction ends.
    """
    query = select(DecisionSessionDB).where(DecisionSessionDB.id == session_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


class SqlSessionRepository:
    """SessionRepository backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load(self, session_id: str, for_update: bool = False) -> DecisionSession | None:
        row = await get_session_row(self._session, session_id, for_update=for_update)
        if row is None:
            return None
        return row_to_session(row)

    async def save(self, decision: DecisionSession) -> None:
        await self._session.merge(session_to_row(decision))
        await self._session.flush()

    async def commit(self) -> None:
        await self._session.commit()


# --- Activity Operations ---


def activity_to_row(entry: ActivityEntry) -> ActivityEntryDB:
    return ActivityEntryDB(
        id=entry.id,
        item_id=entry.item_id,
        user_id=entry.user_id,
        tribe_id=entry.tribe_id,
        activity_type=entry.activity_type,
        status=entry.status.value,
        completed_at=entry.completed_at,
        recorded_by=entry.recorded_by,
        participants=list(entry.participants),
        decision_session_id=entry.decision_session_id,
    )


class SqlActivityProvider:
    """ActivityProvider backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def recent_item_ids(
        self,
        user_id: str,
        tribe_id: str | None,
        since: datetime,
    ) -> set[str]:
        """
        Items the user (or their tribe) visited since a point in time.

        Cancelled entries are ignored.
        """
        owner = ActivityEntryDB.user_id == user_id
        if tribe_id is not None:
            owner = or_(owner, ActivityEntryDB.tribe_id == tribe_id)

        result = await self._session.execute(
            select(ActivityEntryDB.item_id).where(
                owner,
                ActivityEntryDB.status != ActivityStatus.CANCELLED.value,
                ActivityEntryDB.completed_at >= since,
            )
        )
        return set(result.scalars().all())

    async def record_activity(self, entry: ActivityEntry) -> None:
        self._session.add(activity_to_row(entry))
        await self._session.flush()
