"""
Session History Recorder.

Append-only log of what happened in a session: eliminations, skips,
forfeits and the terminal transition. Entries are written into the
session's elimination_history and persisted with it; nothing here is ever
rewritten or removed.
"""

from datetime import datetime

from tribepick.models.session import (
    DecisionSession,
    HistoryEvent,
    HistoryEventKind,
    SessionStatus,
    SkipRecord,
    SkipType,
)

_SKIP_EVENT_KINDS = {
    SkipType.QUICK_SKIP: HistoryEventKind.QUICK_SKIP,
    SkipType.TIMEOUT_SKIP: HistoryEventKind.TIMEOUT_SKIP,
    SkipType.FORFEITED: HistoryEventKind.FORFEITED,
}


class HistoryRecorder:
    """Writes history events for a session."""

    def _append(self, session: DecisionSession, event: HistoryEvent) -> HistoryEvent:
        session.elimination_history.append(event)
        return event

    def elimination(
        self,
        session: DecisionSession,
        participant: str,
        item_id: str,
        at: datetime,
        round_number: int,
        turn_index: int,
        catch_up: bool = False,
    ) -> HistoryEvent:
        return self._append(
            session,
            HistoryEvent(
                kind=HistoryEventKind.ELIMINATED,
                timestamp=at,
                participant=participant,
                item_id=item_id,
                round=round_number,
                turn_index=turn_index,
                catch_up=catch_up,
            ),
        )

    def skip(
        self,
        session: DecisionSession,
        record: SkipRecord,
        at: datetime | None = None,
    ) -> HistoryEvent:
        """Record a skip or forfeit for the record's (round, turn) slot."""
        return self._append(
            session,
            HistoryEvent(
                kind=_SKIP_EVENT_KINDS[record.skip_type],
                timestamp=at or record.timestamp,
                participant=record.participant,
                round=record.round,
                turn_index=record.turn_index,
                catch_up=session.status == SessionStatus.CATCH_UP,
            ),
        )

    def terminal(
        self,
        session: DecisionSession,
        kind: HistoryEventKind,
        at: datetime,
    ) -> HistoryEvent:
        """Record a terminal transition (completed, expired, cancelled)."""
        return self._append(
            session,
            HistoryEvent(
                kind=kind,
                timestamp=at,
                item_id=session.final_selection if kind == HistoryEventKind.COMPLETED else None,
                round=session.current_round,
                turn_index=session.current_turn_index,
            ),
        )


def eliminations(session: DecisionSession) -> list[HistoryEvent]:
    """Elimination events in the order they happened."""
    return [e for e in session.elimination_history if e.kind == HistoryEventKind.ELIMINATED]
