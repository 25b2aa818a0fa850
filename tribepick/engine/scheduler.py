"""
Turn Scheduler: who acts next, and what happens when they don't.

Regular phase: participants act in `elimination_order`, one turn each per
round, for K rounds. Skipped turns become SkipRecords and are replayed in
a catch-up phase after round K, oldest (round, turn_index) first.

Timeouts are detected lazily from persisted timestamps. A timed-out turn
is treated as having ended at `turn_started_at + turn_timeout`, and the
next turn starts at that same instant, so several consecutive timeouts can
be replayed on a single access without any background timer.

The scheduler reads session status but never writes it; the elimination
state machine owns status transitions and reacts to the TurnAdvance value
returned here.
"""

import logging
import random
from datetime import datetime, timedelta
from enum import Enum

from tribepick.engine.history import HistoryRecorder
from tribepick.models.session import (
    DecisionSession,
    NotYourTurnError,
    SessionStatus,
    SkipQuotaExceededError,
    SkipRecord,
    SkipType,
    TurnAlreadyDeferredError,
)

logger = logging.getLogger(__name__)


class TurnAdvance(str, Enum):
    """Result of moving to the next turn."""

    NEXT_TURN = "next_turn"
    CATCH_UP_STARTED = "catch_up_started"
    EXHAUSTED = "exhausted"


class TurnScheduler:
    """Owns elimination order, turn indices, skips and catch-up replay."""

    def __init__(
        self,
        rng: random.Random | None = None,
        recorder: HistoryRecorder | None = None,
    ):
        self._rng = rng or random.SystemRandom()
        self._recorder = recorder or HistoryRecorder()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def start(self, session: DecisionSession, now: datetime) -> None:
        """Draw a uniformly random elimination order and open round 1."""
        order = list(session.participants)
        self._rng.shuffle(order)
        session.elimination_order = order
        session.current_round = 1
        session.current_turn_index = 0
        session.turn_started_at = now
        session.skip_count_by_participant = {p: 0 for p in order}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def replay_record(self, session: DecisionSession) -> SkipRecord | None:
        """The deferred turn being replayed, if in catch-up."""
        if session.status != SessionStatus.CATCH_UP:
            return None
        pending = session.pending_skips()
        return pending[0] if pending else None

    def current_holder(self, session: DecisionSession) -> str | None:
        """Participant whose turn it is, or None outside active phases."""
        if session.status == SessionStatus.ELIMINATING:
            return session.elimination_order[session.current_turn_index]
        record = self.replay_record(session)
        return record.participant if record else None

    def current_slot(self, session: DecisionSession) -> tuple[int, int]:
        """(round, turn_index) of the active turn; the original slot in catch-up."""
        record = self.replay_record(session)
        if record is not None:
            return record.slot
        return (session.current_round, session.current_turn_index)

    def turn_deadline(self, session: DecisionSession) -> datetime | None:
        if not session.status.is_active or session.turn_started_at is None:
            return None
        return session.turn_started_at + session.turn_timeout

    def time_remaining(self, session: DecisionSession, now: datetime) -> timedelta | None:
        deadline = self.turn_deadline(session)
        if deadline is None:
            return None
        return max(deadline - now, timedelta(0))

    def timeout_due(self, session: DecisionSession, now: datetime) -> bool:
        deadline = self.turn_deadline(session)
        return deadline is not None and now >= deadline

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def advance_turn(self, session: DecisionSession, now: datetime) -> TurnAdvance:
        """
        Move to the next turn.

        In the regular phase this steps the turn index, wrapping into the
        next round; after round K it reports whether catch-up is needed.
        In catch-up it moves to the next pending record.
        """
        params = session.params
        if params is None:
            raise ValueError("session has no algorithm parameters")

        if session.status == SessionStatus.CATCH_UP:
            if not session.pending_skips():
                return TurnAdvance.EXHAUSTED
            session.turn_started_at = now
            return TurnAdvance.NEXT_TURN

        session.current_turn_index += 1
        if session.current_turn_index >= params.n:
            session.current_turn_index = 0
            session.current_round += 1

        if session.current_round > params.k:
            if session.pending_skips():
                session.turn_started_at = now
                return TurnAdvance.CATCH_UP_STARTED
            return TurnAdvance.EXHAUSTED

        session.turn_started_at = now
        return TurnAdvance.NEXT_TURN

    def quick_skip(self, session: DecisionSession, participant: str, now: datetime) -> TurnAdvance:
        """
        Voluntarily pass the current turn.

        Raises:
            SkipQuotaExceededError: Participant already skipped K times
            NotYourTurnError: Participant does not hold the turn
            TurnAlreadyDeferredError: The turn is itself a catch-up replay
        """
        params = session.params
        if params is None:
            raise ValueError("session has no algorithm parameters")

        used = session.skip_count_by_participant.get(participant, 0)
        if participant in session.participants and used >= params.k:
            raise SkipQuotaExceededError(participant, params.k)

        holder = self.current_holder(session)
        if holder != participant:
            raise NotYourTurnError(participant, holder)

        if session.status == SessionStatus.CATCH_UP:
            round_number, turn_index = self.current_slot(session)
            raise TurnAlreadyDeferredError(participant, round_number, turn_index)

        record = SkipRecord(
            participant=participant,
            round=session.current_round,
            turn_index=session.current_turn_index,
            skip_type=SkipType.QUICK_SKIP,
            timestamp=now,
        )
        session.skip_records.append(record)
        session.skip_count_by_participant[participant] = used + 1
        self._recorder.skip(session, record)

        logger.info(
            "turn_quick_skipped",
            extra={
                "session_id": session.id,
                "participant": participant,
                "round": record.round,
                "turn_index": record.turn_index,
                "skips_used": used + 1,
            },
        )
        return self.advance_turn(session, now)

    def timeout_skip(self, session: DecisionSession) -> tuple[TurnAdvance, datetime]:
        """
        Apply a turn timeout.

        Regular phase: defer the turn like a quick-skip without using quota.
        Catch-up: forfeit every pending record of the idle participant so
        one absent member cannot block the backlog.

        Returns:
            The advance result and the instant the timeout fired
        """
        deadline = self.turn_deadline(session)
        if deadline is None:
            raise ValueError("no active turn to time out")

        holder = self.current_holder(session)
        if holder is None:
            raise ValueError("no turn holder to time out")

        if session.status == SessionStatus.CATCH_UP:
            forfeited = self.forfeit_pending(session, deadline, participant=holder)
            logger.warning(
                "catch_up_turn_timed_out",
                extra={
                    "session_id": session.id,
                    "participant": holder,
                    "forfeited": forfeited,
                },
            )
            return self.advance_turn(session, deadline), deadline

        record = SkipRecord(
            participant=holder,
            round=session.current_round,
            turn_index=session.current_turn_index,
            skip_type=SkipType.TIMEOUT_SKIP,
            timestamp=deadline,
        )
        session.skip_records.append(record)
        self._recorder.skip(session, record)

        logger.warning(
            "turn_timed_out",
            extra={
                "session_id": session.id,
                "participant": holder,
                "round": record.round,
                "turn_index": record.turn_index,
            },
        )
        return self.advance_turn(session, deadline), deadline

    def resolve_replay(self, session: DecisionSession, item_id: str) -> SkipRecord:
        """Mark the catch-up record being replayed as resolved by an elimination."""
        record = self.replay_record(session)
        if record is None:
            raise ValueError("no catch-up turn is being replayed")
        record.resolved = True
        record.resolved_item_id = item_id
        return record

    def forfeit_pending(
        self,
        session: DecisionSession,
        at: datetime,
        participant: str | None = None,
    ) -> int:
        """
        Forfeit pending records (all, or only one participant's).

        Returns:
            Number of records forfeited
        """
        count = 0
        for record in session.pending_skips():
            if participant is not None and record.participant != participant:
                continue
            record.skip_type = SkipType.FORFEITED
            record.resolved = True
            self._recorder.skip(session, record, at=at)
            count += 1
        return count
