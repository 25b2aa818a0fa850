"""
Elimination State Machine: session status and candidate-set mutation.

    CONFIGURING --start--> ELIMINATING --round K done, skips pending--> CATCH_UP
         |                     |                                        |
         |                     +--candidates <= M / turns exhausted-----+--> COMPLETED
         +--cancel--> CANCELLED            (any active status) --idle--> EXPIRED

Every read and mutation first runs a lazy sweep that replays, in time
order, each turn timeout that fired and the session expiry
(last_activity_at + session_timeout) if the session is still active then.

There is no background timer. All timeout state is derived from
persisted timestamps, so a restarted process resumes exactly where the
previous one left off.

INVARIANTS:
- candidate_set loses exactly one item per elimination, never regains one
- terminal sessions have no pending skip records
- final_selection is written once, at completion
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime

from tribepick.engine.history import HistoryRecorder
from tribepick.engine.scheduler import TurnAdvance, TurnScheduler
from tribepick.engine.selection import SelectionResolver
from tribepick.models.session import (
    AlgorithmParameters,
    DecisionSession,
    HistoryEventKind,
    InvalidItemError,
    ItemAlreadyEliminatedError,
    NotAParticipantError,
    NotYourTurnError,
    SessionIntegrityError,
    SessionStateError,
    SessionStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStatusView:
    """What a participant sees when polling a session."""

    session_id: str
    status: SessionStatus
    round: int
    total_rounds: int
    current_turn_holder: str | None
    is_your_turn: bool
    time_remaining_seconds: float | None
    skips_used: int
    skip_limit: int
    candidates: tuple[str, ...]
    target_size: int
    pending_catch_up: int
    final_selection: str | None
    runners_up: tuple[str, ...]
    is_pinned: bool
    candidate_scores: dict[str, float] = field(default_factory=dict)

    @property
    def candidate_count(self) -> int:
        return len(self.candidates)


class EliminationStateMachine:
    """Drives a DecisionSession through elimination to a final selection."""

    def __init__(
        self,
        rng: random.Random | None = None,
        scheduler: TurnScheduler | None = None,
        selector: SelectionResolver | None = None,
        recorder: HistoryRecorder | None = None,
    ):
        self.recorder = recorder or HistoryRecorder()
        self.scheduler = scheduler or TurnScheduler(rng=rng, recorder=self.recorder)
        self.selector = selector or SelectionResolver(rng=rng)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(
        self,
        session: DecisionSession,
        ranked_candidates: list[str],
        params: AlgorithmParameters,
        now: datetime,
    ) -> None:
        """
        Seed the session with its candidates and open the first turn.

        `ranked_candidates` is the filter engine's output, best first; the
        top K*N + M become the session's candidate set. With K = 0 the
        elimination phase is skipped and the selection runs immediately.
        """
        if session.status != SessionStatus.CONFIGURING:
            raise SessionStateError("start elimination", session.status)
        if len(ranked_candidates) < params.initial_count:
            raise SessionIntegrityError(
                session.id,
                f"{len(ranked_candidates)} candidates for initial count {params.initial_count}",
            )

        chosen = list(ranked_candidates[: params.initial_count])
        session.params = params
        session.initial_candidates = list(chosen)
        session.candidate_set = list(chosen)
        session.last_activity_at = now
        self.scheduler.start(session, now)
        session.status = SessionStatus.ELIMINATING

        logger.info(
            "session_started",
            extra={
                "session_id": session.id,
                "k": params.k,
                "n": params.n,
                "m": params.m,
                "candidates": len(chosen),
            },
        )

        if params.k == 0 or len(session.candidate_set) <= params.m:
            self._complete(session, now)

    def sweep(self, session: DecisionSession, now: datetime) -> None:
        """
        Replay everything that fell due before `now`, oldest first.

        A turn timeout firing before the expiry instant is applied first, so
        the outcome depends only on stored timestamps, not on when the
        session is next read.
        """
        while session.status.is_active:
            expires_at = session.last_activity_at + session.session_timeout
            deadline = self.scheduler.turn_deadline(session)
            due = self.scheduler.timeout_due(session, now)
            if due and deadline is not None and deadline < expires_at:
                advance, fired_at = self.scheduler.timeout_skip(session)
                self._after_advance(session, advance, fired_at)
            elif now >= expires_at:
                self._expire(session, expires_at)
            else:
                return

    def cancel(self, session: DecisionSession, now: datetime) -> bool:
        """
        Cancel a non-terminal session.

        Idempotent: returns False (and changes nothing) if already terminal.
        """
        self.sweep(session, now)
        if session.status.is_terminal:
            return False

        self.scheduler.forfeit_pending(session, now)
        session.status = SessionStatus.CANCELLED
        session.turn_started_at = None
        self.recorder.terminal(session, HistoryEventKind.CANCELLED, now)
        logger.info("session_cancelled", extra={"session_id": session.id})
        return True

    def pin(self, session: DecisionSession) -> None:
        """Mark the session as pinned. Idempotent."""
        session.is_pinned = True

    # -------------------------------------------------------------------------
    # Turn actions
    # -------------------------------------------------------------------------

    def eliminate(
        self,
        session: DecisionSession,
        participant: str,
        item_id: str,
        now: datetime,
    ) -> None:
        """
        Remove one candidate on the participant's turn.

        Raises:
            SessionStateError: Session is not eliminating or catching up
            NotYourTurnError: Participant does not hold the current turn
            ItemAlreadyEliminatedError: Item was a candidate but is gone
            InvalidItemError: Item was never a candidate in this session
        """
        self.sweep(session, now)
        if not session.status.is_active:
            raise SessionStateError("eliminate", session.status)

        holder = self.scheduler.current_holder(session)
        if holder != participant:
            raise NotYourTurnError(participant, holder)

        if item_id not in session.candidate_set:
            if item_id in session.initial_candidates:
                raise ItemAlreadyEliminatedError(item_id)
            raise InvalidItemError(item_id)

        round_number, turn_index = self.scheduler.current_slot(session)
        catch_up = session.status == SessionStatus.CATCH_UP

        session.candidate_set.remove(item_id)
        if catch_up:
            self.scheduler.resolve_replay(session, item_id)
        self.recorder.elimination(
            session,
            participant=participant,
            item_id=item_id,
            at=now,
            round_number=round_number,
            turn_index=turn_index,
            catch_up=catch_up,
        )
        session.last_activity_at = now

        logger.info(
            "item_eliminated",
            extra={
                "session_id": session.id,
                "participant": participant,
                "item_id": item_id,
                "round": round_number,
                "turn_index": turn_index,
                "catch_up": catch_up,
                "remaining": len(session.candidate_set),
            },
        )

        params = session.params
        if params is not None and len(session.candidate_set) <= params.m:
            self._complete(session, now)
            return

        advance = self.scheduler.advance_turn(session, now)
        self._after_advance(session, advance, now)

    def quick_skip(self, session: DecisionSession, participant: str, now: datetime) -> None:
        """
        Voluntarily pass the current turn.

        Raises:
            SessionStateError: Session is not eliminating or catching up
            SkipQuotaExceededError, NotYourTurnError, TurnAlreadyDeferredError
        """
        self.sweep(session, now)
        if not session.status.is_active:
            raise SessionStateError("skip", session.status)

        advance = self.scheduler.quick_skip(session, participant, now)
        session.last_activity_at = now
        self._after_advance(session, advance, now)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def status_view(
        self,
        session: DecisionSession,
        participant: str,
        now: datetime,
    ) -> SessionStatusView:
        """
        Build the participant's view of the session (after a sweep).

        Raises:
            NotAParticipantError: Caller is not in the participant snapshot
        """
        if participant not in session.participants:
            raise NotAParticipantError(session.id, participant)

        self.sweep(session, now)

        holder = self.scheduler.current_holder(session)
        remaining = self.scheduler.time_remaining(session, now)
        params = session.params
        round_number, _ = self.scheduler.current_slot(session)

        return SessionStatusView(
            session_id=session.id,
            status=session.status,
            round=round_number,
            total_rounds=params.k if params else session.requested_k,
            current_turn_holder=holder,
            is_your_turn=holder == participant,
            time_remaining_seconds=remaining.total_seconds() if remaining is not None else None,
            skips_used=session.skip_count_by_participant.get(participant, 0),
            skip_limit=params.k if params else session.requested_k,
            candidates=tuple(session.candidate_set),
            target_size=params.m if params else session.requested_m,
            pending_catch_up=len(session.pending_skips()),
            final_selection=session.final_selection,
            runners_up=tuple(session.runners_up),
            is_pinned=session.is_pinned,
            candidate_scores={
                item: score
                for item, score in session.candidate_scores.items()
                if item in session.candidate_set
            },
        )

    # -------------------------------------------------------------------------
    # Integrity
    # -------------------------------------------------------------------------

    def check_integrity(self, session: DecisionSession) -> None:
        """
        Validate persisted state before using it.

        Raises:
            SessionIntegrityError: On any structural inconsistency
        """

        def fail(reason: str) -> None:
            raise SessionIntegrityError(session.id, reason)

        if not session.participants or len(set(session.participants)) != len(
            session.participants
        ):
            fail("participant snapshot is empty or has duplicates")

        if session.status == SessionStatus.CONFIGURING:
            return

        params = session.params
        if params is None:
            fail("algorithm parameters missing after configuration")
            return

        if params.n != len(session.participants):
            fail(f"N={params.n} does not match {len(session.participants)} participants")
        if len(session.elimination_order) != params.n or set(session.elimination_order) != set(
            session.participants
        ):
            fail("elimination order is not a permutation of the participants")
        if len(session.initial_candidates) != params.initial_count:
            fail("initial candidate count does not equal K*N + M")

        for participant, count in session.skip_count_by_participant.items():
            if participant not in session.participants:
                fail(f"skip count for unknown participant {participant}")
            if count > params.k:
                fail(f"skip count {count} for {participant} exceeds K={params.k}")

        if len(set(session.candidate_set)) != len(session.candidate_set):
            fail("candidate set has duplicates")
        if not set(session.candidate_set) <= set(session.initial_candidates):
            fail("candidate set contains items outside the initial pool")
        eliminated = len(session.initial_candidates) - len(session.candidate_set)
        if eliminated != len(session.eliminated_items()):
            fail("candidate set does not match elimination history")

        if session.status == SessionStatus.ELIMINATING:
            if not 0 <= session.current_turn_index < params.n:
                fail(f"turn index {session.current_turn_index} out of range")
            if not 1 <= session.current_round <= params.k:
                fail(f"round {session.current_round} outside 1..{params.k}")
        if session.status.is_active and session.turn_started_at is None:
            fail("active session has no turn start time")
        if session.status == SessionStatus.CATCH_UP and not session.pending_skips():
            fail("catch-up phase with no pending skips")
        if session.status.is_terminal and session.pending_skips():
            fail("terminal session still has pending skips")
        if session.status == SessionStatus.COMPLETED and (
            session.final_selection is None
            or session.final_selection not in session.initial_candidates
        ):
            fail("completed session without a valid final selection")

    # -------------------------------------------------------------------------
    # Internal transitions
    # -------------------------------------------------------------------------

    def _after_advance(self, session: DecisionSession, advance: TurnAdvance, at: datetime) -> None:
        if advance == TurnAdvance.CATCH_UP_STARTED:
            session.status = SessionStatus.CATCH_UP
            logger.info(
                "catch_up_started",
                extra={"session_id": session.id, "pending": len(session.pending_skips())},
            )
        elif advance == TurnAdvance.EXHAUSTED:
            self._complete(session, at)

    def _complete(self, session: DecisionSession, at: datetime) -> None:
        self.scheduler.forfeit_pending(session, at)
        self.selector.resolve(session)
        session.status = SessionStatus.COMPLETED
        session.completed_at = at
        session.turn_started_at = None
        self.recorder.terminal(session, HistoryEventKind.COMPLETED, at)
        logger.info(
            "session_completed",
            extra={
                "session_id": session.id,
                "final_selection": session.final_selection,
                "remaining": len(session.candidate_set),
            },
        )

    def _expire(self, session: DecisionSession, at: datetime) -> None:
        self.scheduler.forfeit_pending(session, at)
        session.status = SessionStatus.EXPIRED
        session.turn_started_at = None
        self.recorder.terminal(session, HistoryEventKind.EXPIRED, at)
        logger.warning(
            "session_expired",
            extra={"session_id": session.id, "last_activity_at": session.last_activity_at},
        )
