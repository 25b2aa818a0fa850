"""
Tests for the elimination state machine.

INVARIANTS:
- Each elimination removes exactly one candidate; nothing comes back
- Terminal sessions have no pending skip records
- Turn errors leave the session untouched
- Corrupted stored state is refused before use
"""

import copy
import random
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from tribepick.engine.selection import SelectionResolver
from tribepick.engine.state_machine import EliminationStateMachine
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
    SkipType,
)

T0 = datetime(2026, 3, 6, 18, 0, tzinfo=UTC)


@pytest.fixture
def machine() -> EliminationStateMachine:
    return EliminationStateMachine(rng=random.Random(11))


def start(
    machine: EliminationStateMachine,
    session: DecisionSession,
    k: int,
    m: int,
    extra: int = 0,
) -> DecisionSession:
    params = AlgorithmParameters(k=k, n=len(session.participants), m=m)
    ranked = [f"item-{i}" for i in range(params.initial_count + extra)]
    machine.start(session, ranked, params, T0)
    return session


class TestStart:
    def test_start_takes_top_ranked_candidates(self, machine, make_session) -> None:
        """Only the best K*N + M ranked items enter the session."""
        session = start(machine, make_session(), k=2, m=3, extra=4)

        assert session.status == SessionStatus.ELIMINATING
        assert session.candidate_set == [f"item-{i}" for i in range(7)]
        assert session.initial_candidates == session.candidate_set
        assert session.params == AlgorithmParameters(k=2, n=2, m=3)

    def test_start_twice_rejected(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)

        with pytest.raises(SessionStateError):
            start(machine, session, k=1, m=1)

    def test_too_few_candidates_is_integrity_error(self, machine, make_session) -> None:
        session = make_session()
        params = AlgorithmParameters(k=2, n=2, m=3)

        with pytest.raises(SessionIntegrityError):
            machine.start(session, ["item-0", "item-1"], params, T0)

    def test_zero_k_completes_immediately(self, machine, make_session) -> None:
        """K=0 skips elimination and draws from all candidates."""
        session = start(machine, make_session(), k=0, m=3)

        assert session.status == SessionStatus.COMPLETED
        assert session.final_selection in session.initial_candidates
        assert len(session.runners_up) == 2
        assert session.final_selection not in session.runners_up
        assert session.turn_started_at is None


class TestEliminate:
    def test_three_items_two_participants_one_survivor(self, make_session) -> None:
        """3 items, K=1, N=2, M=1: one survivor, no runners-up, no random draw."""
        draw_rng = MagicMock(spec=random.Random)
        machine = EliminationStateMachine(
            rng=random.Random(3), selector=SelectionResolver(rng=draw_rng)
        )
        session = start(machine, make_session(), k=1, m=1)
        first, second = session.elimination_order

        machine.eliminate(session, first, "item-0", T0 + timedelta(minutes=1))
        assert session.candidate_set == ["item-1", "item-2"]
        machine.eliminate(session, second, "item-2", T0 + timedelta(minutes=2))

        assert session.status == SessionStatus.COMPLETED
        assert session.final_selection == "item-1"
        assert session.runners_up == []
        draw_rng.choice.assert_not_called()

    def test_candidate_set_shrinks_by_one(self, machine, make_session) -> None:
        session = start(machine, make_session(("a", "b", "c")), k=2, m=2)
        seen_removed: set[str] = set()
        now = T0

        while session.status == SessionStatus.ELIMINATING:
            before = list(session.candidate_set)
            now += timedelta(minutes=1)
            target = before[-1]
            machine.eliminate(session, machine.scheduler.current_holder(session), target, now)
            assert len(session.candidate_set) == len(before) - 1
            assert target not in session.candidate_set
            seen_removed.add(target)
            assert not seen_removed & set(session.candidate_set)

    def test_not_your_turn(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        _, second = session.elimination_order
        snapshot = copy.deepcopy(session)

        with pytest.raises(NotYourTurnError):
            machine.eliminate(session, second, "item-0", T0)

        assert session == snapshot

    def test_item_already_eliminated(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=2, m=1)
        first, second = session.elimination_order
        machine.eliminate(session, first, "item-0", T0)

        with pytest.raises(ItemAlreadyEliminatedError):
            machine.eliminate(session, second, "item-0", T0)

    def test_item_never_a_candidate(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        first, _ = session.elimination_order

        with pytest.raises(InvalidItemError):
            machine.eliminate(session, first, "somewhere-else", T0)

    def test_eliminate_before_start_rejected(self, machine, make_session) -> None:
        session = make_session()

        with pytest.raises(SessionStateError):
            machine.eliminate(session, "alice", "item-0", T0)

    def test_eliminate_after_completion_rejected(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=0, m=1)

        with pytest.raises(SessionStateError):
            machine.eliminate(session, "alice", "item-0", T0)


class TestExpiry:
    def test_idle_session_expires(self, machine, make_session) -> None:
        """No activity for the session timeout expires the session."""
        session = start(
            machine,
            make_session(turn_timeout=timedelta(hours=1), session_timeout=timedelta(hours=2)),
            k=1,
            m=1,
        )
        first, _ = session.elimination_order
        machine.quick_skip(session, first, T0)

        machine.sweep(session, T0 + timedelta(hours=5))

        assert session.status == SessionStatus.EXPIRED
        assert session.pending_skips() == []
        assert session.skip_records[0].skip_type == SkipType.FORFEITED
        assert session.elimination_history[-1].kind == HistoryEventKind.EXPIRED
        assert session.elimination_history[-1].timestamp == T0 + timedelta(hours=2)
        assert session.final_selection is None

    def test_activity_keeps_session_alive(self, machine, make_session) -> None:
        session = start(
            machine,
            make_session(turn_timeout=timedelta(hours=10), session_timeout=timedelta(hours=2)),
            k=2,
            m=1,
        )
        first, _ = session.elimination_order
        machine.eliminate(session, first, "item-0", T0 + timedelta(hours=1, minutes=30))

        machine.sweep(session, T0 + timedelta(hours=3))

        assert session.status == SessionStatus.ELIMINATING

    @pytest.mark.parametrize("read_after", [timedelta(hours=23), timedelta(hours=25)])
    def test_turn_timeouts_replayed_before_expiry(self, make_session, read_after) -> None:
        """Timeouts that exhaust the turns complete the session, however late it is read."""
        machine = EliminationStateMachine(rng=random.Random(11))
        session = start(machine, make_session(), k=1, m=1)

        machine.sweep(session, T0 + read_after)

        assert session.status == SessionStatus.COMPLETED
        assert session.completed_at == T0 + timedelta(hours=4)
        assert session.final_selection in session.initial_candidates
        assert session.pending_skips() == []

    def test_same_outcome_whenever_read(self, make_session) -> None:
        early = start(EliminationStateMachine(rng=random.Random(5)), make_session(), k=1, m=1)
        late = start(EliminationStateMachine(rng=random.Random(5)), make_session(), k=1, m=1)

        EliminationStateMachine(rng=random.Random(5)).sweep(early, T0 + timedelta(hours=23))
        EliminationStateMachine(rng=random.Random(5)).sweep(late, T0 + timedelta(hours=25))

        assert early.status == late.status
        assert early.completed_at == late.completed_at

    def test_expiry_cuts_off_later_timeouts(self, machine, make_session) -> None:
        """Timeouts firing before the idle limit apply; the rest never happen."""
        session = start(
            machine,
            make_session(turn_timeout=timedelta(hours=1), session_timeout=timedelta(minutes=90)),
            k=2,
            m=1,
        )

        machine.sweep(session, T0 + timedelta(hours=6))

        assert session.status == SessionStatus.EXPIRED
        assert len(session.skip_records) == 1
        assert session.skip_records[0].slot == (1, 0)
        assert session.skip_records[0].skip_type == SkipType.FORFEITED
        assert session.elimination_history[-1].kind == HistoryEventKind.EXPIRED
        assert session.elimination_history[-1].timestamp == T0 + timedelta(minutes=90)


class TestCancelAndPin:
    def test_cancel_forfeits_pending(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        first, _ = session.elimination_order
        machine.quick_skip(session, first, T0)

        assert machine.cancel(session, T0 + timedelta(minutes=1)) is True

        assert session.status == SessionStatus.CANCELLED
        assert session.pending_skips() == []
        assert session.elimination_history[-1].kind == HistoryEventKind.CANCELLED

    def test_cancel_in_regular_phase_forfeits_outside_catch_up(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=2, m=1)
        first, _ = session.elimination_order
        machine.quick_skip(session, first, T0)

        machine.cancel(session, T0 + timedelta(minutes=1))

        forfeits = [
            e for e in session.elimination_history if e.kind == HistoryEventKind.FORFEITED
        ]
        assert len(forfeits) == 1
        assert forfeits[0].catch_up is False

    def test_cancel_is_idempotent(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        machine.cancel(session, T0)
        history = list(session.elimination_history)

        assert machine.cancel(session, T0 + timedelta(minutes=1)) is False

        assert session.status == SessionStatus.CANCELLED
        assert session.elimination_history == history

    def test_cancel_completed_session_changes_nothing(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=0, m=2)

        assert machine.cancel(session, T0) is False
        assert session.status == SessionStatus.COMPLETED

    def test_cancel_while_configuring(self, machine, make_session) -> None:
        session = make_session()

        assert machine.cancel(session, T0) is True
        assert session.status == SessionStatus.CANCELLED

    def test_pin(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=0, m=1)

        machine.pin(session)
        machine.pin(session)

        assert session.is_pinned


class TestStatusView:
    def test_view_for_turn_holder(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=2, m=3)
        first, second = session.elimination_order

        view = machine.status_view(session, first, T0 + timedelta(minutes=10))

        assert view.is_your_turn
        assert view.current_turn_holder == first
        assert view.round == 1
        assert view.total_rounds == 2
        assert view.skip_limit == 2
        assert view.skips_used == 0
        assert view.candidate_count == 7
        assert view.target_size == 3
        assert view.time_remaining_seconds == pytest.approx(50 * 60)

        other = machine.status_view(session, second, T0)
        assert not other.is_your_turn

    def test_view_rejects_outsiders(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)

        with pytest.raises(NotAParticipantError):
            machine.status_view(session, "mallory", T0)

    def test_completed_view(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=0, m=2)

        view = machine.status_view(session, "alice", T0)

        assert view.status == SessionStatus.COMPLETED
        assert view.current_turn_holder is None
        assert view.time_remaining_seconds is None
        assert view.final_selection == session.final_selection
        assert len(view.runners_up) == 1


class TestIntegrity:
    def test_fresh_session_is_consistent(self, machine, make_session) -> None:
        session = start(machine, make_session(("a", "b", "c")), k=2, m=2)

        machine.check_integrity(session)

    def test_skip_count_above_k(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        session.skip_count_by_participant["alice"] = 5

        with pytest.raises(SessionIntegrityError, match="exceeds"):
            machine.check_integrity(session)

    def test_order_not_a_permutation(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        session.elimination_order = ["alice", "alice"]

        with pytest.raises(SessionIntegrityError):
            machine.check_integrity(session)

    def test_candidate_outside_pool(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        session.candidate_set[0] = "intruder"

        with pytest.raises(SessionIntegrityError):
            machine.check_integrity(session)

    def test_candidates_out_of_sync_with_history(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        session.candidate_set.pop()

        with pytest.raises(SessionIntegrityError, match="history"):
            machine.check_integrity(session)

    def test_integrity_error_is_server_failure(self, machine, make_session) -> None:
        session = start(machine, make_session(), k=1, m=1)
        session.turn_started_at = None

        with pytest.raises(SessionIntegrityError) as exc_info:
            machine.check_integrity(session)

        assert exc_info.value.status_code == 500
