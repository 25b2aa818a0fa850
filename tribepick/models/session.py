"""
Decision session state.

A DecisionSession is the single persisted aggregate mutated by the turn
scheduler and elimination state machine. Every field needed to resume a
session (including timeout detection) lives here; nothing is held in
memory between requests.

INVARIANTS:
- elimination_order is a permutation of participants (N distinct ids)
- skip_count_by_participant[p] <= K for every participant
- candidate_set only shrinks, one item per elimination
- final_selection, once set, never changes
- no SkipRecord is pending once the session is terminal
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from tribepick.models.failure import FailureKind, KnownError
from tribepick.models.filters import FilterConfiguration


class SessionStatus(str, Enum):
    """Lifecycle status of a decision session."""

    CONFIGURING = "configuring"
    ELIMINATING = "eliminating"
    CATCH_UP = "catch_up"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """True while turns are being taken."""
        return self in (SessionStatus.ELIMINATING, SessionStatus.CATCH_UP)


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.EXPIRED, SessionStatus.CANCELLED}
)


class SkipType(str, Enum):
    """How a turn was skipped."""

    QUICK_SKIP = "quick_skip"
    TIMEOUT_SKIP = "timeout_skip"
    FORFEITED = "forfeited"


class HistoryEventKind(str, Enum):
    """Kinds of entries in the session history log."""

    ELIMINATED = "eliminated"
    QUICK_SKIP = "quick_skip"
    TIMEOUT_SKIP = "timeout_skip"
    FORFEITED = "forfeited"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AlgorithmParameters:
    """
    Resolved elimination parameters.

    Attributes:
        k: Eliminations per participant
        n: Participant count
        m: Final set size
    """

    k: int
    n: int
    m: int

    @property
    def initial_count(self) -> int:
        """Number of candidates a session starts with: K*N + M."""
        return self.k * self.n + self.m


@dataclass
class SkipRecord:
    """
    A deferred turn.

    Pending until it is either replayed during catch-up (resolved with an
    elimination) or forfeited.
    """

    participant: str
    round: int
    turn_index: int
    skip_type: SkipType
    timestamp: datetime
    resolved: bool = False
    resolved_item_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return not self.resolved

    @property
    def slot(self) -> tuple[int, int]:
        """(round, turn_index) ordering key."""
        return (self.round, self.turn_index)


@dataclass(frozen=True)
class HistoryEvent:
    """One append-only history entry."""

    kind: HistoryEventKind
    timestamp: datetime
    participant: str | None = None
    item_id: str | None = None
    round: int = 0
    turn_index: int = 0
    catch_up: bool = False


@dataclass
class DecisionSession:
    """
    A group decision in progress (or finished).

    Attributes mirror the persisted session row one-to-one.
    """

    id: str
    participants: list[str]
    source_item_ids: list[str]
    filter_config: FilterConfiguration
    requested_k: int
    requested_m: int
    turn_timeout: timedelta
    session_timeout: timedelta
    created_at: datetime
    last_activity_at: datetime
    status: SessionStatus = SessionStatus.CONFIGURING
    params: AlgorithmParameters | None = None
    elimination_order: list[str] = field(default_factory=list)
    current_round: int = 0
    current_turn_index: int = 0
    turn_started_at: datetime | None = None
    skip_records: list[SkipRecord] = field(default_factory=list)
    skip_count_by_participant: dict[str, int] = field(default_factory=dict)
    initial_candidates: list[str] = field(default_factory=list)
    candidate_set: list[str] = field(default_factory=list)
    candidate_scores: dict[str, float] = field(default_factory=dict)
    elimination_history: list[HistoryEvent] = field(default_factory=list)
    final_selection: str | None = None
    runners_up: list[str] = field(default_factory=list)
    is_pinned: bool = False
    completed_at: datetime | None = None

    def pending_skips(self) -> list[SkipRecord]:
        """Unresolved skip records in (round, turn_index) order."""
        return sorted((r for r in self.skip_records if r.is_pending), key=lambda r: r.slot)

    def eliminated_items(self) -> set[str]:
        return {
            e.item_id
            for e in self.elimination_history
            if e.kind == HistoryEventKind.ELIMINATED and e.item_id is not None
        }


# =============================================================================
# SESSION ERRORS
# =============================================================================


class SessionNotFoundError(KnownError):
    """Raised when no session exists with the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"Decision session '{session_id}' not found.",
        )


class InvalidSessionRequestError(KnownError):
    """Raised when a session creation request is malformed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=f"Invalid decision session request: {reason}",
            detail=reason,
        )


class NotAParticipantError(KnownError):
    """Raised when a caller is not in the session's participant snapshot."""

    def __init__(self, session_id: str, participant_id: str):
        self.session_id = session_id
        self.participant_id = participant_id
        super().__init__(
            kind=FailureKind.NOT_A_PARTICIPANT,
            message="You are not a participant in this decision session.",
            detail=f"participant={participant_id} session={session_id}",
        )


class SessionStateError(KnownError):
    """Raised when an operation is not valid for the session's status."""

    def __init__(self, operation: str, status: SessionStatus):
        self.operation = operation
        self.status = status
        super().__init__(
            kind=FailureKind.INVALID_SESSION_STATE,
            message=f"Cannot {operation} while the session is {status.value}.",
            detail=f"operation={operation} status={status.value}",
        )


class SessionIntegrityError(KnownError):
    """
    Persisted session state is corrupted.

    This is unrecoverable and signals a bug in whatever wrote the state.
    """

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(
            kind=FailureKind.INVARIANT_VIOLATION,
            message="Session state is inconsistent and cannot be used.",
            detail=f"session={session_id}: {reason}",
        )


class TurnViolationError(KnownError):
    """
    Base class for recoverable turn errors.

    Raised before any mutation, so the session is unchanged.
    """

    def __init__(self, kind: FailureKind, message: str, detail: str | None = None):
        super().__init__(kind=kind, message=message, detail=detail)


class NotYourTurnError(TurnViolationError):
    def __init__(self, participant_id: str, holder: str | None):
        self.participant_id = participant_id
        self.holder = holder
        super().__init__(
            FailureKind.NOT_YOUR_TURN,
            "It is not your turn.",
            detail=f"participant={participant_id} holder={holder}",
        )


class ItemAlreadyEliminatedError(TurnViolationError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(
            FailureKind.ITEM_ALREADY_ELIMINATED,
            "That option has already been eliminated.",
            detail=f"item={item_id}",
        )


class InvalidItemError(TurnViolationError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(
            FailureKind.INVALID_ITEM,
            "That option is not part of this decision.",
            detail=f"item={item_id}",
        )


class SkipQuotaExceededError(TurnViolationError):
    def __init__(self, participant_id: str, limit: int):
        self.participant_id = participant_id
        self.limit = limit
        super().__init__(
            FailureKind.SKIP_QUOTA_EXCEEDED,
            f"You have used all {limit} of your skips.",
            detail=f"participant={participant_id} limit={limit}",
        )


class TurnAlreadyDeferredError(TurnViolationError):
    def __init__(self, participant_id: str, round_number: int, turn_index: int):
        self.participant_id = participant_id
        super().__init__(
            FailureKind.TURN_ALREADY_DEFERRED,
            "This turn was already skipped once and must be taken now.",
            detail=f"participant={participant_id} round={round_number} turn={turn_index}",
        )
