"""
Decision Service: the operations collaborators call.

Each operation runs load -> integrity check -> lazy sweep -> mutate ->
save -> commit while holding the session's lock. Lazily applied timeouts
are saved even when the requested operation itself is rejected, so the
history always reflects what the clock already decided.

Collaborators (items, activity, persistence) are injected; the
participant list is trusted as given by the membership provider.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from tribepick.config import MAX_PARTICIPANTS, MAX_SOURCE_ITEMS, Settings, settings
from tribepick.engine.parameters import (
    InsufficientCandidatesError,
    InvalidParametersError,
    NoCandidatesError,
    resolve,
    suggest,
)
from tribepick.engine.state_machine import EliminationStateMachine, SessionStatusView
from tribepick.filtering.engine import evaluate
from tribepick.models.activity import ActivityEntry, ActivityStatus
from tribepick.models.failure import KnownError
from tribepick.models.filters import (
    FilterConfiguration,
    FilterKind,
    RecentActivityCriteria,
    validate_configuration,
)
from tribepick.models.session import (
    DecisionSession,
    InvalidSessionRequestError,
    NotAParticipantError,
    SessionNotFoundError,
    SessionStateError,
    SessionStatus,
)
from tribepick.services.providers import (
    ActivityProvider,
    ItemProvider,
    RecentActivitySnapshot,
    SessionRepository,
)
from tribepick.services.session_locks import SessionLockRegistry, get_lock_registry

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_session_id() -> str:
    return str(uuid.uuid4())


class DecisionService:
    """Create, run and finish decision sessions."""

    def __init__(
        self,
        repository: SessionRepository,
        items: ItemProvider,
        activity: ActivityProvider,
        machine: EliminationStateMachine | None = None,
        locks: SessionLockRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_session_id,
        config: Settings = settings,
    ):
        self._repository = repository
        self._items = items
        self._activity = activity
        self._machine = machine or EliminationStateMachine()
        self._locks = locks or get_lock_registry()
        self._clock = clock
        self._new_id = id_factory
        self._config = config

    # -------------------------------------------------------------------------
    # Session access
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[DecisionSession]:
        """
        Load a session under its lock and save it afterwards.

        Known (recoverable) errors still persist whatever the sweep
        changed; anything else leaves storage untouched.
        """
        async with self._locks.hold(session_id):
            session = await self._repository.load(session_id, for_update=True)
            if session is None:
                raise SessionNotFoundError(session_id)
            self._machine.check_integrity(session)

            try:
                yield session
            except KnownError:
                await self._repository.save(session)
                await self._repository.commit()
                raise

            await self._repository.save(session)
            await self._repository.commit()

    async def get_session(self, session_id: str) -> DecisionSession:
        """Load a session with timeouts applied."""
        async with self._locked(session_id) as session:
            self._machine.sweep(session, self._clock())
        return session

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        source_item_ids: list[str],
        filter_config: FilterConfiguration,
        participant_ids: list[str],
        requested_k: int | None = None,
        requested_m: int | None = None,
        turn_timeout: timedelta | None = None,
        session_timeout: timedelta | None = None,
    ) -> DecisionSession:
        """
        Create a session in CONFIGURING status.

        Raises:
            InvalidSessionRequestError: Bad participants, items or timeouts
            InvalidParametersError: K < 0 or M < 1
            InvalidFilterError: Malformed filter configuration
        """
        k = self._config.default_eliminations_per_participant if requested_k is None else requested_k
        m = self._config.default_final_set_size if requested_m is None else requested_m
        turn = turn_timeout or timedelta(seconds=self._config.turn_timeout_seconds)
        idle = session_timeout or timedelta(seconds=self._config.session_timeout_seconds)

        if not participant_ids:
            raise InvalidSessionRequestError("at least one participant is required")
        if len(set(participant_ids)) != len(participant_ids):
            raise InvalidSessionRequestError("participants must be distinct")
        if len(participant_ids) > MAX_PARTICIPANTS:
            raise InvalidSessionRequestError(f"at most {MAX_PARTICIPANTS} participants allowed")

        item_ids = list(dict.fromkeys(source_item_ids))
        if not item_ids:
            raise InvalidSessionRequestError("at least one source item is required")
        if len(item_ids) > MAX_SOURCE_ITEMS:
            raise InvalidSessionRequestError(f"at most {MAX_SOURCE_ITEMS} source items allowed")

        if turn <= timedelta(0) or idle <= timedelta(0):
            raise InvalidSessionRequestError("timeouts must be positive")
        if k < 0:
            raise InvalidParametersError("K must not be negative")
        if m < 1:
            raise InvalidParametersError("M must be at least 1")

        validate_configuration(filter_config)

        now = self._clock()
        session = DecisionSession(
            id=self._new_id(),
            participants=list(participant_ids),
            source_item_ids=item_ids,
            filter_config=filter_config,
            requested_k=k,
            requested_m=m,
            turn_timeout=turn,
            session_timeout=idle,
            created_at=now,
            last_activity_at=now,
        )

        async with self._locks.hold(session.id):
            await self._repository.save(session)
            await self._repository.commit()

        logger.info(
            "session_created",
            extra={
                "session_id": session.id,
                "participants": len(participant_ids),
                "source_items": len(item_ids),
                "filters": len(filter_config.criteria),
            },
        )
        return session

    async def apply_filters_and_start(self, session_id: str) -> DecisionSession:
        """
        Filter the source items, resolve (K, N, M) and start eliminating.

        Raises:
            SessionStateError: Session is not CONFIGURING
            NoCandidatesError: Nothing passed the hard filters
            InsufficientCandidatesError: Reduction needed but disabled
        """
        async with self._locked(session_id) as session:
            if session.status != SessionStatus.CONFIGURING:
                raise SessionStateError("apply filters", session.status)

            now = self._clock()
            items = await self._items.get_items(session.source_item_ids)
            snapshot = await self._activity_snapshot(session.filter_config, now)
            verdicts = evaluate(items, session.filter_config, activity=snapshot, now=now)

            n = len(session.participants)
            if not verdicts:
                raise NoCandidatesError(session.requested_k, session.requested_m, n)

            resolved = resolve(session.requested_k, session.requested_m, n, len(verdicts))
            if resolved.reduced:
                if not self._config.auto_reduce_parameters:
                    raise InsufficientCandidatesError(
                        available=len(verdicts),
                        requested_k=session.requested_k,
                        requested_m=session.requested_m,
                        n=n,
                        suggestions=suggest(
                            n,
                            len(verdicts),
                            self._config.max_suggested_eliminations,
                            self._config.max_suggested_final_set_size,
                        ),
                    )
                logger.warning(
                    "parameters_reduced",
                    extra={
                        "session_id": session.id,
                        "requested_k": session.requested_k,
                        "requested_m": session.requested_m,
                        "k": resolved.params.k,
                        "m": resolved.params.m,
                        "available": len(verdicts),
                    },
                )

            ranked = [v.item_id for v in verdicts]
            session.candidate_scores = {
                v.item_id: v.priority_score for v in verdicts[: resolved.params.initial_count]
            }
            self._machine.start(session, ranked, resolved.params, now)

        return session

    async def eliminate(
        self,
        session_id: str,
        participant_id: str,
        item_id: str,
    ) -> SessionStatusView:
        """Eliminate an item on the participant's turn."""
        async with self._locked(session_id) as session:
            now = self._clock()
            self._machine.eliminate(session, participant_id, item_id, now)
            view = self._machine.status_view(session, participant_id, now)
        return view

    async def quick_skip(self, session_id: str, participant_id: str) -> SessionStatusView:
        """Pass the participant's current turn (quota-limited)."""
        async with self._locked(session_id) as session:
            now = self._clock()
            self._machine.quick_skip(session, participant_id, now)
            view = self._machine.status_view(session, participant_id, now)
        return view

    async def get_status(self, session_id: str, participant_id: str) -> SessionStatusView:
        """Participant's view of the session, after applying timeouts."""
        async with self._locked(session_id) as session:
            view = self._machine.status_view(session, participant_id, self._clock())
        return view

    async def cancel(self, session_id: str) -> DecisionSession:
        """Cancel the session. No-op if it is already terminal."""
        async with self._locked(session_id) as session:
            self._machine.cancel(session, self._clock())
        return session

    async def pin(self, session_id: str) -> DecisionSession:
        """Pin the session so retention policies keep it."""
        async with self._locked(session_id) as session:
            self._machine.sweep(session, self._clock())
            self._machine.pin(session)
        return session

    async def log_decision_result(
        self,
        session_id: str,
        user_id: str,
        scheduled_for: datetime | None = None,
        tribe_id: str | None = None,
    ) -> ActivityEntry:
        """
        Record the final selection as an activity entry.

        A visit scheduled in the future is logged as tentative; otherwise
        it is confirmed. Participants default to the session's participants.

        Raises:
            InvalidSessionRequestError: scheduled_for has no timezone
            SessionStateError: Session is not completed
            NotAParticipantError: User did not take part in the session
        """
        if scheduled_for is not None and scheduled_for.tzinfo is None:
            raise InvalidSessionRequestError("scheduled_for must include a timezone")

        async with self._locked(session_id) as session:
            now = self._clock()
            self._machine.sweep(session, now)
            if session.status != SessionStatus.COMPLETED or session.final_selection is None:
                raise SessionStateError("log the decision result", session.status)
            if user_id not in session.participants:
                raise NotAParticipantError(session_id, user_id)

            completed_at = scheduled_for or now
            entry = ActivityEntry(
                id=str(uuid.uuid4()),
                item_id=session.final_selection,
                user_id=user_id,
                tribe_id=tribe_id,
                activity_type="visited",
                status=(
                    ActivityStatus.TENTATIVE if completed_at > now else ActivityStatus.CONFIRMED
                ),
                completed_at=completed_at,
                recorded_by=user_id,
                participants=list(session.participants),
                decision_session_id=session.id,
            )
            await self._activity.record_activity(entry)

        logger.info(
            "decision_result_logged",
            extra={
                "session_id": session_id,
                "item_id": entry.item_id,
                "status": entry.status.value,
            },
        )
        return entry

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _activity_snapshot(
        self,
        config: FilterConfiguration,
        now: datetime,
    ) -> RecentActivitySnapshot:
        """Fetch recent activity for every RecentActivity window in the config."""
        snapshot = RecentActivitySnapshot()
        for criterion in config.by_kind(FilterKind.RECENT_ACTIVITY):
            payload = criterion.criteria
            if not isinstance(payload, RecentActivityCriteria):
                continue
            if snapshot.has_window(payload.user_id, payload.tribe_id, payload.days):
                continue
            item_ids = await self._activity.recent_item_ids(
                payload.user_id,
                payload.tribe_id,
                since=now - timedelta(days=payload.days),
            )
            snapshot.add_window(payload.user_id, payload.tribe_id, payload.days, item_ids)
        return snapshot
