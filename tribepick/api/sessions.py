"""
Decision session API endpoints.

Every response is an ApiResponse envelope. Known errors raised by the
service are converted to refusal / known_failure envelopes by the
application's exception handlers.
"""

from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tribepick.db import SqlActivityProvider, SqlSessionRepository
from tribepick.db.database import get_session
from tribepick.engine.state_machine import SessionStatusView
from tribepick.models.activity import ActivityEntry
from tribepick.models.failure import ApiResponse, create_success
from tribepick.models.filters import (
    FilterConfiguration,
    FilterCriterion,
    InvalidFilterError,
    criterion_from_dict,
)
from tribepick.models.session import DecisionSession, HistoryEvent
from tribepick.services.decision_service import DecisionService
from tribepick.services.item_catalog import CatalogItemProvider, get_item_provider

router = APIRouter(prefix="/sessions", tags=["sessions"])


# --- Request models ---


class FilterCriterionRequest(BaseModel):
    """One filter criterion as submitted by a client."""

    id: str
    kind: str = Field(
        ...,
        description="category, dietary, location, recent_activity, opening_hours or tags",
    )
    is_hard: bool = False
    priority: int = 0
    description: str = ""
    criteria: dict[str, Any] = Field(default_factory=dict)


class CreateSessionRequest(BaseModel):
    """Request model for creating a decision session."""

    source_item_ids: list[str] = Field(..., description="Candidate items to decide between")
    participant_ids: list[str] = Field(..., description="Tribe members taking part")
    filters: list[FilterCriterionRequest] = Field(default_factory=list)
    eliminations_per_participant: int | None = Field(
        default=None,
        description="K: eliminations each participant makes (server default when omitted)",
    )
    final_set_size: int | None = Field(
        default=None,
        description="M: size of the final set the winner is drawn from",
    )
    turn_timeout_seconds: int | None = None
    session_timeout_seconds: int | None = None


class ParticipantRequest(BaseModel):
    participant_id: str


class EliminateRequest(BaseModel):
    participant_id: str
    item_id: str


class LogActivityRequest(BaseModel):
    """Request model for recording the decision as a visit."""

    user_id: str
    scheduled_for: datetime | None = Field(
        default=None,
        description="When the visit happens; future times are logged as tentative",
    )
    tribe_id: str | None = None


# --- Response models ---


class HistoryEventResponse(BaseModel):
    kind: str
    timestamp: datetime
    participant: str | None = None
    item_id: str | None = None
    round: int = 0
    turn_index: int = 0
    catch_up: bool = False


class SessionResponse(BaseModel):
    """Response model for session-level operations."""

    session_id: str
    status: str
    participants: list[str]
    requested_k: int
    requested_m: int
    k: int | None = None
    m: int | None = None
    candidates: list[str] = Field(default_factory=list)
    candidate_scores: dict[str, float] = Field(default_factory=dict)
    final_selection: str | None = None
    runners_up: list[str] = Field(default_factory=list)
    is_pinned: bool = False
    created_at: datetime
    completed_at: datetime | None = None
    history: list[HistoryEventResponse] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """A participant's view of a session."""

    session_id: str
    status: str
    round: int
    total_rounds: int
    current_turn_holder: str | None = None
    is_your_turn: bool
    time_remaining_seconds: float | None = None
    skips_used: int
    skip_limit: int
    candidates: list[str]
    candidate_count: int
    candidate_scores: dict[str, float] = Field(default_factory=dict)
    target_size: int
    pending_catch_up: int
    final_selection: str | None = None
    runners_up: list[str] = Field(default_factory=list)
    is_pinned: bool = False


class ActivityResponse(BaseModel):
    id: str
    item_id: str
    user_id: str
    status: str
    completed_at: datetime
    participants: list[str]
    decision_session_id: str | None = None


# --- Conversions ---


def _history_response(event: HistoryEvent) -> HistoryEventResponse:
    return HistoryEventResponse(
        kind=event.kind.value,
        timestamp=event.timestamp,
        participant=event.participant,
        item_id=event.item_id,
        round=event.round,
        turn_index=event.turn_index,
        catch_up=event.catch_up,
    )


def session_response(session: DecisionSession) -> SessionResponse:
    params = session.params
    return SessionResponse(
        session_id=session.id,
        status=session.status.value,
        participants=list(session.participants),
        requested_k=session.requested_k,
        requested_m=session.requested_m,
        k=params.k if params else None,
        m=params.m if params else None,
        candidates=list(session.candidate_set),
        candidate_scores=dict(session.candidate_scores),
        final_selection=session.final_selection,
        runners_up=list(session.runners_up),
        is_pinned=session.is_pinned,
        created_at=session.created_at,
        completed_at=session.completed_at,
        history=[_history_response(e) for e in session.elimination_history],
    )


def status_response(view: SessionStatusView) -> StatusResponse:
    return StatusResponse(
        session_id=view.session_id,
        status=view.status.value,
        round=view.round,
        total_rounds=view.total_rounds,
        current_turn_holder=view.current_turn_holder,
        is_your_turn=view.is_your_turn,
        time_remaining_seconds=view.time_remaining_seconds,
        skips_used=view.skips_used,
        skip_limit=view.skip_limit,
        candidates=list(view.candidates),
        candidate_count=view.candidate_count,
        candidate_scores=dict(view.candidate_scores),
        target_size=view.target_size,
        pending_catch_up=view.pending_catch_up,
        final_selection=view.final_selection,
        runners_up=list(view.runners_up),
        is_pinned=view.is_pinned,
    )


def activity_response(entry: ActivityEntry) -> ActivityResponse:
    return ActivityResponse(
        id=entry.id,
        item_id=entry.item_id,
        user_id=entry.user_id,
        status=entry.status.value,
        completed_at=entry.completed_at,
        participants=list(entry.participants),
        decision_session_id=entry.decision_session_id,
    )


def _criterion(request: FilterCriterionRequest) -> FilterCriterion:
    try:
        return criterion_from_dict(request.model_dump())
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidFilterError(request.id, str(e)) from e


# --- Dependencies ---


def get_catalog() -> CatalogItemProvider:
    """Item provider dependency (overridable in tests)."""
    return get_item_provider()


async def get_decision_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    items: Annotated[CatalogItemProvider, Depends(get_catalog)],
) -> DecisionService:
    """Build a DecisionService bound to the request's database session."""
    return DecisionService(
        repository=SqlSessionRepository(session),
        items=items,
        activity=SqlActivityProvider(session),
    )


Service = Annotated[DecisionService, Depends(get_decision_service)]


# --- Endpoints ---


@router.post(
    "",
    response_model=ApiResponse[SessionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_session(request: CreateSessionRequest, service: Service) -> Any:
    """Create a decision session in the configuring state."""
    session = await service.create_session(
        source_item_ids=request.source_item_ids,
        filter_config=FilterConfiguration(criteria=tuple(_criterion(f) for f in request.filters)),
        participant_ids=request.participant_ids,
        requested_k=request.eliminations_per_participant,
        requested_m=request.final_set_size,
        turn_timeout=(
            timedelta(seconds=request.turn_timeout_seconds)
            if request.turn_timeout_seconds is not None
            else None
        ),
        session_timeout=(
            timedelta(seconds=request.session_timeout_seconds)
            if request.session_timeout_seconds is not None
            else None
        ),
    )
    return create_success(session_response(session))


@router.post("/{session_id}/start", response_model=ApiResponse[SessionResponse])
async def start_session(session_id: str, service: Service) -> Any:
    """Apply filters, resolve parameters and open the first turn."""
    session = await service.apply_filters_and_start(session_id)
    return create_success(session_response(session))


@router.post("/{session_id}/eliminate", response_model=ApiResponse[StatusResponse])
async def eliminate(session_id: str, request: EliminateRequest, service: Service) -> Any:
    """Eliminate one candidate on the caller's turn."""
    view = await service.eliminate(session_id, request.participant_id, request.item_id)
    return create_success(status_response(view))


@router.post("/{session_id}/skip", response_model=ApiResponse[StatusResponse])
async def skip_turn(session_id: str, request: ParticipantRequest, service: Service) -> Any:
    """Defer the caller's current turn to the catch-up phase."""
    view = await service.quick_skip(session_id, request.participant_id)
    return create_success(status_response(view))


@router.get("/{session_id}/status", response_model=ApiResponse[StatusResponse])
async def get_status(
    session_id: str,
    participant_id: Annotated[str, Query(...)],
    service: Service,
) -> Any:
    """The caller's view of the session, with elapsed timeouts applied."""
    view = await service.get_status(session_id, participant_id)
    return create_success(status_response(view))


@router.post("/{session_id}/cancel", response_model=ApiResponse[SessionResponse])
async def cancel_session(session_id: str, service: Service) -> Any:
    """Cancel the session. Cancelling a finished session changes nothing."""
    session = await service.cancel(session_id)
    return create_success(session_response(session))


@router.post("/{session_id}/pin", response_model=ApiResponse[SessionResponse])
async def pin_session(session_id: str, service: Service) -> Any:
    session = await service.pin(session_id)
    return create_success(session_response(session))


@router.post(
    "/{session_id}/activity",
    response_model=ApiResponse[ActivityResponse],
    status_code=status.HTTP_201_CREATED,
)
async def log_activity(session_id: str, request: LogActivityRequest, service: Service) -> Any:
    """Record the winning item as a visit for the caller."""
    entry = await service.log_decision_result(
        session_id,
        request.user_id,
        scheduled_for=request.scheduled_for,
        tribe_id=request.tribe_id,
    )
    return create_success(activity_response(entry))
