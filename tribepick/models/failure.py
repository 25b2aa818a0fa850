"""
Response envelope and failure classification.

Every endpoint answers with an ApiResponse whose `outcome` says how the
request ended:

- success: the operation happened
- refusal: the engine declined, and the caller can adjust and retry
  (too few candidates, nothing passed the filters)
- known_failure: the request broke a rule the engine can name
  (not your turn, session not found, session already completed)
- unknown_failure: anything else; the message is fixed

INVARIANT: No raw 500 errors may reach the client.

AUTHORITY BOUNDARY:
All user-visible responses MUST pass through `finalize_response()`.
"""

from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """What went wrong, in terms a client can branch on."""

    # Request validation
    INVALID_INPUT = "invalid_input"

    # Lookups and candidate supply
    NOT_FOUND = "not_found"
    NOT_A_PARTICIPANT = "not_a_participant"
    EMPTY_RESULT = "empty_result"
    INSUFFICIENT_CANDIDATES = "insufficient_candidates"

    # Turn rules
    NOT_YOUR_TURN = "not_your_turn"
    ITEM_ALREADY_ELIMINATED = "item_already_eliminated"
    INVALID_ITEM = "invalid_item"
    SKIP_QUOTA_EXCEEDED = "skip_quota_exceeded"
    TURN_ALREADY_DEFERRED = "turn_already_deferred"

    # Session lifecycle
    INVALID_SESSION_STATE = "invalid_session_state"

    # Corrupted persisted state
    INVARIANT_VIOLATION = "invariant_violation"

    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    REFUSAL = "refusal"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


# HTTP status used when an error does not pick its own
STATUS_BY_KIND: dict[FailureKind, int] = {
    FailureKind.INVALID_INPUT: 400,
    FailureKind.NOT_FOUND: 404,
    FailureKind.NOT_A_PARTICIPANT: 403,
    FailureKind.EMPTY_RESULT: 409,
    FailureKind.INSUFFICIENT_CANDIDATES: 409,
    FailureKind.NOT_YOUR_TURN: 409,
    FailureKind.ITEM_ALREADY_ELIMINATED: 409,
    FailureKind.INVALID_ITEM: 409,
    FailureKind.SKIP_QUOTA_EXCEEDED: 409,
    FailureKind.TURN_ALREADY_DEFERRED: 409,
    FailureKind.INVALID_SESSION_STATE: 409,
    FailureKind.INVARIANT_VIOLATION: 500,
    FailureKind.UNKNOWN: 500,
}


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Why a request did not succeed."""

    kind: FailureKind = Field(..., description="Classification of the failure")
    message: str = Field(..., description="Explanation fit to show a participant")
    detail: str | None = Field(default=None, description="Technical detail for logs and support")
    suggestion: str | None = Field(default=None, description="What the caller can do next")
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured data for the client, e.g. suggested (K, M) pairs",
    )


class ApiResponse(BaseModel, Generic[T]):
    """Envelope returned by every endpoint."""

    outcome: OutcomeType = Field(..., description="How the request ended")
    data: T | None = Field(default=None, description="Payload, present on success")
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details, present on every non-success outcome",
    )

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def failed(
        cls,
        outcome: OutcomeType,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "ApiResponse[Any]":
        """Build a non-success response of the given outcome."""
        if outcome == OutcomeType.SUCCESS:
            raise ValueError("use ApiResponse.success for successful outcomes")
        return cls(
            outcome=outcome,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
                context=context or {},
            ),
        )

    @classmethod
    def refusal(cls, kind: FailureKind, message: str, **kwargs: Any) -> "ApiResponse[Any]":
        """The engine declined; the caller can change the request and retry."""
        return cls.failed(OutcomeType.REFUSAL, kind, message, **kwargs)

    @classmethod
    def known_failure(cls, kind: FailureKind, message: str, **kwargs: Any) -> "ApiResponse[Any]":
        """The request broke a rule the engine can name."""
        return cls.failed(OutcomeType.KNOWN_FAILURE, kind, message, **kwargs)


class KnownError(Exception):
    """
    Base class for failures the engine can explain.

    Raised from the engine and service layers; the API's exception handler
    turns it into an envelope with `status_code`. Subclasses set `outcome`
    to change how the failure is classified.
    """

    outcome: ClassVar[OutcomeType] = OutcomeType.KNOWN_FAILURE

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code if status_code is not None else STATUS_BY_KIND[kind]
        self.context = context or {}
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        return ApiResponse.failed(
            self.outcome,
            self.kind,
            self.message,
            detail=self.detail,
            suggestion=self.suggestion,
            context=self.context,
        )


class RefusalError(KnownError):
    """A constraint stopped the request; the caller can adjust and retry."""

    outcome = OutcomeType.REFUSAL


# =============================================================================
# Finalization
# =============================================================================

STANDARD_MESSAGES: dict[OutcomeType, str] = {
    OutcomeType.REFUSAL: "The decision cannot go ahead with these settings.",
    OutcomeType.KNOWN_FAILURE: "The request could not be applied to this session.",
    OutcomeType.UNKNOWN_FAILURE: "Something went wrong and the cause is unknown. Please retry.",
}

STANDARD_SUGGESTIONS: dict[OutcomeType, str] = {
    OutcomeType.REFUSAL: "Adjust the filters or parameters and start again.",
    OutcomeType.KNOWN_FAILURE: "Check the session status and try again.",
    OutcomeType.UNKNOWN_FAILURE: "Retry later, and report the session id if it keeps failing.",
}


# ids of responses that passed finalize_response
_finalized_responses: set[int] = set()


def finalize_response(response: ApiResponse[Any]) -> ApiResponse[Any]:
    """
    Check a response's shape and mark it finalized.

    Failures without a suggestion get the standard one for their outcome.

    Raises:
        ValueError: Success carrying failure details, or a failure without them
    """
    if response.outcome == OutcomeType.SUCCESS:
        if response.failure is not None:
            raise ValueError("Success response must not have failure details")
    elif response.failure is None:
        raise ValueError(f"{response.outcome.value} response must have failure details")
    elif response.failure.suggestion is None:
        response.failure.suggestion = STANDARD_SUGGESTIONS[response.outcome]

    _finalized_responses.add(id(response))
    return response


def is_finalized(response: ApiResponse[Any]) -> bool:
    return id(response) in _finalized_responses


def create_unknown_failure(exception: Exception, include_type: bool = True) -> ApiResponse[Any]:
    """
    Envelope for an unexpected exception.

    Only the exception's type name is exposed, never its message.
    """
    response: ApiResponse[Any] = ApiResponse.failed(
        OutcomeType.UNKNOWN_FAILURE,
        FailureKind.UNKNOWN,
        STANDARD_MESSAGES[OutcomeType.UNKNOWN_FAILURE],
        detail=type(exception).__name__ if include_type else None,
        suggestion=STANDARD_SUGGESTIONS[OutcomeType.UNKNOWN_FAILURE],
    )
    return finalize_response(response)


def create_success(data: T) -> ApiResponse[T]:
    """Create a finalized success response."""
    response = ApiResponse[T](outcome=OutcomeType.SUCCESS, data=data)
    return finalize_response(response)
