from tribepick.models.activity import ActivityEntry, ActivityStatus
from tribepick.models.failure import (
    STANDARD_MESSAGES,
    STANDARD_SUGGESTIONS,
    STATUS_BY_KIND,
    ApiResponse,
    FailureDetail,
    FailureKind,
    KnownError,
    OutcomeType,
    RefusalError,
    create_success,
    create_unknown_failure,
    finalize_response,
    is_finalized,
)
from tribepick.models.filters import (
    CategoryCriteria,
    DietaryCriteria,
    FilterConfiguration,
    FilterCriterion,
    FilterKind,
    FilterVerdict,
    InvalidFilterError,
    LocationCriteria,
    OpeningHoursCriteria,
    RecentActivityCriteria,
    SoftFilterOutcome,
    TagsCriteria,
    validate_configuration,
)
from tribepick.models.item import BusinessHours, CandidateItem, DayHours, Location
from tribepick.models.session import (
    AlgorithmParameters,
    DecisionSession,
    HistoryEvent,
    HistoryEventKind,
    InvalidItemError,
    InvalidSessionRequestError,
    ItemAlreadyEliminatedError,
    NotAParticipantError,
    NotYourTurnError,
    SessionIntegrityError,
    SessionNotFoundError,
    SessionStateError,
    SessionStatus,
    SkipQuotaExceededError,
    SkipRecord,
    SkipType,
    TurnAlreadyDeferredError,
    TurnViolationError,
)

__all__ = [
    "ActivityEntry",
    "ActivityStatus",
    "AlgorithmParameters",
    "ApiResponse",
    "BusinessHours",
    "CandidateItem",
    "CategoryCriteria",
    "DayHours",
    "DecisionSession",
    "DietaryCriteria",
    "FailureDetail",
    "FailureKind",
    "FilterConfiguration",
    "FilterCriterion",
    "FilterKind",
    "FilterVerdict",
    "HistoryEvent",
    "HistoryEventKind",
    "InvalidFilterError",
    "InvalidItemError",
    "InvalidSessionRequestError",
    "ItemAlreadyEliminatedError",
    "KnownError",
    "Location",
    "LocationCriteria",
    "NotAParticipantError",
    "NotYourTurnError",
    "OpeningHoursCriteria",
    "OutcomeType",
    "RecentActivityCriteria",
    "RefusalError",
    "STANDARD_MESSAGES",
    "STANDARD_SUGGESTIONS",
    "STATUS_BY_KIND",
    "SessionIntegrityError",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionStatus",
    "SkipQuotaExceededError",
    "SkipRecord",
    "SkipType",
    "SoftFilterOutcome",
    "TagsCriteria",
    "TurnAlreadyDeferredError",
    "TurnViolationError",
    "create_success",
    "create_unknown_failure",
    "finalize_response",
    "is_finalized",
    "validate_configuration",
]
