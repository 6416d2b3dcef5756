"""Schema definitions for evaluation drafting."""

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatePayload,
    CandidatesRequest,
    ChatMessage,
    CoachMode,
    OrganizeRequest,
    PerformanceGrade,
    RefineItem,
    RefineRequest,
    Track1Form,
    WorkLogEntry,
    WorkLogFolder,
    WorkLogSeason,
    WorkLogType,
)
from schemas.internal_schema import (
    AchievementCandidate,
    SubTaskCard,
    Track1Item,
    ValidationResult,
    WorkLogState,
)
from schemas.output_schema import (
    CandidateCoachResult,
    CandidateProgress,
    ErrorResponse,
    SuggestedCard,
    SuggestedUpdates,
)

__all__ = [
    # Input schemas
    "CandidateCoachRequest",
    "CandidatePayload",
    "CandidatesRequest",
    "ChatMessage",
    "CoachMode",
    "OrganizeRequest",
    "PerformanceGrade",
    "RefineItem",
    "RefineRequest",
    "Track1Form",
    "WorkLogEntry",
    "WorkLogFolder",
    "WorkLogSeason",
    "WorkLogType",
    # Internal schemas
    "AchievementCandidate",
    "SubTaskCard",
    "Track1Item",
    "ValidationResult",
    "WorkLogState",
    # Output schemas
    "CandidateCoachResult",
    "CandidateProgress",
    "ErrorResponse",
    "SuggestedCard",
    "SuggestedUpdates",
]
