from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from schemas.exercise import ContentStatus


class ReviewEvent(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    UNPUBLISH = "unpublish"
    WITHDRAW = "withdraw"


class RejectionReason(str, Enum):
    POOR_MEDIA_QUALITY = "poor_media_quality"
    CLINICAL_ERROR = "clinical_error"
    INCOMPLETE_DESCRIPTION = "incomplete_description"
    INCORRECT_TAGS = "incorrect_tags"
    POTENTIAL_DUPLICATE = "potential_duplicate"
    OTHER = "other"


class DispatchPayload(BaseModel):
    # Field edits travel through the field endpoints, never with a transition.
    model_config = ConfigDict(extra="forbid")

    notes: str | None = None
    reason_code: str | None = None
    idempotency_key: str | None = None


class DispatchRequest(DispatchPayload):
    event: ReviewEvent
    expected_version: int | None = None


class BulkDispatchRequest(DispatchPayload):
    event: ReviewEvent
    exercise_ids: list[str] = Field(..., min_length=1)


class TransitionRecord(BaseModel):
    """What persistence hands back after a transition was applied (or replayed)."""

    exercise_id: str
    event: ReviewEvent
    from_status: ContentStatus
    to_status: ContentStatus
    version: int
    replayed: bool = False


class TransitionResult(BaseModel):
    exercise_id: str
    event: ReviewEvent
    previous_status: ContentStatus
    status: ContentStatus
    version: int
    replayed: bool = False
    warnings: list[str] = Field(default_factory=list)
    side_effect_errors: list[str] = Field(default_factory=list)


class BulkOperationResult(BaseModel):
    total_requested: int
    success_count: int = 0
    failed_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ValidationResultItem(BaseModel):
    id: str
    label: str
    description: str
    severity: str
    category: str
    passed: bool


class ReadinessResponse(BaseModel):
    exercise_id: str
    score: int
    can_publish: bool
    errors: int
    warnings: int
    results: list[ValidationResultItem]


class AllowedEventsResponse(BaseModel):
    exercise_id: str
    status: ContentStatus
    can_edit: bool
    events: list[ReviewEvent]


class VerificationStats(BaseModel):
    pending_review: int = 0
    changes_requested: int = 0
    approved: int = 0
    published: int = 0
    rejected: int = 0
    archived: int = 0
    total: int = 0


class DecisionItem(BaseModel):
    id: str
    event: ReviewEvent
    from_status: ContentStatus
    to_status: ContentStatus
    actor_id: str | None
    reason_code: str | None
    notes: str | None
    created_at: datetime
