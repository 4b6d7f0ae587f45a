from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    PUBLISHED = "published"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class ExerciseScope(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"
    GLOBAL = "global"


class ExerciseType(str, Enum):
    REPS = "reps"
    TIME = "time"
    HOLD = "hold"


class BodySide(str, Enum):
    NONE = "none"
    LEFT = "left"
    RIGHT = "right"
    BOTH = "both"
    ALTERNATING = "alternating"


class DifficultyLevel(str, Enum):
    BEGINNER = "beginner"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_ORDER.index(self)


_DIFFICULTY_ORDER = list(DifficultyLevel)


class ActorRole(str, Enum):
    AUTHOR = "author"  # organization content author
    REVIEWER = "reviewer"  # verification / content manager


class Actor(BaseModel):
    id: str
    role: ActorRole
    organization_id: str | None = None


# Fields an editor may change one at a time through the inline workbench.
EDITABLE_FIELDS = frozenset(
    {
        "name",
        "patient_description",
        "clinical_description",
        "type",
        "side",
        "default_sets",
        "default_reps",
        "default_duration",
        "default_rest_between_sets",
        "tempo",
        "audio_cue",
        "main_tags",
        "additional_tags",
        "images",
        "image_url",
        "video_url",
        "gif_url",
        "difficulty_level",
    }
)


class ExerciseSnapshot(BaseModel):
    """Read model of one exercise, as seen by the review rules and the state machine."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = ""
    patient_description: str | None = None
    clinical_description: str | None = None
    type: ExerciseType | None = None
    side: BodySide = BodySide.NONE

    default_sets: int | None = None
    default_reps: int | None = None
    default_duration: int | None = None
    default_rest_between_sets: int | None = None
    tempo: str | None = None
    audio_cue: str | None = None

    main_tags: list[str] = Field(default_factory=list)
    additional_tags: list[str] = Field(default_factory=list)

    images: list[str] = Field(default_factory=list)
    image_url: str | None = None
    video_url: str | None = None
    gif_url: str | None = None

    difficulty_level: DifficultyLevel | None = None

    status: ContentStatus = ContentStatus.DRAFT
    scope: ExerciseScope = ExerciseScope.ORGANIZATION
    review_notes: str | None = None
    global_submission_id: str | None = None
    global_submission_status: ContentStatus | None = None

    owner_id: str | None = None
    organization_id: str | None = None
    version: int = 1
    edits_since_feedback: int = 0
    published_at: datetime | None = None

    def with_pending(self, pending: dict[str, Any] | None) -> "ExerciseSnapshot":
        """Overlay unsaved edits, re-validating them against the field types."""
        if not pending:
            return self
        unknown = set(pending) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        return self.model_validate({**self.model_dump(), **pending})


class ExerciseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    patient_description: str | None = None
    clinical_description: str | None = None
    type: ExerciseType | None = None
    side: BodySide = BodySide.NONE
    difficulty_level: DifficultyLevel | None = None
    main_tags: list[str] = Field(default_factory=list)
    additional_tags: list[str] = Field(default_factory=list)
    scope: ExerciseScope = ExerciseScope.ORGANIZATION


class FieldUpdate(BaseModel):
    value: Any = None
    expected_version: int | None = None
