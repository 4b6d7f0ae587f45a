import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, utcnow


class Exercise(Base):
    """
    Exercise under verification.
    Status transitions go through the lifecycle state machine only; `version`
    is bumped on every persisted change so concurrent writers can detect each other.
    """

    __tablename__ = "exercises"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    patient_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    clinical_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str | None] = mapped_column(String, nullable=True)  # "reps" | "time" | "hold"
    side: Mapped[str] = mapped_column(String, nullable=False, default="none")

    default_sets: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_reps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_rest_between_sets: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tempo: Mapped[str | None] = mapped_column(String, nullable=True)
    audio_cue: Mapped[str | None] = mapped_column(String, nullable=True)

    main_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    additional_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    video_url: Mapped[str | None] = mapped_column(String, nullable=True)
    gif_url: Mapped[str | None] = mapped_column(String, nullable=True)

    difficulty_level: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="draft", index=True)
    scope: Mapped[str] = mapped_column(String, nullable=False, default="organization")
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    global_submission_id: Mapped[str | None] = mapped_column(String, nullable=True)
    global_submission_status: Mapped[str | None] = mapped_column(String, nullable=True)

    owner_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True, index=True)
    organization_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Author edits since the reviewer last asked for changes (resubmit guard).
    edits_since_feedback: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class ExerciseRelation(Base):
    """
    Directed regression/progression edge.
    One slot per (source, type); the inverse edge is always written in the same transaction.
    """

    __tablename__ = "exercise_relations"
    __table_args__ = (UniqueConstraint("source_id", "relation_type", name="uq_relation_slot"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source_id: Mapped[str] = mapped_column(String, ForeignKey("exercises.id"), index=True, nullable=False)
    target_id: Mapped[str] = mapped_column(String, ForeignKey("exercises.id"), index=True, nullable=False)
    relation_type: Mapped[str] = mapped_column(String, nullable=False)  # "regression" | "progression"
    provenance: Mapped[str] = mapped_column(String, nullable=False, default="human")  # "human" | "suggested"
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ReviewDecision(Base):
    """Append-only log of applied lifecycle transitions (also holds reviewer notes)."""

    __tablename__ = "review_decisions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    exercise_id: Mapped[str] = mapped_column(String, ForeignKey("exercises.id"), index=True, nullable=False)
    event: Mapped[str] = mapped_column(String, nullable=False)
    from_status: Mapped[str] = mapped_column(String, nullable=False)
    to_status: Mapped[str] = mapped_column(String, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Retries with the same key replay the recorded outcome instead of re-applying.
    idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    version_after: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
