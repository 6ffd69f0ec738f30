"""SQLAlchemy models for all curation tables."""

import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from curation.core.database import Base
from curation.core.enums import (
    ApprovalType,
    AttemptedOperation,
    ContentKind,
    PipelineStatus,
    ReviewDecision,
    Stage,
    TaskScope,
    TaskStatus,
    TaskType,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_column(enum_cls: type, length: int = 20) -> SAEnum:
    """String-backed enum column that stores member values."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


def created_at_column() -> Mapped[datetime]:
    return mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


# --------------------------------------------------------------------------
# Stage store: lineage tables
# --------------------------------------------------------------------------


class Draft(Base):
    """Raw harvested or operator-authored content."""

    __tablename__ = "drafts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[ContentKind] = mapped_column(enum_column(ContentKind), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    stage: ClassVar[Stage] = Stage.DRAFT


class Candidate(Base):
    """Normalized draft awaiting validation gates."""

    __tablename__ = "candidates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[ContentKind] = mapped_column(enum_column(ContentKind), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    draft_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("drafts.id"), unique=True, nullable=False
    )
    created_at: Mapped[datetime] = created_at_column()

    stage: ClassVar[Stage] = Stage.CANDIDATE


class Validated(Base):
    """Candidate that passed every configured gate."""

    __tablename__ = "validated"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[ContentKind] = mapped_column(enum_column(ContentKind), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    candidate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("candidates.id"), unique=True, nullable=False
    )
    validation_results: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = created_at_column()

    stage: ClassVar[Stage] = Stage.VALIDATED


# --------------------------------------------------------------------------
# Stage store: published tables, one per content kind
# --------------------------------------------------------------------------


class ApprovedContent(Base):
    """Common columns of the four approved tables.

    The id is the permanent, externally visible content id.
    """

    __abstract__ = True

    kind: ClassVar[ContentKind]
    stage: ClassVar[Stage] = Stage.APPROVED

    id: Mapped[str] = mapped_column(
        String(100), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    created_at: Mapped[datetime] = created_at_column()

    @declared_attr
    def validated_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(Uuid, ForeignKey("validated.id"), unique=True, nullable=False)


class ApprovedMeaning(ApprovedContent):
    __tablename__ = "approved_meanings"

    kind: ClassVar[ContentKind] = ContentKind.MEANING

    level: Mapped[str] = mapped_column(String(2), nullable=False)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)


class ApprovedUtterance(ApprovedContent):
    __tablename__ = "approved_utterances"

    kind: ClassVar[ContentKind] = ContentKind.UTTERANCE

    meaning_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("approved_meanings.id"), nullable=False, index=True
    )
    language: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    register: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    usage_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audio_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class ApprovedRule(ApprovedContent):
    __tablename__ = "approved_rules"
    __table_args__ = (Index("idx_approved_rules_language_level", "language", "level"),)

    kind: ClassVar[ContentKind] = ContentKind.RULE

    language: Mapped[str] = mapped_column(String(2), nullable=False)
    level: Mapped[str] = mapped_column(String(2), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    title: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str] = mapped_column(Text, nullable=False)
    examples: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)


class ApprovedExercise(ApprovedContent):
    __tablename__ = "approved_exercises"
    __table_args__ = (Index("idx_approved_exercises_type_level", "type", "level"),)

    kind: ClassVar[ContentKind] = ContentKind.EXERCISE

    exercise_type: Mapped[str] = mapped_column("type", String(20), nullable=False)
    level: Mapped[str] = mapped_column(String(2), nullable=False)
    languages: Mapped[list] = mapped_column(JSONType, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    exercise_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)


LINEAGE_MODELS: tuple[type[Base], ...] = (Draft, Candidate, Validated)
APPROVED_MODELS: tuple[type[ApprovedContent], ...] = (
    ApprovedMeaning,
    ApprovedUtterance,
    ApprovedRule,
    ApprovedExercise,
)


# --------------------------------------------------------------------------
# Audit trail
# --------------------------------------------------------------------------


class StateTransitionEvent(Base):
    """One row per successful stage transition."""

    __tablename__ = "state_transition_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    item_type: Mapped[ContentKind] = mapped_column(enum_column(ContentKind), nullable=False, index=True)
    from_stage: Mapped[Stage] = mapped_column(enum_column(Stage), nullable=False)
    to_stage: Mapped[Stage] = mapped_column(enum_column(Stage), nullable=False, index=True)
    destination_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = created_at_column()


class ValidationFailure(Base):
    """Gate rejection history; one row per failed attempt."""

    __tablename__ = "validation_failures"
    __table_args__ = (
        UniqueConstraint("candidate_id", "retry_count", name="uq_validation_failures_attempt"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    candidate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("candidates.id"), nullable=False, index=True
    )
    gate_name: Mapped[str] = mapped_column(String(100), nullable=False)
    failure_reason: Mapped[str] = mapped_column(Text, nullable=False)
    failure_details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = created_at_column()


class ReviewQueueEntry(Base):
    """Manual-intervention backlog entry; lower priority value is more urgent."""

    __tablename__ = "review_queue"
    __table_args__ = (
        Index("idx_review_queue_priority", "priority", "queued_at"),
        Index(
            "uq_review_queue_active_item",
            "item_id",
            unique=True,
            postgresql_where=text("reviewed_at IS NULL"),
            sqlite_where=text("reviewed_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    queued_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    assigned_to: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    review_decision: Mapped[Optional[ReviewDecision]] = mapped_column(
        enum_column(ReviewDecision), nullable=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.reviewed_at is not None


class ApprovalEvent(Base):
    """Append-only record of a promotion to the published tier."""

    __tablename__ = "approval_events"
    __table_args__ = (
        CheckConstraint(
            "(approval_type = 'manual' AND operator_id IS NOT NULL) "
            "OR (approval_type = 'automatic' AND operator_id IS NULL)",
            name="ck_approval_events_operator_matches_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    validated_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("validated.id"), nullable=True
    )
    operator_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    approval_type: Mapped[ApprovalType] = mapped_column(
        enum_column(ApprovalType), nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = created_at_column()


class ImmutabilityViolation(Base):
    """Blocked attempt to modify published content."""

    __tablename__ = "immutability_violations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)
    attempted_operation: Mapped[AttemptedOperation] = mapped_column(
        enum_column(AttemptedOperation, length=10), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )


class Deprecation(Base):
    """Marks an approved item as superseded; the item itself stays untouched."""

    __tablename__ = "deprecations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    item_type: Mapped[ContentKind] = mapped_column(enum_column(ContentKind), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    replacement_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    operator_id: Mapped[str] = mapped_column(String(100), nullable=False)
    deprecated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


# --------------------------------------------------------------------------
# Pipeline orchestration
# --------------------------------------------------------------------------


class DocumentPipeline(Base):
    """Per-document pipeline; every aggregate column is derived from its tasks."""

    __tablename__ = "document_pipelines"
    __table_args__ = (
        CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_document_pipelines_progress_range",
        ),
        Index("idx_document_pipelines_status_stage", "status", "current_stage"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    status: Mapped[PipelineStatus] = mapped_column(
        enum_column(PipelineStatus), nullable=False, default=PipelineStatus.PENDING
    )
    current_stage: Mapped[str] = mapped_column(String(50), nullable=False, default="created")
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
    pipeline_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)


class PipelineTask(Base):
    """Unit of pipeline work.

    Item-level and document-level tasks share one table, one status machine
    and one aggregation path; ``scope`` selects the variant.
    """

    __tablename__ = "pipeline_tasks"
    __table_args__ = (
        Index("idx_pipeline_tasks_pipeline_status", "pipeline_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope: Mapped[TaskScope] = mapped_column(enum_column(TaskScope), nullable=False)
    pipeline_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("document_pipelines.id", ondelete="CASCADE"), nullable=True, index=True
    )
    item_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[TaskStatus] = mapped_column(
        enum_column(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True
    )
    depends_on_task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("pipeline_tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
    task_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    __mapper_args__ = {"polymorphic_on": "scope"}


class ItemTask(PipelineTask):
    """Tracks one content lineage; ``item_id`` is the lineage's draft id."""

    item_kind: Mapped[Optional[ContentKind]] = mapped_column(enum_column(ContentKind), nullable=True)
    current_stage: Mapped[Optional[Stage]] = mapped_column(enum_column(Stage), nullable=True, index=True)
    source: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __mapper_args__ = {"polymorphic_identity": TaskScope.ITEM}


class DocumentTask(PipelineTask):
    """Extract/chunk/map/transform/validate/approve step of a document."""

    task_type: Mapped[Optional[TaskType]] = mapped_column(enum_column(TaskType), nullable=True)

    __mapper_args__ = {"polymorphic_identity": TaskScope.DOCUMENT}


class PipelineEvent(Base):
    """Fine-grained, timestamped event stream per task."""

    __tablename__ = "pipeline_events"
    __table_args__ = (
        Index("idx_pipeline_events_item_created", "item_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("pipeline_tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )
    pipeline_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("document_pipelines.id", ondelete="CASCADE"), nullable=True, index=True
    )
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    from_stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = created_at_column()
