"""Database module for SQLAlchemy models and write guards."""

from curation.database.models import (
    APPROVED_MODELS,
    LINEAGE_MODELS,
    ApprovalEvent,
    ApprovedContent,
    ApprovedExercise,
    ApprovedMeaning,
    ApprovedRule,
    ApprovedUtterance,
    Candidate,
    Deprecation,
    DocumentPipeline,
    DocumentTask,
    Draft,
    ImmutabilityViolation,
    ItemTask,
    PipelineEvent,
    PipelineTask,
    ReviewQueueEntry,
    StateTransitionEvent,
    Validated,
    ValidationFailure,
)

# Registers the Session listeners
from curation.database import guards  # noqa: E402,F401

__all__ = [
    "APPROVED_MODELS",
    "LINEAGE_MODELS",
    "ApprovalEvent",
    "ApprovedContent",
    "ApprovedExercise",
    "ApprovedMeaning",
    "ApprovedRule",
    "ApprovedUtterance",
    "Candidate",
    "Deprecation",
    "DocumentPipeline",
    "DocumentTask",
    "Draft",
    "ImmutabilityViolation",
    "ItemTask",
    "PipelineEvent",
    "PipelineTask",
    "ReviewQueueEntry",
    "StateTransitionEvent",
    "Validated",
    "ValidationFailure",
]
