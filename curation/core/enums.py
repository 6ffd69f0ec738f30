"""Enumerations shared by models, repositories and services."""

from enum import Enum


class ContentKind(str, Enum):
    MEANING = "meaning"
    UTTERANCE = "utterance"
    RULE = "rule"
    EXERCISE = "exercise"


class Stage(str, Enum):
    DRAFT = "DRAFT"
    CANDIDATE = "CANDIDATE"
    VALIDATED = "VALIDATED"
    APPROVED = "APPROVED"


class ApprovalType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class AttemptedOperation(str, Enum):
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(str, Enum):
    """Document task types, in the order a document moves through them."""
    EXTRACT = "extract"
    CHUNK = "chunk"
    MAP = "map"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    APPROVE = "approve"


class TaskScope(str, Enum):
    ITEM = "item"
    DOCUMENT = "document"


class ValidationOutcomeStatus(str, Enum):
    VALIDATED = "validated"
    REVIEW_REQUIRED = "review_required"
