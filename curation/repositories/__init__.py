"""Repository layer modules."""

from curation.repositories.approval_event_repository import ApprovalEventRepository
from curation.repositories.audit_repository import (
    TransitionEventRepository,
    ValidationFailureRepository,
    ViolationRepository,
)
from curation.repositories.deprecation_repository import DeprecationRepository
from curation.repositories.pipeline_event_repository import PipelineEventRepository
from curation.repositories.pipeline_repository import PipelineRepository, PipelineTaskRepository
from curation.repositories.review_queue_repository import ReviewQueueRepository
from curation.repositories.stage_repository import StageRepository

__all__ = [
    "ApprovalEventRepository",
    "DeprecationRepository",
    "PipelineEventRepository",
    "PipelineRepository",
    "PipelineTaskRepository",
    "ReviewQueueRepository",
    "StageRepository",
    "TransitionEventRepository",
    "ValidationFailureRepository",
    "ViolationRepository",
]
