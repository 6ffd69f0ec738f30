"""Service layer modules."""

from curation.services.approval_service import ApprovalService
from curation.services.curation_service import CurationService
from curation.services.deprecation_service import DeprecationService
from curation.services.immutability_guard import ImmutabilityGuard
from curation.services.pipeline_event_service import PipelineEventService
from curation.services.pipeline_service import PipelineService
from curation.services.review_queue_service import ReviewQueueService
from curation.services.transition_service import TransitionService
from curation.services.validation_service import ValidationService

__all__ = [
    "ApprovalService",
    "CurationService",
    "DeprecationService",
    "ImmutabilityGuard",
    "PipelineEventService",
    "PipelineService",
    "ReviewQueueService",
    "TransitionService",
    "ValidationService",
]
