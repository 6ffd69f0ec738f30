"""Command surface of the curation pipeline.

Every command shares the caller's session, so composite commands such as
``approve`` and ``resolve_review`` commit or roll back as one unit.
"""

from typing import Any, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.enums import ApprovalType, ContentKind, ReviewDecision, Stage
from curation.core.exceptions import NotFoundError
from curation.database.models import (
    ApprovalEvent,
    Draft,
    PipelineTask,
    ReviewQueueEntry,
    Validated,
    ValidationFailure,
)
from curation.repositories.stage_repository import as_uuid
from curation.schemas.curation import RetryPolicy, TransitionResult, ValidationOutcome
from curation.services.approval_service import ApprovalService, validate_approval
from curation.services.base_service import BaseService
from curation.services.deprecation_service import DeprecationService
from curation.services.gate_runner import ValidationGate
from curation.services.immutability_guard import ImmutabilityGuard
from curation.services.pipeline_event_service import PipelineEventService
from curation.services.pipeline_service import PipelineService
from curation.services.review_queue_service import ReviewQueueService
from curation.services.transition_service import TransitionService
from curation.services.validation_service import ValidationService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CurationService(BaseService):
    """Facade over the pipeline components bound to one session."""

    def __init__(self, session: AsyncSession, policy: Optional[RetryPolicy] = None):
        super().__init__(session)
        self.transitions = TransitionService(session)
        self.validation = ValidationService(session, policy)
        self.review_queue = ReviewQueueService(session)
        self.approvals = ApprovalService(session)
        self.guard = ImmutabilityGuard(session)
        self.deprecations = DeprecationService(session)
        self.pipelines = PipelineService(session)
        self.pipeline_events = PipelineEventService(session)

    async def submit_draft(
        self,
        kind: ContentKind,
        payload: dict,
        source: str,
        track: bool = False,
        pipeline_id: Optional[UUID] = None,
    ) -> Draft:
        """Store a draft, optionally with an item task following its lineage."""
        async with self.transaction():
            draft = await self.transitions.create_draft(kind, payload, source)
            if track:
                await self.pipelines.create_item_task(draft.id, pipeline_id=pipeline_id)
            return draft

    async def transition(
        self,
        item_id: Any,
        kind: ContentKind,
        from_stage: Stage,
        to_stage: Stage,
        metadata: Optional[dict] = None,
    ) -> TransitionResult:
        return await self.transitions.transition(item_id, kind, from_stage, to_stage, metadata)

    async def validate_candidate(
        self,
        candidate_id: Any,
        gates: Sequence[ValidationGate],
        policy: Optional[RetryPolicy] = None,
    ) -> ValidationOutcome:
        return await self.validation.validate_candidate(candidate_id, gates, policy)

    async def record_validation_failure(
        self,
        candidate_id: Any,
        gate_name: str,
        reason: str,
        details: Optional[dict] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> ValidationFailure:
        return await self.validation.record_failure(candidate_id, gate_name, reason, details, policy)

    async def enqueue_for_review(
        self,
        item_id: Any,
        item_type: str,
        priority: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ReviewQueueEntry:
        return await self.review_queue.enqueue(item_id, item_type, priority, reason)

    async def resolve_review(
        self,
        item_id: Any,
        decision: Union[ReviewDecision, str],
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReviewQueueEntry:
        """Close a review. Approving a validated item also publishes it."""
        decision = ReviewDecision(decision)

        async with self.transaction():
            entry = await self.review_queue.resolve(item_id, decision, operator_id, notes)

            if decision == ReviewDecision.APPROVE:
                validated = await self._find_validated(item_id)
                if validated is not None:
                    await self.approve(validated.id, ApprovalType.MANUAL, operator_id, notes)
            return entry

    async def record_approval(
        self,
        item_id: Any,
        item_type: str,
        approval_type: Union[ApprovalType, str],
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
        validated_id: Optional[UUID] = None,
    ) -> ApprovalEvent:
        return await self.approvals.record_approval(
            item_id, item_type, approval_type, operator_id, notes, validated_id
        )

    async def approve(
        self,
        validated_id: Any,
        approval_type: Union[ApprovalType, str],
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """Publish a validated row and record who approved it, atomically.

        Raises:
            InvalidApprovalError: Operator presence does not match the type;
                nothing is read or written
            NotFoundError: No validated row ``validated_id``
            ConflictError: The row was already published
        """
        approval_type = validate_approval(approval_type, operator_id)

        async with self.transaction():
            validated = await self._find_validated(validated_id)
            if validated is None:
                raise NotFoundError("VALIDATED item", validated_id)

            result = await self.transitions.transition(
                validated.id,
                validated.kind,
                Stage.VALIDATED,
                Stage.APPROVED,
                metadata={"approval_type": approval_type.value, "operator_id": operator_id},
            )
            await self.approvals.record_approval(
                result.destination_id,
                validated.kind.value,
                approval_type,
                operator_id=operator_id,
                notes=notes,
                validated_id=validated.id,
            )
            return result

    async def retry_task(self, task_id: UUID, max_retries: Optional[int] = None) -> PipelineTask:
        return await self.pipelines.retry_task(task_id, max_retries)

    async def _find_validated(self, item_id: Any) -> Optional[Validated]:
        key = as_uuid(item_id)
        return await self.session.get(Validated, key) if key is not None else None
