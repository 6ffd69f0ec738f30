"""Gate runs, failure history and escalation of candidates to human review."""

from typing import Any, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.enums import Stage, ValidationOutcomeStatus
from curation.core.exceptions import ConflictError, NotFoundError, ValidationFailedError
from curation.database.models import Candidate, ReviewQueueEntry, ValidationFailure
from curation.repositories.audit_repository import ValidationFailureRepository
from curation.repositories.stage_repository import as_uuid
from curation.schemas.curation import RetryPolicy, ValidationOutcome
from curation.services.base_service import BaseService
from curation.services.gate_runner import ValidationGate, run_gates
from curation.services.review_queue_service import ReviewQueueService
from curation.services.transition_service import TransitionService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ValidationService(BaseService):
    def __init__(self, session: AsyncSession, policy: Optional[RetryPolicy] = None):
        super().__init__(session)
        self.policy = policy or RetryPolicy()
        self.failures = ValidationFailureRepository(session)
        self.transitions = TransitionService(session)
        self.review_queue = ReviewQueueService(session)

    async def record_failure(
        self,
        candidate_id: Any,
        gate_name: str,
        reason: str,
        details: Optional[dict] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> ValidationFailure:
        """Append a failed attempt and escalate once the policy says so.

        Returns:
            ValidationFailure: The new row; its ``retry_count`` is one more
            than the candidate's previous maximum
        """
        async with self.transaction():
            candidate = await self._get_candidate(candidate_id)
            failure, _ = await self._record_failure(candidate, gate_name, reason, details, policy or self.policy)
            return failure

    async def validate_candidate(
        self,
        candidate_id: Any,
        gates: Sequence[ValidationGate],
        policy: Optional[RetryPolicy] = None,
    ) -> ValidationOutcome:
        """Run ``gates`` on a candidate and act on the verdict.

        A pass promotes the candidate to VALIDATED with the gate results. A
        failure is recorded; if the policy escalates it the outcome reports
        ``review_required``, otherwise ``ValidationFailedError`` is raised
        after the failure row is committed.

        Raises:
            ValidationFailedError: Retryable gate rejection
            ConflictError: The candidate was validated concurrently
        """
        policy = policy or self.policy
        retryable: Optional[ValidationFailure] = None

        async with self.transaction():
            candidate = await self._get_candidate(candidate_id)
            report = await run_gates(candidate.kind, candidate.payload, gates)

            if report.passed:
                result = await self.transitions.transition(
                    candidate.id,
                    candidate.kind,
                    Stage.CANDIDATE,
                    Stage.VALIDATED,
                    validation_results=report.as_json(),
                )
                return ValidationOutcome(
                    candidate_id=candidate.id,
                    status=ValidationOutcomeStatus.VALIDATED,
                    validated_id=as_uuid(result.destination_id),
                    gate_results=report.results,
                )

            rejection = report.failure
            failure, entry = await self._record_failure(
                candidate,
                rejection.gate_name,
                rejection.reason or "Rejected",
                rejection.details,
                policy,
            )

            if entry is None:
                retryable = failure
                failed_candidate_id = candidate.id
            else:
                return ValidationOutcome(
                    candidate_id=candidate.id,
                    status=ValidationOutcomeStatus.REVIEW_REQUIRED,
                    gate_results=report.results,
                    failed_gate=rejection.gate_name,
                    retry_count=failure.retry_count,
                    review_entry_id=entry.id,
                )

        raise ValidationFailedError(
            failed_candidate_id, retryable.gate_name, retryable.failure_reason, retryable.retry_count
        )

    async def _get_candidate(self, candidate_id: Any) -> Candidate:
        key = as_uuid(candidate_id)
        candidate = await self.session.get(Candidate, key) if key is not None else None
        if candidate is None:
            raise NotFoundError("Candidate", candidate_id)
        return candidate

    async def _record_failure(
        self,
        candidate: Candidate,
        gate_name: str,
        reason: str,
        details: Optional[dict],
        policy: RetryPolicy,
    ) -> tuple[ValidationFailure, Optional[ReviewQueueEntry]]:
        retry_count = await self.failures.get_latest_retry_count(candidate.id) + 1

        try:
            async with self.session.begin_nested():
                failure = await self.failures.create(
                    candidate_id=candidate.id,
                    gate_name=gate_name,
                    failure_reason=reason,
                    failure_details=details or {},
                    retry_count=retry_count,
                )
        except IntegrityError as e:
            raise ConflictError(
                f"Attempt {retry_count} for candidate {candidate.id} was recorded concurrently",
                original_error=e,
            ) from e

        LOGGER.info(
            f"Candidate {candidate.id} failed {gate_name} (attempt {retry_count})",
            extra={"candidate_id": str(candidate.id), "gate": gate_name, "reason": reason}
        )

        entry = None
        if policy.requires_review(gate_name, retry_count):
            entry = await self.review_queue.enqueue(
                candidate.id,
                candidate.kind.value,
                priority=policy.review_priority,
                reason=f"Failed {gate_name} {retry_count} time(s): {reason}",
            )
        return failure, entry

    async def get_failures(self, candidate_id: Any) -> list[ValidationFailure]:
        return await self.failures.list_for_candidate(as_uuid(candidate_id))

    async def get_latest_retry_count(self, candidate_id: Any) -> int:
        return await self.failures.get_latest_retry_count(as_uuid(candidate_id))
