"""Pydantic models returned by the curation services.

These are value objects handed back to callers; persisted rows stay in
``curation.database.models``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from curation.core.config import settings
from curation.core.enums import PipelineStatus, Stage, ValidationOutcomeStatus


class GateResult(BaseModel):
    """Verdict of one validation gate on one payload."""

    gate_name: str
    passed: bool
    reason: Optional[str] = Field(default=None, description="Why the gate rejected the payload")
    details: Dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(BaseModel):
    """How many failed gate runs a candidate gets before it needs a human.

    ``max_retries`` counts failures: the item is escalated once its
    retry_count exceeds it. Failures from gates listed in
    ``non_retryable_gates`` escalate immediately.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default_factory=lambda: settings.max_validation_retries, ge=0)
    non_retryable_gates: frozenset[str] = Field(
        default_factory=lambda: frozenset(settings.curation.non_retryable_gates)
    )
    review_priority: int = Field(default_factory=lambda: settings.default_review_priority)

    def requires_review(self, gate_name: str, retry_count: int) -> bool:
        return retry_count > self.max_retries or gate_name in self.non_retryable_gates


class TransitionResult(BaseModel):
    """Outcome of a successful stage transition."""

    item_id: str
    from_stage: Stage
    to_stage: Stage
    destination_id: str
    lineage_root_id: UUID


class ValidationOutcome(BaseModel):
    """Result of running the gates on a candidate.

    A retryable failure raises instead of returning an outcome.
    """

    candidate_id: UUID
    status: ValidationOutcomeStatus
    validated_id: Optional[UUID] = None
    gate_results: List[GateResult] = Field(default_factory=list)
    failed_gate: Optional[str] = None
    retry_count: int = 0
    review_entry_id: Optional[UUID] = None


class ApprovalStats(BaseModel):
    total: int = 0
    manual: int = 0
    automatic: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class PipelineProgress(BaseModel):
    """Snapshot of a document pipeline's derived aggregates."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    status: PipelineStatus
    current_stage: str
    progress_percentage: int
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
