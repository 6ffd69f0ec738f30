"""Pydantic schemas for service results."""

from curation.schemas.curation import (
    ApprovalStats,
    GateResult,
    PipelineProgress,
    RetryPolicy,
    TransitionResult,
    ValidationOutcome,
)

__all__ = [
    "ApprovalStats",
    "GateResult",
    "PipelineProgress",
    "RetryPolicy",
    "TransitionResult",
    "ValidationOutcome",
]
