"""Custom exception hierarchy."""

from typing import Any, Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class InvalidApprovalError(ValidationError):
    """Raised when approval type and operator reference disagree."""
    pass


class InvalidPayloadError(ValidationError):
    """Raised when a payload cannot be mapped into its approved table."""

    def __init__(self, kind: str, missing_fields: list[str]):
        super().__init__(
            f"Payload for {kind} is missing required fields: {', '.join(missing_fields)}"
        )
        self.kind = kind
        self.missing_fields = missing_fields


class NotFoundError(AppError):
    """Raised when a referenced row does not exist."""

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class ConflictError(AppError):
    """Raised when a write collides with an existing row.

    Callers must re-read the current state before deciding to retry.
    """

    def __init__(self, message: str, existing_id: Optional[Any] = None, original_error: Exception = None):
        super().__init__(message, original_error=original_error)
        self.existing_id = existing_id


class AlreadyDeprecatedError(ConflictError):
    """Raised when deprecating an item that already carries a deprecation."""
    pass


class InvalidTransitionError(AppError):
    """Raised for a state move the lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state


class TaskDependencyError(InvalidTransitionError):
    """Raised when a task starts before its predecessor completed."""

    def __init__(self, task_id: Any, depends_on_task_id: Any, predecessor_status: str):
        super().__init__(
            "pending",
            "processing",
            f"Task {task_id} depends on task {depends_on_task_id} "
            f"which is {predecessor_status}, not completed",
        )
        self.task_id = task_id
        self.depends_on_task_id = depends_on_task_id


class ValidationFailedError(AppError):
    """Raised when a candidate is rejected by a gate and may be retried."""

    def __init__(self, candidate_id: Any, gate_name: str, reason: str, retry_count: int):
        super().__init__(
            f"Candidate {candidate_id} failed gate {gate_name} (attempt {retry_count}): {reason}"
        )
        self.candidate_id = candidate_id
        self.gate_name = gate_name
        self.reason = reason
        self.retry_count = retry_count


class AlreadyResolvedError(AppError):
    """Raised when a review queue entry is resolved twice."""

    def __init__(self, item_id: Any, decision: Optional[str]):
        super().__init__(f"Review for item {item_id} already resolved with decision {decision}")
        self.item_id = item_id
        self.decision = decision


class ImmutableContentViolation(AppError):
    """Raised when approved content is about to be modified.

    Never retryable. Corrections go through deprecation plus a new approval.
    """

    def __init__(self, item_id: Any, item_type: str, operation: str):
        super().__init__(
            f"Cannot {operation.lower()} approved {item_type} {item_id}. Use deprecation instead."
        )
        self.item_id = item_id
        self.item_type = item_type
        self.operation = operation


class LineageMutationError(AppError):
    """Raised when a draft, candidate or validated row is edited or deleted."""

    def __init__(self, item_id: Any, stage: str, operation: str):
        super().__init__(f"Cannot {operation.lower()} {stage} row {item_id}: lineage is append-only")
        self.item_id = item_id
        self.stage = stage
        self.operation = operation
