"""Lifecycle rules for content stages and pipeline task statuses."""

from curation.core.enums import Stage, TaskStatus, TaskType
from curation.core.exceptions import InvalidTransitionError

VALID_TRANSITIONS: dict[Stage, tuple[Stage, ...]] = {
    Stage.DRAFT: (Stage.CANDIDATE,),
    Stage.CANDIDATE: (Stage.VALIDATED,),
    Stage.VALIDATED: (Stage.APPROVED,),
    Stage.APPROVED: (),
}

# failed -> pending only happens through an explicit retry
TASK_TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.PENDING: (TaskStatus.PROCESSING,),
    TaskStatus.PROCESSING: (TaskStatus.COMPLETED, TaskStatus.FAILED),
    TaskStatus.COMPLETED: (),
    TaskStatus.FAILED: (),
}

TASK_TYPE_ORDER: tuple[TaskType, ...] = tuple(TaskType)

UNFINISHED_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.PROCESSING)


def is_valid_transition(from_stage: Stage, to_stage: Stage) -> bool:
    return to_stage in VALID_TRANSITIONS[from_stage]


def assert_valid_transition(from_stage: Stage, to_stage: Stage) -> None:
    if not is_valid_transition(from_stage, to_stage):
        raise InvalidTransitionError(from_stage.value, to_stage.value)


def assert_valid_task_transition(from_status: TaskStatus, to_status: TaskStatus) -> None:
    if to_status not in TASK_TRANSITIONS[from_status]:
        raise InvalidTransitionError(from_status.value, to_status.value)


def is_terminal_task_status(status: TaskStatus) -> bool:
    return not TASK_TRANSITIONS[status]
