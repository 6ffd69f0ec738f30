"""Unit tests for deriving pipeline aggregates from task rows."""

from curation.core.enums import PipelineStatus, TaskStatus, TaskType
from curation.database.models import DocumentTask, ItemTask
from curation.repositories.pipeline_repository import summarize_tasks


def _doc_task(task_type: TaskType, status: TaskStatus) -> DocumentTask:
    return DocumentTask(task_type=task_type, status=status)


class TestSummarizeTasks:

    def test_no_tasks(self):
        summary = summarize_tasks([])

        assert summary["total_tasks"] == 0
        assert summary["progress_percentage"] == 0
        assert summary["status"] == PipelineStatus.PENDING
        assert summary["current_stage"] == "created"

    def test_progress_floors(self):
        tasks = [
            _doc_task(TaskType.EXTRACT, TaskStatus.COMPLETED),
            _doc_task(TaskType.CHUNK, TaskStatus.PROCESSING),
            _doc_task(TaskType.MAP, TaskStatus.PENDING),
        ]

        summary = summarize_tasks(tasks)

        assert summary["progress_percentage"] == 33
        assert summary["status"] == PipelineStatus.PROCESSING
        assert summary["current_stage"] == "chunk"

    def test_any_failure_fails_pipeline(self):
        tasks = [
            _doc_task(TaskType.EXTRACT, TaskStatus.COMPLETED),
            _doc_task(TaskType.CHUNK, TaskStatus.FAILED),
            _doc_task(TaskType.MAP, TaskStatus.PENDING),
        ]

        summary = summarize_tasks(tasks)

        assert summary["status"] == PipelineStatus.FAILED
        assert summary["failed_tasks"] == 1
        assert summary["current_stage"] == "chunk"

    def test_all_completed(self):
        tasks = [_doc_task(t, TaskStatus.COMPLETED) for t in TaskType]

        summary = summarize_tasks(tasks)

        assert summary["status"] == PipelineStatus.COMPLETED
        assert summary["progress_percentage"] == 100
        assert summary["current_stage"] == "completed"

    def test_stage_follows_type_order_not_insertion_order(self):
        tasks = [
            _doc_task(TaskType.APPROVE, TaskStatus.PENDING),
            _doc_task(TaskType.TRANSFORM, TaskStatus.PENDING),
        ]

        assert summarize_tasks(tasks)["current_stage"] == "transform"

    def test_item_tasks_count_but_have_no_stage(self):
        tasks = [ItemTask(status=TaskStatus.PENDING), _doc_task(TaskType.EXTRACT, TaskStatus.COMPLETED)]

        summary = summarize_tasks(tasks)

        assert summary["total_tasks"] == 2
        assert summary["progress_percentage"] == 50
        assert summary["current_stage"] == "completed"
