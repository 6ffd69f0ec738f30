"""Integration tests for document pipelines and task orchestration."""

import uuid

import pytest
import pytest_asyncio

from curation.core.enums import ContentKind, PipelineStatus, Stage, TaskStatus, TaskType
from curation.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TaskDependencyError,
)
from curation.database.models import DocumentTask, ItemTask


@pytest_asyncio.fixture
async def pipeline(curation):
    return await curation.pipelines.create_pipeline(uuid.uuid4(), metadata={"filename": "lesson-3.pdf"})


@pytest_asyncio.fixture
async def extract_and_chunk(curation, pipeline):
    """Two document tasks where chunk waits on extract.

    Returns:
        tuple: (pipeline_id, extract_id, chunk_id)
    """
    extract = await curation.pipelines.create_document_task(pipeline.id, TaskType.EXTRACT)
    chunk = await curation.pipelines.create_document_task(
        pipeline.id, TaskType.CHUNK, depends_on_task_id=extract.id
    )
    return pipeline.id, extract.id, chunk.id


class TestPipelines:

    @pytest.mark.asyncio
    async def test_new_pipeline_defaults(self, curation, pipeline):
        progress = await curation.pipelines.get_progress(pipeline.id)

        assert progress.status == PipelineStatus.PENDING
        assert progress.current_stage == "created"
        assert progress.progress_percentage == 0
        assert progress.total_tasks == 0

    @pytest.mark.asyncio
    async def test_one_pipeline_per_document(self, curation):
        document_id = uuid.uuid4()
        first = await curation.pipelines.create_pipeline(document_id)
        first_id = first.id

        with pytest.raises(ConflictError) as exc_info:
            await curation.pipelines.create_pipeline(document_id)

        assert exc_info.value.existing_id == first_id
        again = await curation.pipelines.get_or_create_pipeline(document_id)
        assert again.id == first_id

    @pytest.mark.asyncio
    async def test_unknown_pipeline(self, curation):
        with pytest.raises(NotFoundError):
            await curation.pipelines.get_pipeline(uuid.uuid4())
        with pytest.raises(NotFoundError):
            await curation.pipelines.create_document_task(uuid.uuid4(), TaskType.EXTRACT)


class TestTaskStatus:

    @pytest.mark.asyncio
    async def test_aggregates_follow_task_writes(self, curation, extract_and_chunk):
        pipeline_id, extract_id, chunk_id = extract_and_chunk

        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.total_tasks == 2
        assert progress.current_stage == "extract"

        await curation.pipelines.start_task(extract_id)
        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.status == PipelineStatus.PROCESSING
        assert progress.started_at is not None
        started = await curation.pipelines.get_pipeline_tasks(pipeline_id)
        assert all(t.completed_at is None for t in started)

        task = await curation.pipelines.complete_task(extract_id, result={"pages": 12})
        assert task.task_metadata["result"] == {"pages": 12}
        assert task.completed_at is not None

        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.progress_percentage == 50
        assert progress.current_stage == "chunk"

        await curation.pipelines.start_task(chunk_id)
        await curation.pipelines.complete_task(chunk_id)

        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.status == PipelineStatus.COMPLETED
        assert progress.progress_percentage == 100
        assert progress.current_stage == "completed"
        assert progress.completed_at is not None

    @pytest.mark.asyncio
    async def test_dependency_blocks_start(self, curation, extract_and_chunk):
        _, extract_id, chunk_id = extract_and_chunk

        with pytest.raises(TaskDependencyError) as exc_info:
            await curation.pipelines.start_task(chunk_id)

        assert exc_info.value.depends_on_task_id == extract_id
        tasks = await curation.pipelines.get_pipeline_tasks(extract_and_chunk[0])
        assert all(t.status == TaskStatus.PENDING for t in tasks)

    @pytest.mark.asyncio
    async def test_illegal_status_move(self, curation, extract_and_chunk):
        _, extract_id, _ = extract_and_chunk

        with pytest.raises(InvalidTransitionError):
            await curation.pipelines.complete_task(extract_id)

    @pytest.mark.asyncio
    async def test_failure_then_retry(self, curation, extract_and_chunk):
        pipeline_id, extract_id, _ = extract_and_chunk
        await curation.pipelines.start_task(extract_id)

        await curation.pipelines.fail_task(extract_id, "OCR timeout")
        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.status == PipelineStatus.FAILED
        assert progress.failed_tasks == 1
        assert progress.error_message == "OCR timeout"

        task = await curation.retry_task(extract_id)
        assert task.status == TaskStatus.PENDING
        assert task.retry_count == 1
        assert task.error_message is None

        progress = await curation.pipelines.get_progress(pipeline_id)
        assert progress.status == PipelineStatus.PROCESSING
        assert progress.error_message is None
        assert progress.completed_at is None

    @pytest.mark.asyncio
    async def test_retry_rules(self, curation, extract_and_chunk):
        _, extract_id, _ = extract_and_chunk

        with pytest.raises(InvalidTransitionError):
            await curation.retry_task(extract_id)

        await curation.pipelines.start_task(extract_id)
        await curation.pipelines.fail_task(extract_id, "boom")
        await curation.retry_task(extract_id, max_retries=1)
        await curation.pipelines.start_task(extract_id)
        await curation.pipelines.fail_task(extract_id, "boom again")

        with pytest.raises(InvalidTransitionError):
            await curation.retry_task(extract_id, max_retries=1)

    @pytest.mark.asyncio
    async def test_retry_failed_tasks(self, curation, pipeline):
        pipeline_id = pipeline.id
        task_ids = []
        for task_type in (TaskType.EXTRACT, TaskType.MAP):
            task = await curation.pipelines.create_document_task(pipeline_id, task_type)
            task_ids.append(task.id)
            await curation.pipelines.start_task(task.id)
            await curation.pipelines.fail_task(task.id, "boom")

        retried = await curation.pipelines.retry_failed_tasks(pipeline_id)

        assert sorted(t.id for t in retried) == sorted(task_ids)
        assert (await curation.pipelines.get_progress(pipeline_id)).failed_tasks == 0


class TestScheduling:

    @pytest.mark.asyncio
    async def test_next_task_respects_dependencies_and_stage_order(self, curation, pipeline):
        pipeline_id = pipeline.id
        extract = await curation.pipelines.create_document_task(pipeline_id, TaskType.EXTRACT)
        chunk = await curation.pipelines.create_document_task(pipeline_id, TaskType.CHUNK, depends_on_task_id=extract.id)
        approve = await curation.pipelines.create_document_task(pipeline_id, TaskType.APPROVE)
        extract_id, chunk_id, approve_id = extract.id, chunk.id, approve.id

        assert (await curation.pipelines.get_next_task(pipeline_id)).id == extract_id

        await curation.pipelines.start_task(extract_id)
        assert (await curation.pipelines.get_next_task(pipeline_id)).id == approve_id

        await curation.pipelines.complete_task(extract_id)
        assert (await curation.pipelines.get_next_task(pipeline_id)).id == chunk_id

    @pytest.mark.asyncio
    async def test_no_pending_tasks(self, curation, pipeline):
        assert await curation.pipelines.get_next_task(pipeline.id) is None


class TestItemTasks:

    @pytest.mark.asyncio
    async def test_tracked_draft_follows_its_lineage(self, curation, meaning_payload):
        draft = await curation.submit_draft(ContentKind.MEANING, meaning_payload, source="import", track=True)
        draft_id = draft.id

        tasks = await curation.pipelines.find_item_tasks(stage=Stage.DRAFT)
        assert len(tasks) == 1
        assert isinstance(tasks[0], ItemTask)
        assert tasks[0].item_id == str(draft_id)
        assert tasks[0].source == "import"

        await curation.transition(draft_id, ContentKind.MEANING, Stage.DRAFT, Stage.CANDIDATE)

        assert await curation.pipelines.find_item_tasks(stage=Stage.DRAFT) == []
        moved = await curation.pipelines.find_item_tasks(stage=Stage.CANDIDATE, kind=ContentKind.MEANING)
        assert [t.item_id for t in moved] == [str(draft_id)]

    @pytest.mark.asyncio
    async def test_item_task_inside_a_pipeline(self, curation, pipeline, meaning_payload):
        pipeline_id = pipeline.id
        await curation.submit_draft(
            ContentKind.MEANING, meaning_payload, source="import", track=True, pipeline_id=pipeline_id
        )

        tasks = await curation.pipelines.get_pipeline_tasks(pipeline_id)
        progress = await curation.pipelines.get_progress(pipeline_id)

        assert len(tasks) == 1
        assert not isinstance(tasks[0], DocumentTask)
        assert progress.total_tasks == 1
        assert progress.status == PipelineStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_draft(self, curation):
        with pytest.raises(NotFoundError):
            await curation.pipelines.create_item_task(uuid.uuid4())
