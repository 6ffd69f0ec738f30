"""Pipeline task orchestration.

Item tasks follow one content lineage through the stages; document tasks
are the extract/chunk/map/transform/validate/approve steps of a document
pipeline. Both share the status machine below, and every write to a task
that belongs to a pipeline re-derives the pipeline's aggregates in the same
transaction.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.core.enums import ContentKind, Stage, TaskStatus, TaskType
from curation.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TaskDependencyError,
)
from curation.core.lifecycle import TASK_TYPE_ORDER, assert_valid_task_transition, is_terminal_task_status
from curation.database.models import DocumentPipeline, DocumentTask, ItemTask, PipelineTask
from curation.repositories.pipeline_repository import PipelineRepository, PipelineTaskRepository
from curation.repositories.stage_repository import StageRepository, as_uuid
from curation.schemas.curation import PipelineProgress
from curation.services.base_service import BaseService
from curation.services.pipeline_event_service import PipelineEventService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _elapsed_ms(started_at: Optional[datetime], finished_at: datetime) -> Optional[int]:
    if started_at is None:
        return None
    # SQLite hands timestamps back without tzinfo
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    return int((finished_at - started_at).total_seconds() * 1000)


def _stage_rank(task: PipelineTask) -> int:
    task_type = getattr(task, "task_type", None)
    return TASK_TYPE_ORDER.index(task_type) if task_type in TASK_TYPE_ORDER else len(TASK_TYPE_ORDER)


class PipelineService(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.pipelines = PipelineRepository(session)
        self.tasks = PipelineTaskRepository(session)
        self.stages = StageRepository(session)
        self.events = PipelineEventService(session)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def create_pipeline(self, document_id: UUID, metadata: Optional[dict] = None) -> DocumentPipeline:
        async with self.transaction():
            try:
                async with self.session.begin_nested():
                    pipeline = await self.pipelines.create(
                        document_id=document_id,
                        pipeline_metadata=metadata or {},
                    )
            except IntegrityError as e:
                existing = await self.pipelines.get_by_document_id(document_id)
                raise ConflictError(
                    f"Document {document_id} already has a pipeline",
                    existing_id=existing.id if existing else None,
                    original_error=e,
                ) from e

            LOGGER.info(
                f"Created pipeline {pipeline.id} for document {document_id}",
                extra={"pipeline_id": str(pipeline.id), "document_id": str(document_id)}
            )
            return pipeline

    async def get_or_create_pipeline(self, document_id: UUID, metadata: Optional[dict] = None) -> DocumentPipeline:
        existing = await self.pipelines.get_by_document_id(document_id)
        if existing is not None:
            return existing
        return await self.create_pipeline(document_id, metadata)

    async def get_pipeline(self, pipeline_id: UUID) -> DocumentPipeline:
        pipeline = await self.pipelines.get_by_id(pipeline_id)
        if pipeline is None:
            raise NotFoundError("Pipeline", pipeline_id)
        return pipeline

    async def get_progress(self, pipeline_id: UUID) -> PipelineProgress:
        return PipelineProgress.model_validate(await self.get_pipeline(pipeline_id))

    async def get_pipeline_tasks(self, pipeline_id: UUID) -> list[PipelineTask]:
        return await self.tasks.list_for_pipeline(pipeline_id)

    # ------------------------------------------------------------------
    # Task creation
    # ------------------------------------------------------------------

    async def create_document_task(
        self,
        pipeline_id: UUID,
        task_type: Union[TaskType, str],
        item_id: Optional[Any] = None,
        depends_on_task_id: Optional[UUID] = None,
        metadata: Optional[dict] = None,
    ) -> DocumentTask:
        task_type = TaskType(task_type)

        async with self.transaction():
            await self.get_pipeline(pipeline_id)
            await self._check_predecessor_exists(depends_on_task_id)

            task = DocumentTask(
                pipeline_id=pipeline_id,
                task_type=task_type,
                item_id=str(item_id) if item_id is not None else None,
                depends_on_task_id=depends_on_task_id,
                task_metadata=metadata or {},
            )
            return await self._add_task(task)

    async def create_item_task(
        self,
        draft_id: Any,
        pipeline_id: Optional[UUID] = None,
        depends_on_task_id: Optional[UUID] = None,
        metadata: Optional[dict] = None,
    ) -> ItemTask:
        """Start tracking the lineage rooted at ``draft_id``."""
        async with self.transaction():
            draft = await self.stages.get_by_id(as_uuid(draft_id))
            if draft is None:
                raise NotFoundError("Draft", draft_id)
            if pipeline_id is not None:
                await self.get_pipeline(pipeline_id)
            await self._check_predecessor_exists(depends_on_task_id)

            lineage = await self.stages.get_lineage(draft.id)
            task = ItemTask(
                pipeline_id=pipeline_id,
                item_id=str(draft.id),
                item_kind=draft.kind,
                current_stage=lineage[-1].stage,
                source=draft.source,
                depends_on_task_id=depends_on_task_id,
                task_metadata=metadata or {},
            )
            return await self._add_task(task)

    async def _add_task(self, task: PipelineTask) -> PipelineTask:
        self.session.add(task)
        await self.session.flush()

        if task.pipeline_id is not None:
            await self.pipelines.recompute_aggregates(task.pipeline_id)

        await self.events.log_event(task, "task_created", to_status=task.status, success=True)
        LOGGER.info(
            f"Created {task.scope.value} task {task.id}",
            extra={"task_id": str(task.id), "pipeline_id": str(task.pipeline_id)}
        )
        return task

    async def _check_predecessor_exists(self, depends_on_task_id: Optional[UUID]) -> None:
        if depends_on_task_id is not None and await self.tasks.get_by_id(depends_on_task_id) is None:
            raise NotFoundError("Task", depends_on_task_id)

    # ------------------------------------------------------------------
    # Status machine
    # ------------------------------------------------------------------

    async def update_task_status(
        self,
        task_id: UUID,
        status: Union[TaskStatus, str],
        error_message: Optional[str] = None,
        result: Optional[dict] = None,
    ) -> PipelineTask:
        """Move a task along pending -> processing -> completed | failed.

        Raises:
            NotFoundError: Unknown task
            InvalidTransitionError: The move is not allowed from the current status
            TaskDependencyError: The predecessor task has not completed
        """
        status = TaskStatus(status)

        async with self.transaction():
            task = await self.tasks.lock(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)

            previous = task.status
            assert_valid_task_transition(previous, status)

            if status == TaskStatus.PROCESSING and task.depends_on_task_id is not None:
                predecessor = await self.tasks.get_by_id(task.depends_on_task_id)
                if predecessor is None or predecessor.status != TaskStatus.COMPLETED:
                    raise TaskDependencyError(
                        task.id,
                        task.depends_on_task_id,
                        predecessor.status.value if predecessor else "missing",
                    )

            now = datetime.now(timezone.utc)
            duration_ms = None
            task.status = status
            task.updated_at = now

            if status == TaskStatus.PROCESSING:
                task.started_at = now
            if is_terminal_task_status(status):
                task.completed_at = now
                duration_ms = _elapsed_ms(task.started_at, now)

            if status == TaskStatus.FAILED:
                task.error_message = error_message
            if result:
                task.task_metadata = {**(task.task_metadata or {}), "result": result}

            await self.session.flush()

            if task.pipeline_id is not None:
                await self.pipelines.recompute_aggregates(task.pipeline_id)

            await self.events.log_event(
                task,
                f"task_{status.value}",
                from_status=previous,
                to_status=status,
                success=status == TaskStatus.COMPLETED if is_terminal_task_status(status) else None,
                error_message=task.error_message if status == TaskStatus.FAILED else None,
                duration_ms=duration_ms,
            )

            log = LOGGER.warning if status == TaskStatus.FAILED else LOGGER.info
            log(
                f"Task {task.id} {previous.value} -> {status.value}",
                extra={"task_id": str(task.id), "error": task.error_message}
            )
            return task

    async def start_task(self, task_id: UUID) -> PipelineTask:
        return await self.update_task_status(task_id, TaskStatus.PROCESSING)

    async def complete_task(self, task_id: UUID, result: Optional[dict] = None) -> PipelineTask:
        return await self.update_task_status(task_id, TaskStatus.COMPLETED, result=result)

    async def fail_task(self, task_id: UUID, error_message: str) -> PipelineTask:
        return await self.update_task_status(task_id, TaskStatus.FAILED, error_message=error_message)

    async def retry_task(self, task_id: UUID, max_retries: Optional[int] = None) -> PipelineTask:
        """Send a failed task back to pending.

        Raises:
            InvalidTransitionError: The task is not failed, or has used up
                ``max_retries``
        """
        async with self.transaction():
            task = await self.tasks.lock(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)

            if task.status != TaskStatus.FAILED:
                raise InvalidTransitionError(
                    task.status.value,
                    TaskStatus.PENDING.value,
                    f"Only failed tasks can be retried; task {task.id} is {task.status.value}",
                )
            if max_retries is not None and task.retry_count >= max_retries:
                raise InvalidTransitionError(
                    task.status.value,
                    TaskStatus.PENDING.value,
                    f"Task {task.id} has used all {max_retries} retries",
                )

            previous_error = task.error_message
            task.status = TaskStatus.PENDING
            task.retry_count += 1
            task.error_message = None
            task.started_at = None
            task.completed_at = None
            task.updated_at = datetime.now(timezone.utc)
            await self.session.flush()

            if task.pipeline_id is not None:
                await self.pipelines.recompute_aggregates(task.pipeline_id)

            await self.events.log_event(
                task,
                "task_retried",
                from_status=TaskStatus.FAILED,
                to_status=TaskStatus.PENDING,
                payload={"retry_count": task.retry_count, "previous_error": previous_error},
            )
            return task

    async def retry_failed_tasks(self, pipeline_id: UUID, max_retries: Optional[int] = None) -> list[PipelineTask]:
        """Retry every failed task of a pipeline that still has retries left."""
        max_retries = settings.curation.max_task_retries if max_retries is None else max_retries

        async with self.transaction():
            retried = []
            for task in await self.tasks.list_failed(pipeline_id):
                if task.retry_count < max_retries:
                    retried.append(await self.retry_task(task.id, max_retries))
            return retried

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_next_task(self, pipeline_id: UUID) -> Optional[PipelineTask]:
        """First pending task, in document stage order, whose predecessor is done."""
        tasks = await self.tasks.list_for_pipeline(pipeline_id)
        by_id = {task.id: task for task in tasks}

        # list_for_pipeline is already in creation order and sorted() is stable
        for task in sorted(tasks, key=_stage_rank):
            if task.status != TaskStatus.PENDING:
                continue
            if task.depends_on_task_id is None:
                return task
            predecessor = by_id.get(task.depends_on_task_id) or await self.tasks.get_by_id(task.depends_on_task_id)
            if predecessor is not None and predecessor.status == TaskStatus.COMPLETED:
                return task
        return None

    async def find_item_tasks(
        self,
        stage: Optional[Stage] = None,
        status: Optional[TaskStatus] = None,
        kind: Optional[ContentKind] = None,
        limit: Optional[int] = None,
    ) -> list[ItemTask]:
        return await self.tasks.find_item_tasks(stage, status, kind, limit or settings.curation.audit_page_size)
