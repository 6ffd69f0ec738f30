"""Document pipelines, their tasks, and the aggregate roll-up."""

from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.enums import ContentKind, PipelineStatus, Stage, TaskStatus
from curation.core.lifecycle import TASK_TYPE_ORDER, UNFINISHED_TASK_STATUSES
from curation.database.models import DocumentPipeline, DocumentTask, ItemTask, PipelineTask
from curation.repositories.base_repository import BaseRepository
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


def summarize_tasks(tasks: Sequence[PipelineTask]) -> dict:
    """Derive the pipeline aggregate columns from its child tasks."""
    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
    unfinished = sum(1 for t in tasks if t.status in UNFINISHED_TASK_STATUSES)

    if failed > 0:
        status = PipelineStatus.FAILED
    elif total > 0 and unfinished == 0:
        status = PipelineStatus.COMPLETED
    elif total > 0:
        status = PipelineStatus.PROCESSING
    else:
        status = PipelineStatus.PENDING

    if total == 0:
        current_stage = "created"
    else:
        current_stage = "completed"
        open_types = {
            t.task_type
            for t in tasks
            if isinstance(t, DocumentTask) and t.status != TaskStatus.COMPLETED
        }
        for task_type in TASK_TYPE_ORDER:
            if task_type in open_types:
                current_stage = task_type.value
                break

    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "failed_tasks": failed,
        "progress_percentage": completed * 100 // total if total else 0,
        "status": status,
        "current_stage": current_stage,
    }


class PipelineRepository(BaseRepository[DocumentPipeline]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, DocumentPipeline)

    async def get_by_document_id(self, document_id: UUID) -> Optional[DocumentPipeline]:
        result = await self.session.execute(
            select(DocumentPipeline).where(DocumentPipeline.document_id == document_id)
        )
        return result.scalar_one_or_none()

    async def lock(self, pipeline_id: UUID) -> Optional[DocumentPipeline]:
        """Load the pipeline row with ``SELECT ... FOR UPDATE``."""
        query = (
            select(DocumentPipeline)
            .where(DocumentPipeline.id == pipeline_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def recompute_aggregates(self, pipeline_id: UUID) -> Optional[DocumentPipeline]:
        """Re-derive every aggregate column from the child tasks.

        Must run in the same transaction as the task write that triggered it;
        the row lock serializes concurrent child updates.
        """
        try:
            pipeline = await self.lock(pipeline_id)
            if pipeline is None:
                return None

            result = await self.session.execute(
                select(PipelineTask).where(PipelineTask.pipeline_id == pipeline_id)
            )
            tasks = list(result.scalars().all())
            summary = summarize_tasks(tasks)

            for key, value in summary.items():
                setattr(pipeline, key, value)

            now = datetime.now(timezone.utc)
            if pipeline.started_at is None and any(t.status != TaskStatus.PENDING for t in tasks):
                pipeline.started_at = now
            if summary["status"] in (PipelineStatus.COMPLETED, PipelineStatus.FAILED):
                pipeline.completed_at = pipeline.completed_at or now
            else:
                pipeline.completed_at = None

            failed = [t for t in tasks if t.status == TaskStatus.FAILED]
            pipeline.error_message = failed[-1].error_message if failed else None
            pipeline.updated_at = now

            await self.session.flush()
            return pipeline
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Failed to recompute pipeline aggregates: {str(e)}",
                exc_info=True,
                extra={"pipeline_id": str(pipeline_id)},
            )
            raise


class PipelineTaskRepository(BaseRepository[PipelineTask]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, PipelineTask)

    async def lock(self, task_id: UUID) -> Optional[PipelineTask]:
        query = (
            select(PipelineTask)
            .where(PipelineTask.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_pipeline(self, pipeline_id: UUID) -> list[PipelineTask]:
        query = (
            select(PipelineTask)
            .where(PipelineTask.pipeline_id == pipeline_id)
            .order_by(PipelineTask.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_failed(self, pipeline_id: UUID) -> list[PipelineTask]:
        query = (
            select(PipelineTask)
            .where(PipelineTask.pipeline_id == pipeline_id, PipelineTask.status == TaskStatus.FAILED)
            .order_by(PipelineTask.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_item_task(self, item_id: str) -> Optional[ItemTask]:
        """Most recent item task tracking a lineage."""
        query = (
            select(ItemTask)
            .where(ItemTask.item_id == item_id)
            .order_by(ItemTask.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_item_tasks(
        self,
        stage: Optional[Stage] = None,
        status: Optional[TaskStatus] = None,
        kind: Optional[ContentKind] = None,
        limit: int = 100,
    ) -> list[ItemTask]:
        query = select(ItemTask)
        if stage is not None:
            query = query.where(ItemTask.current_stage == stage)
        if status is not None:
            query = query.where(ItemTask.status == status)
        if kind is not None:
            query = query.where(ItemTask.item_kind == kind)
        query = query.order_by(ItemTask.created_at).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
