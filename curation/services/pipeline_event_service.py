"""Append-only event stream for pipeline tasks."""

from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.database.models import DocumentTask, ItemTask, PipelineEvent, PipelineTask
from curation.repositories.pipeline_event_repository import PipelineEventRepository
from curation.services.base_service import BaseService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class PipelineEventService(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.repository = PipelineEventRepository(session)

    async def log_event(
        self,
        task: PipelineTask,
        event_type: str,
        *,
        stage: Optional[Any] = None,
        status: Optional[Any] = None,
        from_stage: Optional[Any] = None,
        to_stage: Optional[Any] = None,
        from_status: Optional[Any] = None,
        to_status: Optional[Any] = None,
        success: Optional[bool] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> PipelineEvent:
        """Append an event for ``task`` inside the caller's transaction.

        ``stage`` and ``status`` default to the task's current values.
        """
        if isinstance(task, ItemTask):
            item_type = _value(task.item_kind) or "item"
            default_stage = task.current_stage
        elif isinstance(task, DocumentTask):
            item_type = "document"
            default_stage = task.task_type
        else:
            item_type = _value(task.scope)
            default_stage = None

        item_id = task.item_id or str(task.pipeline_id or task.id)

        event = await self.repository.create(
            task_id=task.id,
            pipeline_id=task.pipeline_id,
            item_id=item_id,
            item_type=item_type,
            event_type=event_type,
            stage=_value(stage if stage is not None else default_stage),
            status=_value(status if status is not None else task.status),
            from_stage=_value(from_stage),
            to_stage=_value(to_stage),
            from_status=_value(from_status),
            to_status=_value(to_status),
            success=success,
            error_message=error_message,
            duration_ms=duration_ms,
            payload=payload or {},
        )

        LOGGER.debug(
            f"Pipeline event {event_type}",
            extra={"task_id": str(task.id), "item_id": item_id, "event_type": event_type},
        )
        return event

    async def get_task_history(self, task_id: UUID) -> list[PipelineEvent]:
        return await self.repository.list_for_task(task_id)

    async def get_item_history(self, item_id: Any) -> list[PipelineEvent]:
        return await self.repository.list_for_item(str(item_id))

    async def get_recent_events(self, event_type: Optional[str] = None, limit: Optional[int] = None) -> list[PipelineEvent]:
        return await self.repository.list_recent(event_type, limit or settings.curation.audit_page_size)
