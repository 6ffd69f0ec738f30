from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from curation.database.models import PipelineEvent
from curation.repositories.base_repository import BaseRepository


class PipelineEventRepository(BaseRepository[PipelineEvent]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, PipelineEvent)

    async def list_for_task(self, task_id: UUID) -> list[PipelineEvent]:
        query = select(PipelineEvent).where(PipelineEvent.task_id == task_id).order_by(PipelineEvent.created_at)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_item(self, item_id: str) -> list[PipelineEvent]:
        query = select(PipelineEvent).where(PipelineEvent.item_id == item_id).order_by(PipelineEvent.created_at)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_recent(self, event_type: Optional[str] = None, limit: int = 100) -> list[PipelineEvent]:
        query = select(PipelineEvent)
        if event_type is not None:
            query = query.where(PipelineEvent.event_type == event_type)
        query = query.order_by(PipelineEvent.created_at.desc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
