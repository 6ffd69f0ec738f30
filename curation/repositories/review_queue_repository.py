from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from curation.database.models import ReviewQueueEntry
from curation.repositories.base_repository import BaseRepository


class ReviewQueueRepository(BaseRepository[ReviewQueueEntry]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ReviewQueueEntry)

    async def get_active(self, item_id: str, for_update: bool = False) -> Optional[ReviewQueueEntry]:
        query = select(ReviewQueueEntry).where(
            ReviewQueueEntry.item_id == item_id,
            ReviewQueueEntry.reviewed_at.is_(None),
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_latest(self, item_id: str, for_update: bool = False) -> Optional[ReviewQueueEntry]:
        """Active entry if any, otherwise the most recently queued one."""
        active = await self.get_active(item_id, for_update=for_update)
        if active is not None:
            return active

        query = (
            select(ReviewQueueEntry)
            .where(ReviewQueueEntry.item_id == item_id)
            .order_by(ReviewQueueEntry.queued_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_pending(self, limit: int = 100, offset: int = 0) -> list[ReviewQueueEntry]:
        query = (
            select(ReviewQueueEntry)
            .where(ReviewQueueEntry.reviewed_at.is_(None))
            .order_by(ReviewQueueEntry.priority, ReviewQueueEntry.queued_at)
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_pending(self) -> int:
        return await self.count({"reviewed_at": None})
