from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from curation.database.models import ApprovalEvent
from curation.repositories.base_repository import BaseRepository


class ApprovalEventRepository(BaseRepository[ApprovalEvent]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ApprovalEvent)

    async def get_latest_for_item(self, item_id: str) -> Optional[ApprovalEvent]:
        query = (
            select(ApprovalEvent)
            .where(ApprovalEvent.item_id == item_id)
            .order_by(ApprovalEvent.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_by_operator(self, operator_id: str, limit: int, offset: int) -> list[ApprovalEvent]:
        query = (
            select(ApprovalEvent)
            .where(ApprovalEvent.operator_id == operator_id)
            .order_by(ApprovalEvent.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_type(self, item_type: str, limit: int, offset: int) -> list[ApprovalEvent]:
        query = (
            select(ApprovalEvent)
            .where(ApprovalEvent.item_type == item_type)
            .order_by(ApprovalEvent.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_approval_type(self) -> dict[str, int]:
        query = select(ApprovalEvent.approval_type, func.count()).group_by(ApprovalEvent.approval_type)
        result = await self.session.execute(query)
        return {approval_type.value: count for approval_type, count in result.all()}

    async def count_by_item_type(self) -> dict[str, int]:
        query = select(ApprovalEvent.item_type, func.count()).group_by(ApprovalEvent.item_type)
        result = await self.session.execute(query)
        return {item_type: count for item_type, count in result.all()}
