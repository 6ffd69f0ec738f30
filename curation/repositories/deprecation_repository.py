from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from curation.database.models import Deprecation
from curation.repositories.base_repository import BaseRepository


class DeprecationRepository(BaseRepository[Deprecation]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Deprecation)

    async def get_by_item(self, item_id: str) -> Optional[Deprecation]:
        result = await self.session.execute(select(Deprecation).where(Deprecation.item_id == item_id))
        return result.scalar_one_or_none()
