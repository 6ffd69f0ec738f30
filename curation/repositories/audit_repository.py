"""Append-only audit tables: transition events, validation failures, violations."""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from curation.database.models import ImmutabilityViolation, StateTransitionEvent, ValidationFailure
from curation.repositories.base_repository import BaseRepository


class TransitionEventRepository(BaseRepository[StateTransitionEvent]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, StateTransitionEvent)

    async def list_for_item(self, item_id: Any) -> list[StateTransitionEvent]:
        """Events where the item was either the source or the destination."""
        key = str(item_id)
        query = (
            select(StateTransitionEvent)
            .where(or_(StateTransitionEvent.item_id == key, StateTransitionEvent.destination_id == key))
            .order_by(StateTransitionEvent.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())


class ValidationFailureRepository(BaseRepository[ValidationFailure]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ValidationFailure)

    async def get_latest_retry_count(self, candidate_id: UUID) -> int:
        query = select(func.max(ValidationFailure.retry_count)).where(
            ValidationFailure.candidate_id == candidate_id
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none() or 0

    async def list_for_candidate(self, candidate_id: UUID) -> list[ValidationFailure]:
        query = (
            select(ValidationFailure)
            .where(ValidationFailure.candidate_id == candidate_id)
            .order_by(ValidationFailure.retry_count)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())


class ViolationRepository(BaseRepository[ImmutabilityViolation]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ImmutabilityViolation)

    async def list_recent(self, item_id: Optional[str] = None, limit: int = 100) -> list[ImmutabilityViolation]:
        query = select(ImmutabilityViolation)
        if item_id is not None:
            query = query.where(ImmutabilityViolation.item_id == str(item_id))
        query = query.order_by(ImmutabilityViolation.attempted_at.desc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
