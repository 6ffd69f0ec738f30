"""Manual-intervention backlog for items automation could not settle."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.core.enums import ReviewDecision
from curation.core.exceptions import AlreadyResolvedError, DatabaseError, NotFoundError
from curation.database.models import ReviewQueueEntry
from curation.repositories.review_queue_repository import ReviewQueueRepository
from curation.services.base_service import BaseService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ReviewQueueService(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.repository = ReviewQueueRepository(session)

    async def enqueue(
        self,
        item_id: Any,
        item_type: str,
        priority: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ReviewQueueEntry:
        """Queue an item for review, or return its existing active entry."""
        item_id = str(item_id)
        priority = settings.default_review_priority if priority is None else priority

        async with self.transaction():
            existing = await self.repository.get_active(item_id)
            if existing is not None:
                return existing

            try:
                async with self.session.begin_nested():
                    entry = await self.repository.create(
                        item_id=item_id,
                        item_type=item_type,
                        priority=priority,
                        reason=reason,
                    )
            except IntegrityError as e:
                # Lost the race against a concurrent enqueue of the same item
                existing = await self.repository.get_active(item_id)
                if existing is None:
                    raise DatabaseError(f"Failed to enqueue {item_id} for review", original_error=e) from e
                return existing

            LOGGER.info(
                f"Queued {item_type} {item_id} for review",
                extra={"item_id": item_id, "priority": priority, "reason": reason}
            )
            return entry

    async def assign(self, item_id: Any, operator_id: str) -> ReviewQueueEntry:
        """Assign the item's active entry to an operator; reassignment overwrites."""
        async with self.transaction():
            entry = await self._get_open_entry(str(item_id))
            entry.assigned_to = operator_id
            entry.assigned_at = datetime.now(timezone.utc)
            await self.session.flush()
            return entry

    async def resolve(
        self,
        item_id: Any,
        decision: ReviewDecision,
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReviewQueueEntry:
        """Record the review outcome. An entry can be resolved only once."""
        decision = ReviewDecision(decision)

        async with self.transaction():
            entry = await self._get_open_entry(str(item_id))
            entry.reviewed_at = datetime.now(timezone.utc)
            entry.review_decision = decision
            entry.reviewed_by = operator_id or entry.assigned_to
            entry.review_notes = notes
            await self.session.flush()

            LOGGER.info(
                f"Resolved review of {item_id} with {decision.value}",
                extra={"item_id": str(item_id), "reviewed_by": entry.reviewed_by}
            )
            return entry

    async def _get_open_entry(self, item_id: str) -> ReviewQueueEntry:
        entry = await self.repository.get_latest(item_id, for_update=True)
        if entry is None:
            raise NotFoundError("Review queue entry", item_id)
        if entry.is_resolved:
            raise AlreadyResolvedError(item_id, entry.review_decision.value)
        return entry

    async def get_entry(self, item_id: Any) -> Optional[ReviewQueueEntry]:
        return await self.repository.get_latest(str(item_id))

    async def list_pending(self, limit: Optional[int] = None, offset: int = 0) -> list[ReviewQueueEntry]:
        return await self.repository.list_pending(limit or settings.curation.audit_page_size, offset)

    async def count_pending(self) -> int:
        return await self.repository.count_pending()
