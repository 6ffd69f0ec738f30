"""Explicit command paths for changing approved content, all of which refuse.

The ORM listeners in ``curation.database.guards`` block every write to the
approved tables. This service is the entry point an operator tool calls, so
the attempt is attributed to a user and lands in the violation log.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.core.enums import AttemptedOperation, ContentKind
from curation.core.exceptions import ImmutableContentViolation, NotFoundError
from curation.database.guards import ACTING_USER_KEY, record_attempt
from curation.database.models import ApprovedContent, ImmutabilityViolation
from curation.repositories.audit_repository import ViolationRepository
from curation.repositories.stage_repository import StageRepository
from curation.services.base_service import BaseService


class ImmutabilityGuard(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.stages = StageRepository(session)
        self.violations = ViolationRepository(session)

    async def update_approved(
        self,
        kind: ContentKind,
        item_id: str,
        changes: dict[str, Any],
        acting_user: Optional[str] = None,
    ) -> None:
        """Attempt an update; always raises ``ImmutableContentViolation``."""
        async with self.transaction():
            self.session.info[ACTING_USER_KEY] = acting_user
            row = await self._get_approved(kind, item_id)

            for key, value in changes.items():
                setattr(row, key, value)
            await self.session.flush()

            # Nothing actually changed, so the flush had nothing to block
            record_attempt(self.session.sync_session, row.id, kind.value, AttemptedOperation.UPDATE)
            raise ImmutableContentViolation(row.id, kind.value, AttemptedOperation.UPDATE.value)

    async def delete_approved(self, kind: ContentKind, item_id: str, acting_user: Optional[str] = None) -> None:
        """Attempt a delete; always raises ``ImmutableContentViolation``."""
        async with self.transaction():
            self.session.info[ACTING_USER_KEY] = acting_user
            row = await self._get_approved(kind, item_id)
            await self.session.delete(row)
            await self.session.flush()

    async def _get_approved(self, kind: ContentKind, item_id: str) -> ApprovedContent:
        row = await self.stages.get_approved(kind, item_id)
        if row is None:
            raise NotFoundError(f"Approved {kind.value}", item_id)
        return row

    async def list_violations(self, item_id: Optional[str] = None, limit: Optional[int] = None) -> list[ImmutabilityViolation]:
        return await self.violations.list_recent(item_id, limit or settings.curation.audit_page_size)

    async def count_violations(self, item_id: Optional[str] = None) -> int:
        filters = {"item_id": str(item_id)} if item_id is not None else None
        return await self.violations.count(filters)
