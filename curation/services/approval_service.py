"""Ledger of who approved what, and how."""

from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.core.enums import ApprovalType
from curation.core.exceptions import InvalidApprovalError
from curation.database.models import ApprovalEvent
from curation.repositories.approval_event_repository import ApprovalEventRepository
from curation.schemas.curation import ApprovalStats
from curation.services.base_service import BaseService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


def validate_approval(approval_type: Union[ApprovalType, str], operator_id: Optional[str]) -> ApprovalType:
    """Check that manual approvals name an operator and automatic ones do not.

    Returns:
        ApprovalType: The parsed approval type

    Raises:
        InvalidApprovalError: Unknown type, or operator presence mismatch
    """
    try:
        approval_type = ApprovalType(approval_type)
    except ValueError as e:
        raise InvalidApprovalError(f"Unknown approval type: {approval_type}", original_error=e) from e

    if approval_type == ApprovalType.MANUAL and not operator_id:
        raise InvalidApprovalError("Manual approval requires an operator")
    if approval_type == ApprovalType.AUTOMATIC and operator_id:
        raise InvalidApprovalError("Automatic approval must not name an operator")
    return approval_type


class ApprovalService(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.repository = ApprovalEventRepository(session)

    async def record_approval(
        self,
        item_id: Any,
        item_type: str,
        approval_type: Union[ApprovalType, str],
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
        validated_id: Optional[UUID] = None,
    ) -> ApprovalEvent:
        """Append one approval event."""
        approval_type = validate_approval(approval_type, operator_id)

        async with self.transaction():
            event = await self.repository.create(
                item_id=str(item_id),
                item_type=item_type,
                approval_type=approval_type,
                operator_id=operator_id,
                notes=notes,
                validated_id=validated_id,
            )
            LOGGER.info(
                f"Recorded {approval_type.value} approval of {item_type} {item_id}",
                extra={"item_id": str(item_id), "operator_id": operator_id}
            )
            return event

    async def get_approval_event(self, item_id: Any) -> Optional[ApprovalEvent]:
        return await self.repository.get_latest_for_item(str(item_id))

    async def is_approved(self, item_id: Any) -> bool:
        return await self.get_approval_event(item_id) is not None

    async def get_approvals_by_operator(
        self, operator_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> list[ApprovalEvent]:
        return await self.repository.list_by_operator(
            operator_id, limit or settings.curation.audit_page_size, offset
        )

    async def get_approvals_by_type(
        self, item_type: str, limit: Optional[int] = None, offset: int = 0
    ) -> list[ApprovalEvent]:
        return await self.repository.list_by_type(
            item_type, limit or settings.curation.audit_page_size, offset
        )

    async def get_approval_stats(self) -> ApprovalStats:
        by_approval_type = await self.repository.count_by_approval_type()
        return ApprovalStats(
            total=sum(by_approval_type.values()),
            manual=by_approval_type.get(ApprovalType.MANUAL.value, 0),
            automatic=by_approval_type.get(ApprovalType.AUTOMATIC.value, 0),
            by_type=await self.repository.count_by_item_type(),
        )
