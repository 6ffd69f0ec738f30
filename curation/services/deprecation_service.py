"""Retiring approved content without touching it.

A deprecation is a separate row naming the retired item and, optionally,
the approved item that replaces it. Replacements can themselves be
deprecated, which forms a chain.
"""

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.config import settings
from curation.core.enums import ContentKind
from curation.core.exceptions import AlreadyDeprecatedError, NotFoundError, ValidationError
from curation.database.models import Deprecation
from curation.repositories.deprecation_repository import DeprecationRepository
from curation.repositories.stage_repository import StageRepository
from curation.services.base_service import BaseService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DeprecationService(BaseService):
    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.repository = DeprecationRepository(session)
        self.stages = StageRepository(session)

    async def deprecate(
        self,
        item_id: Any,
        kind: ContentKind,
        reason: str,
        operator_id: str,
        replacement_id: Optional[Any] = None,
    ) -> Deprecation:
        """Mark an approved item as deprecated.

        Raises:
            NotFoundError: The item or its replacement is not approved content of ``kind``
            ValidationError: The item names itself as replacement
            AlreadyDeprecatedError: The item already carries a deprecation
        """
        item_id = str(item_id)
        replacement_id = str(replacement_id) if replacement_id is not None else None

        async with self.transaction():
            if await self.stages.get_approved(kind, item_id) is None:
                raise NotFoundError(f"Approved {kind.value}", item_id)

            if replacement_id is not None:
                if replacement_id == item_id:
                    raise ValidationError(f"Item {item_id} cannot replace itself")
                if await self.stages.get_approved(kind, replacement_id) is None:
                    raise NotFoundError(f"Approved {kind.value}", replacement_id)

            existing = await self.repository.get_by_item(item_id)
            if existing is not None:
                raise AlreadyDeprecatedError(f"Item {item_id} is already deprecated", existing_id=existing.id)

            try:
                async with self.session.begin_nested():
                    deprecation = await self.repository.create(
                        item_id=item_id,
                        item_type=kind,
                        reason=reason,
                        replacement_id=replacement_id,
                        operator_id=operator_id,
                    )
            except IntegrityError as e:
                existing = await self.repository.get_by_item(item_id)
                raise AlreadyDeprecatedError(
                    f"Item {item_id} is already deprecated",
                    existing_id=existing.id if existing else None,
                    original_error=e,
                ) from e

            LOGGER.info(
                f"Deprecated {kind.value} {item_id}",
                extra={"item_id": item_id, "replacement_id": replacement_id, "operator_id": operator_id}
            )
            return deprecation

    async def is_deprecated(self, item_id: Any) -> bool:
        return await self.repository.get_by_item(str(item_id)) is not None

    async def get_deprecation(self, item_id: Any) -> Optional[Deprecation]:
        return await self.repository.get_by_item(str(item_id))

    async def get_replacement_chain(self, item_id: Any, max_depth: Optional[int] = None) -> list[str]:
        """Successive replacements of ``item_id``, nearest first.

        Stops at an item without a replacement, at ``max_depth`` hops, or
        when an id repeats.
        """
        max_depth = max_depth or settings.curation.replacement_chain_depth
        chain: list[str] = []
        seen = {str(item_id)}
        current = str(item_id)

        while len(chain) < max_depth:
            deprecation = await self.repository.get_by_item(current)
            if deprecation is None or deprecation.replacement_id is None:
                break
            if deprecation.replacement_id in seen:
                LOGGER.warning(
                    f"Replacement cycle detected at {deprecation.replacement_id}",
                    extra={"item_id": str(item_id), "chain": chain}
                )
                break
            chain.append(deprecation.replacement_id)
            seen.add(deprecation.replacement_id)
            current = deprecation.replacement_id

        return chain

    async def get_active_replacement(self, item_id: Any) -> Optional[str]:
        """First non-deprecated item in the replacement chain, if any."""
        for candidate_id in await self.get_replacement_chain(item_id):
            if not await self.is_deprecated(candidate_id):
                return candidate_id
        return None
