"""Stage store access: drafts, candidates, validated rows and the approved tables."""

from typing import Any, Optional, Type, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.enums import ContentKind, Stage
from curation.database.models import (
    APPROVED_MODELS,
    ApprovedContent,
    Base,
    Candidate,
    Draft,
    Validated,
)
from curation.repositories.base_repository import BaseRepository
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)

APPROVED_MODEL_BY_KIND: dict[ContentKind, Type[ApprovedContent]] = {
    model.kind: model for model in APPROVED_MODELS
}

StageRow = Union[Draft, Candidate, Validated, ApprovedContent]


def model_for(stage: Stage, kind: ContentKind) -> Type[Base]:
    """Table backing ``stage`` for content of ``kind``."""
    if stage == Stage.DRAFT:
        return Draft
    if stage == Stage.CANDIDATE:
        return Candidate
    if stage == Stage.VALIDATED:
        return Validated
    return APPROVED_MODEL_BY_KIND[kind]


def back_reference(model: Type[Base]):
    """Column on ``model`` pointing at the row it was promoted from."""
    if model is Candidate:
        return Candidate.draft_id
    if model is Validated:
        return Validated.candidate_id
    if issubclass(model, ApprovedContent):
        return model.validated_id
    raise ValueError(f"{model.__name__} has no source row")


def as_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class StageRepository(BaseRepository[Draft]):
    """Reads and appends stage rows. Nothing here updates or deletes lineage."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Draft)

    async def create_draft(self, kind: ContentKind, payload: dict, source: str) -> Draft:
        return await self.create(kind=kind, payload=payload, source=source)

    async def get_row(self, stage: Stage, kind: ContentKind, item_id: Any) -> Optional[StageRow]:
        model = model_for(stage, kind)
        key = str(item_id) if stage == Stage.APPROVED else as_uuid(item_id)
        if key is None:
            return None

        try:
            result = await self.session.execute(select(model).where(model.id == key))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error retrieving {stage.value} row {item_id}: {str(e)}",
                exc_info=True,
                extra={"stage": stage.value, "kind": kind.value},
            )
            raise

    async def get_destination(self, to_stage: Stage, kind: ContentKind, source_id: Any) -> Optional[StageRow]:
        """Row in ``to_stage`` whose back-reference points at ``source_id``."""
        model = model_for(to_stage, kind)
        column = back_reference(model)
        result = await self.session.execute(select(model).where(column == as_uuid(source_id)))
        return result.scalar_one_or_none()

    async def add_row(self, row: StageRow) -> StageRow:
        self.session.add(row)
        await self.session.flush()
        return row

    async def find_stage(self, item_id: Any) -> Optional[tuple[Stage, StageRow]]:
        """Locate an item in whichever stage table holds it.

        Published rows are searched first since their ids are the externally
        visible ones.
        """
        for model in APPROVED_MODELS:
            row = (
                await self.session.execute(select(model).where(model.id == str(item_id)))
            ).scalar_one_or_none()
            if row is not None:
                return Stage.APPROVED, row

        key = as_uuid(item_id)
        if key is None:
            return None

        for stage, model in ((Stage.VALIDATED, Validated), (Stage.CANDIDATE, Candidate), (Stage.DRAFT, Draft)):
            row = (await self.session.execute(select(model).where(model.id == key))).scalar_one_or_none()
            if row is not None:
                return stage, row

        return None

    async def get_lineage_root(self, row: StageRow) -> UUID:
        """Draft id at the start of ``row``'s lineage."""
        if isinstance(row, Draft):
            return row.id
        if isinstance(row, ApprovedContent):
            row = await self.session.get(Validated, row.validated_id)
        if isinstance(row, Validated):
            row = await self.session.get(Candidate, row.candidate_id)
        return row.draft_id

    async def get_lineage(self, draft_id: Any) -> list[StageRow]:
        """Rows derived from a draft, oldest stage first."""
        draft = await self.get_by_id(as_uuid(draft_id))
        if draft is None:
            return []

        lineage: list[StageRow] = [draft]
        candidate = await self.get_destination(Stage.CANDIDATE, draft.kind, draft.id)
        if candidate is None:
            return lineage
        lineage.append(candidate)

        validated = await self.get_destination(Stage.VALIDATED, draft.kind, candidate.id)
        if validated is None:
            return lineage
        lineage.append(validated)

        approved = await self.get_destination(Stage.APPROVED, draft.kind, validated.id)
        if approved is not None:
            lineage.append(approved)
        return lineage

    async def get_approved(self, kind: ContentKind, item_id: str) -> Optional[ApprovedContent]:
        return await self.get_row(Stage.APPROVED, kind, item_id)
