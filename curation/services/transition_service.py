"""Moves content one stage forward, one atomic unit per move.

Promotion never edits the source row. It appends a destination row that
points back at it, so two racing promotions of the same row collide on the
UNIQUE back-reference and exactly one wins.
"""

from datetime import datetime, timezone
from typing import Any, Optional, assert_never
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from curation.core.enums import ContentKind, Stage
from curation.core.exceptions import (
    ConflictError,
    DatabaseError,
    InvalidPayloadError,
    InvalidTransitionError,
    NotFoundError,
)
from curation.core.lifecycle import assert_valid_transition
from curation.database.models import (
    ApprovedContent,
    ApprovedExercise,
    ApprovedMeaning,
    ApprovedRule,
    ApprovedUtterance,
    Candidate,
    Draft,
    StateTransitionEvent,
    Validated,
)
from curation.repositories.audit_repository import TransitionEventRepository
from curation.repositories.pipeline_repository import PipelineTaskRepository
from curation.repositories.stage_repository import StageRepository, StageRow
from curation.schemas.curation import TransitionResult
from curation.services.base_service import BaseService
from curation.services.normalizer import normalize_payload
from curation.services.pipeline_event_service import PipelineEventService
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _require(kind: ContentKind, payload: dict, fields: tuple[str, ...]) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise InvalidPayloadError(kind.value, missing)


def _content_id(payload: dict) -> str:
    return str(payload.get("id") or uuid4())


def _exercise_answer(payload: dict) -> Optional[str]:
    answer = payload.get("correct_answer")
    if answer is not None:
        return str(answer)

    options = payload.get("options")
    index = payload.get("correct_index")
    if isinstance(options, list) and isinstance(index, int) and 0 <= index < len(options):
        return str(options[index])
    return None


def build_approved_row(kind: ContentKind, validated_id: UUID, payload: dict) -> ApprovedContent:
    """Map a validated payload onto the approved table for ``kind``.

    Raises:
        InvalidPayloadError: A column the table requires is absent
    """
    match kind:
        case ContentKind.MEANING:
            _require(kind, payload, ("level",))
            return ApprovedMeaning(
                id=_content_id(payload),
                validated_id=validated_id,
                level=payload["level"],
                tags=list(payload.get("tags") or []),
            )

        case ContentKind.UTTERANCE:
            _require(kind, payload, ("meaning_id", "language", "text"))
            return ApprovedUtterance(
                id=str(uuid4()),
                validated_id=validated_id,
                meaning_id=str(payload["meaning_id"]),
                language=payload["language"],
                text=payload["text"],
                register=payload.get("register"),
                usage_notes=payload.get("usage_notes"),
                audio_url=payload.get("audio_url"),
            )

        case ContentKind.RULE:
            _require(kind, payload, ("language", "level", "title", "explanation"))
            return ApprovedRule(
                id=_content_id(payload),
                validated_id=validated_id,
                language=payload["language"],
                level=payload["level"],
                category=payload.get("category") or "general",
                title=payload["title"],
                explanation=payload["explanation"],
                examples=list(payload.get("examples") or []),
            )

        case ContentKind.EXERCISE:
            data = dict(payload)
            data.setdefault("exercise_type", data.get("type"))
            if not data.get("languages") and data.get("language"):
                data["languages"] = [data["language"]]
            data["correct_answer"] = _exercise_answer(data)
            _require(kind, data, ("exercise_type", "level", "languages", "prompt", "correct_answer"))
            return ApprovedExercise(
                id=str(uuid4()),
                validated_id=validated_id,
                exercise_type=data["exercise_type"],
                level=data["level"],
                languages=list(data["languages"]),
                prompt=data["prompt"],
                correct_answer=data["correct_answer"],
                options=data.get("options"),
                exercise_metadata=data.get("metadata") or {},
            )

        case _:
            assert_never(kind)


class TransitionService(BaseService):
    """Transition engine for the DRAFT -> CANDIDATE -> VALIDATED -> APPROVED lifecycle."""

    def __init__(self, session: AsyncSession):
        super().__init__(session)
        self.stages = StageRepository(session)
        self.transition_events = TransitionEventRepository(session)
        self.tasks = PipelineTaskRepository(session)
        self.pipeline_events = PipelineEventService(session)

    async def create_draft(self, kind: ContentKind, payload: dict, source: str) -> Draft:
        """Store raw content as a new draft."""
        async with self.transaction():
            draft = await self.stages.create_draft(kind, payload, source)
            LOGGER.info(
                f"Created {kind.value} draft {draft.id}",
                extra={"draft_id": str(draft.id), "source": source}
            )
            return draft

    async def transition(
        self,
        item_id: Any,
        kind: ContentKind,
        from_stage: Stage,
        to_stage: Stage,
        metadata: Optional[dict] = None,
        validation_results: Optional[list] = None,
    ) -> TransitionResult:
        """Promote one row to the next stage.

        Args:
            item_id: Id of the row in ``from_stage``
            kind: Content kind of the row
            from_stage: Stage the row is in
            to_stage: Stage to promote it to
            metadata: Free-form context stored on the transition event
            validation_results: Gate results stored on the validated row

        Returns:
            TransitionResult: Ids of the source and destination rows

        Raises:
            InvalidTransitionError: The move is not a single forward step,
                or the row is not of ``kind``
            NotFoundError: No row ``item_id`` in ``from_stage``
            InvalidPayloadError: The payload cannot fill the approved table
            ConflictError: The row was already promoted; carries the
                existing destination id
            DatabaseError: Any other constraint violation
        """
        assert_valid_transition(from_stage, to_stage)

        async with self.transaction():
            source = await self.stages.get_row(from_stage, kind, item_id)
            if source is None:
                raise NotFoundError(f"{from_stage.value} item", item_id)
            if source.kind != kind:
                raise InvalidTransitionError(
                    from_stage.value,
                    to_stage.value,
                    f"Item {item_id} is a {source.kind.value}, not a {kind.value}",
                )

            destination = self._build_destination(source, to_stage, kind, validation_results)
            await self._insert_destination(source, destination, to_stage, kind)

            await self._record_transition_event(source, destination, from_stage, to_stage, kind, metadata)

            lineage_root_id = await self.stages.get_lineage_root(destination)
            await self._sync_item_task(lineage_root_id, from_stage, to_stage)

            LOGGER.info(
                f"Transitioned {kind.value} {source.id} from {from_stage.value} to {to_stage.value}",
                extra={"source_id": str(source.id), "destination_id": str(destination.id)}
            )

            return TransitionResult(
                item_id=str(source.id),
                from_stage=from_stage,
                to_stage=to_stage,
                destination_id=str(destination.id),
                lineage_root_id=lineage_root_id,
            )

    def _build_destination(
        self,
        source: StageRow,
        to_stage: Stage,
        kind: ContentKind,
        validation_results: Optional[list],
    ) -> StageRow:
        if to_stage == Stage.CANDIDATE:
            return Candidate(
                id=uuid4(),
                kind=kind,
                payload=normalize_payload(kind, source.payload),
                draft_id=source.id,
            )
        if to_stage == Stage.VALIDATED:
            return Validated(
                id=uuid4(),
                kind=kind,
                payload=dict(source.payload),
                candidate_id=source.id,
                validation_results=list(validation_results or []),
            )
        return build_approved_row(kind, source.id, source.payload)

    async def _insert_destination(self, source: StageRow, destination: StageRow, to_stage: Stage, kind: ContentKind) -> None:
        try:
            async with self.session.begin_nested():
                await self.stages.add_row(destination)
        except IntegrityError as e:
            existing = await self.stages.get_destination(to_stage, kind, source.id)
            if existing is not None:
                LOGGER.warning(
                    f"{source.stage.value} {source.id} already promoted to {to_stage.value}",
                    extra={"source_id": str(source.id), "existing_id": str(existing.id)}
                )
                raise ConflictError(
                    f"{source.stage.value} {source.id} was already promoted to "
                    f"{to_stage.value} as {existing.id}",
                    existing_id=existing.id,
                    original_error=e,
                ) from e
            raise DatabaseError(
                f"Constraint violation while promoting {source.id} to {to_stage.value}: {str(e.orig)}",
                original_error=e,
            ) from e

    async def _record_transition_event(
        self,
        source: StageRow,
        destination: StageRow,
        from_stage: Stage,
        to_stage: Stage,
        kind: ContentKind,
        metadata: Optional[dict],
    ) -> None:
        # The transition stands even if its audit row cannot be written
        try:
            async with self.session.begin_nested():
                await self.transition_events.create(
                    item_id=str(source.id),
                    item_type=kind,
                    from_stage=from_stage,
                    to_stage=to_stage,
                    destination_id=str(destination.id),
                    event_metadata=metadata or {},
                )
        except SQLAlchemyError:
            LOGGER.warning(
                "Failed to record state transition event",
                exc_info=True,
                extra={"source_id": str(source.id), "to_stage": to_stage.value}
            )

    async def _sync_item_task(self, lineage_root_id: UUID, from_stage: Stage, to_stage: Stage) -> None:
        task = await self.tasks.get_item_task(str(lineage_root_id))
        if task is None:
            return

        previous = task.current_stage
        task.current_stage = to_stage
        task.updated_at = datetime.now(timezone.utc)
        await self.session.flush()

        await self.pipeline_events.log_event(
            task,
            "stage_changed",
            from_stage=previous or from_stage,
            to_stage=to_stage,
            success=True,
        )

    async def get_item_stage(self, item_id: Any) -> tuple[Stage, StageRow]:
        """Find the stage table currently holding ``item_id``."""
        found = await self.stages.find_stage(item_id)
        if found is None:
            raise NotFoundError("Item", item_id)
        return found

    async def get_lineage(self, draft_id: Any) -> list[StageRow]:
        return await self.stages.get_lineage(draft_id)

    async def list_transition_events(self, item_id: Any) -> list[StateTransitionEvent]:
        return await self.transition_events.list_for_item(item_id)
