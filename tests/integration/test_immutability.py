"""Integration tests for write protection on approved content and lineage rows."""

import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import delete, select, update

from curation.core.enums import AttemptedOperation, ContentKind, Stage
from curation.core.exceptions import ImmutableContentViolation, LineageMutationError, NotFoundError
from curation.database.guards import BULK_ITEM_ID
from curation.database.models import ApprovedMeaning, Draft
from curation.repositories.base_repository import BaseRepository
from curation.services.base_service import BaseService


@pytest_asyncio.fixture
async def approved_meaning(curation, promote, meaning_payload) -> str:
    _, _, validated_id = await promote(curation, ContentKind.MEANING, meaning_payload)
    result = await curation.approve(validated_id, "manual", operator_id="op-1")
    return result.destination_id


async def _reload_meaning(session, item_id: str) -> ApprovedMeaning:
    result = await session.execute(
        select(ApprovedMeaning)
        .where(ApprovedMeaning.id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestGuardService:

    @pytest.mark.asyncio
    async def test_update_is_refused_and_logged(self, curation, session, approved_meaning):
        with pytest.raises(ImmutableContentViolation) as exc_info:
            await curation.guard.update_approved(
                ContentKind.MEANING, approved_meaning, {"level": "B1"}, acting_user="editor-7"
            )

        assert exc_info.value.operation == "UPDATE"
        assert (await _reload_meaning(session, approved_meaning)).level == "A1"
        violations = await curation.guard.list_violations(approved_meaning)
        assert len(violations) == 1
        assert violations[0].attempted_operation == AttemptedOperation.UPDATE
        assert violations[0].user_id == "editor-7"
        assert violations[0].item_type == "meaning"

    @pytest.mark.asyncio
    async def test_no_op_update_is_still_refused(self, curation, approved_meaning):
        with pytest.raises(ImmutableContentViolation):
            await curation.guard.update_approved(ContentKind.MEANING, approved_meaning, {"level": "A1"})

        assert await curation.guard.count_violations(approved_meaning) == 1

    @pytest.mark.asyncio
    async def test_delete_is_refused_and_logged(self, curation, session, approved_meaning):
        with pytest.raises(ImmutableContentViolation):
            await curation.guard.delete_approved(ContentKind.MEANING, approved_meaning, acting_user="editor-7")

        assert await _reload_meaning(session, approved_meaning) is not None
        violations = await curation.guard.list_violations(approved_meaning)
        assert violations[0].attempted_operation == AttemptedOperation.DELETE

    @pytest.mark.asyncio
    async def test_unknown_item(self, curation):
        with pytest.raises(NotFoundError):
            await curation.guard.update_approved(ContentKind.MEANING, "missing", {"level": "B1"})

        assert await curation.guard.count_violations() == 0


class TestOrmListeners:

    @pytest.mark.asyncio
    async def test_direct_attribute_change_fails_on_flush(self, curation, session, approved_meaning):
        row = await _reload_meaning(session, approved_meaning)
        row.tags = ["changed"]

        with pytest.raises(ImmutableContentViolation):
            await session.flush()
        await session.rollback()

        assert (await _reload_meaning(session, approved_meaning)).tags == ["home", "basics"]
        assert await curation.guard.count_violations(approved_meaning) == 1

    @pytest.mark.asyncio
    async def test_direct_commit_is_logged_once_at_attempt_time(self, curation, session, approved_meaning):
        """Test that a raw-session write is logged by itself, not by a later service failure."""
        row = await _reload_meaning(session, approved_meaning)
        row.level = "C2"
        before = datetime.now(timezone.utc)

        with pytest.raises(ImmutableContentViolation):
            await session.commit()
        await session.rollback()

        violations = await curation.guard.list_violations(approved_meaning)
        assert len(violations) == 1
        assert violations[0].user_id is None
        attempted_at = violations[0].attempted_at
        if attempted_at.tzinfo is None:
            attempted_at = attempted_at.replace(tzinfo=timezone.utc)
        assert attempted_at >= before

        with pytest.raises(NotFoundError):
            await curation.transition(uuid.uuid4(), ContentKind.RULE, Stage.DRAFT, Stage.CANDIDATE)

        assert await curation.guard.count_violations() == 1

    @pytest.mark.asyncio
    async def test_attempt_is_logged_when_the_session_just_closes(self, curation, session_maker, approved_meaning):
        async with session_maker() as other:
            row = await _reload_meaning(other, approved_meaning)
            await other.delete(row)
            with pytest.raises(ImmutableContentViolation):
                await other.flush()

        violations = await curation.guard.list_violations(approved_meaning)
        assert [v.attempted_operation for v in violations] == [AttemptedOperation.DELETE]

    @pytest.mark.asyncio
    async def test_bulk_update_inside_a_service_transaction_is_logged(self, session, curation, approved_meaning):
        service = BaseService(session)

        with pytest.raises(ImmutableContentViolation):
            async with service.transaction():
                await session.execute(update(ApprovedMeaning).values(level="C2"))

        violations = await curation.guard.list_violations(BULK_ITEM_ID)
        assert len(violations) == 1
        assert violations[0].item_type == "meaning"
        assert (await _reload_meaning(session, approved_meaning)).level == "A1"

    @pytest.mark.asyncio
    async def test_bulk_delete_is_refused(self, curation, session, approved_meaning):
        with pytest.raises(ImmutableContentViolation):
            await session.execute(delete(ApprovedMeaning))
        await session.rollback()

        assert await _reload_meaning(session, approved_meaning) is not None
        assert await curation.guard.count_violations(BULK_ITEM_ID) == 1

    @pytest.mark.asyncio
    async def test_lineage_rows_are_append_only(self, curation, session, meaning_payload):
        draft = await curation.submit_draft(ContentKind.MEANING, meaning_payload, source="import")
        service = BaseService(session)

        with pytest.raises(LineageMutationError):
            async with service.transaction():
                draft.payload = {"word": "perro"}
                await session.flush()

        with pytest.raises(LineageMutationError):
            await session.execute(delete(Draft))
        await session.rollback()

        reloaded = await session.scalar(select(Draft).execution_options(populate_existing=True))
        assert reloaded.payload["word"] == "  casa "


class TestRepositories:

    def test_repositories_only_read_and_append(self):
        assert not hasattr(BaseRepository, "update")
        assert not hasattr(BaseRepository, "delete")
