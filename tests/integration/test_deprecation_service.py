"""Integration tests for deprecating approved content."""

import pytest
from sqlalchemy import select

from curation.core.enums import ContentKind
from curation.core.exceptions import AlreadyDeprecatedError, NotFoundError, ValidationError
from curation.database.models import ApprovedMeaning


async def _approve_meaning(curation, promote, payload: dict, meaning_id: str) -> str:
    _, _, validated_id = await promote(curation, ContentKind.MEANING, {**payload, "id": meaning_id})
    result = await curation.approve(validated_id, "automatic")
    return result.destination_id


class TestDeprecate:

    @pytest.mark.asyncio
    async def test_deprecation_leaves_content_untouched(self, curation, session, promote, meaning_payload):
        old = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")
        new = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v2")

        deprecation = await curation.deprecations.deprecate(
            old, ContentKind.MEANING, reason="Better definition", operator_id="op-1", replacement_id=new
        )

        assert deprecation.replacement_id == new
        assert await curation.deprecations.is_deprecated(old)
        assert not await curation.deprecations.is_deprecated(new)
        row = await session.scalar(select(ApprovedMeaning).where(ApprovedMeaning.id == old))
        assert row.level == "A1"
        assert row.tags == ["home", "basics"]

    @pytest.mark.asyncio
    async def test_second_deprecation_conflicts(self, curation, promote, meaning_payload):
        old = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")
        first = await curation.deprecations.deprecate(old, ContentKind.MEANING, "stale", "op-1")
        first_id = first.id

        with pytest.raises(AlreadyDeprecatedError) as exc_info:
            await curation.deprecations.deprecate(old, ContentKind.MEANING, "stale again", "op-2")

        # The rollback expires loaded rows, so compare against the saved id
        assert exc_info.value.existing_id == first_id

    @pytest.mark.asyncio
    async def test_self_replacement_rejected(self, curation, promote, meaning_payload):
        old = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")

        with pytest.raises(ValidationError):
            await curation.deprecations.deprecate(old, ContentKind.MEANING, "x", "op-1", replacement_id=old)

    @pytest.mark.asyncio
    async def test_unknown_item_or_replacement(self, curation, promote, meaning_payload):
        old = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")

        with pytest.raises(NotFoundError):
            await curation.deprecations.deprecate("missing", ContentKind.MEANING, "x", "op-1")
        with pytest.raises(NotFoundError):
            await curation.deprecations.deprecate(old, ContentKind.MEANING, "x", "op-1", replacement_id="missing")

        assert not await curation.deprecations.is_deprecated(old)


class TestReplacementChain:

    @pytest.mark.asyncio
    async def test_chain_and_active_replacement(self, curation, promote, meaning_payload):
        v1 = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")
        v2 = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v2")
        v3 = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v3")
        await curation.deprecations.deprecate(v1, ContentKind.MEANING, "x", "op-1", replacement_id=v2)
        await curation.deprecations.deprecate(v2, ContentKind.MEANING, "x", "op-1", replacement_id=v3)

        assert await curation.deprecations.get_replacement_chain(v1) == [v2, v3]
        assert await curation.deprecations.get_replacement_chain(v1, max_depth=1) == [v2]
        assert await curation.deprecations.get_active_replacement(v1) == v3
        assert await curation.deprecations.get_replacement_chain(v3) == []

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, curation, promote, meaning_payload):
        v1 = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v1")
        v2 = await _approve_meaning(curation, promote, meaning_payload, "es-casa-v2")
        await curation.deprecations.deprecate(v1, ContentKind.MEANING, "x", "op-1", replacement_id=v2)
        await curation.deprecations.deprecate(v2, ContentKind.MEANING, "x", "op-1", replacement_id=v1)

        assert await curation.deprecations.get_replacement_chain(v1) == [v2]
        assert await curation.deprecations.get_active_replacement(v1) is None
