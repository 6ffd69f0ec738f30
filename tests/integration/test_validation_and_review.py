"""Integration tests for gate runs, retry accounting and the review queue."""

import uuid

import pytest
from sqlalchemy import func, select

from curation.core.enums import ContentKind, ReviewDecision, Stage, ValidationOutcomeStatus
from curation.core.exceptions import (
    AlreadyResolvedError,
    NotFoundError,
    ValidationFailedError,
)
from curation.database.models import ApprovalEvent, ApprovedMeaning, ReviewQueueEntry, Validated, ValidationFailure
from curation.schemas.curation import RetryPolicy
from curation.services.gate_runner import RequiredFieldsGate, cefr_level_gate

REQUIRE_EXAMPLE = RequiredFieldsGate({ContentKind.MEANING: ["example"]})


async def _candidate(curation, payload) -> uuid.UUID:
    draft = await curation.submit_draft(ContentKind.MEANING, payload, source="import")
    result = await curation.transition(draft.id, ContentKind.MEANING, Stage.DRAFT, Stage.CANDIDATE)
    return uuid.UUID(result.destination_id)


class TestValidateCandidate:

    @pytest.mark.asyncio
    async def test_pass_promotes_with_gate_results(self, curation, session, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)

        outcome = await curation.validate_candidate(candidate_id, gates=[cefr_level_gate()])

        assert outcome.status == ValidationOutcomeStatus.VALIDATED
        validated = await session.get(Validated, outcome.validated_id)
        assert validated.candidate_id == candidate_id
        assert validated.validation_results[0]["gate_name"] == "cefr_level"
        assert validated.validation_results[0]["passed"] is True

    @pytest.mark.asyncio
    async def test_retryable_failure_is_committed_then_raised(self, curation, session, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)

        with pytest.raises(ValidationFailedError) as exc_info:
            await curation.validate_candidate(candidate_id, gates=[REQUIRE_EXAMPLE])

        assert exc_info.value.retry_count == 1
        assert exc_info.value.gate_name == "required_fields"
        failures = await curation.validation.get_failures(candidate_id)
        assert [f.retry_count for f in failures] == [1]
        assert failures[0].failure_details == {"missing_fields": ["example"]}
        assert await session.scalar(select(func.count()).select_from(Validated)) == 0

    @pytest.mark.asyncio
    async def test_retry_counts_increase(self, curation, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)

        for _ in range(2):
            with pytest.raises(ValidationFailedError):
                await curation.validate_candidate(candidate_id, gates=[REQUIRE_EXAMPLE])

        assert await curation.validation.get_latest_retry_count(candidate_id) == 2

    @pytest.mark.asyncio
    async def test_escalation_after_ceiling(self, curation, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)
        policy = RetryPolicy(max_retries=1, review_priority=2)

        with pytest.raises(ValidationFailedError):
            await curation.validate_candidate(candidate_id, [REQUIRE_EXAMPLE], policy)
        outcome = await curation.validate_candidate(candidate_id, [REQUIRE_EXAMPLE], policy)

        assert outcome.status == ValidationOutcomeStatus.REVIEW_REQUIRED
        assert outcome.retry_count == 2
        assert outcome.failed_gate == "required_fields"
        entry = await curation.review_queue.get_entry(candidate_id)
        assert entry.id == outcome.review_entry_id
        assert entry.priority == 2
        assert entry.item_type == "meaning"

    @pytest.mark.asyncio
    async def test_non_retryable_gate_escalates_on_first_failure(self, curation, meaning_payload):
        candidate_id = await _candidate(curation, {**meaning_payload, "level": "Z9"})
        policy = RetryPolicy(max_retries=3, non_retryable_gates=frozenset({"cefr_level"}))

        outcome = await curation.validate_candidate(candidate_id, [cefr_level_gate()], policy)

        assert outcome.status == ValidationOutcomeStatus.REVIEW_REQUIRED
        assert outcome.retry_count == 1
        assert await curation.review_queue.count_pending() == 1

    @pytest.mark.asyncio
    async def test_repeated_escalation_keeps_one_active_entry(self, curation, session, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)
        policy = RetryPolicy(max_retries=0)

        first = await curation.validate_candidate(candidate_id, [REQUIRE_EXAMPLE], policy)
        second = await curation.validate_candidate(candidate_id, [REQUIRE_EXAMPLE], policy)

        assert first.review_entry_id == second.review_entry_id
        assert await session.scalar(select(func.count()).select_from(ReviewQueueEntry)) == 1
        assert await session.scalar(select(func.count()).select_from(ValidationFailure)) == 2

    @pytest.mark.asyncio
    async def test_unknown_candidate(self, curation):
        with pytest.raises(NotFoundError):
            await curation.validate_candidate(uuid.uuid4(), gates=[])

    @pytest.mark.asyncio
    async def test_record_failure_directly(self, curation, meaning_payload):
        candidate_id = await _candidate(curation, meaning_payload)

        failure = await curation.record_validation_failure(candidate_id, "manual_check", "Too vague")

        assert failure.retry_count == 1
        assert failure.failure_reason == "Too vague"


class TestReviewQueue:

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent_while_active(self, curation):
        first = await curation.enqueue_for_review("item-1", "rule", priority=1, reason="flagged")
        second = await curation.enqueue_for_review("item-1", "rule", priority=9)

        assert first.id == second.id
        assert second.priority == 1

    @pytest.mark.asyncio
    async def test_list_pending_orders_by_priority(self, curation):
        await curation.enqueue_for_review("low", "rule", priority=8)
        await curation.enqueue_for_review("high", "rule", priority=1)
        await curation.enqueue_for_review("default", "rule")

        pending = await curation.review_queue.list_pending()

        assert [e.item_id for e in pending] == ["high", "default", "low"]

    @pytest.mark.asyncio
    async def test_assign_then_resolve(self, curation):
        await curation.enqueue_for_review("item-1", "rule")

        await curation.review_queue.assign("item-1", "op-1")
        entry = await curation.resolve_review("item-1", ReviewDecision.REJECT, notes="wrong")

        assert entry.reviewed_by == "op-1"
        assert entry.review_decision == ReviewDecision.REJECT
        assert entry.review_notes == "wrong"
        assert await curation.review_queue.count_pending() == 0

    @pytest.mark.asyncio
    async def test_resolving_twice_fails(self, curation):
        await curation.enqueue_for_review("item-1", "rule")
        await curation.resolve_review("item-1", "revise", operator_id="op-1")

        with pytest.raises(AlreadyResolvedError) as exc_info:
            await curation.resolve_review("item-1", "approve", operator_id="op-2")

        assert exc_info.value.decision == "revise"

    @pytest.mark.asyncio
    async def test_resolve_without_entry(self, curation):
        with pytest.raises(NotFoundError):
            await curation.resolve_review("missing", "approve", operator_id="op-1")

    @pytest.mark.asyncio
    async def test_requeue_after_resolution(self, curation):
        first = await curation.enqueue_for_review("item-1", "rule")
        await curation.resolve_review("item-1", "revise", operator_id="op-1")

        second = await curation.enqueue_for_review("item-1", "rule")

        assert second.id != first.id
        assert (await curation.review_queue.get_entry("item-1")).id == second.id

    @pytest.mark.asyncio
    async def test_approving_validated_item_publishes_it(self, curation, session, promote, meaning_payload):
        _, _, validated_id = await promote(curation, ContentKind.MEANING, meaning_payload)
        await curation.enqueue_for_review(validated_id, "meaning", reason="spot check")

        await curation.resolve_review(validated_id, "approve", operator_id="op-1")

        approved = await session.get(ApprovedMeaning, "es-casa-house")
        assert approved.validated_id == validated_id
        event = await session.scalar(select(ApprovalEvent))
        assert event.operator_id == "op-1"
        assert event.approval_type.value == "manual"
