"""Unit tests for approval, retry and approved-row mapping rules."""

import uuid

import pytest

from curation.core.enums import ApprovalType, ContentKind
from curation.core.exceptions import InvalidApprovalError, InvalidPayloadError
from curation.database.models import ApprovedExercise, ApprovedMeaning, ApprovedRule, ApprovedUtterance
from curation.schemas.curation import RetryPolicy
from curation.services.approval_service import validate_approval
from curation.services.normalizer import normalize_payload
from curation.services.transition_service import build_approved_row


class TestValidateApproval:

    def test_manual_requires_operator(self):
        with pytest.raises(InvalidApprovalError):
            validate_approval(ApprovalType.MANUAL, None)

        assert validate_approval("manual", "op-1") == ApprovalType.MANUAL

    def test_automatic_forbids_operator(self):
        with pytest.raises(InvalidApprovalError):
            validate_approval(ApprovalType.AUTOMATIC, "op-1")

        assert validate_approval("automatic", None) == ApprovalType.AUTOMATIC

    def test_unknown_type(self):
        with pytest.raises(InvalidApprovalError):
            validate_approval("semi-automatic", None)


class TestRetryPolicy:

    def test_review_after_ceiling(self):
        policy = RetryPolicy(max_retries=3)

        assert not policy.requires_review("schema", 3)
        assert policy.requires_review("schema", 4)

    def test_non_retryable_gate_escalates_immediately(self):
        policy = RetryPolicy(max_retries=3, non_retryable_gates=frozenset({"duplicate"}))

        assert policy.requires_review("duplicate", 1)
        assert not policy.requires_review("schema", 1)

    def test_defaults_come_from_settings(self):
        policy = RetryPolicy()

        assert policy.max_retries == 3
        assert policy.review_priority == 5


class TestBuildApprovedRow:

    def test_meaning_uses_payload_id(self, meaning_payload):
        validated_id = uuid.uuid4()
        payload = normalize_payload(ContentKind.MEANING, meaning_payload)

        row = build_approved_row(ContentKind.MEANING, validated_id, payload)

        assert isinstance(row, ApprovedMeaning)
        assert row.id == "es-casa-house"
        assert row.validated_id == validated_id
        assert row.level == "A1"
        assert row.tags == ["home", "basics"]

    def test_utterance(self, utterance_payload):
        payload = normalize_payload(ContentKind.UTTERANCE, utterance_payload)

        row = build_approved_row(ContentKind.UTTERANCE, uuid.uuid4(), payload)

        assert isinstance(row, ApprovedUtterance)
        assert row.meaning_id == "es-casa-house"
        assert row.register == "informal"

    def test_rule_defaults_category(self, rule_payload):
        payload = normalize_payload(ContentKind.RULE, rule_payload)

        row = build_approved_row(ContentKind.RULE, uuid.uuid4(), payload)

        assert isinstance(row, ApprovedRule)
        assert row.category == "general"
        assert row.title == "Ser vs estar"

    def test_exercise_derives_answer_and_languages(self, exercise_payload):
        payload = normalize_payload(ContentKind.EXERCISE, exercise_payload)

        row = build_approved_row(ContentKind.EXERCISE, uuid.uuid4(), payload)

        assert isinstance(row, ApprovedExercise)
        assert row.exercise_type == "multiple_choice"
        assert row.correct_answer == "casa"
        assert row.languages == ["es"]

    def test_missing_fields_raise(self):
        with pytest.raises(InvalidPayloadError) as exc_info:
            build_approved_row(ContentKind.RULE, uuid.uuid4(), {"language": "es"})

        assert exc_info.value.missing_fields == ["level", "title", "explanation"]
