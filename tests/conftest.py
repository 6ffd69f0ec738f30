"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio

from curation.core.database import DatabaseClient, build_engine, build_session_maker
from curation.core.enums import ContentKind, Stage
from curation.services.curation_service import CurationService


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database with the full schema, one per test.

    A file rather than ``:memory:`` so that separate sessions share data.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'curation.db'}")
    await DatabaseClient(engine).create_tables()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def curation(session) -> CurationService:
    return CurationService(session)


@pytest.fixture
def meaning_payload() -> dict:
    return {
        "id": "es-casa-house",
        "word": "  casa ",
        "definition": "house, home",
        "language": "ES",
        "level": "a1",
        "tags": ["home", "basics"],
    }


@pytest.fixture
def utterance_payload() -> dict:
    return {
        "meaningId": "es-casa-house",
        "language": "es",
        "text": "mi casa es tu casa",
        "register": "informal",
    }


@pytest.fixture
def rule_payload() -> dict:
    return {
        "id": "es-ser-estar",
        "language": "es",
        "level": "A2",
        "title": " Ser vs estar ",
        "explanation": "Use ser for identity and estar for states.",
        "examples": ["Soy alto.", "Estoy cansado."],
    }


@pytest.fixture
def exercise_payload() -> dict:
    return {
        "type": "multiple_choice",
        "language": "es",
        "level": "A1",
        "prompt": "Choose the word for 'house'",
        "options": ["perro", "casa", "gato"],
        "correctIndex": 1,
    }


async def promote_to_validated(curation: CurationService, kind: ContentKind, payload: dict):
    """Walk a new draft through to VALIDATED with no gates.

    Returns:
        tuple: (draft, candidate_id, validated_id)
    """
    draft = await curation.submit_draft(kind, payload, source="test")
    candidate = await curation.transition(draft.id, kind, Stage.DRAFT, Stage.CANDIDATE)
    outcome = await curation.validate_candidate(candidate.destination_id, gates=[])
    return draft, candidate.destination_id, outcome.validated_id


@pytest.fixture
def promote():
    return promote_to_validated
