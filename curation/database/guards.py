"""ORM listeners that keep lineage append-only and approved content immutable.

Every blocked write on an approved row is recorded as an
``ImmutabilityViolation`` through a connection of its own, so the audit row
survives the rollback of the session that attempted the write. SQLite allows
a single writer and the attempting session already holds that lock, so there
the row is queued under ``PENDING_VIOLATIONS_KEY`` and written as soon as the
session's transaction ends. The attempt time and acting user are captured
when the write is blocked either way.
"""

from typing import Any

from sqlalchemy import Engine, event, insert, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import ORMExecuteState, Session, SessionTransaction

from curation.core.enums import AttemptedOperation
from curation.core.exceptions import ImmutableContentViolation, LineageMutationError
from curation.database.models import (
    APPROVED_MODELS,
    LINEAGE_MODELS,
    ApprovedContent,
    ImmutabilityViolation,
    utcnow,
)
from curation.utils.logging import get_logger

LOGGER = get_logger(__name__)

PENDING_VIOLATIONS_KEY = "pending_immutability_violations"
ACTING_USER_KEY = "acting_user"

# Bulk statements carry no row identity
BULK_ITEM_ID = "*"

_APPROVED_TABLES = {model.__tablename__: model.kind.value for model in APPROVED_MODELS}
_LINEAGE_TABLES = {model.__tablename__: model.stage.value for model in LINEAGE_MODELS}


def _has_column_changes(obj: Any) -> bool:
    state = inspect(obj)
    return any(state.attrs[attr.key].history.has_changes() for attr in state.mapper.column_attrs)


def _write_violations(engine: Engine, attempts: list[dict]) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(insert(ImmutabilityViolation.__table__), attempts)
            conn.commit()
    except SQLAlchemyError:
        LOGGER.error(
            "Failed to record immutability violations",
            exc_info=True,
            extra={"attempts": attempts}
        )
        return

    LOGGER.info(
        f"Recorded {len(attempts)} immutability violation(s)",
        extra={"item_ids": [a["item_id"] for a in attempts]}
    )


def record_attempt(session: Session, item_id: Any, item_type: str, operation: AttemptedOperation) -> dict:
    """Log one blocked write on approved content.

    Args:
        session: Session that attempted the write
        item_id: Approved item id, or ``BULK_ITEM_ID`` for bulk statements
        item_type: Content kind value of the target table
        operation: Blocked operation

    Returns:
        dict: The violation row as written (or queued)
    """
    attempt = {
        "item_id": str(item_id),
        "item_type": item_type,
        "attempted_operation": operation,
        "user_id": session.info.get(ACTING_USER_KEY),
        "attempted_at": utcnow(),
    }
    LOGGER.warning(
        "Blocked write on approved content",
        extra={
            "item_id": attempt["item_id"],
            "item_type": item_type,
            "operation": operation.value,
            "user_id": attempt["user_id"],
        },
    )

    engine = session.get_bind().engine
    if engine.dialect.name == "sqlite":
        session.info.setdefault(PENDING_VIOLATIONS_KEY, []).append(attempt)
    else:
        _write_violations(engine, [attempt])
    return attempt


@event.listens_for(Session, "after_transaction_end")
def write_queued_violations(session: Session, transaction: SessionTransaction) -> None:
    """Write queued violations once the outermost transaction has released its connection."""
    if transaction.parent is not None:
        return

    attempts = session.info.pop(PENDING_VIOLATIONS_KEY, None)
    if attempts:
        _write_violations(session.get_bind().engine, attempts)


@event.listens_for(Session, "before_flush")
def block_protected_flush(session: Session, flush_context: Any, instances: Any) -> None:
    """Reject unit-of-work updates and deletes of protected rows."""
    attempts = []

    for obj in list(session.dirty):
        if isinstance(obj, ApprovedContent):
            if _has_column_changes(obj):
                attempts.append(record_attempt(session, obj.id, obj.kind.value, AttemptedOperation.UPDATE))
        elif isinstance(obj, LINEAGE_MODELS) and _has_column_changes(obj):
            raise LineageMutationError(obj.id, obj.stage.value, AttemptedOperation.UPDATE.value)

    for obj in list(session.deleted):
        if isinstance(obj, ApprovedContent):
            attempts.append(record_attempt(session, obj.id, obj.kind.value, AttemptedOperation.DELETE))
        elif isinstance(obj, LINEAGE_MODELS):
            raise LineageMutationError(obj.id, obj.stage.value, AttemptedOperation.DELETE.value)

    if attempts:
        first = attempts[0]
        raise ImmutableContentViolation(
            first["item_id"], first["item_type"], first["attempted_operation"].value
        )


@event.listens_for(Session, "do_orm_execute")
def block_protected_bulk_dml(orm_execute_state: ORMExecuteState) -> None:
    """Reject ``update()``/``delete()`` statements aimed at protected tables."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    table = getattr(orm_execute_state.statement, "table", None)
    table_name = getattr(table, "name", None)
    operation = AttemptedOperation.UPDATE if orm_execute_state.is_update else AttemptedOperation.DELETE

    if table_name in _APPROVED_TABLES:
        item_type = _APPROVED_TABLES[table_name]
        record_attempt(orm_execute_state.session, BULK_ITEM_ID, item_type, operation)
        raise ImmutableContentViolation(BULK_ITEM_ID, item_type, operation.value)

    if table_name in _LINEAGE_TABLES:
        raise LineageMutationError(BULK_ITEM_ID, _LINEAGE_TABLES[table_name], operation.value)

