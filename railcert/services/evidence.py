"""
Evidence writer, ledger appender and the transactional evidence wrapper.

with_evidence is the only sanctioned write path into an audited entity: the
domain mutation, its evidence node and its ledger entry commit together or not
at all. No mutation is observable without its evidence, and vice versa.
"""
import logging
import time
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Optional, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from railcert.clock import ensure_utc, system_clock
from railcert.errors import EntityNotFoundError, OperationTimeoutError, StorageError, ValidationError
from railcert.models.enums import ActorType
from railcert.models.evidence import EvidenceNode, ImmutableLedgerEntry

logger = logging.getLogger(__name__)

# Placeholder entity id for actions that create their target
PENDING_ENTITY_ID = "pending"

R = TypeVar("R")


def to_jsonable(value: Any) -> Any:
    """Convert a payload into plain JSON types (nested structures allowed)."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _require(name: str, value) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required")
    return str(value)


def commit_or_raise(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Commit failed: {exc}") from exc


def write_evidence_node(
    db: Session,
    entity_type: str,
    entity_id,
    actor_type: Union[ActorType, str],
    actor_id: str,
    clock=None,
    commit: bool = True,
) -> EvidenceNode:
    """Insert one evidence node. No validation beyond required fields."""
    clock = clock or system_clock
    try:
        actor = ActorType(actor_type)
    except ValueError:
        raise ValidationError(f"Unknown actor type: {actor_type!r}")

    node = EvidenceNode(
        entity_type=_require("entity_type", entity_type),
        entity_id=_require("entity_id", entity_id),
        actor_type=actor,
        actor_id=_require("actor_id", actor_id),
        created_at=clock.now(),
    )
    db.add(node)
    try:
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Could not write evidence node: {exc}") from exc

    if commit:
        commit_or_raise(db)
        db.refresh(node)

    logger.debug(
        "evidence node written",
        extra={"evidence_node_id": node.id, "entity_type": node.entity_type, "entity_id": node.entity_id},
    )
    return node


def append_ledger_entry(
    db: Session,
    evidence_node_id: int,
    event_type: str,
    payload: Any = None,
    clock=None,
    commit: bool = True,
) -> ImmutableLedgerEntry:
    """Append one immutable fact to an existing evidence node."""
    clock = clock or system_clock
    if db.get(EvidenceNode, evidence_node_id) is None:
        raise EntityNotFoundError("EvidenceNode", evidence_node_id)

    entry = ImmutableLedgerEntry(
        evidence_node_id=evidence_node_id,
        event_type=_require("event_type", event_type),
        payload=to_jsonable(payload if payload is not None else {}),
        created_at=clock.now(),
    )
    db.add(entry)
    try:
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Could not append ledger entry: {exc}") from exc

    if commit:
        commit_or_raise(db)
        db.refresh(entry)

    return entry


def _resolve_entity_id(entity_id, result) -> str:
    """The real target id: given up front, computed from the result, or read off it."""
    if callable(entity_id):
        entity_id = entity_id(result)
    elif entity_id is None or entity_id == PENDING_ENTITY_ID:
        if isinstance(result, dict):
            entity_id = result.get("id")
        else:
            entity_id = getattr(result, "id", None)

    if entity_id is None or entity_id == PENDING_ENTITY_ID or str(entity_id).strip() == "":
        raise ValidationError("entity_id could not be resolved from the action result")
    return str(entity_id)


def with_evidence(
    db: Session,
    *,
    entity_type: str,
    entity_id: Union[str, int, Callable[[Any], Any], None],
    actor_type: Union[ActorType, str],
    actor_id: str,
    event_type: str,
    payload: Any,
    action: Callable[[Session], R],
    clock=None,
    timeout: Optional[float] = None,
) -> R:
    """
    Run a domain mutation and record its evidence in one transaction.

    The action receives the session and must not commit. After it returns, one
    evidence node and one ledger entry are written and everything commits
    together. If the action, either evidence write, the deadline or the commit
    fails, the whole transaction is rolled back and a single error reaches the
    caller.

    entity_id may be PENDING_ENTITY_ID when the action creates the entity; the
    id is then read from the action's result. A callable receives the result
    and returns the id.

    Returns the action's result, not the evidence.
    """
    clock = clock or system_clock
    started = time.monotonic()

    try:
        result = action(db)
        db.flush()

        node = write_evidence_node(
            db,
            entity_type=entity_type,
            entity_id=_resolve_entity_id(entity_id, result),
            actor_type=actor_type,
            actor_id=actor_id,
            clock=clock,
            commit=False,
        )
        append_ledger_entry(db, node.id, event_type, payload, clock=clock, commit=False)

        if timeout is not None and time.monotonic() - started > timeout:
            raise OperationTimeoutError(f"{event_type} exceeded its {timeout}s deadline")

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("transaction rolled back", extra={"event_type": event_type, "error": str(exc)})
        raise StorageError(f"{event_type} failed: {exc}") from exc
    except Exception as exc:
        db.rollback()
        logger.warning("transaction rolled back", extra={"event_type": event_type, "error": str(exc)})
        raise

    return result


# Read side

def get_evidence_node(db: Session, evidence_node_id: int) -> EvidenceNode:
    node = db.get(EvidenceNode, evidence_node_id)
    if node is None:
        raise EntityNotFoundError("EvidenceNode", evidence_node_id)
    return node


def list_ledger_entries(
    db: Session, limit: int = 100, event_type: Optional[str] = None
) -> List[ImmutableLedgerEntry]:
    """Most recent ledger entries first."""
    query = db.query(ImmutableLedgerEntry)
    if event_type:
        query = query.filter(ImmutableLedgerEntry.event_type == event_type)
    return query.order_by(
        ImmutableLedgerEntry.created_at.desc(), ImmutableLedgerEntry.id.desc()
    ).limit(limit).all()


def get_entity_history(
    db: Session, entity_type: str, entity_id, up_to: Optional[datetime] = None
) -> List[ImmutableLedgerEntry]:
    """
    The canonical history of one entity: its ledger entries in creation order.

    With up_to, only entries written at or before that instant.
    """
    query = (
        db.query(ImmutableLedgerEntry)
        .join(EvidenceNode, ImmutableLedgerEntry.evidence_node_id == EvidenceNode.id)
        .filter(EvidenceNode.entity_type == entity_type, EvidenceNode.entity_id == str(entity_id))
    )
    if up_to is not None:
        query = query.filter(ImmutableLedgerEntry.created_at <= ensure_utc(up_to))
    return query.order_by(ImmutableLedgerEntry.created_at, ImmutableLedgerEntry.id).all()
