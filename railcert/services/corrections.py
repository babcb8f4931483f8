"""
Correction chain for certifications.

A correction never edits the version it corrects. It creates a new row whose
correction_of_id points at the previous version, so the full history stays
visible:

    A  <-  B  <-  C      (B corrects A, C corrects B)

Only the head of a chain can be corrected. The original row is locked for the
duration of the correction and correction_of_id is unique, so two racing
corrections of the same version cannot both commit.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from railcert.clock import ensure_utc, system_clock
from railcert.errors import (
    CorrectionConflictError,
    EntityNotFoundError,
    IntegrityViolation,
    StorageError,
    ValidationError,
)
from railcert.models.domain import Certification
from railcert.models.enums import ActorType
from railcert.models.evidence import EntityType, EventType
from railcert.services.certifications import find_successor, get_certification
from railcert.services.evidence import PENDING_ENTITY_ID, with_evidence
from railcert.services.status import derive_certification_status

logger = logging.getLogger(__name__)

# Fields a correction may override
CORRECTABLE_FIELDS = (
    "certification_type",
    "issuing_authority",
    "certificate_media_id",
    "issue_date",
    "expiration_date",
    "is_non_expiring",
)

# Fields carried from the corrected version when not overridden
CARRIED_FIELDS = CORRECTABLE_FIELDS + (
    "employee_id",
    "preset_category",
    "revoked_at",
    "revoked_reason",
    "revoked_by_user_id",
)

_DATETIME_FIELDS = {"issue_date", "expiration_date"}


class CorrectionResult(NamedTuple):
    original: Certification
    corrected: Certification


def _normalize(new_data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(new_data) - set(CORRECTABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be corrected: {', '.join(unknown)}")
    if not new_data:
        raise ValidationError("A correction must change at least one field")
    normalized = {}
    for key, value in new_data.items():
        if key in _DATETIME_FIELDS and isinstance(value, datetime):
            value = ensure_utc(value)
        normalized[key] = value
    return normalized


def _lost_correction_race(exc: StorageError) -> bool:
    """True when a write failed on the one-successor-per-version constraint."""
    cause = exc.__cause__
    while cause is not None:
        if isinstance(cause, IntegrityError):
            return "correction_of" in str(cause.orig)
        cause = cause.__cause__
    return False


def correct_certification(
    db: Session,
    original_id: int,
    correction_reason: str,
    corrected_by_user_id: str,
    new_data: Dict[str, Any],
    expected_head_id: Optional[int] = None,
    clock=None,
) -> CorrectionResult:
    """
    Supersede a certification version with a corrected copy.

    expected_head_id, when given, must equal original_id: it lets a caller
    assert it is correcting the version it last saw.
    """
    clock = clock or system_clock
    if not correction_reason or not correction_reason.strip():
        raise ValidationError("A correction reason is required")
    overrides = _normalize(new_data or {})

    original = (
        db.query(Certification)
        .filter(Certification.id == original_id)
        .with_for_update()
        .one_or_none()
    )
    if original is None:
        raise EntityNotFoundError("Certification", original_id)

    successor = find_successor(db, original)
    if successor is not None:
        head = get_correction_chain(db, original.id)[-1]
        raise CorrectionConflictError(
            f"Certification {original.id} has already been corrected. "
            f"Use the latest version in the chain ({head.id}).",
            head_id=head.id,
        )
    if expected_head_id is not None and expected_head_id != original.id:
        raise CorrectionConflictError(
            f"Expected head {expected_head_id} but correcting {original.id}",
            head_id=original.id,
        )

    changes = {
        field: {"from": getattr(original, field), "to": value}
        for field, value in overrides.items()
        if getattr(original, field) != value
    }

    def action(tx: Session) -> Certification:
        values = {field: getattr(original, field) for field in CARRIED_FIELDS}
        values.update(overrides)
        corrected = Certification(
            **values,
            correction_of_id=original.id,
            correction_reason=correction_reason,
            corrected_by_user_id=corrected_by_user_id,
            created_by_user_id=corrected_by_user_id,
            created_at=clock.now(),
        )
        corrected.status = derive_certification_status(corrected, clock=clock)
        tx.add(corrected)
        return corrected

    try:
        corrected = with_evidence(
            db,
            entity_type=EntityType.CERTIFICATION,
            entity_id=PENDING_ENTITY_ID,
            actor_type=ActorType.USER,
            actor_id=corrected_by_user_id,
            event_type=EventType.CERTIFICATION_CORRECTED,
            payload={
                "original_id": original.id,
                "reason": correction_reason,
                "changes": changes,
            },
            action=action,
            clock=clock,
        )
    except StorageError as exc:
        if not _lost_correction_race(exc):
            raise
        head = get_correction_chain(db, original_id)[-1]
        logger.info("correction lost race", extra={"original_id": original_id, "head_id": head.id})
        raise CorrectionConflictError(
            f"Certification {original_id} was corrected concurrently. "
            f"Use the latest version in the chain ({head.id}).",
            head_id=head.id,
        ) from exc
    logger.info(
        "certification corrected",
        extra={"original_id": original_id, "corrected_id": corrected.id},
    )
    return CorrectionResult(original=original, corrected=corrected)


def get_correction_chain(db: Session, certification_id: int) -> List[Certification]:
    """
    Every version in the chain containing certification_id, oldest first.

    Walks correction_of_id up to the root, then successors down to the head.
    A cycle means the chain was written outside this module and is fatal.
    """
    start = get_certification(db, certification_id)
    chain = [start]
    visited = {start.id}

    current = start
    while current.correction_of_id is not None:
        previous = db.get(Certification, current.correction_of_id)
        if previous is None:
            raise IntegrityViolation(
                f"Certification {current.id} corrects missing certification {current.correction_of_id}"
            )
        if previous.id in visited:
            raise IntegrityViolation(f"Circular reference detected in correction chain at {previous.id}")
        visited.add(previous.id)
        chain.insert(0, previous)
        current = previous

    current = start
    while True:
        successor = find_successor(db, current)
        if successor is None:
            break
        if successor.id in visited:
            raise IntegrityViolation(f"Circular reference detected in correction chain at {successor.id}")
        visited.add(successor.id)
        chain.append(successor)
        current = successor

    return chain


def get_current_certification(db: Session, certification_id: int) -> Certification:
    """The head of the chain: the version no correction supersedes."""
    return get_correction_chain(db, certification_id)[-1]


def get_certification_as_of_date(db: Session, certification_id: int, as_of: datetime) -> Optional[Certification]:
    """The version of a chain that was current at as_of, or None if none existed yet."""
    as_of = ensure_utc(as_of)
    result = None
    for version in get_correction_chain(db, certification_id):
        if version.created_at <= as_of:
            result = version
        else:
            break
    return result
