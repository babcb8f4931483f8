"""
Certification lifecycle: onboarding, proof, revocation, expiration, and reporting.

Every write goes through with_evidence. Rows are never edited once their
facts are established; changing established facts is a correction (see
railcert.services.corrections).
"""
import logging
import math
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import exists
from sqlalchemy.orm import Session, aliased

from railcert.clock import ensure_utc, system_clock
from railcert.config import settings
from railcert.errors import CorrectionConflictError, EntityNotFoundError, ValidationError
from railcert.models.domain import Certification, Employee
from railcert.models.enums import ActorType, CertificationStatus, PresetCategory, normalize_status
from railcert.models.evidence import EntityType, EventType
from railcert.presets import get_required_certifications
from railcert.services.evidence import PENDING_ENTITY_ID, with_evidence
from railcert.services.status import (
    derive_certification_status,
    facts_of,
    get_failure_reason,
    has_proof,
)

logger = logging.getLogger(__name__)


def get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise EntityNotFoundError("Employee", employee_id)
    return employee


def get_certification(db: Session, certification_id: int) -> Certification:
    cert = db.get(Certification, certification_id)
    if cert is None:
        raise EntityNotFoundError("Certification", certification_id)
    return cert


def find_successor(db: Session, cert: Certification) -> Optional[Certification]:
    """The correction that supersedes this version, if any."""
    return db.query(Certification).filter(Certification.correction_of_id == cert.id).first()


def current_certifications_query(db: Session):
    """Certifications that no correction has superseded."""
    successor = aliased(Certification)
    return db.query(Certification).filter(
        ~exists().where(successor.correction_of_id == Certification.id)
    )


def get_current_certifications(db: Session, employee_id: int) -> List[Certification]:
    return (
        current_certifications_query(db)
        .filter(Certification.employee_id == employee_id)
        .order_by(Certification.id)
        .all()
    )


def list_certifications(
    db: Session,
    employee_id: int,
    status=None,
    include_superseded: bool = False,
    clock=None,
) -> List[Certification]:
    """
    An employee's certifications, optionally filtered by derived status.

    status accepts the canonical names (PASS/FAIL/INCOMPLETE) and the legacy
    spellings (valid, expiring, expired, revoked, pending).
    """
    employee = get_employee(db, employee_id)
    if include_superseded:
        certs = list(employee.certifications)
    else:
        certs = get_current_certifications(db, employee_id)
    if status is None:
        return certs

    try:
        wanted = normalize_status(status)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    now = (clock or system_clock).now()
    return [cert for cert in certs if derive_certification_status(cert, as_of=now) == wanted]


def _require_head(db: Session, cert: Certification) -> None:
    successor = find_successor(db, cert)
    if successor is not None:
        raise CorrectionConflictError(
            f"Certification {cert.id} has been superseded by {successor.id}. "
            "Use the latest version in the chain.",
            head_id=successor.id,
        )


def onboard_employee(
    db: Session,
    first_name: str,
    last_name: str,
    created_by_user_id: str,
    email: Optional[str] = None,
    organization_id: Optional[str] = None,
    categories: Optional[List[PresetCategory]] = None,
    clock=None,
) -> Employee:
    """
    Create an employee and one INCOMPLETE certification per required preset.

    Employee and certifications commit with a single evidence node.
    """
    clock = clock or system_clock
    presets = get_required_certifications(categories)

    def action(tx: Session) -> Employee:
        now = clock.now()
        employee = Employee(
            first_name=first_name,
            last_name=last_name,
            email=email,
            organization_id=organization_id,
            created_by_user_id=created_by_user_id,
            created_at=now,
        )
        tx.add(employee)
        tx.flush()
        for preset in presets:
            tx.add(Certification(
                employee_id=employee.id,
                certification_type=preset.name,
                issuing_authority=preset.issuing_authority,
                preset_category=preset.category,
                is_non_expiring=not preset.requires_expiration,
                status=CertificationStatus.INCOMPLETE,
                created_by_user_id=created_by_user_id,
                created_at=now,
            ))
        return employee

    employee = with_evidence(
        db,
        entity_type=EntityType.EMPLOYEE,
        entity_id=PENDING_ENTITY_ID,
        actor_type=ActorType.USER,
        actor_id=created_by_user_id,
        event_type=EventType.EMPLOYEE_ONBOARDED,
        payload={
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "organization_id": organization_id,
            "certification_types": [p.name for p in presets],
        },
        action=action,
        clock=clock,
    )
    logger.info("employee onboarded", extra={"employee_id": employee.id, "preset_count": len(presets)})
    return employee


def create_certification(
    db: Session,
    employee_id: int,
    certification_type: str,
    created_by_user_id: str,
    issuing_authority: Optional[str] = None,
    certificate_media_id: Optional[str] = None,
    issue_date: Optional[datetime] = None,
    expiration_date: Optional[datetime] = None,
    is_non_expiring: bool = False,
    clock=None,
) -> Certification:
    """Create a standalone certification; its status cache is derived at creation."""
    clock = clock or system_clock
    get_employee(db, employee_id)
    if not certification_type or not certification_type.strip():
        raise ValidationError("certification_type is required")

    def action(tx: Session) -> Certification:
        cert = Certification(
            employee_id=employee_id,
            certification_type=certification_type,
            issuing_authority=issuing_authority,
            certificate_media_id=certificate_media_id,
            issue_date=ensure_utc(issue_date),
            expiration_date=ensure_utc(expiration_date),
            is_non_expiring=is_non_expiring,
            created_by_user_id=created_by_user_id,
            created_at=clock.now(),
        )
        cert.status = derive_certification_status(cert, clock=clock)
        tx.add(cert)
        return cert

    return with_evidence(
        db,
        entity_type=EntityType.CERTIFICATION,
        entity_id=PENDING_ENTITY_ID,
        actor_type=ActorType.USER,
        actor_id=created_by_user_id,
        event_type=EventType.CERTIFICATION_CREATED,
        payload={
            "employee_id": employee_id,
            "certification_type": certification_type,
            "issuing_authority": issuing_authority,
            "certificate_media_id": certificate_media_id,
            "issue_date": ensure_utc(issue_date),
            "expiration_date": ensure_utc(expiration_date),
            "is_non_expiring": is_non_expiring,
        },
        action=action,
        clock=clock,
    )


def record_certification_proof(
    db: Session,
    certification_id: int,
    recorded_by_user_id: str,
    certificate_media_id: str,
    issue_date: datetime,
    expiration_date: Optional[datetime] = None,
    is_non_expiring: Optional[bool] = None,
    actor_type: ActorType = ActorType.USER,
    clock=None,
) -> Certification:
    """
    Attach proof and dates to a certification that has none yet.

    The ledger payload keeps the facts as they were before, so point-in-time
    queries can rewind past this write.
    """
    clock = clock or system_clock
    cert = get_certification(db, certification_id)
    _require_head(db, cert)
    if has_proof(cert):
        raise ValidationError(
            f"Certification {cert.id} already has proof. Submit a correction to change it."
        )
    if not certificate_media_id:
        raise ValidationError("certificate_media_id is required")
    if issue_date is None:
        raise ValidationError("issue_date is required")

    previous = facts_of(cert)

    def action(tx: Session) -> Certification:
        cert.certificate_media_id = certificate_media_id
        cert.issue_date = ensure_utc(issue_date)
        if expiration_date is not None:
            cert.expiration_date = ensure_utc(expiration_date)
        if is_non_expiring is not None:
            cert.is_non_expiring = is_non_expiring
        cert.status = derive_certification_status(cert, clock=clock)
        return cert

    # Payload is evaluated before the action runs, so compute "current" up front
    current = facts_of(cert)
    current.certificate_media_id = certificate_media_id
    current.issue_date = ensure_utc(issue_date)
    if expiration_date is not None:
        current.expiration_date = ensure_utc(expiration_date)
    if is_non_expiring is not None:
        current.is_non_expiring = is_non_expiring

    return with_evidence(
        db,
        entity_type=EntityType.CERTIFICATION,
        entity_id=cert.id,
        actor_type=actor_type,
        actor_id=recorded_by_user_id,
        event_type=EventType.CERTIFICATION_PROOF_RECORDED,
        payload={
            "previous": asdict(previous),
            "current": asdict(current),
            "status": derive_certification_status(current, clock=clock),
        },
        action=action,
        clock=clock,
    )


def revoke_certification(
    db: Session,
    certification_id: int,
    reason: str,
    revoked_by_user_id: str,
    clock=None,
) -> Certification:
    """Revoke a certification. Derived status becomes FAIL from the revocation instant on."""
    clock = clock or system_clock
    cert = get_certification(db, certification_id)
    _require_head(db, cert)
    if cert.revoked_at is not None:
        raise ValidationError(f"Certification {cert.id} is already revoked")
    if not reason or not reason.strip():
        raise ValidationError("A revocation reason is required")

    now = clock.now()

    def action(tx: Session) -> Certification:
        cert.revoked_at = now
        cert.revoked_reason = reason
        cert.revoked_by_user_id = revoked_by_user_id
        cert.status = CertificationStatus.FAIL
        return cert

    return with_evidence(
        db,
        entity_type=EntityType.CERTIFICATION,
        entity_id=cert.id,
        actor_type=ActorType.USER,
        actor_id=revoked_by_user_id,
        event_type=EventType.CERTIFICATION_REVOKED,
        payload={
            "reason": reason,
            "revoked_at": now,
            "previous": {"revoked_at": None, "revoked_reason": None},
        },
        action=action,
        clock=clock,
    )


def expire_certification(
    db: Session,
    certification_id: int,
    actor_id: str = "certification-expiration-job",
    clock=None,
) -> Certification:
    """
    Move the status cache of an expired certification to FAIL.

    A certification whose cache already says FAIL is returned untouched.
    """
    clock = clock or system_clock
    cert = get_certification(db, certification_id)
    if cert.status == CertificationStatus.FAIL:
        return cert

    now = clock.now()
    if derive_certification_status(cert, as_of=now) != CertificationStatus.FAIL:
        raise ValidationError(f"Certification {cert.id} has not expired")

    def action(tx: Session) -> Certification:
        cert.status = CertificationStatus.FAIL
        return cert

    return with_evidence(
        db,
        entity_type=EntityType.CERTIFICATION,
        entity_id=cert.id,
        actor_type=ActorType.SYSTEM,
        actor_id=actor_id,
        event_type=EventType.CERTIFICATION_EXPIRED,
        payload={
            "certification_id": cert.id,
            "expiration_date": cert.expiration_date,
            "expired_at": now,
            "previous_status": cert.status,
        },
        action=action,
        clock=clock,
    )


def _days_until(expiration_date: Optional[datetime], now: datetime) -> Optional[int]:
    if expiration_date is None:
        return None
    return math.ceil((ensure_utc(expiration_date) - now).total_seconds() / 86400)


def get_certification_summary(
    db: Session, employee_id: int, expiring_soon_days: Optional[int] = None, clock=None
) -> dict:
    """Counts by derived status plus per-certification detail for one employee."""
    clock = clock or system_clock
    get_employee(db, employee_id)
    window = expiring_soon_days if expiring_soon_days is not None else settings.expiring_soon_days
    now = clock.now()
    horizon = now + timedelta(days=window)

    details = []
    counts = {status: 0 for status in CertificationStatus}
    expiring = 0
    for cert in get_current_certifications(db, employee_id):
        status = derive_certification_status(cert, as_of=now)
        counts[status] += 1
        if (
            status == CertificationStatus.PASS
            and not cert.is_non_expiring
            and cert.expiration_date is not None
            and ensure_utc(cert.expiration_date) <= horizon
        ):
            expiring += 1
        details.append({
            "id": cert.id,
            "certification_type": cert.certification_type,
            "status": status,
            "failure_reason": get_failure_reason(cert, as_of=now),
            "expiration_date": cert.expiration_date,
            "days_until_expiration": _days_until(cert.expiration_date, now),
        })

    return {
        "employee_id": employee_id,
        "total_certifications": len(details),
        "pass_count": counts[CertificationStatus.PASS],
        "fail_count": counts[CertificationStatus.FAIL],
        "incomplete_count": counts[CertificationStatus.INCOMPLETE],
        "expiring_within_window": expiring,
        "certifications": details,
    }


def get_expiring_certifications(db: Session, days_ahead: Optional[int] = None, clock=None) -> List[dict]:
    """Passing certifications whose expiration falls within the next days_ahead days."""
    clock = clock or system_clock
    window = days_ahead if days_ahead is not None else settings.expiring_soon_days
    now = clock.now()
    horizon = now + timedelta(days=window)

    certs = (
        current_certifications_query(db)
        .filter(
            Certification.is_non_expiring.is_(False),
            Certification.revoked_at.is_(None),
            Certification.expiration_date >= now,
            Certification.expiration_date <= horizon,
        )
        .order_by(Certification.expiration_date)
        .all()
    )
    return [
        {"certification": cert, "days_until_expiration": _days_until(cert.expiration_date, now)}
        for cert in certs
        if derive_certification_status(cert, as_of=now) == CertificationStatus.PASS
    ]
