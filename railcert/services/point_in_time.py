"""
Point-in-time reconstruction for regulator queries.

Answers "was this employee compliant on date D?" from immutable history alone:

- only certification versions created on or before D are considered, and a
  version superseded by a correction that also existed on D is dropped
- facts written after D are rewound using the "previous" block that
  fact-changing ledger entries carry
- status is derived with as_of = D, using the same rules as live status

Nothing stored is modified. The one write is the access log: every query
records who looked at which employee for which date (not what they saw).
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from railcert.clock import ensure_utc, system_clock
from railcert.config import settings
from railcert.errors import OperationTimeoutError
from railcert.models.domain import Certification
from railcert.models.enums import ActorType, CertificationStatus
from railcert.models.evidence import EntityType, EventType, ImmutableLedgerEntry
from railcert.services.certifications import get_employee
from railcert.services.evidence import (
    append_ledger_entry,
    commit_or_raise,
    get_entity_history,
    write_evidence_node,
)
from railcert.services.status import FACT_FIELDS, CertificationFacts, evaluate_status, facts_of

logger = logging.getLogger(__name__)

_DATETIME_FACTS = {"issue_date", "expiration_date", "revoked_at"}


@dataclass
class CertificationSnapshot:
    certification_id: int
    certification_type: str
    issuing_authority: Optional[str]
    status: CertificationStatus
    status_label: str
    compliant: bool
    failure_reason: Optional[str]
    issue_date: Optional[datetime]
    expiration_date: Optional[datetime]
    is_non_expiring: bool
    last_event_type: Optional[str] = None
    last_event_at: Optional[datetime] = None


@dataclass
class PointInTimeReport:
    employee_id: int
    as_of: datetime
    compliant: bool
    certifications: List[CertificationSnapshot] = field(default_factory=list)
    access_evidence_node_id: Optional[int] = None


def _parse_fact(name: str, value):
    if name in _DATETIME_FACTS and isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value))
    return value


def rewind_facts(cert: Certification, later_entries: List[ImmutableLedgerEntry]) -> CertificationFacts:
    """Undo, newest first, every fact change recorded after the point in time."""
    facts = facts_of(cert)
    for entry in reversed(later_entries):
        previous = entry.payload.get("previous") if isinstance(entry.payload, dict) else None
        if not isinstance(previous, dict):
            continue
        for name, value in previous.items():
            if name in FACT_FIELDS:
                setattr(facts, name, _parse_fact(name, value))
    return facts


def _status_label(status: CertificationStatus, facts: CertificationFacts, reason: Optional[str], as_of: datetime) -> str:
    if status == CertificationStatus.PASS:
        if facts.is_non_expiring:
            return "Valid - Non-expiring"
        return f"Valid - Expires {ensure_utc(facts.expiration_date).date().isoformat()}"
    if status == CertificationStatus.FAIL:
        revoked_at = ensure_utc(facts.revoked_at)
        if revoked_at is not None and revoked_at <= as_of:
            return "REVOKED"
        return "EXPIRED"
    return f"INCOMPLETE - {reason}"


def _versions_as_of(db: Session, employee_id: int, as_of: datetime) -> List[Certification]:
    rows = (
        db.query(Certification)
        .filter(Certification.employee_id == employee_id, Certification.created_at <= as_of)
        .order_by(Certification.id)
        .all()
    )
    superseded = {row.correction_of_id for row in rows if row.correction_of_id is not None}
    return [row for row in rows if row.id not in superseded]


def snapshot_certification(db: Session, cert: Certification, as_of: datetime) -> CertificationSnapshot:
    """Status of one certification version as it stood at as_of."""
    history = get_entity_history(db, EntityType.CERTIFICATION, cert.id)
    before = [entry for entry in history if entry.created_at <= as_of]
    after = [entry for entry in history if entry.created_at > as_of]

    facts = rewind_facts(cert, after)
    status, reason = evaluate_status(facts, as_of)
    last = before[-1] if before else None

    return CertificationSnapshot(
        certification_id=cert.id,
        certification_type=cert.certification_type,
        issuing_authority=cert.issuing_authority,
        status=status,
        status_label=_status_label(status, facts, reason, as_of),
        compliant=status == CertificationStatus.PASS,
        failure_reason=reason,
        issue_date=facts.issue_date,
        expiration_date=facts.expiration_date,
        is_non_expiring=bool(facts.is_non_expiring),
        last_event_type=last.event_type if last else None,
        last_event_at=last.created_at if last else None,
    )


def get_employee_certifications_as_of_date(
    db: Session,
    employee_id: int,
    as_of: datetime,
    regulator_id: str = "point_in_time_query",
    timeout: Optional[float] = None,
    clock=None,
) -> PointInTimeReport:
    """
    Reconstruct an employee's certifications and overall compliance at as_of.

    Overall compliance is the AND of every snapshot. If the deadline passes
    the query fails with OperationTimeoutError and writes nothing, not even
    the access log.
    """
    clock = clock or system_clock
    as_of = ensure_utc(as_of)
    timeout = settings.reconstruction_timeout_seconds if timeout is None else timeout
    started = time.monotonic()

    get_employee(db, employee_id)

    snapshots = []
    for cert in _versions_as_of(db, employee_id, as_of):
        if time.monotonic() - started > timeout:
            raise OperationTimeoutError(
                f"Point-in-time query for employee {employee_id} exceeded {timeout}s"
            )
        snapshots.append(snapshot_certification(db, cert, as_of))

    report = PointInTimeReport(
        employee_id=employee_id,
        as_of=as_of,
        compliant=all(s.compliant for s in snapshots),
        certifications=snapshots,
    )

    node = write_evidence_node(
        db,
        entity_type=EntityType.REGULATOR_ACCESS,
        entity_id=employee_id,
        actor_type=ActorType.REGULATOR,
        actor_id=regulator_id,
        clock=clock,
        commit=False,
    )
    append_ledger_entry(
        db,
        node.id,
        EventType.REGULATOR_POINT_IN_TIME_QUERY,
        {"employee_id": employee_id, "as_of": as_of, "query": "point_in_time"},
        clock=clock,
        commit=False,
    )
    report.access_evidence_node_id = node.id
    commit_or_raise(db)

    logger.info(
        "regulator point-in-time query",
        extra={"employee_id": employee_id, "as_of": as_of.isoformat(), "regulator_id": regulator_id},
    )
    return report
