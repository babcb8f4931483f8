"""
Periodic batch sweeps.

Each sweep uses the same primitives as interactive requests (with_evidence,
the enforcer), so no write skips the ledger. Re-running a sweep on unchanged
state makes no further state transitions; blocked evaluations still append
enforcement actions, as they do everywhere.

Run one from the command line:

    python -m railcert.services.sweeps expiration
"""
import argparse
import logging
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from railcert.clock import system_clock
from railcert.config import settings
from railcert.models.domain import Certification
from railcert.models.enums import ActorType, CertificationStatus
from railcert.models.evidence import EntityType, EventType, EvidenceNode
from railcert.services.certifications import current_certifications_query, expire_certification
from railcert.services.enforcement import CertificationEnforcer
from railcert.services.evidence import with_evidence

logger = logging.getLogger(__name__)

EXPIRATION_JOB = "certification-expiration-job"
ENFORCEMENT_JOB = "enforcement-sweep"
ARCHIVAL_JOB = "archival_job"


def run_certification_expiration_sweep(db: Session, clock=None) -> dict:
    """Mark expired certifications FAIL and re-evaluate their enforcement."""
    clock = clock or system_clock
    now = clock.now()
    logger.info("expiration sweep started", extra={"job": EXPIRATION_JOB})

    candidates = (
        current_certifications_query(db)
        .filter(
            Certification.status != CertificationStatus.FAIL,
            Certification.is_non_expiring.is_(False),
            Certification.certificate_media_id.isnot(None),
            Certification.issue_date.isnot(None),
            Certification.expiration_date < now,
        )
        .order_by(Certification.id)
        .all()
    )

    enforcer = CertificationEnforcer(db, clock=clock)
    expired = []
    for cert in candidates:
        expire_certification(db, cert.id, actor_id=EXPIRATION_JOB, clock=clock)
        enforcer.evaluate_certification_enforcement(cert.id, triggered_by=EXPIRATION_JOB)
        expired.append(cert.id)

    logger.info("expiration sweep finished", extra={"job": EXPIRATION_JOB, "expired_count": len(expired)})
    return {"expired": expired}


def run_enforcement_sweep(db: Session, clock=None) -> dict:
    """Re-evaluate every current certification."""
    clock = clock or system_clock
    logger.info("enforcement sweep started", extra={"job": ENFORCEMENT_JOB})

    enforcer = CertificationEnforcer(db, clock=clock)
    blocked = 0
    ids = [cert.id for cert in current_certifications_query(db).order_by(Certification.id).all()]
    for cert_id in ids:
        if enforcer.evaluate_certification_enforcement(cert_id, triggered_by=ENFORCEMENT_JOB).is_blocked:
            blocked += 1

    logger.info(
        "enforcement sweep finished",
        extra={"job": ENFORCEMENT_JOB, "evaluated": len(ids), "blocked": blocked},
    )
    return {"evaluated": len(ids), "blocked": blocked}


def run_archival_retention(
    db: Session, retention_days: Optional[int] = None, batch_size: int = 1000, clock=None
) -> dict:
    """
    Flag evidence older than the retention period as archived.

    Evidence is never deleted. One batch commits together with a single
    evidence node listing the archived ids.
    """
    clock = clock or system_clock
    days = settings.evidence_retention_days if retention_days is None else retention_days
    now = clock.now()
    cutoff = now - timedelta(days=days)
    logger.info("archival sweep started", extra={"job": ARCHIVAL_JOB, "cutoff": cutoff.isoformat()})

    nodes = (
        db.query(EvidenceNode)
        .filter(EvidenceNode.created_at < cutoff, EvidenceNode.archived.is_(False))
        .order_by(EvidenceNode.id)
        .limit(batch_size)
        .all()
    )
    if not nodes:
        return {"archived": 0}

    node_ids = [node.id for node in nodes]

    def action(tx: Session):
        for node in nodes:
            node.archived = True
            node.archived_at = now
        return node_ids

    with_evidence(
        db,
        entity_type=EntityType.EVIDENCE_NODE,
        entity_id="archival_retention",
        actor_type=ActorType.SYSTEM,
        actor_id=ARCHIVAL_JOB,
        event_type=EventType.EVIDENCE_ARCHIVED,
        payload={"archived_node_ids": node_ids, "cutoff": cutoff, "retention_days": days},
        action=action,
        clock=clock,
    )
    logger.info("archival sweep finished", extra={"job": ARCHIVAL_JOB, "archived": len(node_ids)})
    return {"archived": len(node_ids)}


JOBS = {
    "expiration": run_certification_expiration_sweep,
    "enforcement": run_enforcement_sweep,
    "archival": run_archival_retention,
}


def run_all_jobs(db: Session, clock=None) -> dict:
    return {name: job(db, clock=clock) for name, job in JOBS.items()}


def main(argv=None) -> int:
    from railcert.database import SessionLocal, init_db
    from railcert.logging_config import configure_logging

    parser = argparse.ArgumentParser(description="Run compliance batch sweeps.")
    parser.add_argument("job", choices=sorted(JOBS) + ["all"])
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, json_format=settings.log_json)
    init_db()
    db = SessionLocal()
    try:
        if args.job == "all":
            run_all_jobs(db)
        else:
            JOBS[args.job](db)
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
