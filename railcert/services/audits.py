"""
Audit cases.

An audit case exposes only the evidence explicitly linked to it. Links are
created, never removed.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from railcert.clock import system_clock
from railcert.errors import EntityNotFoundError, ValidationError
from railcert.models.domain import AuditCase, AuditEvidenceLink
from railcert.models.enums import ActorType
from railcert.models.evidence import EntityType, EventType, EvidenceNode
from railcert.services.evidence import PENDING_ENTITY_ID, get_evidence_node, with_evidence

logger = logging.getLogger(__name__)


def get_audit_case(db: Session, audit_case_id: int) -> AuditCase:
    audit_case = db.get(AuditCase, audit_case_id)
    if audit_case is None:
        raise EntityNotFoundError("AuditCase", audit_case_id)
    return audit_case


def create_audit_case(
    db: Session,
    title: str,
    created_by_user_id: str,
    description: Optional[str] = None,
    organization_id: Optional[str] = None,
    clock=None,
) -> AuditCase:
    clock = clock or system_clock
    if not title or not title.strip():
        raise ValidationError("title is required")

    def action(tx: Session) -> AuditCase:
        audit_case = AuditCase(
            title=title,
            description=description,
            organization_id=organization_id,
            created_by_user_id=created_by_user_id,
            created_at=clock.now(),
        )
        tx.add(audit_case)
        return audit_case

    return with_evidence(
        db,
        entity_type=EntityType.AUDIT_CASE,
        entity_id=PENDING_ENTITY_ID,
        actor_type=ActorType.USER,
        actor_id=created_by_user_id,
        event_type=EventType.AUDIT_CASE_CREATED,
        payload={"title": title, "description": description, "organization_id": organization_id},
        action=action,
        clock=clock,
    )


def link_evidence_to_audit(
    db: Session,
    audit_case_id: int,
    evidence_node_id: int,
    attached_by_user_id: str,
    clock=None,
) -> AuditEvidenceLink:
    """Expose one evidence node to an audit case. Linking the same node twice is refused."""
    clock = clock or system_clock
    get_audit_case(db, audit_case_id)
    get_evidence_node(db, evidence_node_id)

    existing = db.query(AuditEvidenceLink).filter(
        AuditEvidenceLink.audit_case_id == audit_case_id,
        AuditEvidenceLink.evidence_node_id == evidence_node_id,
    ).first()
    if existing is not None:
        raise ValidationError(
            f"Evidence node {evidence_node_id} is already linked to audit case {audit_case_id}"
        )

    def action(tx: Session) -> AuditEvidenceLink:
        link = AuditEvidenceLink(
            audit_case_id=audit_case_id,
            evidence_node_id=evidence_node_id,
            attached_by_user_id=attached_by_user_id,
            created_at=clock.now(),
        )
        tx.add(link)
        return link

    link = with_evidence(
        db,
        entity_type=EntityType.AUDIT_EVIDENCE_LINK,
        entity_id=PENDING_ENTITY_ID,
        actor_type=ActorType.USER,
        actor_id=attached_by_user_id,
        event_type=EventType.EVIDENCE_ATTACHED_TO_AUDIT,
        payload={"audit_case_id": audit_case_id, "evidence_node_id": evidence_node_id},
        action=action,
        clock=clock,
    )
    logger.info(
        "evidence attached to audit case",
        extra={"audit_case_id": audit_case_id, "evidence_node_id": evidence_node_id},
    )
    return link


def get_audit_evidence(db: Session, audit_case_id: int) -> List[EvidenceNode]:
    """The evidence nodes an audit case exposes, in the order they were linked."""
    get_audit_case(db, audit_case_id)
    return (
        db.query(EvidenceNode)
        .join(AuditEvidenceLink, AuditEvidenceLink.evidence_node_id == EvidenceNode.id)
        .filter(AuditEvidenceLink.audit_case_id == audit_case_id)
        .order_by(AuditEvidenceLink.id)
        .all()
    )
