"""
Evidence and ledger models - the append-only record of every audited action.

Neither table is ever updated or deleted; see railcert.hard_locks.
"""
from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, Enum as SQLEnum
from sqlalchemy.orm import relationship

from railcert.clock import utcnow
from railcert.database import Base, UTCDateTime
from railcert.models.enums import ActorType


class EvidenceNode(Base):
    """
    One record per audited action, tying an actor to a target entity.

    Invariants:
    - Immutable after creation
    - archived/archived_at are set by the retention sweep only, never cleared
    - Never deleted
    """
    __tablename__ = "evidence_nodes"
    __append_only__ = True
    __archivable__ = True

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entity_type = Column(String, nullable=False, index=True)  # e.g. "Certification"
    entity_id = Column(String, nullable=False, index=True)
    actor_type = Column(SQLEnum(ActorType), nullable=False)
    actor_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(UTCDateTime, nullable=True)

    ledger_entries = relationship(
        "ImmutableLedgerEntry",
        back_populates="evidence_node",
        order_by=lambda: [ImmutableLedgerEntry.created_at, ImmutableLedgerEntry.id],
    )


class ImmutableLedgerEntry(Base):
    """
    One fact appended under an evidence node.

    Invariants:
    - Once written, never edited or deleted
    - Creation-time order within a node is the canonical history of the entity
    """
    __tablename__ = "ledger_entries"
    __append_only__ = True

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    evidence_node_id = Column(Integer, ForeignKey("evidence_nodes.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)  # e.g. "certification_expired"
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    evidence_node = relationship("EvidenceNode", back_populates="ledger_entries")


class EventType:
    """Ledger event type constants."""
    # Employees
    EMPLOYEE_ONBOARDED = "employee_onboarded"

    # Certification lifecycle
    CERTIFICATION_CREATED = "certification_created"
    CERTIFICATION_PROOF_RECORDED = "certification_proof_recorded"
    CERTIFICATION_REVOKED = "certification_revoked"
    CERTIFICATION_EXPIRED = "certification_expired"
    CERTIFICATION_CORRECTED = "certification_corrected"

    # Enforcement
    CERTIFICATION_GATE_REFUSED = "certification_gate_refused"

    # Audits and regulator access
    AUDIT_CASE_CREATED = "audit_case_created"
    EVIDENCE_ATTACHED_TO_AUDIT = "evidence_attached_to_audit"
    REGULATOR_POINT_IN_TIME_QUERY = "regulator_point_in_time_query"

    # Retention
    EVIDENCE_ARCHIVED = "evidence_archived"


class EntityType:
    """Entity type tags recorded on evidence nodes."""
    EMPLOYEE = "Employee"
    CERTIFICATION = "Certification"
    AUDIT_CASE = "AuditCase"
    AUDIT_EVIDENCE_LINK = "AuditEvidenceLink"
    REGULATOR_ACCESS = "RegulatorAccess"
    EVIDENCE_NODE = "EvidenceNode"
