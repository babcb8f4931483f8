"""Domain models - employees, their certifications, and the state derived from them."""
from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from railcert.clock import utcnow
from railcert.database import Base, UTCDateTime
from railcert.models.enums import CertificationStatus, EnforcementActionType, PresetCategory
from railcert.models.evidence import EvidenceNode


class Employee(Base):
    """A contractor employee who holds certifications."""
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    organization_id = Column(String, nullable=True, index=True)
    created_by_user_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    certifications = relationship(
        "Certification", back_populates="employee", order_by="Certification.id"
    )


class Certification(Base):
    """
    One required credential instance for one employee.

    Invariants:
    - Logically immutable: a correction creates a new row with correction_of_id
      pointing at the version it supersedes; the original is never edited
    - A version has at most one successor (unique correction_of_id)
    - status is a cache of the derived status, never the source of truth
    """
    __tablename__ = "certifications"
    __table_args__ = (
        UniqueConstraint("correction_of_id", name="uq_certifications_correction_of"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    certification_type = Column(String, nullable=False, index=True)
    issuing_authority = Column(String, nullable=True)
    preset_category = Column(SQLEnum(PresetCategory), nullable=True)

    # Proof and dates
    certificate_media_id = Column(String, nullable=True)
    issue_date = Column(UTCDateTime, nullable=True)
    expiration_date = Column(UTCDateTime, nullable=True)
    is_non_expiring = Column(Boolean, nullable=False, default=False)

    status = Column(
        SQLEnum(CertificationStatus), nullable=False, default=CertificationStatus.INCOMPLETE
    )

    # Revocation
    revoked_at = Column(UTCDateTime, nullable=True)
    revoked_reason = Column(String, nullable=True)
    revoked_by_user_id = Column(String, nullable=True)

    # Correction chain
    correction_of_id = Column(Integer, ForeignKey("certifications.id"), nullable=True)
    correction_reason = Column(String, nullable=True)
    corrected_by_user_id = Column(String, nullable=True)

    created_by_user_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    employee = relationship("Employee", back_populates="certifications")
    correction_of = relationship("Certification", remote_side=[id], foreign_keys=[correction_of_id])
    enforcement = relationship("CertificationEnforcement", back_populates="certification", uselist=False)


class CertificationEnforcement(Base):
    """
    Derived block/allow state, one row per certification.

    Invariants:
    - Never authored directly; always recomputed from the certification and the clock
    """
    __tablename__ = "certification_enforcements"

    certification_id = Column(Integer, ForeignKey("certifications.id"), primary_key=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    blocked_reason = Column(String, nullable=True)
    evaluated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    certification = relationship("Certification", back_populates="enforcement")


class EnforcementAction(Base):
    """
    Log of every block decision.

    Invariants:
    - Written once per blocked evaluation, never deduplicated
    """
    __tablename__ = "enforcement_actions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    action_type = Column(SQLEnum(EnforcementActionType), nullable=False)
    target_type = Column(String, nullable=False)  # "certification", "employee", ...
    target_id = Column(String, nullable=False, index=True)
    reason = Column(String, nullable=False)
    triggered_by = Column(String, nullable=False)  # job name or actor id
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)


class AuditCase(Base):
    """A named investigation that exposes a chosen subset of evidence."""
    __tablename__ = "audit_cases"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    organization_id = Column(String, nullable=True, index=True)
    created_by_user_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    evidence_links = relationship("AuditEvidenceLink", back_populates="audit_case", order_by="AuditEvidenceLink.id")


class AuditEvidenceLink(Base):
    """
    Scopes which evidence an audit case exposes.

    Invariants:
    - Creatable, never removed
    - One link per (audit case, evidence node)
    """
    __tablename__ = "audit_evidence_links"
    __table_args__ = (
        UniqueConstraint("audit_case_id", "evidence_node_id", name="uq_audit_evidence_link"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    audit_case_id = Column(Integer, ForeignKey("audit_cases.id"), nullable=False, index=True)
    evidence_node_id = Column(Integer, ForeignKey("evidence_nodes.id"), nullable=False)
    attached_by_user_id = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    audit_case = relationship("AuditCase", back_populates="evidence_links")
    evidence_node = relationship(EvidenceNode)
