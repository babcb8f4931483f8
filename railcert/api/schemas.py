"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from railcert.models.enums import (
    ActorType,
    CertificationStatus,
    EnforcementActionType,
    PresetCategory,
)


# Employee schemas
class EmployeeOnboard(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = None
    organization_id: Optional[str] = None
    created_by_user_id: str
    categories: Optional[List[PresetCategory]] = None


class EmployeeResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str]
    organization_id: Optional[str]
    created_by_user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


# Certification schemas
class CertificationCreate(BaseModel):
    employee_id: int
    certification_type: str = Field(..., min_length=1)
    created_by_user_id: str
    issuing_authority: Optional[str] = None
    certificate_media_id: Optional[str] = None
    issue_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    is_non_expiring: bool = False


class CertificationResponse(BaseModel):
    id: int
    employee_id: int
    certification_type: str
    issuing_authority: Optional[str]
    preset_category: Optional[PresetCategory]
    certificate_media_id: Optional[str]
    issue_date: Optional[datetime]
    expiration_date: Optional[datetime]
    is_non_expiring: bool
    status: CertificationStatus
    revoked_at: Optional[datetime]
    revoked_reason: Optional[str]
    correction_of_id: Optional[int]
    correction_reason: Optional[str]
    corrected_by_user_id: Optional[str]
    created_by_user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class CertificationProof(BaseModel):
    recorded_by_user_id: str
    certificate_media_id: str = Field(..., min_length=1)
    issue_date: datetime
    expiration_date: Optional[datetime] = None
    is_non_expiring: Optional[bool] = None


class CertificationRevoke(BaseModel):
    revoked_by_user_id: str
    reason: str = Field(..., min_length=1, max_length=500)


class CertificationCorrectionData(BaseModel):
    certification_type: Optional[str] = None
    issuing_authority: Optional[str] = None
    certificate_media_id: Optional[str] = None
    issue_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    is_non_expiring: Optional[bool] = None


class CertificationCorrect(BaseModel):
    corrected_by_user_id: str
    correction_reason: str = Field(..., min_length=1, max_length=500)
    new_data: CertificationCorrectionData
    expected_head_id: Optional[int] = None


class CorrectionResponse(BaseModel):
    original: CertificationResponse
    corrected: CertificationResponse


class CertificationStatusResponse(BaseModel):
    certification_id: int
    status: CertificationStatus
    failure_reason: Optional[str]
    as_of: datetime


class CertificationSummaryItem(BaseModel):
    id: int
    certification_type: str
    status: CertificationStatus
    failure_reason: Optional[str]
    expiration_date: Optional[datetime]
    days_until_expiration: Optional[int]


class CertificationSummaryResponse(BaseModel):
    employee_id: int
    total_certifications: int
    pass_count: int
    fail_count: int
    incomplete_count: int
    expiring_within_window: int
    certifications: List[CertificationSummaryItem]


# Enforcement schemas
class EnforcementEvaluate(BaseModel):
    triggered_by: str


class EnforcementResponse(BaseModel):
    is_blocked: bool
    blocked_reason: Optional[str]


class RequirementCheck(BaseModel):
    required_cert_types: List[str] = Field(..., min_length=1)
    triggered_by: str
    gate: EnforcementActionType = EnforcementActionType.WORK_WINDOW_BLOCK
    target_id: Optional[str] = None


class EligibilityResponse(BaseModel):
    employee_id: int
    eligible: bool


class EnforcementActionResponse(BaseModel):
    id: int
    action_type: EnforcementActionType
    target_type: str
    target_id: str
    reason: str
    triggered_by: str
    created_at: datetime

    class Config:
        from_attributes = True


# Evidence and ledger schemas
class LedgerEntryResponse(BaseModel):
    id: int
    evidence_node_id: int
    event_type: str
    payload: Any
    created_at: datetime

    class Config:
        from_attributes = True


class EvidenceNodeResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    actor_type: ActorType
    actor_id: str
    created_at: datetime
    archived: bool
    archived_at: Optional[datetime]
    ledger_entries: List[LedgerEntryResponse] = []

    class Config:
        from_attributes = True


# Regulator schemas
class CertificationSnapshotResponse(BaseModel):
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
    last_event_type: Optional[str]
    last_event_at: Optional[datetime]

    class Config:
        from_attributes = True


class PointInTimeResponse(BaseModel):
    employee_id: int
    as_of: datetime
    compliant: bool
    certifications: List[CertificationSnapshotResponse]
    access_evidence_node_id: Optional[int]

    class Config:
        from_attributes = True


# Audit case schemas
class AuditCaseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    organization_id: Optional[str] = None
    created_by_user_id: str


class AuditCaseResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    organization_id: Optional[str]
    created_by_user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class AuditEvidenceAttach(BaseModel):
    evidence_node_id: int
    attached_by_user_id: str


class AuditEvidenceLinkResponse(BaseModel):
    id: int
    audit_case_id: int
    evidence_node_id: int
    attached_by_user_id: str
    created_at: datetime

    class Config:
        from_attributes = True


# Error response
class ForbiddenResponse(BaseModel):
    """Response when the certification gate refuses an operation."""
    message: str
    missing: List[str] = []
    blocked: List[str] = []
