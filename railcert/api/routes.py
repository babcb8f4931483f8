"""API routes for the certification compliance core."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from railcert.clock import system_clock
from railcert.database import get_db
from railcert.errors import ForbiddenError
from railcert.services import audits, certifications, evidence
from railcert.services.corrections import correct_certification, get_correction_chain
from railcert.services.enforcement import CertificationEnforcer
from railcert.services.point_in_time import get_employee_certifications_as_of_date
from railcert.services.status import derive_certification_status, get_failure_reason
from railcert.api.schemas import (
    AuditCaseCreate,
    AuditCaseResponse,
    AuditEvidenceAttach,
    AuditEvidenceLinkResponse,
    CertificationCorrect,
    CertificationCreate,
    CertificationProof,
    CertificationResponse,
    CertificationRevoke,
    CertificationStatusResponse,
    CertificationSummaryResponse,
    CorrectionResponse,
    EligibilityResponse,
    EmployeeOnboard,
    EmployeeResponse,
    EnforcementActionResponse,
    EnforcementEvaluate,
    EnforcementResponse,
    EvidenceNodeResponse,
    ForbiddenResponse,
    LedgerEntryResponse,
    PointInTimeResponse,
    RequirementCheck,
)

router = APIRouter()


def get_clock():
    """Dependency for the time source; tests override it with a FixedClock."""
    return system_clock


# Employee endpoints
@router.post("/employees", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
def onboard_employee(data: EmployeeOnboard, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Create an employee with one INCOMPLETE certification per required preset."""
    return certifications.onboard_employee(
        db,
        first_name=data.first_name,
        last_name=data.last_name,
        created_by_user_id=data.created_by_user_id,
        email=data.email,
        organization_id=data.organization_id,
        categories=data.categories,
        clock=clock,
    )


@router.get("/employees/{employee_id}", response_model=EmployeeResponse)
def get_employee(employee_id: int, db: Session = Depends(get_db)):
    return certifications.get_employee(db, employee_id)


@router.get("/employees/{employee_id}/certifications", response_model=List[CertificationResponse])
def list_employee_certifications(
    employee_id: int,
    include_superseded: bool = False,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Current certifications, or every version when include_superseded is set."""
    return certifications.list_certifications(
        db,
        employee_id,
        status=status_filter,
        include_superseded=include_superseded,
        clock=clock,
    )


@router.get("/employees/{employee_id}/certifications/summary", response_model=CertificationSummaryResponse)
def certification_summary(
    employee_id: int,
    expiring_soon_days: Optional[int] = None,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    return certifications.get_certification_summary(db, employee_id, expiring_soon_days, clock=clock)


@router.get("/employees/{employee_id}/eligibility", response_model=EligibilityResponse)
def employee_eligibility(employee_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Coarse eligibility from the recorded enforcement state."""
    certifications.get_employee(db, employee_id)
    enforcer = CertificationEnforcer(db, clock=clock)
    return EligibilityResponse(employee_id=employee_id, eligible=enforcer.is_employee_eligible(employee_id))


@router.get("/employees/{employee_id}/blocked-certifications", response_model=List[CertificationResponse])
def blocked_certifications(employee_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    certifications.get_employee(db, employee_id)
    return CertificationEnforcer(db, clock=clock).get_blocked_certifications(employee_id)


@router.post("/employees/{employee_id}/enforcement/evaluate", response_model=List[EnforcementResponse])
def evaluate_employee(
    employee_id: int, data: EnforcementEvaluate, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    """Re-evaluate every current certification of the employee."""
    results = CertificationEnforcer(db, clock=clock).evaluate_employee(employee_id, data.triggered_by)
    return [EnforcementResponse(is_blocked=r.is_blocked, blocked_reason=r.blocked_reason) for r in results]


@router.post("/employees/{employee_id}/certification-check", response_model=EligibilityResponse, responses={
    403: {"model": ForbiddenResponse, "description": "Refusal - required certifications missing or blocked"}
})
def check_certification_requirements(
    employee_id: int, data: RequirementCheck, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    """
    Gate called before JHA acknowledgment, work-window assignment and dispatch.

    WILL REFUSE if any required certification type is missing or blocked.
    """
    enforcer = CertificationEnforcer(db, clock=clock)
    try:
        enforcer.enforce_certification_requirements(
            employee_id,
            data.required_cert_types,
            triggered_by=data.triggered_by,
            action_type=data.gate,
            target_id=data.target_id,
        )
    except ForbiddenError as e:
        # Return refusal as HTTP 403 Forbidden with details
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.to_detail())
    return EligibilityResponse(employee_id=employee_id, eligible=True)


# Certification endpoints
@router.post("/certifications", response_model=CertificationResponse, status_code=status.HTTP_201_CREATED)
def create_certification(data: CertificationCreate, db: Session = Depends(get_db), clock=Depends(get_clock)):
    return certifications.create_certification(
        db,
        employee_id=data.employee_id,
        certification_type=data.certification_type,
        created_by_user_id=data.created_by_user_id,
        issuing_authority=data.issuing_authority,
        certificate_media_id=data.certificate_media_id,
        issue_date=data.issue_date,
        expiration_date=data.expiration_date,
        is_non_expiring=data.is_non_expiring,
        clock=clock,
    )


@router.get("/certifications/expiring", response_model=List[CertificationResponse])
def expiring_certifications(
    days: Optional[int] = None, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    """Passing certifications that expire within the window."""
    return [
        item["certification"]
        for item in certifications.get_expiring_certifications(db, days_ahead=days, clock=clock)
    ]


@router.get("/certifications/{certification_id}", response_model=CertificationResponse)
def get_certification(certification_id: int, db: Session = Depends(get_db)):
    return certifications.get_certification(db, certification_id)


@router.get("/certifications/{certification_id}/status", response_model=CertificationStatusResponse)
def certification_status(
    certification_id: int,
    as_of: Optional[datetime] = None,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Derived status right now, or as of the given instant."""
    cert = certifications.get_certification(db, certification_id)
    instant = as_of or clock.now()
    return CertificationStatusResponse(
        certification_id=cert.id,
        status=derive_certification_status(cert, as_of=instant),
        failure_reason=get_failure_reason(cert, as_of=instant),
        as_of=instant,
    )


@router.post("/certifications/{certification_id}/proof", response_model=CertificationResponse)
def record_proof(
    certification_id: int, data: CertificationProof, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    return certifications.record_certification_proof(
        db,
        certification_id,
        recorded_by_user_id=data.recorded_by_user_id,
        certificate_media_id=data.certificate_media_id,
        issue_date=data.issue_date,
        expiration_date=data.expiration_date,
        is_non_expiring=data.is_non_expiring,
        clock=clock,
    )


@router.post("/certifications/{certification_id}/revoke", response_model=CertificationResponse)
def revoke_certification(
    certification_id: int, data: CertificationRevoke, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    return certifications.revoke_certification(
        db, certification_id, reason=data.reason, revoked_by_user_id=data.revoked_by_user_id, clock=clock
    )


@router.post("/certifications/{certification_id}/expire", response_model=CertificationResponse)
def expire_certification(certification_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Mark an expired certification FAIL. Already-failed certifications are returned unchanged."""
    return certifications.expire_certification(db, certification_id, clock=clock)


@router.post(
    "/certifications/{certification_id}/correct",
    response_model=CorrectionResponse,
    status_code=status.HTTP_201_CREATED,
)
def correct(
    certification_id: int, data: CertificationCorrect, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    """
    Create a corrected version of a certification.
    The original remains unchanged and visible in the chain.
    """
    result = correct_certification(
        db,
        certification_id,
        correction_reason=data.correction_reason,
        corrected_by_user_id=data.corrected_by_user_id,
        new_data=data.new_data.model_dump(exclude_unset=True),
        expected_head_id=data.expected_head_id,
        clock=clock,
    )
    return CorrectionResponse(
        original=CertificationResponse.model_validate(result.original),
        corrected=CertificationResponse.model_validate(result.corrected),
    )


@router.get("/certifications/{certification_id}/chain", response_model=List[CertificationResponse])
def correction_chain(certification_id: int, db: Session = Depends(get_db)):
    """Every version of the certification, oldest first."""
    return get_correction_chain(db, certification_id)


@router.post("/certifications/{certification_id}/enforcement/evaluate", response_model=EnforcementResponse)
def evaluate_certification(
    certification_id: int, data: EnforcementEvaluate, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    result = CertificationEnforcer(db, clock=clock).evaluate_certification_enforcement(
        certification_id, data.triggered_by
    )
    return EnforcementResponse(is_blocked=result.is_blocked, blocked_reason=result.blocked_reason)


@router.get("/enforcement-actions", response_model=List[EnforcementActionResponse])
def list_enforcement_actions(
    target_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return CertificationEnforcer(db).list_enforcement_actions(target_id=target_id, limit=limit)


# Regulator endpoints
@router.get("/regulator/point-in-time/{employee_id}", response_model=PointInTimeResponse)
def point_in_time(
    employee_id: int,
    date: datetime,
    regulator_id: str = "point_in_time_query",
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Employee compliance as it stood at a past date.
    Read-only apart from logging the regulator's access.
    """
    return get_employee_certifications_as_of_date(
        db, employee_id, date, regulator_id=regulator_id, clock=clock
    )


# Ledger endpoints
@router.get("/ledger", response_model=List[LedgerEntryResponse])
def list_ledger(
    limit: int = Query(100, ge=1, le=1000),
    event_type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Most recent ledger entries first."""
    return evidence.list_ledger_entries(db, limit=limit, event_type=event_type)


@router.get("/ledger/history/{entity_type}/{entity_id}", response_model=List[LedgerEntryResponse])
def entity_history(entity_type: str, entity_id: str, db: Session = Depends(get_db)):
    return evidence.get_entity_history(db, entity_type, entity_id)


@router.get("/evidence/{evidence_node_id}", response_model=EvidenceNodeResponse)
def get_evidence_node(evidence_node_id: int, db: Session = Depends(get_db)):
    return evidence.get_evidence_node(db, evidence_node_id)


# Audit case endpoints
@router.post("/audits", response_model=AuditCaseResponse, status_code=status.HTTP_201_CREATED)
def create_audit_case(data: AuditCaseCreate, db: Session = Depends(get_db), clock=Depends(get_clock)):
    return audits.create_audit_case(
        db,
        title=data.title,
        created_by_user_id=data.created_by_user_id,
        description=data.description,
        organization_id=data.organization_id,
        clock=clock,
    )


@router.get("/audits/{audit_case_id}", response_model=AuditCaseResponse)
def get_audit_case(audit_case_id: int, db: Session = Depends(get_db)):
    return audits.get_audit_case(db, audit_case_id)


@router.post(
    "/audits/{audit_case_id}/evidence",
    response_model=AuditEvidenceLinkResponse,
    status_code=status.HTTP_201_CREATED,
)
def attach_evidence(
    audit_case_id: int, data: AuditEvidenceAttach, db: Session = Depends(get_db), clock=Depends(get_clock)
):
    return audits.link_evidence_to_audit(
        db, audit_case_id, data.evidence_node_id, data.attached_by_user_id, clock=clock
    )


@router.get("/audits/{audit_case_id}/evidence", response_model=List[EvidenceNodeResponse])
def audit_evidence(audit_case_id: int, db: Session = Depends(get_db)):
    """Only the evidence linked to this audit case."""
    return audits.get_audit_evidence(db, audit_case_id)
