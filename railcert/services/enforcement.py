"""
Certification enforcement.

This is the gate in front of JHA acknowledgment, work-window assignment and
dispatch. Block state is always recomputed from the certification's facts and
the current time; the cached status is only consulted to honour an explicit FAIL.
"""
import logging
from typing import Iterable, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from railcert.clock import system_clock
from railcert.errors import ForbiddenError
from railcert.models.domain import Certification, CertificationEnforcement, EnforcementAction
from railcert.models.enums import ActorType, CertificationStatus, EnforcementActionType
from railcert.models.evidence import EntityType, EventType
from railcert.services.certifications import (
    current_certifications_query,
    get_certification,
    get_current_certifications,
    get_employee,
)
from railcert.services.evidence import append_ledger_entry, commit_or_raise, write_evidence_node
from railcert.services.status import evaluate_status

logger = logging.getLogger(__name__)


class EnforcementResult(NamedTuple):
    is_blocked: bool
    blocked_reason: Optional[str]


class CertificationEnforcer:
    """Computes and records block decisions for certifications and employees."""

    def __init__(self, db: Session, clock=None):
        self.db = db
        self.clock = clock or system_clock

    def calculate_block(self, cert: Certification) -> EnforcementResult:
        """
        Block state of a certification right now.

        - Revoked or expired → blocked, with the revocation or expiry date
        - Missing proof or dates → blocked as incomplete
        - Cached status FAIL that the facts do not explain → blocked on status
        - Otherwise not blocked
        """
        status, reason = evaluate_status(cert, self.clock.now())

        if status == CertificationStatus.FAIL:
            return EnforcementResult(True, reason)
        if status == CertificationStatus.INCOMPLETE:
            return EnforcementResult(True, f"Certification incomplete - missing required proof ({reason})")
        if cert.status == CertificationStatus.FAIL:
            return EnforcementResult(True, "Certification status: FAIL")
        return EnforcementResult(False, None)

    def evaluate_certification_enforcement(self, certification_id: int, triggered_by: str) -> EnforcementResult:
        """
        Recompute and store the block state of one certification.

        The enforcement row is upserted. Every blocked evaluation appends a new
        EnforcementAction, even when the same block was already recorded.
        """
        cert = get_certification(self.db, certification_id)
        result = self._evaluate_and_record(cert, triggered_by)
        commit_or_raise(self.db)
        return result

    def _evaluate_and_record(self, cert: Certification, triggered_by: str) -> EnforcementResult:
        now = self.clock.now()
        result = self.calculate_block(cert)

        enforcement = self.db.get(CertificationEnforcement, cert.id)
        if enforcement is None:
            enforcement = CertificationEnforcement(certification_id=cert.id)
            self.db.add(enforcement)
        enforcement.is_blocked = result.is_blocked
        enforcement.blocked_reason = result.blocked_reason
        enforcement.evaluated_at = now

        if result.is_blocked:
            self.db.add(EnforcementAction(
                action_type=EnforcementActionType.CERTIFICATION_BLOCK,
                target_type="certification",
                target_id=str(cert.id),
                reason=result.blocked_reason,
                triggered_by=triggered_by,
                created_at=now,
            ))
            logger.info(
                "certification blocked",
                extra={"certification_id": cert.id, "reason": result.blocked_reason, "triggered_by": triggered_by},
            )

        self.db.flush()
        return result

    def evaluate_employee(self, employee_id: int, triggered_by: str) -> List[EnforcementResult]:
        """Evaluate every current certification of an employee."""
        get_employee(self.db, employee_id)
        results = [
            self._evaluate_and_record(cert, triggered_by)
            for cert in get_current_certifications(self.db, employee_id)
        ]
        commit_or_raise(self.db)
        return results

    def enforce_certification_requirements(
        self,
        employee_id: int,
        required_cert_types: Iterable[str],
        triggered_by: str,
        action_type: EnforcementActionType = EnforcementActionType.WORK_WINDOW_BLOCK,
        target_type: str = "employee",
        target_id: Optional[str] = None,
    ) -> None:
        """
        Gate an operation on the employee holding every required certification type.

        A type is missing when the employee has no current certification of that
        type, and blocked when every current certification of that type
        evaluates as blocked. Any missing or blocked type raises ForbiddenError
        after the refusal itself has been recorded.
        """
        get_employee(self.db, employee_id)
        required = list(dict.fromkeys(required_cert_types))
        certs = get_current_certifications(self.db, employee_id)

        missing: List[str] = []
        blocked: List[str] = []
        for cert_type in required:
            matching = [c for c in certs if c.certification_type == cert_type]
            if not matching:
                missing.append(cert_type)
                continue
            results = [self._evaluate_and_record(c, triggered_by) for c in matching]
            if all(r.is_blocked for r in results):
                blocked.append(cert_type)

        if not missing and not blocked:
            commit_or_raise(self.db)
            return

        reasons = []
        if missing:
            reasons.append(f"Missing: {', '.join(missing)}")
        if blocked:
            reasons.append(f"Blocked: {', '.join(blocked)}")
        message = f"Employee {employee_id} certification check failed: {' | '.join(reasons)}"

        self._record_refusal(employee_id, required, missing, blocked, message, triggered_by,
                             action_type, target_type, target_id)
        logger.warning(
            "certification gate refused",
            extra={"employee_id": employee_id, "missing": missing, "blocked": blocked},
        )
        raise ForbiddenError(message, missing=missing, blocked=blocked)

    def _record_refusal(self, employee_id, required, missing, blocked, message, triggered_by,
                        action_type, target_type, target_id) -> None:
        """Refusal is never silent: one enforcement action plus evidence, committed together."""
        now = self.clock.now()
        self.db.add(EnforcementAction(
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id if target_id is not None else employee_id),
            reason=message,
            triggered_by=triggered_by,
            created_at=now,
        ))
        node = write_evidence_node(
            self.db,
            entity_type=EntityType.EMPLOYEE,
            entity_id=employee_id,
            actor_type=ActorType.SYSTEM,
            actor_id=triggered_by,
            clock=self.clock,
            commit=False,
        )
        append_ledger_entry(
            self.db,
            node.id,
            EventType.CERTIFICATION_GATE_REFUSED,
            {
                "employee_id": employee_id,
                "gate": action_type,
                "target_type": target_type,
                "target_id": target_id,
                "required": required,
                "missing": missing,
                "blocked": blocked,
            },
            clock=self.clock,
            commit=False,
        )
        commit_or_raise(self.db)

    def is_employee_eligible(self, employee_id: int) -> bool:
        """True when none of the employee's current certifications is recorded as blocked."""
        blocked_count = (
            current_certifications_query(self.db)
            .join(CertificationEnforcement, CertificationEnforcement.certification_id == Certification.id)
            .filter(
                Certification.employee_id == employee_id,
                CertificationEnforcement.is_blocked.is_(True),
            )
            .count()
        )
        return blocked_count == 0

    def get_blocked_certifications(self, employee_id: int) -> List[Certification]:
        return (
            current_certifications_query(self.db)
            .join(CertificationEnforcement, CertificationEnforcement.certification_id == Certification.id)
            .filter(
                Certification.employee_id == employee_id,
                CertificationEnforcement.is_blocked.is_(True),
            )
            .order_by(Certification.id)
            .all()
        )

    def list_enforcement_actions(self, target_id: Optional[str] = None, limit: int = 100) -> List[EnforcementAction]:
        query = self.db.query(EnforcementAction)
        if target_id is not None:
            query = query.filter(EnforcementAction.target_id == str(target_id))
        return query.order_by(EnforcementAction.created_at.desc(), EnforcementAction.id.desc()).limit(limit).all()
