"""
Certification status derivation.

Status is a total function of stored facts and an "as of" instant. The failure
reason comes out of the same rule walk, so the two can never disagree.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from railcert.clock import ensure_utc, system_clock
from railcert.models.enums import CertificationStatus


@dataclass
class CertificationFacts:
    """The stored facts status derivation reads. Certification rows carry the same attributes."""
    certificate_media_id: Optional[str] = None
    issue_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    is_non_expiring: bool = False
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None


FACT_FIELDS = tuple(CertificationFacts.__dataclass_fields__)


def facts_of(cert) -> CertificationFacts:
    """Copy the status-relevant facts off a certification row."""
    return CertificationFacts(**{name: getattr(cert, name, None) for name in FACT_FIELDS})


def has_proof(cert) -> bool:
    return bool(getattr(cert, "certificate_media_id", None)) and cert.issue_date is not None


def evaluate_status(cert, as_of: datetime) -> Tuple[CertificationStatus, Optional[str]]:
    """(status, failure reason) for a certification or CertificationFacts at as_of."""
    revoked_at = ensure_utc(getattr(cert, "revoked_at", None))
    if revoked_at is not None and revoked_at <= as_of:
        reason = getattr(cert, "revoked_reason", None)
        return CertificationStatus.FAIL, f"Certification revoked: {reason}" if reason else "Certification revoked"

    if not getattr(cert, "certificate_media_id", None):
        return CertificationStatus.INCOMPLETE, "No proof uploaded"
    if cert.issue_date is None:
        return CertificationStatus.INCOMPLETE, "Missing issue date"

    if cert.is_non_expiring:
        return CertificationStatus.PASS, None

    expiration_date = ensure_utc(cert.expiration_date)
    if expiration_date is None:
        return CertificationStatus.INCOMPLETE, "Missing expiration date"

    # The expiration instant itself is still valid
    if as_of <= expiration_date:
        return CertificationStatus.PASS, None
    return CertificationStatus.FAIL, f"Certification expired on {expiration_date.date().isoformat()}"


def derive_certification_status(cert, as_of: Optional[datetime] = None, clock=None) -> CertificationStatus:
    """
    Derive PASS / FAIL / INCOMPLETE for a certification as of an instant.

    Rules, first match wins:
    1. Revoked at or before as_of → FAIL
    2. No proof media or no issue date → INCOMPLETE
    3. Non-expiring → PASS
    4. No expiration date → INCOMPLETE
    5. as_of <= expiration_date → PASS, otherwise FAIL
    """
    as_of = ensure_utc(as_of) if as_of is not None else (clock or system_clock).now()
    return evaluate_status(cert, as_of)[0]


def get_failure_reason(cert, as_of: Optional[datetime] = None, clock=None) -> Optional[str]:
    """Human-readable explanation for FAIL or INCOMPLETE; None when the certification passes."""
    as_of = ensure_utc(as_of) if as_of is not None else (clock or system_clock).now()
    return evaluate_status(cert, as_of)[1]
