"""Enums for the compliance core - these define the valid values for statuses, actors and actions."""
from enum import Enum


class CertificationStatus(str, Enum):
    """The canonical certification status. No other vocabulary is persisted."""
    PASS = "PASS"
    FAIL = "FAIL"
    INCOMPLETE = "INCOMPLETE"


class ActorType(str, Enum):
    """Who performed an audited action."""
    USER = "user"
    EMPLOYEE = "employee"
    SYSTEM = "system"
    REGULATOR = "regulator"


class EnforcementActionType(str, Enum):
    """Kinds of block decisions recorded in the enforcement log."""
    CERTIFICATION_BLOCK = "certification_block"
    WORK_WINDOW_BLOCK = "work_window_block"
    JHA_BLOCK = "jha_block"


class PresetCategory(str, Enum):
    """Groups of required certifications instantiated at onboarding."""
    BASE = "BASE"
    RAILROAD_SAFETY = "RAILROAD_SAFETY"
    RAILROAD_CREDENTIALS = "RAILROAD_CREDENTIALS"
    CONSTRUCTION_SAFETY = "CONSTRUCTION_SAFETY"
    CONSTRUCTION_CREDENTIALS = "CONSTRUCTION_CREDENTIALS"
    ENVIRONMENTAL_SAFETY = "ENVIRONMENTAL_SAFETY"
    ENVIRONMENTAL_CREDENTIALS = "ENVIRONMENTAL_CREDENTIALS"
    COMPANY_LEVEL = "COMPANY_LEVEL"


# Older entry points used valid/expired/revoked. Mapped once at the boundary.
LEGACY_STATUS_MAP = {
    "valid": CertificationStatus.PASS,
    "expiring": CertificationStatus.PASS,
    "expired": CertificationStatus.FAIL,
    "revoked": CertificationStatus.FAIL,
    "pending": CertificationStatus.INCOMPLETE,
}


def normalize_status(value) -> CertificationStatus:
    """Map any accepted status spelling onto the canonical enum."""
    if isinstance(value, CertificationStatus):
        return value
    text = str(value).strip()
    if text.upper() in CertificationStatus.__members__:
        return CertificationStatus[text.upper()]
    try:
        return LEGACY_STATUS_MAP[text.lower()]
    except KeyError:
        raise ValueError(f"Unknown certification status: {value!r}")
