"""
Error taxonomy for the evidence and enforcement core.

Every error the core raises means "nothing happened" from the audit trail's
point of view. The calling layer decides what the user sees.
"""
from typing import List, Optional


class CertificationCoreError(Exception):
    """Base class for all core errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(CertificationCoreError):
    """Malformed or missing input to a core operation."""


class CorrectionConflictError(ValidationError):
    """A correction was requested against a version that is no longer the chain head."""

    def __init__(self, message: str, head_id: Optional[int] = None):
        self.head_id = head_id
        super().__init__(message)


class EntityNotFoundError(CertificationCoreError):
    """Target entity (certification, employee, evidence node) does not exist."""

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ForbiddenError(CertificationCoreError):
    """
    Raised when the certification gate refuses an operation.

    Like any refusal this is the system working correctly. The missing and
    blocked lists are kept separate so the caller can render a specific message.
    """

    def __init__(self, message: str, missing: List[str] = None, blocked: List[str] = None):
        self.missing = missing or []
        self.blocked = blocked or []
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"message": self.message, "missing": self.missing, "blocked": self.blocked}


class IntegrityViolation(CertificationCoreError):
    """
    Attempted mutation of append-only data, or a correction cycle.

    Always fatal to the operation. Never catch and ignore.
    """


class StorageError(CertificationCoreError):
    """Underlying transaction or commit failure. The core does not retry."""


class OperationTimeoutError(CertificationCoreError):
    """A caller-supplied deadline passed before the operation finished."""
