"""
Error taxonomy for the persistence layer.
Callers (HTTP layer, CLI) translate these into user-facing responses.
"""

from typing import List, Optional


class LeadCaptureError(Exception):
    """Base class for all lead capture errors."""


class ValidationFailed(LeadCaptureError, ValueError):
    """One or more field rules were violated. Carries every violation, not just the first."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Dados inválidos: {', '.join(self.errors)}")


class DuplicateEmail(LeadCaptureError):
    """Email collided on insert and the winning row could not be read back."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email já cadastrado: {email}")


class NotFound(LeadCaptureError, LookupError):
    """Targeted row does not exist (status update, delete, participation removal)."""

    def __init__(self, entity: str, entity_id: Optional[int]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class StorageUnavailable(LeadCaptureError):
    """Connection could not be acquired or opened. Not retried internally."""


class AuditWriteFailed(LeadCaptureError):
    """Audit event could not be written. Logged and swallowed, never raised to callers."""
