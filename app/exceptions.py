"""
Error taxonomy for registration and matching.

The API layer maps each class to a status code in app/main.py:
  - ValidationError    -> 400 with per-field details
  - ConflictError      -> handled during admission; 409 only if unrecoverable
  - NotFoundError      -> 404
  - StorageUnavailable -> 500, retryable
"""


class RegistrantMatchError(Exception):
    """Base class for all registration and matching errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RegistrantMatchError):
    """One or more registration fields are missing or malformed.

    ``details`` holds one ``{"field": ..., "message": ...}`` entry per violation.
    """

    def __init__(self, details: list[dict]):
        self.details = details
        fields = ", ".join(d["field"] for d in details)
        super().__init__(f"Validation failed for: {fields}")

    @property
    def fields(self) -> list[str]:
        return [d["field"] for d in self.details]


class ConflictError(RegistrantMatchError):
    """A unique identity field (email or netId) is already registered."""

    def __init__(self, field: str, value: str | None = None):
        self.field = field
        self.value = value
        super().__init__(f"A registrant with this {field} already exists")


class NotFoundError(RegistrantMatchError):
    def __init__(self, registrant_id):
        self.registrant_id = registrant_id
        super().__init__("User not found")


class StorageUnavailable(RegistrantMatchError):
    """Database unreachable or an operation exceeded its timeout. Safe to retry."""
