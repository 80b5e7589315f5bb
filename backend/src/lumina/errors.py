"""Error taxonomy shared by every layer of the request pipeline.

Each error carries the HTTP status it maps to and a stable machine code.
The API layer renders them through a single exception handler
(see ``lumina.api.errors``).
"""

from typing import Any


class LuminaError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code: int = 500
    code: str = "ERROR"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class UnknownResource(LuminaError):
    """The requested resource slug (or action on it) is not registered."""

    status_code = 404
    code = "UNKNOWN_RESOURCE"


class RecordNotFound(LuminaError):
    """The target row does not exist within the active scope."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Record not found", **extra: Any):
        super().__init__(message, **extra)


class TenantNotFound(RecordNotFound):
    """Organization is missing OR the caller is not a member.

    Deliberately renders exactly like RecordNotFound so the two cases
    cannot be told apart by callers.
    """


class Unauthenticated(LuminaError):
    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Authentication required", **extra: Any):
        super().__init__(message, **extra)


class Forbidden(LuminaError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "This action is unauthorized.", **extra: Any):
        super().__init__(message, **extra)


class ValidationFailed(LuminaError):
    """Field-level validation failure.

    Attributes:
        errors: Mapping of field name (or path) to a list of messages
    """

    status_code = 422
    code = "VALIDATION_FAILED"

    def __init__(
        self,
        errors: dict[str, list[str]],
        message: str = "The given data was invalid.",
    ):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class BatchValidationFailed(ValidationFailed):
    """Validation failure across the steps of a nested batch.

    Error keys are path-qualified, e.g. ``operations.2.data.title``.
    """

    code = "BATCH_VALIDATION_FAILED"


class ReferenceResolutionFailed(ValidationFailed):
    """A ``$N.field`` reference points forward, at itself, or at nothing."""

    code = "REFERENCE_RESOLUTION_FAILED"


class StorageFailure(LuminaError):
    """Constraint or transaction-level failure raised by the storage engine."""

    status_code = 500
    code = "STORAGE_FAILURE"

    def __init__(self, message: str, *, constraint: bool = False, **extra: Any):
        super().__init__(message, **extra)
        if constraint:
            self.status_code = 409
            self.code = "CONSTRAINT_VIOLATION"


class AuditWriteDegraded(Exception):
    """Raised internally when an audit entry could not be written.

    Never reaches API callers: the primary mutation still succeeds and the
    response is flagged with the ``X-Audit-Degraded`` header.
    """


class RegistryError(ValueError):
    """Invalid resource configuration detected while loading the registry."""
