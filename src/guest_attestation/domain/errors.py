"""Exceptions for the attestation verification workflow."""


class AttestationError(Exception):
    """Base exception for attestation-related errors."""

    pass


class ValidationError(AttestationError):
    """Raised when staff input is structurally invalid.

    Carries a mapping of field name to message so the staff UI can point
    at every offending field at once.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid fields: {fields}")


class Unauthorized(AttestationError):
    """Raised when the staff auth context is missing or invalid."""

    pass


class Forbidden(AttestationError):
    """Raised when the staff member is authenticated but has no hotel."""

    pass


class TokenInvalid(AttestationError):
    """Raised when a guest token fails signature, format or expiry checks.

    Never surfaced to the guest with its cause.
    """

    pass


class NotFound(AttestationError):
    """Raised when an attestation does not exist for the caller's hotel."""

    pass


class AlreadyVerified(AttestationError):
    """Raised when an operation targets an attestation in a terminal state."""

    pass


class StorageConflict(AlreadyVerified):
    """Raised when a conditional update finds the row already transitioned."""

    pass


class NotificationFailure(AttestationError):
    """Raised by notifiers when the guest message could not be dispatched."""

    pass
