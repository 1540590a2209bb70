"""Guest attestation domain layer.

This package contains the attestation entity and its lifecycle, guest
token and verification code primitives, the collaborator interfaces and
the verification workflow.
"""

from guest_attestation.domain.attestation import (
    Attestation,
    AttestationEvent,
    AttestationStatus,
    ClientContext,
    ConsentResult,
    EventType,
    GuestInput,
    GuestSessionResult,
    SendAttestationResult,
    StaffContext,
    StayInput,
    VerificationMethod,
    VerifyResult,
    validate_check_in,
)
from guest_attestation.domain.errors import (
    AlreadyVerified,
    AttestationError,
    Forbidden,
    NotFound,
    NotificationFailure,
    StorageConflict,
    TokenInvalid,
    Unauthorized,
    ValidationError,
)
from guest_attestation.domain.interfaces import (
    IAttestationStore,
    IEventLog,
    INotifier,
    NotificationResult,
)
from guest_attestation.domain.tokens import GuestTokenClaims, GuestTokenService
from guest_attestation.domain.workflow import VerificationWorkflow

__all__ = [
    # Entities
    "Attestation",
    "AttestationEvent",
    "AttestationStatus",
    "EventType",
    "VerificationMethod",
    # Inputs and contexts
    "GuestInput",
    "StayInput",
    "StaffContext",
    "ClientContext",
    "validate_check_in",
    # Results
    "SendAttestationResult",
    "GuestSessionResult",
    "ConsentResult",
    "VerifyResult",
    # Errors
    "AttestationError",
    "ValidationError",
    "Unauthorized",
    "Forbidden",
    "TokenInvalid",
    "NotFound",
    "AlreadyVerified",
    "StorageConflict",
    "NotificationFailure",
    # Tokens
    "GuestTokenService",
    "GuestTokenClaims",
    # Interfaces
    "IAttestationStore",
    "IEventLog",
    "INotifier",
    "NotificationResult",
    # Workflow
    "VerificationWorkflow",
]
