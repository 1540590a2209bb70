"""Collaborator interfaces required by the verification workflow.

The domain layer defines what it needs here and the infrastructure layer
implements it, so the workflow can be exercised with in-memory fakes or
mocks and the storage backend can change without touching the state
machine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from guest_attestation.domain.attestation import (
    Attestation,
    AttestationEvent,
    ClientContext,
    EventType,
    GuestInput,
    StayInput,
    VerificationMethod,
)


class IAttestationStore(ABC):
    """Persistent attestation state, owned exclusively by the workflow.

    Writes are staged in the current unit of work and become durable on
    commit(). mark_verified, reserve_attempt and save_idempotency_key must
    be atomic conditional writes at the storage layer, never read-then-write.
    """

    @abstractmethod
    def upsert_guest(
        self,
        hotel_id: str,
        guest: GuestInput,
        stay: StayInput,
        created_by: Optional[str] = None,
    ) -> str:
        """Create or refresh the guest keyed by (hotel_id, phone). Returns the guest id."""

    @abstractmethod
    def create_attestation(self, attestation: Attestation) -> Attestation:
        """Insert a new attestation in status SENT."""

    @abstractmethod
    def get_by_token(self, token: str) -> Optional[Attestation]:
        """Look up an attestation by its unique guest token."""

    @abstractmethod
    def get_by_id(
        self, attestation_id: str, hotel_id: Optional[str] = None
    ) -> Optional[Attestation]:
        """Look up an attestation by id, optionally scoped to a hotel."""

    @abstractmethod
    def mark_verified(
        self,
        attestation_id: str,
        method: VerificationMethod,
        verified_at: datetime,
    ) -> bool:
        """Transition SENT -> VERIFIED only if still SENT and not past expires_at.

        Returns:
            True if this call performed the transition, False if the row
            is missing, already transitioned or expired at verified_at
        """

    @abstractmethod
    def reserve_attempt(self, attestation_id: str, max_attempts: int) -> Optional[int]:
        """Count one verification attempt if the attestation is SENT and below max_attempts.

        The increment and the limit check are one conditional update, and
        the reservation holds until commit or rollback.

        Returns:
            The new attempt count, or None if no attempt may be made
        """

    @abstractmethod
    def release_attempt(self, attestation_id: str) -> None:
        """Undo a reservation whose attempt turned out to be correct."""

    @abstractmethod
    def record_notification(
        self,
        attestation_id: str,
        provider_ref: Optional[str],
        sms_status: str,
    ) -> None:
        """Record the outcome of guest notification (never touches code fields)."""

    @abstractmethod
    def find_by_idempotency_key(
        self, idempotency_key: str, hotel_id: str, now: datetime
    ) -> Optional[Attestation]:
        """Return the attestation created for an unexpired idempotency key."""

    @abstractmethod
    def save_idempotency_key(
        self,
        idempotency_key: str,
        hotel_id: str,
        attestation_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Bind an idempotency key to an attestation.

        A mapping that expired at or before now is replaced.

        Raises:
            StorageConflict: If an unexpired mapping exists for this hotel
        """

    @abstractmethod
    def expire_stale(self, now: datetime) -> int:
        """Flip SENT rows past their deadline to EXPIRED. Returns rows changed."""

    @abstractmethod
    def commit(self) -> None:
        """Make staged writes durable."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard staged writes."""


class IEventLog(ABC):
    """Append-only audit trail of attestation lifecycle events."""

    @abstractmethod
    def record(
        self,
        attestation_id: str,
        event_type: EventType,
        payload: Optional[dict[str, Any]] = None,
        client: Optional[ClientContext] = None,
    ) -> None:
        """Append one event. Must never raise into the caller."""

    @abstractmethod
    def list_events(self, attestation_id: str) -> list[AttestationEvent]:
        """Events for an attestation, newest first."""


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of a guest notification attempt."""

    dispatched: bool
    provider_ref: Optional[str] = None
    error: Optional[str] = None


class INotifier(ABC):
    """Delivers the guest link to the guest's phone."""

    @abstractmethod
    def notify(self, phone_e164: str, message: str) -> NotificationResult:
        """Send a message.

        Raises:
            NotificationFailure: If the message could not be dispatched
        """
