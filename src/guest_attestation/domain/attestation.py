"""Domain models for guest attestations.

This module contains the attestation entity, its lifecycle states, the
staff-supplied check-in input with its structural validation, and the
result objects returned by the verification workflow.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from guest_attestation.domain.errors import ValidationError


class AttestationStatus(str, Enum):
    """Lifecycle of an attestation: SENT -> VERIFIED | EXPIRED."""

    SENT = "sent"
    VERIFIED = "verified"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not AttestationStatus.SENT


class VerificationMethod(str, Enum):
    """How an attestation reached VERIFIED."""

    CODE = "code"
    LINK = "link"


class EventType(str, Enum):
    """Audit event types written to the event log."""

    SMS_SENT = "sms.sent"
    PAGE_OPEN = "page.open"
    GEO_CAPTURE = "geo.capture"
    POLICY_ACCEPT = "policy.accept"
    CODE_SUBMIT = "code.submit"
    CODE_FAILED = "code.failed"


# Events a guest page may report through the public event endpoint
GUEST_REPORTABLE_EVENTS = frozenset(
    {EventType.PAGE_OPEN, EventType.GEO_CAPTURE, EventType.POLICY_ACCEPT}
)

# Clerk-facing failure reasons
REASON_ALREADY_VERIFIED = "already verified"
REASON_EXPIRED = "expired"
REASON_INVALID_CODE = "invalid code"
REASON_TOO_MANY_ATTEMPTS = "too many attempts"

PHONE_E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
CARD_LAST4_PATTERN = re.compile(r"^\d{4}$")
MIN_POLICY_TEXT_LENGTH = 20


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class StaffContext:
    """Resolved identity of the staff member making a request."""

    hotel_id: str
    staff_id: str


@dataclass(frozen=True)
class ClientContext:
    """Best-effort facts about the guest's browser.

    Every field may be None; missing facts never fail a guest request.
    """

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class GuestInput:
    """Guest identity as typed by the clerk."""

    full_name: str
    phone_e164: str
    dl_number: Optional[str] = None
    dl_state: Optional[str] = None


@dataclass(frozen=True)
class StayInput:
    """Stay details as typed by the clerk."""

    cc_last4: str
    check_in_date: date
    check_out_date: date


def validate_check_in(
    guest: GuestInput,
    stay: StayInput,
    policy_text: str,
    today: date,
) -> None:
    """Validate staff input for a new attestation.

    All problems are collected before raising so the clerk sees every
    offending field in one response.

    Raises:
        ValidationError: If any field is invalid
    """
    errors: dict[str, str] = {}

    if not guest.full_name or not guest.full_name.strip():
        errors["fullName"] = "Full name is required"

    if not guest.phone_e164 or not PHONE_E164_PATTERN.match(guest.phone_e164):
        errors["phoneE164"] = "Phone must be in E.164 format, e.g. +15551234567"

    if not stay.cc_last4 or not CARD_LAST4_PATTERN.match(stay.cc_last4):
        errors["ccLast4"] = "Must be exactly 4 digits"

    if stay.check_out_date < today:
        errors["checkOutDate"] = "Check-out date cannot be in the past"
    elif stay.check_out_date < stay.check_in_date:
        errors["checkOutDate"] = "Check-out date must not be before check-in date"

    if not policy_text or len(policy_text.strip()) < MIN_POLICY_TEXT_LENGTH:
        errors["policyText"] = (
            f"Policy text must be at least {MIN_POLICY_TEXT_LENGTH} characters"
        )

    if errors:
        raise ValidationError(errors)


@dataclass
class Attestation:
    """One guest's check-in verification record.

    The guest/stay fields and policy text are a snapshot frozen at
    creation. code_hash, code_salt and code_display are written once by
    the send step and never again; verified_at is set at most once.
    """

    id: str
    hotel_id: str
    guest_id: str
    guest_full_name: str
    guest_phone_e164: str
    cc_last4: str
    check_in_date: date
    check_out_date: date
    policy_text: str
    code_hash: str
    code_salt: str
    code_display: Optional[str]
    token: str
    sent_at: datetime
    expires_at: datetime
    status: AttestationStatus = AttestationStatus.SENT
    dl_number: Optional[str] = None
    dl_state: Optional[str] = None
    verification_method: Optional[VerificationMethod] = None
    verified_at: Optional[datetime] = None
    failed_attempts: int = 0
    sms_provider_ref: Optional[str] = None
    sms_status: Optional[str] = None
    created_by: Optional[str] = None
    idempotency_key: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        """Expiry is derived: still SENT and past its deadline, or flagged by the sweep."""
        if self.status is AttestationStatus.EXPIRED:
            return True
        return self.status is AttestationStatus.SENT and as_utc(now) >= as_utc(self.expires_at)

    def effective_status(self, now: datetime) -> AttestationStatus:
        """Status as seen by readers, applying the read-time expiry check."""
        if self.is_expired(now):
            return AttestationStatus.EXPIRED
        return self.status


@dataclass(frozen=True)
class AttestationEvent:
    """One append-only lifecycle event."""

    id: str
    attestation_id: str
    event_type: str
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class SendAttestationResult:
    """What the clerk gets back after creating an attestation.

    The code is included because staff may relay it manually when the
    SMS does not arrive.
    """

    attestation_id: str
    guest_id: str
    guest_url: str
    code: str
    notified: bool
    notification_error: Optional[str] = None
    provider_ref: Optional[str] = None
    replayed: bool = False


@dataclass(frozen=True)
class GuestSessionResult:
    valid: bool
    policy_text: Optional[str] = None


@dataclass(frozen=True)
class ConsentResult:
    ok: bool
    code: Optional[str] = None


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    verified_at: Optional[datetime] = None
    reason: Optional[str] = None
