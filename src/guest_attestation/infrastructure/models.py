"""SQLAlchemy ORM models for Guest Attestation Service."""

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    TIMESTAMP,
    BigInteger,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from guest_attestation.infrastructure.database import Base

# Plain strings keep ids portable between PostgreSQL and SQLite
ID_LENGTH = 64


def new_id() -> str:
    return str(uuid.uuid4())


class Guest(Base):
    """
    Guest identity as last entered by a clerk.

    One row per (hotel, phone); sending a new attestation to the same phone
    refreshes the stored details instead of creating a duplicate guest.
    """

    __tablename__ = "guests"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)

    hotel_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), nullable=False, comment="Hotel that owns this guest"
    )

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_e164: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Guest phone in E.164 format"
    )
    dl_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dl_state: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Latest stay details
    cc_last4: Mapped[str] = mapped_column(String(4), nullable=False)
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_by: Mapped[str | None] = mapped_column(
        String(ID_LENGTH), nullable=True, comment="Staff user who first entered the guest"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("hotel_id", "phone_e164", name="uq_guests_hotel_phone"),
    )


class Attestation(Base):
    """
    One guest check-in verification.

    Guest, stay and policy fields are a snapshot taken at send time. The
    code digest, salt and display code are written once on insert.
    """

    __tablename__ = "attestations"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)

    hotel_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    guest_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("guests.id"), nullable=False, index=True
    )

    # Snapshot of what the guest is attesting to
    guest_full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_phone_e164: Mapped[str] = mapped_column(String(20), nullable=False)
    dl_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dl_state: Mapped[str | None] = mapped_column(String(16), nullable=True)
    cc_last4: Mapped[str] = mapped_column(String(4), nullable=False)
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    policy_text: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Policy text frozen at send time"
    )

    # Verification code (digest for matching, display copy for the guest page)
    code_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="HMAC-SHA256(pepper, salt:code) hex"
    )
    code_salt: Mapped[str] = mapped_column(String(64), nullable=False)
    code_display: Mapped[str | None] = mapped_column(String(6), nullable=True)

    token: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="Signed guest link token"
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="sent")
    verification_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Notification bookkeeping
    sms_provider_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sms_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('sent', 'verified', 'expired')", name="ck_attestations_status"
        ),
        CheckConstraint(
            "verification_method IS NULL OR verification_method IN ('code', 'link')",
            name="ck_attestations_verification_method",
        ),
        Index("idx_attestations_hotel_sent", "hotel_id", "sent_at"),
        Index("idx_attestations_status_expires", "status", "expires_at"),
    )


class AttestationEvent(Base):
    """
    Append-only audit trail for an attestation.

    Rows are never updated or deleted by the application.
    """

    __tablename__ = "attestation_events"

    # SQLite only autoincrements INTEGER PRIMARY KEY
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )

    attestation_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("attestations.id"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Client facts (best effort)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_attestation_events_attestation_created", "attestation_id", "created_at"),
    )


class StaffProfile(Base):
    """
    Maps an authenticated staff user to the hotel they work for.
    """

    __tablename__ = "staff_profiles"

    user_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), primary_key=True, comment="User id from the auth service"
    )
    hotel_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


class AttestationIdempotencyKey(Base):
    """
    Idempotency key tracking for attestation sends.

    Ensures that a retried send with the same key returns the same
    attestation within the configured window.
    """

    __tablename__ = "attestation_idempotency_keys"

    # Composite primary key: idempotency_key + hotel_id
    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    hotel_id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)

    attestation_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("attestations.id"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (Index("idx_attestation_idempotency_expires_at", "expires_at"),)
