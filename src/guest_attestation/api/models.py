"""Pydantic models for JSON API requests/responses.

Field names are snake_case in Python and camelCase on the wire, matching
what the staff and guest web pages send and expect.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GuestFields(CamelModel):
    """Guest identity as typed by the clerk."""

    full_name: str = Field("", description="Guest full name")
    phone_e164: str = Field("", description="Guest phone in E.164 format")
    dl_number: Optional[str] = Field(None, description="Driver's license number")
    dl_state: Optional[str] = Field(None, description="Driver's license issuing state")


class StayFields(CamelModel):
    """Stay details as typed by the clerk."""

    cc_last4: str = Field("", description="Last four digits of the card on file")
    check_in_date: date = Field(..., description="Check-in date (YYYY-MM-DD)")
    check_out_date: date = Field(..., description="Check-out date (YYYY-MM-DD)")


class SendAttestationRequest(CamelModel):
    """Request model for creating an attestation and texting the guest."""

    guest: GuestFields
    stay: StayFields
    policy_text: str = Field("", description="Hotel policy the guest must accept")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "guest": {"fullName": "Jane Doe", "phoneE164": "+15551234567"},
                "stay": {
                    "ccLast4": "1234",
                    "checkInDate": "2025-01-15",
                    "checkOutDate": "2025-01-17",
                },
                "policyText": "No smoking. Quiet hours 10pm-7am. Damages billed to card.",
            }
        },
    )


class SendAttestationResponse(CamelModel):
    """Response model for attestation creation.

    The code is returned so the clerk can read it out if the SMS is lost.
    """

    attestation_id: str
    guest_id: str
    guest_url: str
    code: str
    notified: bool
    notification_error: Optional[str] = None
    replayed: bool = False


class VerifyCodeRequest(CamelModel):
    code: str = Field("", description="6-digit code shown on the guest's screen")


class VerifyCodeResponse(CamelModel):
    ok: bool
    verified_at: Optional[datetime] = None
    reason: Optional[str] = None


class AttestationStatusResponse(CamelModel):
    """Attestation state for the clerk UI (no code material)."""

    attestation_id: str
    guest_id: str
    guest_full_name: str
    status: str
    sent_at: datetime
    expires_at: datetime
    verified_at: Optional[datetime] = None
    verification_method: Optional[str] = None
    failed_attempts: int = 0
    sms_status: Optional[str] = None


class AttestationEventResponse(CamelModel):
    id: str
    event_type: str
    created_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


class AttestationEventsResponse(CamelModel):
    attestation_id: str
    events: List[AttestationEventResponse]


class GuestTokenRequest(CamelModel):
    token: Optional[str] = None


class GuestInitResponse(CamelModel):
    valid: bool
    policy_text: Optional[str] = None


class GuestEventRequest(CamelModel):
    """Event reported by the guest page; location fields only for geo.capture."""

    token: Optional[str] = None
    event_type: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


class GuestEventResponse(CamelModel):
    ok: bool


class GuestConfirmRequest(CamelModel):
    token: Optional[str] = None
    accepted: bool = False


class GuestConfirmResponse(CamelModel):
    ok: bool
    code: Optional[str] = None


class ErrorResponse(CamelModel):
    detail: str
    errors: Optional[Dict[str, str]] = None
