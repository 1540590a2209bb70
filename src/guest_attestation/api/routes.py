"""FastAPI routes for staff attestation operations.

This module implements the clerk-facing REST endpoints:
- POST /v1/attestations: Create attestation and text the guest a link
- POST /v1/attestations/{attestation_id}/verify: Verify the code shown to the guest
- GET /v1/attestations/{attestation_id}: Attestation status (no code material)
- GET /v1/attestations/{attestation_id}/events: Lifecycle events, newest first

Domain exceptions (ValidationError, NotFound, Unauthorized, Forbidden)
are mapped to HTTP responses by the handlers registered in main.py.
"""

import structlog
from fastapi import APIRouter, Response, status

from guest_attestation.api.dependencies import IdempotencyKey, Staff, Workflow
from guest_attestation.api.models import (
    AttestationEventResponse,
    AttestationEventsResponse,
    AttestationStatusResponse,
    ErrorResponse,
    SendAttestationRequest,
    SendAttestationResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from guest_attestation.domain.attestation import GuestInput, StayInput

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/attestations", tags=["attestations"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SendAttestationResponse,
    responses={
        200: {"model": SendAttestationResponse, "description": "Idempotent replay"},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
def send_attestation(
    body: SendAttestationRequest,
    response: Response,
    staff: Staff,
    workflow: Workflow,
    idempotency_key: IdempotencyKey,
) -> SendAttestationResponse:
    """Create an attestation for a guest and send them the consent link.

    Responses:
        201 Created: Attestation created (check `notified` for SMS outcome)
        200 OK: Idempotent request, returning the existing attestation
        401 Unauthorized: Missing or invalid staff session
        403 Forbidden: Staff member has no hotel
        422 Unprocessable Entity: Field-level validation errors
    """
    logger.info("send_attestation_request", idempotency_key=idempotency_key)

    result = workflow.send_attestation(
        staff,
        GuestInput(
            full_name=body.guest.full_name,
            phone_e164=body.guest.phone_e164.strip(),
            dl_number=body.guest.dl_number,
            dl_state=body.guest.dl_state,
        ),
        StayInput(
            cc_last4=body.stay.cc_last4.strip(),
            check_in_date=body.stay.check_in_date,
            check_out_date=body.stay.check_out_date,
        ),
        body.policy_text,
        idempotency_key=idempotency_key,
    )

    if result.replayed:
        response.status_code = status.HTTP_200_OK

    return SendAttestationResponse(
        attestation_id=result.attestation_id,
        guest_id=result.guest_id,
        guest_url=result.guest_url,
        code=result.code,
        notified=result.notified,
        notification_error=result.notification_error,
        replayed=result.replayed,
    )


@router.post(
    "/{attestation_id}/verify",
    response_model=VerifyCodeResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def verify_code(
    attestation_id: str,
    body: VerifyCodeRequest,
    staff: Staff,
    workflow: Workflow,
) -> VerifyCodeResponse:
    """Verify the code the clerk read from the guest's screen.

    Soft failures (invalid code, already verified, expired, too many
    attempts) are answered 200 with ok=false and a reason.
    """
    result = workflow.verify_clerk_code(staff, attestation_id, body.code.strip())
    return VerifyCodeResponse(ok=result.ok, verified_at=result.verified_at, reason=result.reason)


@router.get(
    "/{attestation_id}",
    response_model=AttestationStatusResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_attestation(
    attestation_id: str,
    staff: Staff,
    workflow: Workflow,
) -> AttestationStatusResponse:
    attestation = workflow.get_attestation(staff, attestation_id)
    effective = attestation.effective_status(workflow.now())

    return AttestationStatusResponse(
        attestation_id=attestation.id,
        guest_id=attestation.guest_id,
        guest_full_name=attestation.guest_full_name,
        status=effective.value,
        sent_at=attestation.sent_at,
        expires_at=attestation.expires_at,
        verified_at=attestation.verified_at,
        verification_method=(
            attestation.verification_method.value if attestation.verification_method else None
        ),
        failed_attempts=attestation.failed_attempts,
        sms_status=attestation.sms_status,
    )


@router.get(
    "/{attestation_id}/events",
    response_model=AttestationEventsResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def list_events(
    attestation_id: str,
    staff: Staff,
    workflow: Workflow,
) -> AttestationEventsResponse:
    events = workflow.list_events(staff, attestation_id)

    return AttestationEventsResponse(
        attestation_id=attestation_id,
        events=[
            AttestationEventResponse(
                id=event.id,
                event_type=event.event_type,
                created_at=event.created_at,
                payload=event.payload,
                ip=event.ip,
                user_agent=event.user_agent,
                latitude=event.latitude,
                longitude=event.longitude,
                accuracy=event.accuracy,
            )
            for event in events
        ],
    )
