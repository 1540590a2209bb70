"""FastAPI routes for the guest-facing consent page.

The guest authenticates with the token from their link, sent in the
request body. Every outcome is answered 200 with a neutral body so a
caller cannot tell a forged token from an expired or unknown one.
"""

from dataclasses import replace

import structlog
from fastapi import APIRouter

from guest_attestation.api.dependencies import Client, Workflow
from guest_attestation.api.models import (
    GuestConfirmRequest,
    GuestConfirmResponse,
    GuestEventRequest,
    GuestEventResponse,
    GuestInitResponse,
    GuestTokenRequest,
)
from guest_attestation.domain.attestation import EventType

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/guest", tags=["guest"])


@router.post("/init", response_model=GuestInitResponse)
def init_guest_session(
    body: GuestTokenRequest,
    client: Client,
    workflow: Workflow,
) -> GuestInitResponse:
    """Validate the guest link and return the policy to accept."""
    result = workflow.init_guest_session(body.token, client)
    return GuestInitResponse(valid=result.valid, policy_text=result.policy_text)


@router.post("/events", response_model=GuestEventResponse)
def record_guest_event(
    body: GuestEventRequest,
    client: Client,
    workflow: Workflow,
) -> GuestEventResponse:
    """Record a page event (page.open, geo.capture, policy.accept)."""
    try:
        event_type = EventType(body.event_type)
    except ValueError:
        logger.info("guest_event_unknown_type", event_type=body.event_type)
        return GuestEventResponse(ok=False)

    if event_type is EventType.GEO_CAPTURE:
        client = replace(
            client,
            latitude=body.latitude,
            longitude=body.longitude,
            accuracy=body.accuracy,
        )

    return GuestEventResponse(ok=workflow.record_guest_event(body.token, event_type, client))


@router.post("/confirm", response_model=GuestConfirmResponse)
def confirm_guest_consent(
    body: GuestConfirmRequest,
    client: Client,
    workflow: Workflow,
) -> GuestConfirmResponse:
    """Record policy acceptance and return the code to show the clerk."""
    result = workflow.confirm_guest_consent(body.token, body.accepted, client)
    return GuestConfirmResponse(ok=result.ok, code=result.code)
