"""FastAPI dependencies for authentication, validation, and dependency injection.

This module provides reusable dependencies for the API routes including:
- Database session management
- Staff authentication (bearer token -> user -> hotel)
- Guest client context (IP, user agent)
- Workflow construction
"""

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Annotated, Callable, Generator

import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from guest_attestation.config import settings
from guest_attestation.domain.attestation import ClientContext, StaffContext
from guest_attestation.domain.errors import Forbidden, Unauthorized
from guest_attestation.domain.interfaces import INotifier
from guest_attestation.domain.tokens import GuestTokenService, utcnow
from guest_attestation.domain.workflow import VerificationWorkflow
from guest_attestation.infrastructure.auth_client import StaffAuthClient
from guest_attestation.infrastructure.database import get_db_session
from guest_attestation.infrastructure.event_log import SqlEventLog
from guest_attestation.infrastructure.notifications import build_notifier
from guest_attestation.infrastructure.repository import (
    SqlAttestationStore,
    StaffProfileRepository,
)

logger = structlog.get_logger(__name__)


# Database session dependency
def get_db() -> Generator[Session, None, None]:
    """Provide database session for request.

    Yields:
        SQLAlchemy session that is automatically committed/rolled back
    """
    with get_db_session() as session:
        yield session


# Type alias for database session dependency
DBSession = Annotated[Session, Depends(get_db)]


def get_clock() -> Callable[[], datetime]:
    """Provide the clock used for token expiry and timestamps."""
    return utcnow


Clock = Annotated[Callable[[], datetime], Depends(get_clock)]


def get_token_service(clock: Clock) -> GuestTokenService:
    return GuestTokenService(
        settings.signing_secret,
        ttl=timedelta(hours=settings.token_ttl_hours),
        clock=clock,
    )


TokenSvc = Annotated[GuestTokenService, Depends(get_token_service)]


@lru_cache(maxsize=1)
def get_notifier() -> INotifier:
    """Provide the process-wide guest notifier selected by configuration."""
    return build_notifier(settings)


Notifier = Annotated[INotifier, Depends(get_notifier)]


@lru_cache(maxsize=1)
def get_auth_client() -> StaffAuthClient:
    """Provide the process-wide auth service client."""
    return StaffAuthClient(
        base_url=settings.auth_service_url,
        api_key=settings.auth_service_api_key,
        timeout_seconds=settings.auth_timeout_seconds,
    )


AuthClient = Annotated[StaffAuthClient, Depends(get_auth_client)]


# Authentication dependency
def get_staff_context(
    session: DBSession,
    auth_client: AuthClient,
    authorization: Annotated[str | None, Header()] = None,
) -> StaffContext:
    """Resolve the calling staff member and their hotel.

    Raises:
        HTTPException: 401 if the bearer token is missing or rejected
        Forbidden: If the user is not assigned to a hotel (mapped to 403)
    """
    if not authorization:
        logger.warning("missing_authorization_header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Parse "Bearer <token>" format
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("invalid_authorization_header_format")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = auth_client.get_user_id(parts[1])
    except Unauthorized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )

    hotel_id = StaffProfileRepository(session).get_hotel_id(user_id)
    if not hotel_id:
        logger.warning("staff_without_hotel", staff_id=user_id)
        raise Forbidden(f"Staff member {user_id} is not assigned to a hotel")

    structlog.contextvars.bind_contextvars(hotel_id=hotel_id, staff_id=user_id)
    return StaffContext(hotel_id=hotel_id, staff_id=user_id)


# Type alias for staff context dependency
Staff = Annotated[StaffContext, Depends(get_staff_context)]


# Idempotency key dependency
def get_idempotency_key(
    x_idempotency_key: Annotated[str | None, Header(alias="X-Idempotency-Key")] = None,
) -> str | None:
    """Extract idempotency key from request header (optional)."""
    if x_idempotency_key:
        x_idempotency_key = x_idempotency_key.strip()[:255] or None
    return x_idempotency_key


IdempotencyKey = Annotated[str | None, Depends(get_idempotency_key)]


def client_ip(request: Request) -> str | None:
    """Guest IP from proxy headers, falling back to the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else None


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


Client = Annotated[ClientContext, Depends(get_client_context)]


# Workflow dependency
def get_workflow(
    session: DBSession,
    tokens: TokenSvc,
    notifier: Notifier,
    clock: Clock,
) -> VerificationWorkflow:
    """Provide the verification workflow bound to this request's session."""
    return VerificationWorkflow(
        store=SqlAttestationStore(session),
        events=SqlEventLog(session, clock=clock),
        tokens=tokens,
        notifier=notifier,
        code_pepper=settings.code_pepper,
        guest_base_url=settings.guest_base_url,
        max_verification_attempts=settings.max_verification_attempts,
        idempotency_window=timedelta(hours=settings.idempotency_window_hours),
        sms_sender=settings.sms_sender,
        clock=clock,
    )


# Type alias for workflow dependency
Workflow = Annotated[VerificationWorkflow, Depends(get_workflow)]
