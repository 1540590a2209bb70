"""Append-only attestation event log.

Every lifecycle step (SMS sent, page opened, location captured, policy
accepted, code submitted or rejected) is written here together with the
client facts available at the time.

Design principles:
- Insert-only (no updates or deletes)
- Written in the caller's transaction, inside a SAVEPOINT
- A failed write is logged and dropped; it never fails the caller
"""

from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from guest_attestation.domain.attestation import (
    AttestationEvent,
    ClientContext,
    EventType,
    as_utc,
)
from guest_attestation.domain.interfaces import IEventLog
from guest_attestation.domain.tokens import utcnow
from guest_attestation.infrastructure.models import AttestationEvent as AttestationEventModel

logger = structlog.get_logger(__name__)


class SqlEventLog(IEventLog):
    """SQLAlchemy event log sharing the request's session."""

    def __init__(self, db_session: Session, clock: Callable[[], datetime] = utcnow):
        """Initialize event log with database session.

        Args:
            db_session: SQLAlchemy database session for writing events
            clock: Returns the current aware UTC time
        """
        self.db_session = db_session
        self._clock = clock

    def record(
        self,
        attestation_id: str,
        event_type: EventType,
        payload: Optional[dict[str, Any]] = None,
        client: Optional[ClientContext] = None,
    ) -> None:
        client = client or ClientContext()
        event_name = getattr(event_type, "value", str(event_type))

        try:
            # Savepoint so a failed insert leaves the parent transaction usable
            with self.db_session.begin_nested():
                self.db_session.add(
                    AttestationEventModel(
                        attestation_id=attestation_id,
                        event_type=event_name,
                        payload=payload or {},
                        ip=client.ip,
                        user_agent=client.user_agent,
                        latitude=client.latitude,
                        longitude=client.longitude,
                        accuracy=client.accuracy,
                        created_at=self._clock(),
                    )
                )

            logger.info(
                "attestation_event_recorded",
                attestation_id=attestation_id,
                event_type=event_name,
            )

        except Exception as e:
            # Don't raise - event logging failure should not break the request
            logger.error(
                "attestation_event_write_failed",
                attestation_id=attestation_id,
                event_type=event_name,
                error=str(e),
            )

    def list_events(self, attestation_id: str) -> list[AttestationEvent]:
        rows = self.db_session.scalars(
            select(AttestationEventModel)
            .where(AttestationEventModel.attestation_id == attestation_id)
            .order_by(AttestationEventModel.created_at.desc(), AttestationEventModel.id.desc())
        ).all()

        return [
            AttestationEvent(
                id=str(row.id),
                attestation_id=row.attestation_id,
                event_type=row.event_type,
                created_at=as_utc(row.created_at),
                payload=row.payload or {},
                ip=row.ip,
                user_agent=row.user_agent,
                latitude=row.latitude,
                longitude=row.longitude,
                accuracy=row.accuracy,
            )
            for row in rows
        ]
