"""Infrastructure layer exports."""

from guest_attestation.infrastructure.event_log import SqlEventLog
from guest_attestation.infrastructure.repository import (
    SqlAttestationStore,
    StaffProfileRepository,
)

__all__ = [
    "SqlAttestationStore",
    "SqlEventLog",
    "StaffProfileRepository",
]
