"""Background sweep that marks overdue attestations as expired.

Expiry is always checked at read time, so the sweep only keeps stored
status in line for reporting. Missing a run never changes behavior.
"""

import asyncio
from typing import Callable

import structlog

from guest_attestation.domain.workflow import VerificationWorkflow
from guest_attestation.infrastructure.database import get_db_session

logger = structlog.get_logger(__name__)


def sweep_once(workflow_factory: Callable[..., VerificationWorkflow]) -> int:
    """Run one sweep in its own session.

    Args:
        workflow_factory: Builds a workflow bound to the given session

    Returns:
        Number of attestations flipped to EXPIRED
    """
    with get_db_session() as session:
        return workflow_factory(session).expire_stale()


async def run_expiry_sweep(
    sweep: Callable[[], int],
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Call sweep() every interval until stop_event is set.

    Errors are logged and the loop keeps going; the next interval retries.
    """
    logger.info("expiry_sweep_starting", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            count = await asyncio.to_thread(sweep)
            if count:
                logger.info("expiry_sweep_completed", expired=count)
        except Exception as e:
            logger.error("expiry_sweep_error", error=str(e))

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("expiry_sweep_stopped")
