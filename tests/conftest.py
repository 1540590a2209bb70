"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- A controllable clock
- File-backed SQLite database per test (schema from the ORM models)
- Database session management
- Sample guest/stay input
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from guest_attestation.domain.attestation import GuestInput, StaffContext, StayInput
from guest_attestation.domain.tokens import GuestTokenService
from guest_attestation.infrastructure.database import (
    create_db_engine,
    create_session_factory,
    drop_all_tables,
    init_db,
)

SIGNING_SECRET = "test-signing-secret"
CODE_PEPPER = "test-code-pepper"
POLICY_TEXT = "No smoking in rooms. Quiet hours 10pm-7am. Damages are billed to the card on file."

HOTEL_A = "hotel-a"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def code_pepper():
    return CODE_PEPPER


@pytest.fixture
def policy_text():
    return POLICY_TEXT


@pytest.fixture
def clock():
    """Clock fixed at the morning of check-in day."""
    return FakeClock(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def token_service(clock):
    return GuestTokenService(SIGNING_SECRET, ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def staff():
    return StaffContext(hotel_id=HOTEL_A, staff_id="staff-1")


@pytest.fixture
def guest_input():
    return GuestInput(full_name="Jane Doe", phone_e164="+15551234567")


@pytest.fixture
def stay_input():
    return StayInput(
        cc_last4="1234",
        check_in_date=date(2025, 1, 15),
        check_out_date=date(2025, 1, 17),
    )


@pytest.fixture
def test_engine(tmp_path):
    """Create a file-backed SQLite database with all tables for one test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'attestations.db'}")
    init_db(engine)

    yield engine

    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
