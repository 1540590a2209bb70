"""Fixtures for tests that run against a real SQLite database."""

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from guest_attestation.api import dependencies
from guest_attestation.api.main import app
from guest_attestation.config import settings
from guest_attestation.domain.attestation import Attestation, AttestationStatus
from guest_attestation.domain.codes import generate_salt, hash_code
from guest_attestation.domain.workflow import VerificationWorkflow
from guest_attestation.infrastructure.auth_client import StaffAuthClient
from guest_attestation.infrastructure.event_log import SqlEventLog
from guest_attestation.infrastructure.notifications import ConsoleNotifier
from guest_attestation.infrastructure.repository import (
    SqlAttestationStore,
    StaffProfileRepository,
)

# Bearer token -> auth service user id
STAFF_TOKENS = {
    "clerk-a-token": "staff-a",
    "clerk-b-token": "staff-b",
    "drifter-token": "staff-unassigned",
}

# Auth service user id -> hotel
STAFF_HOTELS = {
    "staff-a": "hotel-a",
    "staff-b": "hotel-b",
    "staff-unassigned": None,
}


class CountingNotifier(ConsoleNotifier):
    """Console notifier that remembers every message it was asked to send."""

    def __init__(self):
        self.sent = []

    def notify(self, phone_e164, message):
        self.sent.append((phone_e164, message))
        return super().notify(phone_e164, message)


@pytest.fixture
def store(db_session):
    return SqlAttestationStore(db_session)


@pytest.fixture
def event_log(db_session, clock):
    return SqlEventLog(db_session, clock=clock)


@pytest.fixture
def make_attestation(store, clock, guest_input, stay_input, policy_text, code_pepper):
    """Insert a SENT attestation (and its guest) directly through the store."""
    counter = {"n": 0}

    def _make(hotel_id="hotel-a", code="123456", **overrides):
        counter["n"] += 1
        now = clock()
        guest_id = store.upsert_guest(hotel_id, guest_input, stay_input, created_by="staff-1")
        salt = generate_salt()
        values = dict(
            id=f"att-{counter['n']}",
            hotel_id=hotel_id,
            guest_id=guest_id,
            guest_full_name=guest_input.full_name,
            guest_phone_e164=guest_input.phone_e164,
            cc_last4=stay_input.cc_last4,
            check_in_date=stay_input.check_in_date,
            check_out_date=stay_input.check_out_date,
            policy_text=policy_text,
            code_hash=hash_code(code, salt, code_pepper),
            code_salt=salt,
            code_display=code,
            token=f"token-{counter['n']}",
            sent_at=now,
            expires_at=now + timedelta(hours=24),
            status=AttestationStatus.SENT,
        )
        values.update(overrides)
        attestation = store.create_attestation(Attestation(**values))
        store.commit()
        return attestation

    return _make


@pytest.fixture
def make_sql_workflow(token_service, clock, code_pepper):
    """Build a workflow bound to the given session, as the API does per request."""

    def _make(session, notifier=None, **overrides):
        values = dict(
            store=SqlAttestationStore(session),
            events=SqlEventLog(session, clock=clock),
            tokens=token_service,
            notifier=notifier or ConsoleNotifier(),
            code_pepper=code_pepper,
            guest_base_url="https://guest.example.test",
            max_verification_attempts=5,
            clock=clock,
        )
        values.update(overrides)
        return VerificationWorkflow(**values)

    return _make


def _auth_service(request: httpx.Request) -> httpx.Response:
    token = request.headers.get("Authorization", "").removeprefix("Bearer ")
    user_id = STAFF_TOKENS.get(token)
    if user_id is None:
        return httpx.Response(401, json={"msg": "invalid JWT"})
    return httpx.Response(200, json={"id": user_id, "aud": "authenticated"})


@pytest.fixture
def notifier():
    return CountingNotifier()


@pytest.fixture
def client(session_factory, clock, notifier, monkeypatch, code_pepper):
    """TestClient wired to the per-test database, clock, notifier and auth service.

    The lifespan is not entered, so no background sweep runs.
    """
    monkeypatch.setattr(settings, "signing_secret", "test-signing-secret")
    monkeypatch.setattr(settings, "code_pepper", code_pepper)
    monkeypatch.setattr(settings, "guest_base_url", "https://guest.example.test")
    monkeypatch.setattr(settings, "token_ttl_hours", 24)
    monkeypatch.setattr(settings, "max_verification_attempts", 5)

    with session_factory() as session:
        profiles = StaffProfileRepository(session)
        for user_id, hotel_id in STAFF_HOTELS.items():
            profiles.save_profile(user_id, hotel_id)
        session.commit()

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    auth_client = StaffAuthClient(
        base_url="https://auth.example.test",
        api_key="anon-key",
        transport=httpx.MockTransport(_auth_service),
    )

    app.dependency_overrides[dependencies.get_db] = override_get_db
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier
    app.dependency_overrides[dependencies.get_auth_client] = lambda: auth_client

    yield TestClient(app)

    app.dependency_overrides.clear()
    auth_client.close()
