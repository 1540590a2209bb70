"""In-memory collaborators for workflow unit tests."""

import uuid
from dataclasses import replace
from datetime import timedelta

import pytest

from guest_attestation.domain.attestation import (
    AttestationEvent,
    AttestationStatus,
)
from guest_attestation.domain.errors import NotificationFailure, StorageConflict
from guest_attestation.domain.interfaces import (
    IAttestationStore,
    IEventLog,
    INotifier,
    NotificationResult,
)
from guest_attestation.domain.workflow import VerificationWorkflow


class InMemoryAttestationStore(IAttestationStore):
    """Dict-backed store; returns copies so callers cannot mutate state."""

    def __init__(self):
        self.guests = {}
        self.attestations = {}
        self.idempotency_keys = {}
        self.commits = 0
        self.rollbacks = 0

    def upsert_guest(self, hotel_id, guest, stay, created_by=None):
        key = (hotel_id, guest.phone_e164)
        if key not in self.guests:
            self.guests[key] = str(uuid.uuid4())
        return self.guests[key]

    def create_attestation(self, attestation):
        if attestation.id in self.attestations:
            raise ValueError("duplicate attestation id")
        self.attestations[attestation.id] = replace(attestation)
        return attestation

    def get_by_token(self, token):
        for attestation in self.attestations.values():
            if attestation.token == token:
                return replace(attestation)
        return None

    def get_by_id(self, attestation_id, hotel_id=None):
        attestation = self.attestations.get(attestation_id)
        if attestation is None or (hotel_id is not None and attestation.hotel_id != hotel_id):
            return None
        return replace(attestation)

    def mark_verified(self, attestation_id, method, verified_at):
        attestation = self.attestations.get(attestation_id)
        if attestation is None or attestation.status is not AttestationStatus.SENT:
            return False
        if attestation.expires_at <= verified_at:
            return False
        attestation.status = AttestationStatus.VERIFIED
        attestation.verification_method = method
        attestation.verified_at = verified_at
        return True

    def reserve_attempt(self, attestation_id, max_attempts):
        attestation = self.attestations.get(attestation_id)
        if attestation is None or attestation.status is not AttestationStatus.SENT:
            return None
        if attestation.failed_attempts >= max_attempts:
            return None
        attestation.failed_attempts += 1
        return attestation.failed_attempts

    def release_attempt(self, attestation_id):
        attestation = self.attestations[attestation_id]
        if attestation.failed_attempts > 0:
            attestation.failed_attempts -= 1

    def record_notification(self, attestation_id, provider_ref, sms_status):
        attestation = self.attestations[attestation_id]
        attestation.sms_provider_ref = provider_ref
        attestation.sms_status = sms_status

    def find_by_idempotency_key(self, idempotency_key, hotel_id, now):
        entry = self.idempotency_keys.get((idempotency_key, hotel_id))
        if entry is None or entry[1] <= now:
            return None
        return self.get_by_id(entry[0], hotel_id=hotel_id)

    def save_idempotency_key(self, idempotency_key, hotel_id, attestation_id, expires_at, now):
        entry = self.idempotency_keys.get((idempotency_key, hotel_id))
        if entry is not None and entry[1] > now:
            raise StorageConflict(f"Idempotency key {idempotency_key} already bound")
        self.idempotency_keys[(idempotency_key, hotel_id)] = (attestation_id, expires_at)

    def expire_stale(self, now):
        count = 0
        for attestation in self.attestations.values():
            if attestation.status is AttestationStatus.SENT and attestation.expires_at <= now:
                attestation.status = AttestationStatus.EXPIRED
                count += 1
        return count

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class InMemoryEventLog(IEventLog):
    def __init__(self):
        self.events = []

    def record(self, attestation_id, event_type, payload=None, client=None):
        self.events.append(
            AttestationEvent(
                id=str(len(self.events) + 1),
                attestation_id=attestation_id,
                event_type=event_type.value,
                created_at=None,
                payload=payload or {},
                ip=client.ip if client else None,
                user_agent=client.user_agent if client else None,
                latitude=client.latitude if client else None,
                longitude=client.longitude if client else None,
                accuracy=client.accuracy if client else None,
            )
        )

    def list_events(self, attestation_id):
        return [e for e in reversed(self.events) if e.attestation_id == attestation_id]

    def types_for(self, attestation_id):
        return [e.event_type for e in self.events if e.attestation_id == attestation_id]


class RecordingNotifier(INotifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def notify(self, phone_e164, message):
        if self.fail:
            raise NotificationFailure("gateway down")
        self.sent.append((phone_e164, message))
        return NotificationResult(dispatched=True, provider_ref=f"msg-{len(self.sent)}")


@pytest.fixture
def store():
    return InMemoryAttestationStore()


@pytest.fixture
def events():
    return InMemoryEventLog()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def make_workflow(store, events, token_service, notifier, clock, code_pepper):
    """Build a workflow over the in-memory collaborators, with overrides."""

    def _make(**overrides):
        options = dict(
            store=store,
            events=events,
            tokens=token_service,
            notifier=notifier,
            code_pepper=code_pepper,
            guest_base_url="https://guest.example.test",
            max_verification_attempts=5,
            idempotency_window=timedelta(hours=24),
            clock=clock,
        )
        options.update(overrides)
        return VerificationWorkflow(**options)

    return _make


@pytest.fixture
def workflow(make_workflow):
    return make_workflow()
