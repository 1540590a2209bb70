"""Unit tests for check-in input validation and attestation state helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from guest_attestation.domain.attestation import (
    Attestation,
    AttestationStatus,
    GuestInput,
    StayInput,
    validate_check_in,
)
from guest_attestation.domain.errors import ValidationError

TODAY = date(2025, 1, 15)
POLICY = "No smoking in rooms. Quiet hours 10pm-7am."


def _stay(**overrides):
    values = dict(cc_last4="1234", check_in_date=TODAY, check_out_date=TODAY + timedelta(days=2))
    values.update(overrides)
    return StayInput(**values)


def _guest(**overrides):
    values = dict(full_name="Jane Doe", phone_e164="+15551234567")
    values.update(overrides)
    return GuestInput(**values)


class TestValidateCheckIn:
    """Tests for staff input validation."""

    def test_valid_input(self):
        validate_check_in(_guest(), _stay(), POLICY, today=TODAY)

    def test_same_day_checkout_allowed(self):
        validate_check_in(_guest(), _stay(check_out_date=TODAY), POLICY, today=TODAY)

    @pytest.mark.parametrize("phone", ["5551234567", "+0551234567", "+1555", "+1555123456789012", "+1-555-123-4567"])
    def test_bad_phone(self, phone):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(_guest(phone_e164=phone), _stay(), POLICY, today=TODAY)
        assert set(exc_info.value.errors) == {"phoneE164"}

    @pytest.mark.parametrize("last4", ["123", "12345", "12a4", ""])
    def test_bad_card_last4(self, last4):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(_guest(), _stay(cc_last4=last4), POLICY, today=TODAY)
        assert set(exc_info.value.errors) == {"ccLast4"}

    def test_checkout_in_past(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(
                _guest(),
                _stay(check_in_date=TODAY - timedelta(days=3), check_out_date=TODAY - timedelta(days=1)),
                POLICY,
                today=TODAY,
            )
        assert "past" in exc_info.value.errors["checkOutDate"]

    def test_checkout_before_checkin(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(
                _guest(),
                _stay(check_in_date=TODAY + timedelta(days=3), check_out_date=TODAY + timedelta(days=1)),
                POLICY,
                today=TODAY,
            )
        assert "before check-in" in exc_info.value.errors["checkOutDate"]

    def test_short_policy(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(_guest(), _stay(), "Be nice.", today=TODAY)
        assert set(exc_info.value.errors) == {"policyText"}

    def test_all_errors_reported_together(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_check_in(
                _guest(full_name="  ", phone_e164="123"),
                _stay(cc_last4="12"),
                "",
                today=TODAY,
            )

        assert set(exc_info.value.errors) == {"fullName", "phoneE164", "ccLast4", "policyText"}
        assert "fullName" in str(exc_info.value)


class TestAttestationExpiry:
    """Tests for read-time expiry."""

    def _attestation(self, status=AttestationStatus.SENT):
        sent_at = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        return Attestation(
            id="att-1",
            hotel_id="hotel-a",
            guest_id="guest-1",
            guest_full_name="Jane Doe",
            guest_phone_e164="+15551234567",
            cc_last4="1234",
            check_in_date=TODAY,
            check_out_date=TODAY + timedelta(days=2),
            policy_text=POLICY,
            code_hash="0" * 64,
            code_salt="salt",
            code_display="123456",
            token="token",
            sent_at=sent_at,
            expires_at=sent_at + timedelta(hours=24),
            status=status,
        )

    def test_sent_before_deadline(self):
        attestation = self._attestation()
        now = attestation.expires_at - timedelta(seconds=1)

        assert attestation.is_expired(now) is False
        assert attestation.effective_status(now) is AttestationStatus.SENT

    def test_sent_at_deadline_is_expired(self):
        attestation = self._attestation()

        assert attestation.effective_status(attestation.expires_at) is AttestationStatus.EXPIRED

    def test_verified_never_expires(self):
        attestation = self._attestation(status=AttestationStatus.VERIFIED)
        later = attestation.expires_at + timedelta(days=30)

        assert attestation.effective_status(later) is AttestationStatus.VERIFIED

    def test_naive_datetimes_treated_as_utc(self):
        attestation = self._attestation()
        naive_now = (attestation.expires_at + timedelta(minutes=1)).replace(tzinfo=None)

        assert attestation.is_expired(naive_now) is True

    def test_terminal_states(self):
        assert AttestationStatus.SENT.is_terminal is False
        assert AttestationStatus.VERIFIED.is_terminal is True
        assert AttestationStatus.EXPIRED.is_terminal is True
