"""Integration tests for the staff and guest HTTP APIs.

Tests the complete check-in flow including:
- Staff authentication and hotel scoping
- Field validation errors
- Idempotent sends
- Guest link handling and consent
- Clerk code verification
- Event trail contents
"""

from datetime import timedelta
from urllib.parse import unquote

import pytest

STAFF_A = {"Authorization": "Bearer clerk-a-token"}
STAFF_B = {"Authorization": "Bearer clerk-b-token"}

SEND_BODY = {
    "guest": {"fullName": "Jane Doe", "phoneE164": "+15551234567"},
    "stay": {
        "ccLast4": "1234",
        "checkInDate": "2025-01-15",
        "checkOutDate": "2025-01-17",
    },
    "policyText": "No smoking in rooms. Quiet hours 10pm-7am. Damages are billed to the card on file.",
}


def _token(guest_url: str) -> str:
    return unquote(guest_url.split("/guest/", 1)[1])


@pytest.fixture
def sent(client):
    """An attestation created by hotel-a staff."""
    response = client.post("/v1/attestations", json=SEND_BODY, headers=STAFF_A)
    assert response.status_code == 201
    body = response.json()
    body["token"] = _token(body["guestUrl"])
    return body


class TestStaffAuthentication:
    def test_missing_header(self, client):
        response = client.post("/v1/attestations", json=SEND_BODY)

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_malformed_header(self, client):
        response = client.post(
            "/v1/attestations", json=SEND_BODY, headers={"Authorization": "Token abc"}
        )

        assert response.status_code == 401

    def test_rejected_token(self, client):
        response = client.post(
            "/v1/attestations", json=SEND_BODY, headers={"Authorization": "Bearer stolen"}
        )

        assert response.status_code == 401

    def test_staff_without_hotel(self, client):
        response = client.post(
            "/v1/attestations",
            json=SEND_BODY,
            headers={"Authorization": "Bearer drifter-token"},
        )

        assert response.status_code == 403


class TestSendAttestation:
    def test_created(self, client, sent, notifier):
        assert sent["attestationId"]
        assert sent["guestId"]
        assert sent["guestUrl"].startswith("https://guest.example.test/guest/")
        assert len(sent["code"]) == 6 and sent["code"].isdigit()
        assert sent["notified"] is True
        assert sent["replayed"] is False

        assert len(notifier.sent) == 1
        phone, message = notifier.sent[0]
        assert phone == "+15551234567"
        assert sent["guestUrl"] in message

    def test_field_errors(self, client):
        body = {
            **SEND_BODY,
            "guest": {"fullName": "", "phoneE164": "555-1234"},
            "stay": {**SEND_BODY["stay"], "ccLast4": "12"},
        }

        response = client.post("/v1/attestations", json=body, headers=STAFF_A)

        assert response.status_code == 422
        assert set(response.json()["errors"]) == {"fullName", "phoneE164", "ccLast4"}

    def test_idempotent_replay(self, client, notifier):
        headers = {**STAFF_A, "X-Idempotency-Key": "checkin-42"}

        first = client.post("/v1/attestations", json=SEND_BODY, headers=headers)
        second = client.post("/v1/attestations", json=SEND_BODY, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["attestationId"] == first.json()["attestationId"]
        assert second.json()["code"] == first.json()["code"]
        assert second.json()["replayed"] is True
        assert len(notifier.sent) == 1

    def test_idempotency_key_per_hotel(self, client):
        first = client.post(
            "/v1/attestations",
            json=SEND_BODY,
            headers={**STAFF_A, "X-Idempotency-Key": "checkin-42"},
        )
        other_hotel = client.post(
            "/v1/attestations",
            json=SEND_BODY,
            headers={**STAFF_B, "X-Idempotency-Key": "checkin-42"},
        )

        assert other_hotel.status_code == 201
        assert other_hotel.json()["attestationId"] != first.json()["attestationId"]


class TestGuestFlow:
    def test_full_check_in(self, client, sent):
        token = sent["token"]

        init = client.post("/v1/guest/init", json={"token": token})
        assert init.json() == {"valid": True, "policyText": SEND_BODY["policyText"]}

        geo = client.post(
            "/v1/guest/events",
            json={
                "token": token,
                "eventType": "geo.capture",
                "latitude": 40.7128,
                "longitude": -74.006,
                "accuracy": 15.0,
            },
        )
        assert geo.json() == {"ok": True}

        confirm = client.post("/v1/guest/confirm", json={"token": token, "accepted": True})
        assert confirm.json() == {"ok": True, "code": sent["code"]}

        verify = client.post(
            f"/v1/attestations/{sent['attestationId']}/verify",
            json={"code": sent["code"]},
            headers=STAFF_A,
        )
        assert verify.json()["ok"] is True
        assert verify.json()["verifiedAt"]

        again = client.post(
            f"/v1/attestations/{sent['attestationId']}/verify",
            json={"code": sent["code"]},
            headers=STAFF_A,
        )
        assert again.json() == {"ok": False, "verifiedAt": None, "reason": "already verified"}

        status = client.get(f"/v1/attestations/{sent['attestationId']}", headers=STAFF_A)
        assert status.json()["status"] == "verified"
        assert status.json()["verificationMethod"] == "code"
        assert "code" not in status.json()

        events = client.get(f"/v1/attestations/{sent['attestationId']}/events", headers=STAFF_A)
        assert [e["eventType"] for e in events.json()["events"]] == [
            "code.submit",
            "policy.accept",
            "geo.capture",
            "page.open",
            "sms.sent",
        ]
        geo_event = events.json()["events"][2]
        assert geo_event["latitude"] == 40.7128
        assert geo_event["longitude"] == -74.006
        assert geo_event["accuracy"] == 15.0

    def test_consent_declined(self, client, sent):
        response = client.post(
            "/v1/guest/confirm", json={"token": sent["token"], "accepted": False}
        )

        assert response.json() == {"ok": False, "code": None}

    @pytest.mark.parametrize("token", [None, "", "not-a-token"])
    def test_bad_token_is_neutral(self, client, token):
        assert client.post("/v1/guest/init", json={"token": token}).json() == {
            "valid": False,
            "policyText": None,
        }
        assert client.post(
            "/v1/guest/confirm", json={"token": token, "accepted": True}
        ).json() == {"ok": False, "code": None}

    def test_unknown_event_type(self, client, sent):
        response = client.post(
            "/v1/guest/events", json={"token": sent["token"], "eventType": "page.scroll"}
        )

        assert response.json() == {"ok": False}

    def test_guest_cannot_report_code_events(self, client, sent):
        response = client.post(
            "/v1/guest/events", json={"token": sent["token"], "eventType": "code.submit"}
        )

        assert response.json() == {"ok": False}

    def test_client_ip_from_forwarded_header(self, client, sent):
        client.post(
            "/v1/guest/init",
            json={"token": sent["token"]},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "GuestPhone/1.0"},
        )

        events = client.get(f"/v1/attestations/{sent['attestationId']}/events", headers=STAFF_A)
        page_open = events.json()["events"][0]
        assert page_open["eventType"] == "page.open"
        assert page_open["ip"] == "203.0.113.7"
        assert page_open["userAgent"] == "GuestPhone/1.0"


class TestVerification:
    def test_wrong_code_then_lockout(self, client, sent):
        url = f"/v1/attestations/{sent['attestationId']}/verify"
        wrong = "000000" if sent["code"] != "000000" else "111111"

        reasons = [
            client.post(url, json={"code": wrong}, headers=STAFF_A).json()["reason"]
            for _ in range(5)
        ]
        assert reasons == ["invalid code"] * 5

        locked = client.post(url, json={"code": sent["code"]}, headers=STAFF_A)
        assert locked.json()["reason"] == "too many attempts"

        status = client.get(f"/v1/attestations/{sent['attestationId']}", headers=STAFF_A)
        assert status.json()["failedAttempts"] == 5
        assert status.json()["status"] == "sent"

    def test_other_hotel_gets_not_found(self, client, sent):
        attestation_id = sent["attestationId"]

        assert client.get(f"/v1/attestations/{attestation_id}", headers=STAFF_B).status_code == 404
        assert (
            client.post(
                f"/v1/attestations/{attestation_id}/verify",
                json={"code": sent["code"]},
                headers=STAFF_B,
            ).status_code
            == 404
        )
        assert (
            client.get(f"/v1/attestations/{attestation_id}/events", headers=STAFF_B).status_code
            == 404
        )

    def test_unknown_attestation(self, client):
        response = client.get("/v1/attestations/does-not-exist", headers=STAFF_A)

        assert response.status_code == 404

    def test_expired_attestation(self, client, sent, clock):
        clock.advance(timedelta(hours=24))

        assert client.post("/v1/guest/init", json={"token": sent["token"]}).json()["valid"] is False

        verify = client.post(
            f"/v1/attestations/{sent['attestationId']}/verify",
            json={"code": sent["code"]},
            headers=STAFF_A,
        )
        assert verify.json()["reason"] == "expired"

        status = client.get(f"/v1/attestations/{sent['attestationId']}", headers=STAFF_A)
        assert status.json()["status"] == "expired"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
