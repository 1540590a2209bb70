"""Guest attestation verification workflow.

This module contains the state machine behind guest check-in:

    SendAttestation      staff   -> guest upserted, attestation SENT, SMS out
    InitGuestSession     guest   -> token checked, policy snapshot returned
    ConfirmGuestConsent  guest   -> policy.accept logged, original code shown
    VerifyClerkCode      staff   -> code compared, SENT -> VERIFIED exactly once

Rules implemented:
- Only send_attestation writes code_hash, code_salt and code_display
- VERIFIED and EXPIRED are terminal; verified_at is set at most once
  (enforced by the store's conditional update, not by reads here)
- Guest-facing calls never reveal why a token was rejected
- Guest notification happens after the attestation is committed and
  its failure never rolls the attestation back
- Event logging is best-effort and never fails the parent operation
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import quote

import structlog

from guest_attestation.domain.attestation import (
    GUEST_REPORTABLE_EVENTS,
    REASON_ALREADY_VERIFIED,
    REASON_EXPIRED,
    REASON_INVALID_CODE,
    REASON_TOO_MANY_ATTEMPTS,
    Attestation,
    AttestationEvent,
    AttestationStatus,
    ClientContext,
    ConsentResult,
    EventType,
    GuestInput,
    GuestSessionResult,
    SendAttestationResult,
    StaffContext,
    StayInput,
    VerificationMethod,
    VerifyResult,
    validate_check_in,
)
from guest_attestation.domain.codes import (
    generate_code,
    generate_salt,
    hash_code,
    verify_code,
)
from guest_attestation.domain.errors import (
    NotFound,
    NotificationFailure,
    StorageConflict,
    Unauthorized,
)
from guest_attestation.domain.interfaces import (
    IAttestationStore,
    IEventLog,
    INotifier,
    NotificationResult,
)
from guest_attestation.domain.tokens import GuestTokenService, utcnow

logger = structlog.get_logger(__name__)

SMS_STATUS_SENT = "sent"
SMS_STATUS_FAILED = "failed"


def mask_phone(phone: str) -> str:
    """Keep only the last four digits of a phone number for logs and events."""
    if not phone or len(phone) <= 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]


class VerificationWorkflow:
    """Orchestrates attestation creation, guest consent and clerk verification."""

    def __init__(
        self,
        store: IAttestationStore,
        events: IEventLog,
        tokens: GuestTokenService,
        notifier: INotifier,
        code_pepper: str,
        guest_base_url: str,
        max_verification_attempts: int = 5,
        idempotency_window: timedelta = timedelta(hours=24),
        sms_sender: str = "Verity",
        clock: Callable[[], datetime] = utcnow,
    ):
        if not code_pepper:
            raise ValueError("code_pepper cannot be empty")
        if max_verification_attempts < 1:
            raise ValueError("max_verification_attempts must be at least 1")

        self.store = store
        self.events = events
        self.tokens = tokens
        self.notifier = notifier
        self._code_pepper = code_pepper
        self.guest_base_url = guest_base_url.rstrip("/")
        self.max_verification_attempts = max_verification_attempts
        self.idempotency_window = idempotency_window
        self.sms_sender = sms_sender
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def guest_url(self, token: str) -> str:
        return f"{self.guest_base_url}/guest/{quote(token, safe='')}"

    # ------------------------------------------------------------------
    # Staff: create attestation and notify the guest
    # ------------------------------------------------------------------

    def send_attestation(
        self,
        staff: Optional[StaffContext],
        guest: GuestInput,
        stay: StayInput,
        policy_text: str,
        idempotency_key: Optional[str] = None,
    ) -> SendAttestationResult:
        """Create an attestation, persist it and send the guest link.

        Flow:
        1. Require a staff context with a hotel
        2. Validate input (all field errors at once)
        3. Replay an earlier result for a known idempotency key
        4. Upsert the guest, generate code + digest, issue the token and
           insert the attestation with its sms.sent event, then commit
        5. Notify the guest; failure is reported, not rolled back

        Raises:
            Unauthorized: If no staff context or hotel is present
            ValidationError: If any input field is invalid
        """
        if staff is None or not staff.hotel_id:
            raise Unauthorized("Staff context with a hotel is required")

        now = self._clock()
        validate_check_in(guest, stay, policy_text, today=now.date())

        if idempotency_key:
            existing = self.store.find_by_idempotency_key(
                idempotency_key, staff.hotel_id, now
            )
            if existing:
                logger.info(
                    "send_attestation_replayed",
                    attestation_id=existing.id,
                    hotel_id=staff.hotel_id,
                )
                return self._replay_result(existing)

        code = generate_code()
        try:
            attestation = self._create(staff, guest, stay, policy_text, code, now, idempotency_key)
            self.store.commit()
        except StorageConflict:
            # A concurrent request with the same idempotency key won the insert
            self.store.rollback()
            existing = None
            if idempotency_key:
                existing = self.store.find_by_idempotency_key(
                    idempotency_key, staff.hotel_id, now
                )
            if existing is None:
                raise
            logger.info(
                "send_attestation_replayed_after_conflict",
                attestation_id=existing.id,
                hotel_id=staff.hotel_id,
            )
            return self._replay_result(existing)
        except Exception:
            self.store.rollback()
            logger.exception("send_attestation_failed", hotel_id=staff.hotel_id)
            raise

        url = self.guest_url(attestation.token)
        logger.info(
            "attestation_created",
            attestation_id=attestation.id,
            guest_id=attestation.guest_id,
            hotel_id=staff.hotel_id,
        )

        notification = self._notify_guest(attestation, url)

        return SendAttestationResult(
            attestation_id=attestation.id,
            guest_id=attestation.guest_id,
            guest_url=url,
            code=code,
            notified=notification.dispatched,
            notification_error=notification.error,
            provider_ref=notification.provider_ref,
        )

    def _create(
        self,
        staff: StaffContext,
        guest: GuestInput,
        stay: StayInput,
        policy_text: str,
        code: str,
        now: datetime,
        idempotency_key: Optional[str],
    ) -> Attestation:
        guest_id = self.store.upsert_guest(staff.hotel_id, guest, stay, created_by=staff.staff_id)

        salt = generate_salt()
        attestation_id = str(uuid.uuid4())
        token = self.tokens.issue_token(attestation_id, guest_id, staff.hotel_id)

        attestation = self.store.create_attestation(
            Attestation(
                id=attestation_id,
                hotel_id=staff.hotel_id,
                guest_id=guest_id,
                guest_full_name=guest.full_name.strip(),
                guest_phone_e164=guest.phone_e164,
                dl_number=guest.dl_number,
                dl_state=guest.dl_state,
                cc_last4=stay.cc_last4,
                check_in_date=stay.check_in_date,
                check_out_date=stay.check_out_date,
                policy_text=policy_text,
                code_hash=hash_code(code, salt, self._code_pepper),
                code_salt=salt,
                code_display=code,
                token=token,
                status=AttestationStatus.SENT,
                sent_at=now,
                expires_at=now + self.tokens.ttl,
                created_by=staff.staff_id,
                idempotency_key=idempotency_key,
            )
        )

        if idempotency_key:
            self.store.save_idempotency_key(
                idempotency_key,
                staff.hotel_id,
                attestation_id,
                expires_at=now + self.idempotency_window,
                now=now,
            )

        self.events.record(
            attestation_id,
            EventType.SMS_SENT,
            payload={"to": mask_phone(guest.phone_e164), "sent_at": now.isoformat()},
        )
        return attestation

    def _notify_guest(self, attestation: Attestation, url: str) -> NotificationResult:
        message = f"{self.sms_sender}: please review and confirm your check-in: {url}"
        try:
            result = self.notifier.notify(attestation.guest_phone_e164, message)
        except NotificationFailure as e:
            logger.warning(
                "guest_notification_failed",
                attestation_id=attestation.id,
                to=mask_phone(attestation.guest_phone_e164),
                error=str(e),
            )
            result = NotificationResult(dispatched=False, error=str(e))

        try:
            self.store.record_notification(
                attestation.id,
                result.provider_ref,
                SMS_STATUS_SENT if result.dispatched else SMS_STATUS_FAILED,
            )
            self.store.commit()
        except Exception:
            # Bookkeeping only; the attestation itself is already committed
            self.store.rollback()
            logger.exception("notification_bookkeeping_failed", attestation_id=attestation.id)

        return result

    def _replay_result(self, attestation: Attestation) -> SendAttestationResult:
        return SendAttestationResult(
            attestation_id=attestation.id,
            guest_id=attestation.guest_id,
            guest_url=self.guest_url(attestation.token),
            code=attestation.code_display or "",
            notified=attestation.sms_status == SMS_STATUS_SENT,
            provider_ref=attestation.sms_provider_ref,
            replayed=True,
        )

    # ------------------------------------------------------------------
    # Guest: open link, report events, accept policy
    # ------------------------------------------------------------------

    def _resolve_guest_token(self, token: Optional[str]) -> Optional[Attestation]:
        """Verified token -> attestation, or None for any failure."""
        verification = self.tokens.verify_token(token)
        if not verification.valid:
            return None

        attestation = self.store.get_by_token(token)
        if attestation is None or attestation.id != verification.claims.attestation_id:
            logger.info(
                "guest_token_without_attestation",
                attestation_id=verification.claims.attestation_id,
            )
            return None
        return attestation

    def init_guest_session(
        self, token: Optional[str], client: Optional[ClientContext] = None
    ) -> GuestSessionResult:
        """Validate a guest link and return the frozen policy text.

        Idempotent with respect to attestation state; each call only
        appends a page.open event.
        """
        attestation = self._resolve_guest_token(token)
        if attestation is None:
            return GuestSessionResult(valid=False)

        self.events.record(attestation.id, EventType.PAGE_OPEN, client=client or ClientContext())
        self.store.commit()
        return GuestSessionResult(valid=True, policy_text=attestation.policy_text)

    def record_guest_event(
        self,
        token: Optional[str],
        event_type: EventType,
        client: Optional[ClientContext] = None,
    ) -> bool:
        """Log a guest-page event (page open, geolocation, acceptance).

        Returns False for unknown event types or unusable tokens, and for
        policy acceptance once the attestation is no longer SENT.
        """
        if event_type not in GUEST_REPORTABLE_EVENTS:
            return False

        attestation = self._resolve_guest_token(token)
        if attestation is None:
            return False

        if (
            event_type is EventType.POLICY_ACCEPT
            and attestation.effective_status(self._clock()) is not AttestationStatus.SENT
        ):
            logger.info(
                "guest_consent_on_closed_attestation",
                attestation_id=attestation.id,
                status=attestation.status.value,
            )
            return False

        self.events.record(attestation.id, event_type, client=client or ClientContext())
        self.store.commit()
        return True

    def confirm_guest_consent(
        self,
        token: Optional[str],
        accepted: bool,
        client: Optional[ClientContext] = None,
    ) -> ConsentResult:
        """Record policy acceptance and hand back the originally issued code.

        Never generates a new code or touches the stored digest. Safe to
        repeat while the attestation is SENT; each call appends another
        policy.accept event.
        """
        attestation = self._resolve_guest_token(token)
        if attestation is None:
            return ConsentResult(ok=False)

        if attestation.effective_status(self._clock()) is not AttestationStatus.SENT:
            logger.info(
                "guest_consent_on_closed_attestation",
                attestation_id=attestation.id,
                status=attestation.status.value,
            )
            return ConsentResult(ok=False)

        if not accepted:
            logger.info("guest_consent_declined", attestation_id=attestation.id)
            return ConsentResult(ok=False)

        self.events.record(
            attestation.id,
            EventType.POLICY_ACCEPT,
            payload={"accepted_at": self._clock().isoformat()},
            client=client or ClientContext(),
        )
        self.store.commit()
        return ConsentResult(ok=True, code=attestation.code_display)

    # ------------------------------------------------------------------
    # Staff: verify the code read from the guest's screen
    # ------------------------------------------------------------------

    def verify_clerk_code(
        self,
        staff: Optional[StaffContext],
        attestation_id: str,
        submitted_code: str,
    ) -> VerifyResult:
        """Compare a clerk-entered code and mark the attestation verified once.

        Raises:
            Unauthorized: If no staff context is present
            NotFound: If the attestation does not exist for the staff's hotel
        """
        if staff is None or not staff.hotel_id:
            raise Unauthorized("Staff context with a hotel is required")

        attestation = self.store.get_by_id(attestation_id, hotel_id=staff.hotel_id)
        if attestation is None:
            raise NotFound(f"Attestation {attestation_id} not found")

        if attestation.status is AttestationStatus.VERIFIED:
            return VerifyResult(ok=False, reason=REASON_ALREADY_VERIFIED)

        now = self._clock()
        if attestation.is_expired(now):
            return VerifyResult(ok=False, reason=REASON_EXPIRED)

        if attestation.failed_attempts >= self.max_verification_attempts:
            logger.warning(
                "verification_locked_out",
                attestation_id=attestation.id,
                failed_attempts=attestation.failed_attempts,
            )
            return VerifyResult(ok=False, reason=REASON_TOO_MANY_ATTEMPTS)

        # Counted before comparing; a correct code hands the attempt back
        attempts = self.store.reserve_attempt(attestation.id, self.max_verification_attempts)
        if attempts is None:
            self.store.rollback()
            return VerifyResult(
                ok=False,
                reason=self._closed_reason(attestation.id, now, REASON_TOO_MANY_ATTEMPTS),
            )

        if not verify_code(
            submitted_code, attestation.code_hash, attestation.code_salt, self._code_pepper
        ):
            self.events.record(
                attestation.id,
                EventType.CODE_FAILED,
                payload={"attempt": attempts, "staff_id": staff.staff_id},
            )
            logger.info(
                "verification_code_mismatch",
                attestation_id=attestation.id,
                attempt=attempts,
            )
            self.store.commit()
            return VerifyResult(ok=False, reason=REASON_INVALID_CODE)

        if not self.store.mark_verified(attestation.id, VerificationMethod.CODE, now):
            self.store.rollback()
            logger.info("verification_lost_race", attestation_id=attestation.id)
            return VerifyResult(
                ok=False,
                reason=self._closed_reason(attestation.id, now, REASON_ALREADY_VERIFIED),
            )

        self.store.release_attempt(attestation.id)
        self.events.record(
            attestation.id,
            EventType.CODE_SUBMIT,
            payload={
                "result": AttestationStatus.VERIFIED.value,
                "method": VerificationMethod.CODE.value,
                "staff_id": staff.staff_id,
            },
        )
        self.store.commit()
        logger.info("attestation_verified", attestation_id=attestation.id, hotel_id=staff.hotel_id)
        return VerifyResult(ok=True, verified_at=now)

    def _closed_reason(self, attestation_id: str, now: datetime, default: str) -> str:
        """Why a verification that lost a conditional write was refused."""
        current = self.store.get_by_id(attestation_id)
        if current is not None and current.status is AttestationStatus.VERIFIED:
            return REASON_ALREADY_VERIFIED
        if current is not None and current.is_expired(now):
            return REASON_EXPIRED
        return default

    # ------------------------------------------------------------------
    # Staff reads and maintenance
    # ------------------------------------------------------------------

    def get_attestation(self, staff: Optional[StaffContext], attestation_id: str) -> Attestation:
        if staff is None or not staff.hotel_id:
            raise Unauthorized("Staff context with a hotel is required")

        attestation = self.store.get_by_id(attestation_id, hotel_id=staff.hotel_id)
        if attestation is None:
            raise NotFound(f"Attestation {attestation_id} not found")
        return attestation

    def list_events(
        self, staff: Optional[StaffContext], attestation_id: str
    ) -> list[AttestationEvent]:
        attestation = self.get_attestation(staff, attestation_id)
        return self.events.list_events(attestation.id)

    def expire_stale(self) -> int:
        """Flip overdue SENT attestations to EXPIRED for reporting."""
        count = self.store.expire_stale(self._clock())
        self.store.commit()
        if count:
            logger.info("stale_attestations_expired", count=count)
        return count
