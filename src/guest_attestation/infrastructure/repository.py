"""Repository layer for attestation database operations.

This module provides the data access layer for guests, attestations,
idempotency keys and staff profiles. State transitions are conditional
UPDATE statements so that concurrent requests cannot both succeed.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guest_attestation.domain.attestation import (
    Attestation,
    AttestationStatus,
    GuestInput,
    StayInput,
    VerificationMethod,
    as_utc,
)
from guest_attestation.domain.errors import StorageConflict
from guest_attestation.domain.interfaces import IAttestationStore
from guest_attestation.infrastructure.models import (
    Attestation as AttestationModel,
    AttestationIdempotencyKey,
    Guest as GuestModel,
    StaffProfile,
    new_id,
)

logger = structlog.get_logger(__name__)


class SqlAttestationStore(IAttestationStore):
    """SQLAlchemy implementation of the attestation store.

    All writes go through the given session; commit() and rollback()
    delegate to it so the workflow controls the unit of work.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def upsert_guest(
        self,
        hotel_id: str,
        guest: GuestInput,
        stay: StayInput,
        created_by: Optional[str] = None,
    ) -> str:
        model = self._find_guest(hotel_id, guest.phone_e164)
        if model is None:
            try:
                with self.session.begin_nested():
                    model = GuestModel(
                        id=new_id(),
                        hotel_id=hotel_id,
                        phone_e164=guest.phone_e164,
                        created_by=created_by,
                    )
                    self._apply_guest_fields(model, guest, stay)
                    self.session.add(model)
                    self.session.flush()
                logger.debug("guest_created", guest_id=model.id, hotel_id=hotel_id)
                return model.id
            except IntegrityError:
                # Inserted concurrently by another request; update that row instead
                model = self._find_guest(hotel_id, guest.phone_e164)
                if model is None:
                    raise

        self._apply_guest_fields(model, guest, stay)
        self.session.flush()
        logger.debug("guest_updated", guest_id=model.id, hotel_id=hotel_id)
        return model.id

    def _find_guest(self, hotel_id: str, phone_e164: str) -> Optional[GuestModel]:
        return self.session.scalars(
            select(GuestModel).where(
                GuestModel.hotel_id == hotel_id,
                GuestModel.phone_e164 == phone_e164,
            )
        ).first()

    @staticmethod
    def _apply_guest_fields(model: GuestModel, guest: GuestInput, stay: StayInput) -> None:
        model.full_name = guest.full_name.strip()
        model.dl_number = guest.dl_number
        model.dl_state = guest.dl_state
        model.cc_last4 = stay.cc_last4
        model.check_in_date = stay.check_in_date
        model.check_out_date = stay.check_out_date

    def create_attestation(self, attestation: Attestation) -> Attestation:
        """Insert a new attestation.

        Raises:
            IntegrityError: If the id or token already exists
        """
        model = AttestationModel(
            id=attestation.id,
            hotel_id=attestation.hotel_id,
            guest_id=attestation.guest_id,
            guest_full_name=attestation.guest_full_name,
            guest_phone_e164=attestation.guest_phone_e164,
            dl_number=attestation.dl_number,
            dl_state=attestation.dl_state,
            cc_last4=attestation.cc_last4,
            check_in_date=attestation.check_in_date,
            check_out_date=attestation.check_out_date,
            policy_text=attestation.policy_text,
            code_hash=attestation.code_hash,
            code_salt=attestation.code_salt,
            code_display=attestation.code_display,
            token=attestation.token,
            status=attestation.status.value,
            sent_at=attestation.sent_at,
            expires_at=attestation.expires_at,
            failed_attempts=0,
            created_by=attestation.created_by,
            idempotency_key=attestation.idempotency_key,
        )

        self.session.add(model)
        self.session.flush()

        logger.info(
            "attestation_saved",
            attestation_id=attestation.id,
            hotel_id=attestation.hotel_id,
        )
        return attestation

    def get_by_token(self, token: str) -> Optional[Attestation]:
        model = self.session.scalars(
            select(AttestationModel)
            .where(AttestationModel.token == token)
            .execution_options(populate_existing=True)
        ).first()
        return self._to_domain_entity(model) if model else None

    def get_by_id(
        self, attestation_id: str, hotel_id: Optional[str] = None
    ) -> Optional[Attestation]:
        """Retrieve an attestation, optionally requiring hotel ownership.

        Always reads the current row state, never a cached identity.
        """
        query = select(AttestationModel).where(AttestationModel.id == attestation_id)
        if hotel_id is not None:
            query = query.where(AttestationModel.hotel_id == hotel_id)

        model = self.session.scalars(query.execution_options(populate_existing=True)).first()
        if not model:
            logger.debug("attestation_not_found", attestation_id=attestation_id, hotel_id=hotel_id)
            return None
        return self._to_domain_entity(model)

    def mark_verified(
        self,
        attestation_id: str,
        method: VerificationMethod,
        verified_at: datetime,
    ) -> bool:
        result = self.session.execute(
            update(AttestationModel)
            .where(
                AttestationModel.id == attestation_id,
                AttestationModel.status == AttestationStatus.SENT.value,
                AttestationModel.expires_at > verified_at,
            )
            .values(
                status=AttestationStatus.VERIFIED.value,
                verification_method=method.value,
                verified_at=verified_at,
            )
            .execution_options(synchronize_session=False)
        )

        transitioned = result.rowcount == 1
        logger.info(
            "attestation_mark_verified",
            attestation_id=attestation_id,
            transitioned=transitioned,
        )
        return transitioned

    def reserve_attempt(self, attestation_id: str, max_attempts: int) -> Optional[int]:
        """Count one attempt unless the attestation is closed or locked out.

        The UPDATE holds the row lock until the transaction ends, so
        concurrent attempts on one attestation queue behind each other.
        """
        result = self.session.execute(
            update(AttestationModel)
            .where(
                AttestationModel.id == attestation_id,
                AttestationModel.status == AttestationStatus.SENT.value,
                AttestationModel.failed_attempts < max_attempts,
            )
            .values(failed_attempts=AttestationModel.failed_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        return self.session.scalar(
            select(AttestationModel.failed_attempts).where(AttestationModel.id == attestation_id)
        )

    def release_attempt(self, attestation_id: str) -> None:
        self.session.execute(
            update(AttestationModel)
            .where(
                AttestationModel.id == attestation_id,
                AttestationModel.failed_attempts > 0,
            )
            .values(failed_attempts=AttestationModel.failed_attempts - 1)
            .execution_options(synchronize_session=False)
        )

    def record_notification(
        self,
        attestation_id: str,
        provider_ref: Optional[str],
        sms_status: str,
    ) -> None:
        self.session.execute(
            update(AttestationModel)
            .where(AttestationModel.id == attestation_id)
            .values(sms_provider_ref=provider_ref, sms_status=sms_status)
            .execution_options(synchronize_session=False)
        )

    def find_by_idempotency_key(
        self, idempotency_key: str, hotel_id: str, now: datetime
    ) -> Optional[Attestation]:
        """Get the attestation created for an idempotency key if it is not expired."""
        attestation_id = self.session.scalar(
            select(AttestationIdempotencyKey.attestation_id).where(
                AttestationIdempotencyKey.idempotency_key == idempotency_key,
                AttestationIdempotencyKey.hotel_id == hotel_id,
                AttestationIdempotencyKey.expires_at > now,
            )
        )
        if not attestation_id:
            return None

        attestation = self.get_by_id(attestation_id, hotel_id=hotel_id)
        if attestation is None:
            logger.error(
                "idempotency_key_orphaned",
                idempotency_key=idempotency_key,
                attestation_id=attestation_id,
            )
        return attestation


    def save_idempotency_key(
        self,
        idempotency_key: str,
        hotel_id: str,
        attestation_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Save an idempotency key mapping.

        A mapping that expired at or before now is taken over with a
        conditional UPDATE; otherwise a new row is inserted and the
        (key, hotel) primary key rejects a concurrent duplicate.

        Raises:
            StorageConflict: If an unexpired mapping already exists for this hotel
        """
        replaced = self.session.execute(
            update(AttestationIdempotencyKey)
            .where(
                AttestationIdempotencyKey.idempotency_key == idempotency_key,
                AttestationIdempotencyKey.hotel_id == hotel_id,
                AttestationIdempotencyKey.expires_at <= now,
            )
            .values(attestation_id=attestation_id, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if replaced.rowcount == 1:
            logger.info(
                "idempotency_key_replaced",
                idempotency_key=idempotency_key,
                attestation_id=attestation_id,
            )
            return

        try:
            with self.session.begin_nested():
                self.session.execute(
                    insert(AttestationIdempotencyKey).values(
                        idempotency_key=idempotency_key,
                        hotel_id=hotel_id,
                        attestation_id=attestation_id,
                        expires_at=expires_at,
                    )
                )
        except IntegrityError as e:
            raise StorageConflict(
                f"Idempotency key {idempotency_key} already bound for hotel {hotel_id}"
            ) from e

    def expire_stale(self, now: datetime) -> int:
        result = self.session.execute(
            update(AttestationModel)
            .where(
                AttestationModel.status == AttestationStatus.SENT.value,
                AttestationModel.expires_at <= now,
            )
            .values(status=AttestationStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def _to_domain_entity(self, model: AttestationModel) -> Attestation:
        """Convert ORM model to domain entity."""
        return Attestation(
            id=model.id,
            hotel_id=model.hotel_id,
            guest_id=model.guest_id,
            guest_full_name=model.guest_full_name,
            guest_phone_e164=model.guest_phone_e164,
            dl_number=model.dl_number,
            dl_state=model.dl_state,
            cc_last4=model.cc_last4,
            check_in_date=model.check_in_date,
            check_out_date=model.check_out_date,
            policy_text=model.policy_text,
            code_hash=model.code_hash,
            code_salt=model.code_salt,
            code_display=model.code_display,
            token=model.token,
            status=AttestationStatus(model.status),
            verification_method=(
                VerificationMethod(model.verification_method)
                if model.verification_method
                else None
            ),
            sent_at=as_utc(model.sent_at),
            expires_at=as_utc(model.expires_at),
            verified_at=as_utc(model.verified_at),
            failed_attempts=model.failed_attempts or 0,
            sms_provider_ref=model.sms_provider_ref,
            sms_status=model.sms_status,
            created_by=model.created_by,
            idempotency_key=model.idempotency_key,
        )


class StaffProfileRepository:
    """Repository for staff-to-hotel assignments."""

    def __init__(self, session: Session):
        self.session = session

    def get_hotel_id(self, user_id: str) -> Optional[str]:
        """Hotel the staff user belongs to, or None if unassigned or unknown."""
        return self.session.scalar(
            select(StaffProfile.hotel_id).where(StaffProfile.user_id == user_id)
        )

    def save_profile(
        self, user_id: str, hotel_id: Optional[str], display_name: Optional[str] = None
    ) -> None:
        """Create or update a staff profile."""
        profile = self.session.get(StaffProfile, user_id)
        if profile is None:
            profile = StaffProfile(user_id=user_id)
            self.session.add(profile)
        profile.hotel_id = hotel_id
        profile.display_name = display_name
        self.session.flush()
