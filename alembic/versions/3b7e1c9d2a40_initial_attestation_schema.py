"""initial attestation schema

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-19 09:12:44.187530

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7e1c9d2a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create guests, attestations, events, staff profiles and idempotency keys."""
    op.create_table(
        'guests',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('hotel_id', sa.String(length=64), nullable=False,
                  comment='Hotel that owns this guest'),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('phone_e164', sa.String(length=20), nullable=False,
                  comment='Guest phone in E.164 format'),
        sa.Column('dl_number', sa.String(length=64), nullable=True),
        sa.Column('dl_state', sa.String(length=16), nullable=True),
        sa.Column('cc_last4', sa.String(length=4), nullable=False),
        sa.Column('check_in_date', sa.Date(), nullable=False),
        sa.Column('check_out_date', sa.Date(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True,
                  comment='Staff user who first entered the guest'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hotel_id', 'phone_e164', name='uq_guests_hotel_phone'),
    )

    op.create_table(
        'attestations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('hotel_id', sa.String(length=64), nullable=False),
        sa.Column('guest_id', sa.String(length=64), nullable=False),
        sa.Column('guest_full_name', sa.String(length=255), nullable=False),
        sa.Column('guest_phone_e164', sa.String(length=20), nullable=False),
        sa.Column('dl_number', sa.String(length=64), nullable=True),
        sa.Column('dl_state', sa.String(length=16), nullable=True),
        sa.Column('cc_last4', sa.String(length=4), nullable=False),
        sa.Column('check_in_date', sa.Date(), nullable=False),
        sa.Column('check_out_date', sa.Date(), nullable=False),
        sa.Column('policy_text', sa.Text(), nullable=False,
                  comment='Policy text frozen at send time'),
        sa.Column('code_hash', sa.String(length=64), nullable=False,
                  comment='HMAC-SHA256(pepper, salt:code) hex'),
        sa.Column('code_salt', sa.String(length=64), nullable=False),
        sa.Column('code_display', sa.String(length=6), nullable=True),
        sa.Column('token', sa.Text(), nullable=False, comment='Signed guest link token'),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('verification_method', sa.String(length=16), nullable=True),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sms_provider_ref', sa.String(length=255), nullable=True),
        sa.Column('sms_status', sa.String(length=32), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status IN ('sent', 'verified', 'expired')",
                           name='ck_attestations_status'),
        sa.CheckConstraint(
            "verification_method IS NULL OR verification_method IN ('code', 'link')",
            name='ck_attestations_verification_method',
        ),
        sa.ForeignKeyConstraint(['guest_id'], ['guests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index('ix_attestations_guest_id', 'attestations', ['guest_id'])
    op.create_index('idx_attestations_hotel_sent', 'attestations', ['hotel_id', 'sent_at'])
    op.create_index('idx_attestations_status_expires', 'attestations',
                    ['status', 'expires_at'])

    op.create_table(
        'attestation_events',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'),
                  autoincrement=True, nullable=False),
        sa.Column('attestation_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['attestation_id'], ['attestations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_attestation_events_attestation_created', 'attestation_events',
                    ['attestation_id', 'created_at'])

    op.create_table(
        'staff_profiles',
        sa.Column('user_id', sa.String(length=64), nullable=False,
                  comment='User id from the auth service'),
        sa.Column('hotel_id', sa.String(length=64), nullable=True),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'attestation_idempotency_keys',
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('hotel_id', sa.String(length=64), nullable=False),
        sa.Column('attestation_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['attestation_id'], ['attestations.id']),
        sa.PrimaryKeyConstraint('idempotency_key', 'hotel_id'),
    )
    op.create_index('idx_attestation_idempotency_expires_at',
                    'attestation_idempotency_keys', ['expires_at'])


def downgrade() -> None:
    """Drop all attestation tables."""
    op.drop_index('idx_attestation_idempotency_expires_at',
                  table_name='attestation_idempotency_keys')
    op.drop_table('attestation_idempotency_keys')
    op.drop_table('staff_profiles')
    op.drop_index('idx_attestation_events_attestation_created',
                  table_name='attestation_events')
    op.drop_table('attestation_events')
    op.drop_index('idx_attestations_status_expires', table_name='attestations')
    op.drop_index('idx_attestations_hotel_sent', table_name='attestations')
    op.drop_index('ix_attestations_guest_id', table_name='attestations')
    op.drop_table('attestations')
    op.drop_table('guests')
