# Overview: Alembic migration creating the PIN authentication schema.

"""PIN authentication schema: staff, credentials, devices, attempts, sessions, audit

Revision ID: 20261017_pin_auth
Revises:
Create Date: 2026-10-17

This migration adds:
1. staff_identities and credentials (one bcrypt PIN hash per identity)
2. devices (shared tablets, keyed by fingerprint)
3. attempt_records (failure counter per identity/device pair; identity_id has
   no foreign key so unknown identifiers are throttled too)
4. sessions (hashed session and CSRF tokens bound to one pair)
5. audit_entries (append-only authentication events)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_pin_auth'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. STAFF IDENTITIES AND CREDENTIALS
    # ==========================================================================
    op.create_table('staff_identities',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pin_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('credentials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identity_id', sa.String(length=64), nullable=False),
        sa.Column('pin_hash', sa.String(length=255), nullable=False),
        sa.Column('hash_version', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['identity_id'], ['staff_identities.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('credentials', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_credentials_identity_id'), ['identity_id'], unique=True)

    # ==========================================================================
    # 2. DEVICES
    # ==========================================================================
    op.create_table('devices',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_address', sa.String(length=45), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # 3. ATTEMPT RECORDS
    # ==========================================================================
    op.create_table('attempt_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identity_id', sa.String(length=64), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=False),
        sa.Column('failure_count', sa.Integer(), nullable=False),
        sa.Column('last_failure_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lockout_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lockout_count', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identity_id', 'device_id', name='uq_attempt_records_pair'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 4. SESSIONS
    # ==========================================================================
    op.create_table('sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('identity_id', sa.String(length=64), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('absolute_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=128), nullable=True),
        sa.Column('csrf_token_hash', sa.String(length=64), nullable=True),
        sa.Column('csrf_issued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(['identity_id'], ['staff_identities.id']),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sessions_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_sessions_identity_id'), ['identity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sessions_device_id'), ['device_id'], unique=False)
        batch_op.create_index('ix_sessions_pair_active', ['identity_id', 'device_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 5. AUDIT ENTRIES
    # ==========================================================================
    op.create_table('audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('event_kind', sa.String(length=32), nullable=False),
        sa.Column('identity_id', sa.String(length=64), nullable=True),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('outcome', sa.String(length=128), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('audit_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_entries_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_entries_identity_id'), ['identity_id'], unique=False)
        batch_op.create_index('ix_audit_entries_kind_occurred', ['event_kind', 'occurred_at'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_entries', schema=None) as batch_op:
        batch_op.drop_index('ix_audit_entries_kind_occurred')
        batch_op.drop_index(batch_op.f('ix_audit_entries_identity_id'))
        batch_op.drop_index(batch_op.f('ix_audit_entries_occurred_at'))
    op.drop_table('audit_entries')

    with op.batch_alter_table('sessions', schema=None) as batch_op:
        batch_op.drop_index('ix_sessions_pair_active')
        batch_op.drop_index(batch_op.f('ix_sessions_device_id'))
        batch_op.drop_index(batch_op.f('ix_sessions_identity_id'))
        batch_op.drop_index(batch_op.f('ix_sessions_token_hash'))
    op.drop_table('sessions')

    op.drop_table('attempt_records')
    op.drop_table('devices')

    with op.batch_alter_table('credentials', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_credentials_identity_id'))
    op.drop_table('credentials')
    op.drop_table('staff_identities')
