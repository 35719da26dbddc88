"""initial sync engine tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('name_masked', sa.String(length=128), nullable=False),
        sa.Column('phone_hash', sa.String(length=64), nullable=True),
        sa.Column('phone_encrypted', sa.Text(), nullable=True),
        sa.Column('dob_hash', sa.String(length=64), nullable=True),
        sa.Column('dob_encrypted', sa.Text(), nullable=True),
        sa.Column('company_code', sa.String(length=64), nullable=True),
        sa.Column('company_name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('external_system', sa.String(length=32), nullable=True),
        sa.Column('external_worker_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('entry_day', sa.String(length=16), nullable=True),
        sa.Column('retire_day', sa.String(length=16), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_phone_hash', 'users', ['phone_hash'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_external', 'users', ['external_system', 'external_worker_id'])

    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sites_id', 'sites', ['id'])
    op.create_index('ix_sites_active', 'sites', ['active'])

    op.create_table(
        'site_memberships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'site_id', name='uq_site_memberships_user_site'),
    )
    op.create_index('ix_site_memberships_id', 'site_memberships', ['id'])
    op.create_index('ix_site_memberships_user_id', 'site_memberships', ['user_id'])
    op.create_index('ix_site_memberships_site_id', 'site_memberships', ['site_id'])

    op.create_table(
        'sync_failures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('correlation_id', sa.String(length=36), nullable=False),
        sa.Column('sync_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('error_code', sa.String(length=64), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('lock_name', sa.String(length=64), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_failures_id', 'sync_failures', ['id'])
    op.create_index('ix_sync_failures_correlation_id', 'sync_failures', ['correlation_id'], unique=True)
    op.create_index('ix_sync_failures_sync_type', 'sync_failures', ['sync_type'])
    op.create_index('ix_sync_failures_status', 'sync_failures', ['status'])
    op.create_index('ix_sync_failures_created_at', 'sync_failures', ['created_at'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_id', 'audit_log', ['id'])

    op.create_table(
        'kv_entries',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('value_json', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index('ix_kv_entries_expires_at', 'kv_entries', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_kv_entries_expires_at', table_name='kv_entries')
    op.drop_table('kv_entries')
    op.drop_index('ix_audit_log_id', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_table('sync_failures')
    op.drop_table('site_memberships')
    op.drop_table('sites')
    op.drop_table('users')
