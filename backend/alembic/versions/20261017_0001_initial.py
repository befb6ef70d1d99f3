"""initial schema: provider connections, synced events, bookings, availability rules

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261017_0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('provider_connections',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('vendor', sa.String(), nullable=False, index=True),
        sa.Column('external_calendar_id', sa.String(), nullable=False, server_default='primary'),
        sa.Column('scopes', sa.JSON(), nullable=True),
        sa.Column('access_token_encrypted', sa.String(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.String(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_cursor', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='active', index=True),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_full_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_table('calendar_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('connection_id', sa.String(), sa.ForeignKey('provider_connections.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('external_event_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('busy', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('etag', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('connection_id', 'external_event_id', name='uq_calendar_events_connection_external')
    )
    op.create_table('internal_bookings',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('agent_id', sa.String(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='confirmed', index=True),
        sa.Column('attendee_name', sa.String(), nullable=True),
        sa.Column('attendee_phone', sa.String(), nullable=True),
        sa.Column('attendee_email', sa.String(), nullable=True),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('confirmation_code', sa.String(), nullable=True),
        sa.Column('connection_id', sa.String(), nullable=True),
        sa.Column('external_event_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_table('availability_rules',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('schedule', sa.JSON(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('date_overrides', sa.JSON(), nullable=False),
        sa.Column('slot_granularity', sa.Integer(), nullable=True),
        sa.Column('buffer_before', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_after', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_booking_notice', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_booking_notice', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_table('agent_assignments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('agent_id', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('assignable_user_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)
    )

def downgrade():
    op.drop_table('agent_assignments')
    op.drop_table('availability_rules')
    op.drop_table('internal_bookings')
    op.drop_table('calendar_events')
    op.drop_table('provider_connections')
