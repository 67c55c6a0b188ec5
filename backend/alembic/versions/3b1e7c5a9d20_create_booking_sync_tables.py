"""Create tenants, bookings and calendar_channels tables

Revision ID: 3b1e7c5a9d20
Revises:
Create Date: 2026-10-19 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1e7c5a9d20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('twilio_number', sa.String(), nullable=True),
        sa.Column('working_hours', sa.JSON(), nullable=True),
        sa.Column('slot_step_minutes', sa.Integer(), nullable=True),
        # Google Calendar Integration columns
        sa.Column('google_calendar_id', sa.String(), nullable=True),
        sa.Column('google_refresh_token', sa.String(), nullable=True),
        sa.Column('google_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('google_calendar_timezone', sa.String(), nullable=True, server_default='Australia/Sydney'),
        sa.Column('auto_sync_bookings', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_tenants_google_calendar_id', 'tenants', ['google_calendar_id'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('vehicle_id', sa.String(), nullable=False),
        sa.Column('customer_id', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=True),
        sa.Column('service_type', sa.String(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('external_event_id', sa.String(), nullable=True),
        sa.Column('cancellation_pending', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'external_event_id', name='uq_bookings_tenant_external_event'),
    )
    op.create_index('ix_bookings_tenant_id', 'bookings', ['tenant_id'])
    op.create_index('idx_bookings_tenant_start', 'bookings', ['tenant_id', 'start_time'])

    op.create_table(
        'calendar_channels',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('calendar_id', sa.String(), nullable=False),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('token', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_calendar_channels_tenant', 'calendar_channels', ['tenant_id'])


def downgrade() -> None:
    op.drop_index('idx_calendar_channels_tenant', table_name='calendar_channels')
    op.drop_table('calendar_channels')

    op.drop_index('idx_bookings_tenant_start', table_name='bookings')
    op.drop_index('ix_bookings_tenant_id', table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('idx_tenants_google_calendar_id', table_name='tenants')
    op.drop_table('tenants')
