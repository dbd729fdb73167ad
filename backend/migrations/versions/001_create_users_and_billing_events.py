"""Create users and billing_events tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tables may already exist when init_db() ran Base.metadata.create_all first
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('full_name', sa.String(length=255), nullable=False, server_default=''),
            sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
            sa.Column('subscription', sa.JSON(), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)
        op.create_index('ix_users_stripe_customer_id', 'users', ['stripe_customer_id'])

    if 'billing_events' not in existing_tables:
        op.create_table(
            'billing_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('customer_id', sa.String(length=255), nullable=True),
            sa.Column('subscription_id', sa.String(length=255), nullable=True),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('handler_error', sa.Text(), nullable=True),
            sa.Column('note', sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_billing_events_id', 'billing_events', ['id'])
        op.create_index('ix_billing_events_event_id', 'billing_events', ['event_id'], unique=True)
        op.create_index('ix_billing_events_event_type', 'billing_events', ['event_type'])
        op.create_index('ix_billing_events_customer_id', 'billing_events', ['customer_id'])
        op.create_index('ix_billing_events_subscription_id', 'billing_events', ['subscription_id'])


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'billing_events' in existing_tables:
        op.drop_index('ix_billing_events_subscription_id', table_name='billing_events')
        op.drop_index('ix_billing_events_customer_id', table_name='billing_events')
        op.drop_index('ix_billing_events_event_type', table_name='billing_events')
        op.drop_index('ix_billing_events_event_id', table_name='billing_events')
        op.drop_index('ix_billing_events_id', table_name='billing_events')
        op.drop_table('billing_events')

    if 'users' in existing_tables:
        op.drop_index('ix_users_stripe_customer_id', table_name='users')
        op.drop_index('ix_users_email', table_name='users')
        op.drop_index('ix_users_id', table_name='users')
        op.drop_table('users')
