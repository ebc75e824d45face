"""Add host_events and reconciliation_runs tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # No FK to hosts: events outlive host rows that get purged
    op.create_table(
        'host_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('host_id', sa.String(100), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('old_status', sa.String(50), nullable=True),
        sa.Column('new_status', sa.String(50), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_host_events_host_id', 'host_events', ['host_id'])

    op.create_table(
        'reconciliation_runs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('batches_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('batches_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('hosts_transitioned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('diagnostics_json', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('reconciliation_runs')
    op.drop_index('ix_host_events_host_id', table_name='host_events')
    op.drop_table('host_events')
