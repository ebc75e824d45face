"""Add hosts and distros tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'distros',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_settings', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'hosts',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False, server_default=''),
        sa.Column('distro_id', sa.String(100), sa.ForeignKey('distros.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='starting'),
        sa.Column('status_reason', sa.Text(), nullable=True),
        sa.Column('termination_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_hosts_status', 'hosts', ['status'])
    op.create_index('ix_hosts_provider', 'hosts', ['provider'])


def downgrade() -> None:
    op.drop_index('ix_hosts_provider', table_name='hosts')
    op.drop_index('ix_hosts_status', table_name='hosts')
    op.drop_table('hosts')
    op.drop_table('distros')
