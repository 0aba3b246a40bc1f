"""create profile_snapshots table

Revision ID: 5d2e8f1a9c47
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5d2e8f1a9c47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One synchronized snapshot per (profile_id, share_token)
    op.create_table(
        'profile_snapshots',
        sa.Column('profile_id', sa.Text(), nullable=False),
        sa.Column('share_token', sa.Text(), nullable=False),
        sa.Column('snapshot', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('profile_id', 'share_token', name='pk_profile_snapshots'),
    )
    # Pull without profileId looks rows up by token alone
    op.create_index(
        'ix_profile_snapshots_share_token',
        'profile_snapshots',
        ['share_token'],
    )


def downgrade() -> None:
    op.drop_index('ix_profile_snapshots_share_token', table_name='profile_snapshots')
    op.drop_table('profile_snapshots')
