# foodsync/models/snapshot_table.py
# One synchronized snapshot per (profile_id, share_token)

from sqlalchemy import JSON, Table, Column, Text, Integer, TIMESTAMP, Index, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import JSONB

from foodsync.db.base import metadata


profile_snapshots = Table(
    'profile_snapshots',
    metadata,
    Column('profile_id', Text, nullable=False),
    Column('share_token', Text, nullable=False),
    Column('snapshot', JSON().with_variant(JSONB(), 'postgresql'), nullable=False),  # full document
    Column('revision', Integer, nullable=False),
    Column('updated_at', TIMESTAMP(timezone=True), nullable=False),
    PrimaryKeyConstraint('profile_id', 'share_token', name='pk_profile_snapshots'),
    Index('ix_profile_snapshots_share_token', 'share_token'),
)
