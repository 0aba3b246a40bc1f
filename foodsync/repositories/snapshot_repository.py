# foodsync/repositories/snapshot_repository.py
# Repository for synchronized profile snapshots

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodsync.db.base import AsyncSessionFactory
from foodsync.models.snapshot_table import profile_snapshots
from foodsync.utils.timestamps import utc_now


@dataclass(frozen=True)
class StoredSnapshot:
    profile_id: str
    share_token: str
    snapshot: dict[str, Any]
    revision: int
    updated_at: datetime


def _to_stored(row) -> StoredSnapshot:
    return StoredSnapshot(
        profile_id=row.profile_id,
        share_token=row.share_token,
        snapshot=row.snapshot,
        revision=int(row.revision),
        updated_at=row.updated_at,
    )


class SnapshotRepository:
    """Whole-row persistence for snapshots keyed by (profile_id, share_token).

    There is deliberately no partial update: rows are only ever replaced
    wholesale. ``replace_if_revision`` is the compare-and-swap the push path
    relies on; it is a single conditional UPDATE, so two writers racing on
    the same base revision cannot both succeed.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory or AsyncSessionFactory
        self._clock = clock

    async def get(self, share_token: str, profile_id: Optional[str] = None) -> StoredSnapshot | None:
        """Load by composite key, or the most recently written row for the token."""
        table = profile_snapshots
        stmt = select(
            table.c.profile_id,
            table.c.share_token,
            table.c.snapshot,
            table.c.revision,
            table.c.updated_at,
        ).where(table.c.share_token == share_token)
        if profile_id:
            stmt = stmt.where(table.c.profile_id == profile_id)
        else:
            stmt = stmt.order_by(table.c.updated_at.desc())
        stmt = stmt.limit(1)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.fetchone()
            if row:
                return _to_stored(row)
        return None

    async def create(self, profile_id: str, share_token: str, snapshot: dict[str, Any], revision: int) -> bool:
        """Insert a new row. Returns False if the row already exists."""
        async with self._session_factory() as session:
            try:
                await session.execute(
                    insert(profile_snapshots).values(
                        profile_id=profile_id,
                        share_token=share_token,
                        snapshot=snapshot,
                        revision=revision,
                        updated_at=self._clock(),
                    )
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def replace_if_revision(
        self,
        profile_id: str,
        share_token: str,
        expected_revision: int,
        snapshot: dict[str, Any],
        revision: int,
    ) -> bool:
        """Replace the row only if its stored revision still equals ``expected_revision``."""
        table = profile_snapshots
        async with self._session_factory() as session:
            result = await session.execute(
                update(table)
                .where(
                    table.c.profile_id == profile_id,
                    table.c.share_token == share_token,
                    table.c.revision == expected_revision,
                )
                .values(snapshot=snapshot, revision=revision, updated_at=self._clock())
            )
            await session.commit()
            return result.rowcount == 1

    async def upsert(self, profile_id: str, share_token: str, snapshot: dict[str, Any], revision: int) -> None:
        """Create-or-replace the row unconditionally."""
        if await self.replace(profile_id, share_token, snapshot, revision):
            return
        if not await self.create(profile_id, share_token, snapshot, revision):
            # Someone created it in between; overwrite wholesale
            await self.replace(profile_id, share_token, snapshot, revision)

    async def replace(self, profile_id: str, share_token: str, snapshot: dict[str, Any], revision: int) -> bool:
        table = profile_snapshots
        async with self._session_factory() as session:
            result = await session.execute(
                update(table)
                .where(table.c.profile_id == profile_id, table.c.share_token == share_token)
                .values(snapshot=snapshot, revision=revision, updated_at=self._clock())
            )
            await session.commit()
            return result.rowcount == 1

    async def delete_one(self, profile_id: str) -> int:
        """Remove every row belonging to a profile. Returns rows deleted."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(profile_snapshots).where(profile_snapshots.c.profile_id == profile_id)
            )
            await session.commit()
            return result.rowcount

    async def delete_all(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(profile_snapshots))
            await session.commit()
            return result.rowcount
