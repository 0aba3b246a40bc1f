# foodsync/services/sync_service.py

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import pydantic

from foodsync import config
from foodsync.middleware.error_handler import ValidationError
from foodsync.repositories.snapshot_repository import SnapshotRepository, StoredSnapshot
from foodsync.schemas.snapshot import Snapshot
from foodsync.services.image_sanitizer import sanitize_snapshot_images
from foodsync.utils.logger import log_info
from foodsync.utils.timestamps import isoformat, utc_now

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


@dataclass(frozen=True)
class PullResult:
    snapshot: Dict[str, Any]
    revision: int


@dataclass(frozen=True)
class PushResult:
    snapshot: Dict[str, Any]
    revision: int
    conflict: bool = False


def is_valid_token(value: Any) -> bool:
    return isinstance(value, str) and bool(TOKEN_PATTERN.fullmatch(value))


def serialized_size(payload: Any) -> int:
    """Size in bytes of the compact UTF-8 JSON encoding of ``payload``."""
    return len(json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


class SyncService:
    """Pull/push protocol with revision-based optimistic concurrency."""

    def __init__(
        self,
        repository: SnapshotRepository,
        clock: Callable[[], datetime] = utc_now,
        max_snapshot_bytes: int = config.SYNC_MAX_SNAPSHOT_BYTES,
    ):
        self._repo = repository
        self._clock = clock
        self._max_snapshot_bytes = max_snapshot_bytes

    async def pull(self, share_token: Any, profile_id: Any = None) -> Optional[PullResult]:
        """Return the stored snapshot, or None when nothing was pushed yet."""
        self._validate_tokens(share_token, profile_id, profile_required=False)

        stored = await self._repo.get(share_token, profile_id or None)
        if stored is None:
            return None
        return PullResult(snapshot=stored.snapshot, revision=stored.revision)

    async def push(self, share_token: Any, profile_id: Any, base_revision: Any, snapshot: Any) -> PushResult:
        """Store ``snapshot`` if ``base_revision`` matches, otherwise report a conflict."""
        self._validate_tokens(share_token, profile_id, profile_required=True)
        self._validate_base_revision(base_revision)
        document = self._parse_snapshot(snapshot)

        now = isoformat(self._clock())
        sanitized = sanitize_snapshot_images(document, now)

        current = await self._repo.get(share_token, profile_id)
        if current is None:
            # First write wins on creation; the caller's base revision is irrelevant
            to_store = self._stamp(sanitized, profile_id, share_token, 1, now)
            if await self._repo.create(profile_id, share_token, to_store, 1):
                log_info(f"sync push: created profile={profile_id} revision=1")
                return PushResult(snapshot=to_store, revision=1)
            return await self._conflict_with_current(share_token, profile_id)

        if base_revision != current.revision:
            return self._conflict(current, base_revision)

        next_revision = current.revision + 1
        to_store = self._stamp(sanitized, profile_id, share_token, next_revision, now)
        if await self._repo.replace_if_revision(profile_id, share_token, base_revision, to_store, next_revision):
            log_info(f"sync push: accepted profile={profile_id} revision={next_revision}")
            return PushResult(snapshot=to_store, revision=next_revision)

        # Lost the compare-and-swap to a concurrent writer
        return await self._conflict_with_current(share_token, profile_id, base_revision)

    async def delete_profile(self, profile_id: str) -> int:
        deleted = await self._repo.delete_one(profile_id)
        log_info(f"sync: deleted {deleted} snapshot(s) for profile={profile_id}")
        return deleted

    # --- helpers ---

    async def _conflict_with_current(self, share_token: str, profile_id: str, base_revision: Any = None) -> PushResult:
        current = await self._repo.get(share_token, profile_id)
        if current is None:
            # Row vanished between the write attempt and the re-read (admin delete)
            raise RuntimeError(f"snapshot for profile={profile_id} disappeared during push")
        return self._conflict(current, base_revision)

    @staticmethod
    def _conflict(current: StoredSnapshot, base_revision: Any) -> PushResult:
        log_info(
            f"sync push: conflict profile={current.profile_id} "
            f"base={base_revision} stored={current.revision}"
        )
        return PushResult(snapshot=current.snapshot, revision=current.revision, conflict=True)

    @staticmethod
    def _stamp(snapshot: Snapshot, profile_id: str, share_token: str, revision: int, now: str) -> Dict[str, Any]:
        stamped = snapshot.model_copy(
            update={
                "profile_id": profile_id,
                "share_token": share_token,
                "revision": revision,
                "updated_at": now,
            }
        )
        return stamped.to_wire()

    @staticmethod
    def _validate_tokens(share_token: Any, profile_id: Any, profile_required: bool) -> None:
        if not is_valid_token(share_token):
            raise ValidationError("shareToken format is invalid", reason="invalid_share_token")
        # An empty profileId on pull means "any profile for this token"
        if profile_required or profile_id:
            if not is_valid_token(profile_id):
                raise ValidationError("profileId format is invalid", reason="invalid_profile_id")

    @staticmethod
    def _validate_base_revision(base_revision: Any) -> None:
        # bool is an int subclass; a JSON true is not a revision
        if isinstance(base_revision, bool) or not isinstance(base_revision, int) or base_revision < 0:
            raise ValidationError(
                "baseRevision must be a non-negative integer", reason="invalid_base_revision"
            )

    def _parse_snapshot(self, snapshot: Any) -> Snapshot:
        if not isinstance(snapshot, dict):
            raise ValidationError("snapshot must be a JSON object", reason="invalid_snapshot")
        size = serialized_size(snapshot)
        if size > self._max_snapshot_bytes:
            raise ValidationError(
                "snapshot is too large",
                reason="snapshot_too_large",
                details={"size": size, "limit": self._max_snapshot_bytes},
            )
        try:
            return Snapshot.from_wire(snapshot)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "snapshot does not match the expected shape",
                reason="invalid_snapshot",
                details={"errors": e.error_count()},
            ) from e
