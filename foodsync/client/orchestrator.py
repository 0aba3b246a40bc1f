# foodsync/client/orchestrator.py
# Client-side sync driver: decides when to pull, push and retry

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import pydantic

from foodsync import config
from foodsync.client.local_store import LocalStore
from foodsync.client.transport import PushResponse, SyncTransport, SyncTransportError
from foodsync.schemas.snapshot import Snapshot
from foodsync.utils.merge import merge_snapshots
from foodsync.utils.snapshot_ops import create_snapshot
from foodsync.utils.timestamps import isoformat, utc_now

logger = logging.getLogger(__name__)

# Failures that leave local data untouched and surface as the error flag.
# OSError covers a local store that cannot write.
SYNC_FAILURES = (SyncTransportError, pydantic.ValidationError, OSError)


class SyncState(Enum):
    """Orchestrator states."""
    IDLE = "idle"
    PULLING = "pulling"
    MERGING = "merging"
    PUSHING = "pushing"
    CONFLICT_RETRY = "conflict_retry"


@dataclass(frozen=True)
class SyncStatus:
    last_sync_at: Optional[str]
    in_progress: bool
    error: Optional[str]


class SyncOrchestrator:
    """
    Keeps one profile's local snapshot in sync with the server.

    Two independent state machines run side by side:
    - pull: IDLE -> PULLING -> MERGING -> IDLE
    - push: IDLE -> PUSHING -> (CONFLICT_RETRY -> PUSHING) -> IDLE

    Triggers are coalesced, never queued: a pull requested while a pull is in
    flight (or a push while a push is) returns immediately. Debounced pushes,
    the periodic re-pull and focus events catch up afterwards.

    Local data is authoritative for display and is never rolled back when a
    sync attempt fails; the failure is only reported through ``status``.
    """

    def __init__(
        self,
        profile_id: str,
        share_token: str,
        transport: SyncTransport,
        store: LocalStore,
        item_ids: Iterable[str] = (),
        profile_name: str = "",
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        push_debounce: float = config.settings.SYNC_PUSH_DEBOUNCE_SECONDS,
        pull_interval: float = config.settings.SYNC_PULL_INTERVAL_SECONDS,
    ):
        self.profile_id = profile_id
        self.share_token = share_token
        self.transport = transport
        self.store = store
        self.item_ids = list(item_ids)
        self.profile_name = profile_name
        self.push_debounce = push_debounce
        self.pull_interval = pull_interval
        self._clock = clock
        self._sleep = sleep

        self.snapshot: Optional[Snapshot] = None
        self.revision = 0
        self.pull_state = SyncState.IDLE
        self.push_state = SyncState.IDLE
        self.last_sync_at: Optional[str] = None
        self.error: Optional[str] = None

        self._pull_in_flight = False
        self._push_in_flight = False
        # Bumped on every local state change; lets a finished push detect edits made meanwhile
        self._version = 0
        self._push_timer: Optional[asyncio.Task] = None
        self._pull_loop: Optional[asyncio.Task] = None

    # --- status ---

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            last_sync_at=self.last_sync_at,
            in_progress=self._pull_in_flight or self._push_in_flight,
            error=self.error,
        )

    def now_iso(self) -> str:
        return isoformat(self._clock())

    def _transition(self, machine: str, new_state: SyncState) -> None:
        current = getattr(self, machine)
        if current != new_state:
            logger.debug(f"Sync '{self.profile_id}' {machine}: {current.value} -> {new_state.value}")
            setattr(self, machine, new_state)

    def _adopt(self, snapshot: Snapshot, revision: int) -> None:
        self.snapshot = snapshot
        self.revision = revision
        self._version += 1
        self.store.put(snapshot)

    def _mark_synced(self) -> None:
        self.last_sync_at = self.now_iso()
        self.error = None

    def _fail(self, operation: str, exc: Exception) -> None:
        self.error = f"could not sync ({operation}): {exc}"
        logger.warning(f"Sync '{self.profile_id}' {operation} failed: {type(exc).__name__}: {exc}")

    # --- lifecycle ---

    def load_local(self) -> Snapshot:
        """Load the device copy, seeding a default snapshot on first use."""
        if self.snapshot is not None:
            return self.snapshot
        snapshot = self.store.get(self.profile_id)
        if snapshot is None:
            # Unstamped, so any stamped remote settings and order win the first merge
            snapshot = create_snapshot(
                self.profile_id,
                self.share_token,
                self.item_ids,
                "",
                profile_name=self.profile_name,
            )
            self.snapshot = snapshot
            self.revision = 0
            try:
                self.store.put(snapshot)
            except OSError as e:
                self._fail("save", e)
            return snapshot
        self.snapshot = snapshot
        self.revision = snapshot.revision
        return snapshot

    async def activate(self) -> None:
        """Profile became active: load local state, pull, start the periodic re-pull."""
        self.load_local()
        await self.pull()
        if self._pull_loop is None or self._pull_loop.done():
            self._pull_loop = asyncio.create_task(self._periodic_pull())

    async def stop(self) -> None:
        for task in (self._push_timer, self._pull_loop):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._push_timer = None
        self._pull_loop = None

    async def _periodic_pull(self) -> None:
        while True:
            await self._sleep(self.pull_interval)
            await self.pull()

    # --- triggers ---

    async def on_focus(self) -> None:
        await self.pull()

    async def sync_now(self) -> None:
        """Manual sync: pull, then push whatever the merge produced."""
        await self.pull()
        await self.push()

    def mutate(self, operation: Callable[..., Snapshot], *args: Any, **kwargs: Any) -> Snapshot:
        """Apply a snapshot operation locally and schedule a debounced push.

        ``operation`` is called as ``operation(snapshot, *args, now=..., **kwargs)``.
        """
        snapshot = operation(self.load_local(), *args, now=self.now_iso(), **kwargs)
        try:
            self._adopt(snapshot, self.revision)
        except OSError as e:
            # Kept in memory; the push below still carries it to the server
            self._fail("save", e)
        self.schedule_push()
        return snapshot

    def schedule_push(self) -> None:
        """(Re)start the push quiet period."""
        timer = self._push_timer
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
        self._push_timer = asyncio.create_task(self._debounced_push())

    async def _debounced_push(self) -> None:
        await self._sleep(self.push_debounce)
        await self.push()

    # --- pull ---

    async def pull(self) -> None:
        if self._pull_in_flight:
            return
        self._pull_in_flight = True
        self._transition("pull_state", SyncState.PULLING)
        try:
            local = self.load_local()
            response = await self.transport.pull(self.share_token, self.profile_id)
            if response is None:
                # Nothing on the server yet: our copy becomes the first revision
                self._mark_synced()
                if self.revision == 0:
                    self.schedule_push()
                return

            self._transition("pull_state", SyncState.MERGING)
            remote = Snapshot.from_wire(response.snapshot)
            # Re-read: a mutation may have landed while the request was in flight
            local = self.snapshot or local
            merged = merge_snapshots(local, remote)
            self._adopt(merged, response.revision)
            self._mark_synced()
            if merged.to_wire() != remote.to_wire():
                self.schedule_push()
        except SYNC_FAILURES as e:
            self._fail("pull", e)
        finally:
            self._pull_in_flight = False
            self._transition("pull_state", SyncState.IDLE)

    # --- push ---

    async def push(self) -> None:
        if self._push_in_flight:
            return
        self._push_in_flight = True
        self._transition("push_state", SyncState.PUSHING)
        try:
            response = await self._send()
            if response.conflict:
                self._transition("push_state", SyncState.CONFLICT_RETRY)
                self._merge_conflict(response)
                self._transition("push_state", SyncState.PUSHING)
                response = await self._send()
                if response.conflict:
                    # Still behind after one retry: wait for the next trigger
                    self._merge_conflict(response)
                    self.error = "could not sync (push): conflict persisted after retry"
                    logger.warning(f"Sync '{self.profile_id}' push conflicted twice, giving up until next trigger")
                    return
            self._mark_synced()
        except SYNC_FAILURES as e:
            self._fail("push", e)
        finally:
            self._push_in_flight = False
            self._transition("push_state", SyncState.IDLE)

    async def _send(self) -> PushResponse:
        snapshot = self.load_local()
        version = self._version
        response = await self.transport.push(
            self.share_token,
            self.profile_id,
            self.revision,
            snapshot.to_wire(),
        )
        if not response.conflict:
            self._accept(response, changed_in_flight=self._version != version)
        return response

    def _accept(self, response: PushResponse, changed_in_flight: bool) -> None:
        server = Snapshot.from_wire(response.snapshot)
        if not changed_in_flight:
            # The server may have sanitized the document: its copy is authoritative
            self._adopt(server, response.revision)
            return
        merged = merge_snapshots(self.snapshot, server)
        self._adopt(merged, response.revision)
        if merged.to_wire() != server.to_wire():
            self.schedule_push()

    def _merge_conflict(self, response: PushResponse) -> None:
        remote = Snapshot.from_wire(response.snapshot)
        merged = merge_snapshots(self.load_local(), remote)
        self._adopt(merged, response.revision)
