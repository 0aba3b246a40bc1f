# tests/conftest.py
# Shared fixtures: a throwaway SQLite snapshot store and the ASGI app wired to it.

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from foodsync.config import Settings
from foodsync.db.base import build_engine, build_session_factory, ensure_schema
from foodsync.main import create_app
from foodsync.repositories.snapshot_repository import SnapshotRepository
from foodsync.routers.health import get_session_factory
from foodsync.routers.sync import get_service
from foodsync.services.sync_service import SyncService


class FakeClock:
    """Deterministic clock; every call advances one second."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'snapshots.db'}")
    await ensure_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory):
    return SnapshotRepository(session_factory=session_factory)


@pytest.fixture
def service(repository, clock):
    return SyncService(repository=repository, clock=clock)


@pytest.fixture
def api_settings():
    return Settings(
        FAIL_BLOCK_ENABLED=False,
        API_RATE_LIMIT=100000,
        SYNC_RATE_LIMIT=100000,
        OTEL_ENABLED=False,
        CORS_ORIGINS="",
    )


@pytest.fixture
def api_app(api_settings, service, session_factory):
    app = create_app(api_settings)
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    return app


@pytest_asyncio.fixture
async def client(api_app):
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


def make_wire_snapshot(profile_id: str = "profile-0001", share_token: str = "share-token-0001", **overrides):
    """Minimal camelCase snapshot document as a client would push it."""
    snapshot = {
        "schemaVersion": 1,
        "profileId": profile_id,
        "profileName": "Bebé",
        "shareToken": share_token,
        "revision": 0,
        "updatedAt": "2024-05-01T10:00:00.000Z",
        "settings": {"theme": "system", "language": "es"},
        "items": {
            "apple": {"id": "apple", "exposureEvents": [], "updatedAt": "2024-05-01T10:00:00.000Z"},
            "banana": {"id": "banana", "exposureEvents": [], "updatedAt": "2024-05-01T10:00:00.000Z"},
        },
        "order": ["apple", "banana"],
        "meta": {"orderUpdatedAt": "2024-05-01T10:00:00.000Z"},
    }
    snapshot.update(overrides)
    return snapshot


@pytest.fixture
def wire_snapshot():
    return make_wire_snapshot()


@pytest.fixture
def snapshot_factory():
    return make_wire_snapshot
