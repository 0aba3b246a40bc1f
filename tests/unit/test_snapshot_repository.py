# tests/unit/test_snapshot_repository.py
# Snapshot store operations against the SQLite test database

import pytest

from foodsync.repositories.snapshot_repository import SnapshotRepository

TOKEN = "share-token-0001"


@pytest.fixture
def repo(session_factory, clock):
    return SnapshotRepository(session_factory=session_factory, clock=clock)


@pytest.mark.asyncio
async def test_create_then_get_by_composite_key(repo):
    assert await repo.create("profile-a", TOKEN, {"profileName": "A"}, 1)

    stored = await repo.get(TOKEN, "profile-a")

    assert stored.snapshot == {"profileName": "A"}
    assert stored.revision == 1
    assert await repo.get(TOKEN, "profile-b") is None
    assert await repo.get("other-token-0001", "profile-a") is None


@pytest.mark.asyncio
async def test_create_twice_reports_lost_race(repo):
    assert await repo.create("profile-a", TOKEN, {"v": 1}, 1)
    assert not await repo.create("profile-a", TOKEN, {"v": 2}, 1)

    assert (await repo.get(TOKEN, "profile-a")).snapshot == {"v": 1}


@pytest.mark.asyncio
async def test_get_without_profile_returns_most_recently_written(repo):
    await repo.create("profile-a", TOKEN, {"who": "a"}, 1)
    await repo.create("profile-b", TOKEN, {"who": "b"}, 1)
    await repo.replace("profile-a", TOKEN, {"who": "a again"}, 2)

    newest = await repo.get(TOKEN)

    assert newest.profile_id == "profile-a"
    assert newest.snapshot == {"who": "a again"}


@pytest.mark.asyncio
async def test_replace_if_revision_is_a_compare_and_swap(repo):
    await repo.create("profile-a", TOKEN, {"v": 1}, 1)

    assert await repo.replace_if_revision("profile-a", TOKEN, 1, {"v": 2}, 2)
    assert not await repo.replace_if_revision("profile-a", TOKEN, 1, {"v": "late"}, 2)
    assert not await repo.replace_if_revision("missing", TOKEN, 0, {"v": 1}, 1)

    stored = await repo.get(TOKEN, "profile-a")
    assert stored.snapshot == {"v": 2}
    assert stored.revision == 2


@pytest.mark.asyncio
async def test_upsert_creates_and_replaces(repo):
    await repo.upsert("profile-a", TOKEN, {"v": 1}, 1)
    await repo.upsert("profile-a", TOKEN, {"v": 7}, 7)

    stored = await repo.get(TOKEN, "profile-a")
    assert stored.snapshot == {"v": 7}
    assert stored.revision == 7


@pytest.mark.asyncio
async def test_delete_one_and_delete_all(repo):
    await repo.create("profile-a", TOKEN, {}, 1)
    await repo.create("profile-a", "second-token-01", {}, 1)
    await repo.create("profile-b", TOKEN, {}, 1)

    assert await repo.delete_one("profile-a") == 2
    assert await repo.get(TOKEN, "profile-a") is None
    assert await repo.delete_all() == 1
    assert await repo.get(TOKEN) is None
