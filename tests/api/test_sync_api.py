# tests/api/test_sync_api.py
# HTTP-level tests for /api/sync/* and the health probes

import httpx
import pytest

from foodsync.config import Settings
from foodsync.main import create_app
from foodsync.routers.health import get_session_factory
from foodsync.routers.sync import get_service

TOKEN = "share-token-0001"
PROFILE = "profile-0001"


async def _push(client, snapshot, base_revision=0, profile_id=PROFILE, share_token=TOKEN):
    return await client.post(
        "/api/sync/push",
        json={"shareToken": share_token, "profileId": profile_id, "baseRevision": base_revision, "snapshot": snapshot},
    )


class TestPull:
    @pytest.mark.asyncio
    async def test_unknown_token_is_404_with_empty_body(self, client):
        response = await client.post("/api/sync/pull", json={"shareToken": "never-pushed-token"})

        assert response.status_code == 404
        assert response.json() == {}

    @pytest.mark.asyncio
    async def test_pull_after_push(self, client, wire_snapshot):
        await _push(client, wire_snapshot)

        response = await client.post("/api/sync/pull", json={"shareToken": TOKEN, "profileId": PROFILE})

        assert response.status_code == 200
        body = response.json()
        assert body["revision"] == 1
        assert body["snapshot"]["revision"] == 1
        assert body["snapshot"]["items"]["apple"]["id"] == "apple"

    @pytest.mark.asyncio
    async def test_invalid_token_is_400_with_reason(self, client):
        response = await client.post("/api/sync/pull", json={"shareToken": "bad"})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "invalid_share_token"


class TestPush:
    @pytest.mark.asyncio
    async def test_create_then_update(self, client, wire_snapshot):
        created = await _push(client, wire_snapshot, base_revision=9)
        updated = await _push(client, wire_snapshot, base_revision=1)

        assert created.status_code == 200
        assert created.json()["revision"] == 1
        assert updated.status_code == 200
        assert updated.json()["revision"] == 2

    @pytest.mark.asyncio
    async def test_revisions_are_strictly_sequential(self, client, wire_snapshot):
        seen = []
        base = 0
        for _ in range(5):
            response = await _push(client, wire_snapshot, base_revision=base)
            base = response.json()["revision"]
            seen.append(base)

        assert seen == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_stale_base_revision_is_409_with_stored_state(self, client, wire_snapshot, snapshot_factory):
        await _push(client, wire_snapshot)
        accepted = await _push(client, wire_snapshot, base_revision=1)

        response = await _push(client, snapshot_factory(profileName="Lost edit"), base_revision=1)

        assert response.status_code == 409
        body = response.json()
        assert body["conflict"] is True
        assert body["revision"] == 2
        assert body["snapshot"] == accepted.json()["snapshot"]

        pulled = await client.post("/api/sync/pull", json={"shareToken": TOKEN, "profileId": PROFILE})
        assert pulled.json()["snapshot"]["profileName"] == "Bebé"

    @pytest.mark.asyncio
    async def test_oversized_snapshot_is_rejected_and_not_stored(self, client, snapshot_factory):
        snapshot = snapshot_factory()
        snapshot["items"]["apple"]["notes"] = "a" * 1_000_000

        response = await _push(client, snapshot)

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "snapshot_too_large"
        pulled = await client.post("/api/sync/pull", json={"shareToken": TOKEN})
        assert pulled.status_code == 404

    @pytest.mark.asyncio
    async def test_image_override_without_attribution_is_cleared(self, client, snapshot_factory):
        snapshot = snapshot_factory()
        snapshot["items"]["apple"].update(
            {
                "customImageUrl": "data:image/png;base64,AAAA",
                "customImageAttribution": "",
                "customImageAttributionUrl": "https://nowhere.example",
                "imageSource": "upload",
                "imageGeneratedAt": "2024-05-01T09:00:00.000Z",
            }
        )

        response = await _push(client, snapshot)

        apple = response.json()["snapshot"]["items"]["apple"]
        assert apple["customImageUrl"] == ""
        assert apple["customImageAttribution"] == ""
        assert apple["customImageAttributionUrl"] == ""
        assert apple["imageSource"] == ""
        assert apple["imageGeneratedAt"] == ""

        pulled = await client.post("/api/sync/pull", json={"shareToken": TOKEN, "profileId": PROFILE})
        assert pulled.json()["snapshot"]["items"]["apple"]["customImageUrl"] == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,reason",
        [
            ({"shareToken": TOKEN, "profileId": PROFILE, "baseRevision": -1, "snapshot": {}}, "invalid_base_revision"),
            ({"shareToken": TOKEN, "profileId": PROFILE, "baseRevision": 0, "snapshot": "x"}, "invalid_snapshot"),
            ({"shareToken": TOKEN, "baseRevision": 0, "snapshot": {}}, "invalid_profile_id"),
            ([1, 2, 3], "invalid_body"),
        ],
    )
    async def test_bad_requests_are_400(self, client, body, reason):
        response = await client.post("/api/sync/push", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == reason

    @pytest.mark.asyncio
    async def test_malformed_json_is_400_not_422(self, client):
        response = await client.post(
            "/api/sync/push", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["reason"] == "invalid_body"

    @pytest.mark.asyncio
    async def test_empty_body_is_400(self, client):
        response = await client.post("/api/sync/pull")

        assert response.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_database(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_probes(self, client):
        assert (await client.get("/health/live")).json() == {"status": "alive"}
        assert (await client.get("/health/ready")).json() == {"status": "ready"}

    @pytest.mark.asyncio
    async def test_unreachable_database_is_503(self, api_app, client):
        def broken_factory():
            raise ConnectionRefusedError("db down")

        api_app.dependency_overrides[get_session_factory] = lambda: broken_factory

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestProtection:
    @pytest.mark.asyncio
    async def test_repeated_failures_get_blocked(self, service, session_factory):
        settings = Settings(
            FAIL_BLOCK_ENABLED=True,
            FAIL_BLOCK_THRESHOLD=3,
            FAIL_BLOCK_BASE_SECONDS=60,
            API_RATE_LIMIT=100000,
            SYNC_RATE_LIMIT=100000,
        )
        app = create_app(settings)
        app.dependency_overrides[get_service] = lambda: service
        app.dependency_overrides[get_session_factory] = lambda: session_factory

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            statuses = []
            for _ in range(4):
                response = await c.post("/api/sync/pull", json={"shareToken": "bad"})
                statuses.append(response.status_code)

            # health is outside the sync prefix and stays reachable
            health = await c.get("/health/live")

        assert statuses == [400, 400, 400, 429]
        assert int(response.headers["Retry-After"]) > 0
        assert health.status_code == 200

    @pytest.mark.asyncio
    async def test_sync_rate_limit(self, service, session_factory):
        settings = Settings(FAIL_BLOCK_ENABLED=False, API_RATE_LIMIT=100, SYNC_RATE_LIMIT=2)
        app = create_app(settings)
        app.dependency_overrides[get_service] = lambda: service

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            codes = [
                (await c.post("/api/sync/pull", json={"shareToken": "never-pushed-token"})).status_code
                for _ in range(5)
            ]

        assert codes[:2] == [404, 404]
        assert 429 in codes

    @pytest.mark.asyncio
    async def test_cors_preflight_for_configured_origin(self, service):
        settings = Settings(FAIL_BLOCK_ENABLED=False, CORS_ORIGINS="https://app.example, https://other.example")
        app = create_app(settings)
        app.dependency_overrides[get_service] = lambda: service

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            response = await c.options(
                "/api/sync/pull",
                headers={
                    "Origin": "https://app.example",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "Content-Type",
                },
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://app.example"
