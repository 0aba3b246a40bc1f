# tests/unit/test_transport.py
# SyncTransport status and payload handling, using httpx.MockTransport

import asyncio
import json

import httpx
import pytest

from foodsync.client.transport import SyncTransport, SyncTransportError

SNAPSHOT = {"profileId": "profile-0001", "items": {}}


def _transport(handler, timeout=5.0) -> SyncTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SyncTransport(base_url="http://sync.test/", timeout=timeout, client=client)


@pytest.mark.asyncio
async def test_pull_sends_camel_case_body_and_parses_reply():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"snapshot": SNAPSHOT, "revision": 4})

    result = await _transport(handler).pull("share-token-0001", "profile-0001")

    assert seen["url"] == "http://sync.test/api/sync/pull"
    assert seen["body"] == {"shareToken": "share-token-0001", "profileId": "profile-0001"}
    assert result.revision == 4
    assert result.snapshot == SNAPSHOT


@pytest.mark.asyncio
async def test_pull_404_means_nothing_stored():
    result = await _transport(lambda request: httpx.Response(404, json={})).pull("share-token-0001")
    assert result is None


@pytest.mark.asyncio
async def test_push_409_is_a_conflict_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["baseRevision"] == 1
        return httpx.Response(409, json={"snapshot": SNAPSHOT, "revision": 2, "conflict": True})

    result = await _transport(handler).push("share-token-0001", "profile-0001", 1, SNAPSHOT)

    assert result.conflict
    assert result.revision == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": {}}),
        httpx.Response(400, json={"error": {"details": {"reason": "invalid_snapshot"}}}),
        httpx.Response(200, content=b"<html>proxy error</html>"),
        httpx.Response(200, json={"snapshot": SNAPSHOT}),
        httpx.Response(200, json={"snapshot": "nope", "revision": 1}),
    ],
)
async def test_unexpected_replies_raise(response):
    with pytest.raises(SyncTransportError):
        await _transport(lambda request: response).push("share-token-0001", "profile-0001", 0, SNAPSHOT)


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SyncTransportError):
        await _transport(handler).pull("share-token-0001")


@pytest.mark.asyncio
async def test_slow_server_times_out():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1.0)
        return httpx.Response(200, json={"snapshot": SNAPSHOT, "revision": 1})

    with pytest.raises(SyncTransportError) as exc:
        await _transport(handler, timeout=0.05).pull("share-token-0001")

    assert "timed out" in str(exc.value)
