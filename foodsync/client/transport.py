# foodsync/client/transport.py
# HTTP transport for the sync protocol

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from foodsync import config
from foodsync.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)


class SyncTransportError(Exception):
    """Network failure, timeout, unexpected status or unparsable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PullResponse:
    snapshot: Dict[str, Any]
    revision: int


@dataclass(frozen=True)
class PushResponse:
    snapshot: Dict[str, Any]
    revision: int
    conflict: bool = False


class SyncTransport:
    """Thin async client for ``/api/sync/pull`` and ``/api/sync/push``.

    Pass ``client`` to reuse a configured ``httpx.AsyncClient`` (tests hand in
    one bound to the ASGI app); otherwise one is created lazily.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = config.settings.SYNC_REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or config.settings.SYNC_API_BASE).rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        return await self._get_client().post(f"{self.base_url}{path}", json=body)

    async def _request(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        try:
            return await with_timeout(self.timeout)(self._post)(path, body)
        except asyncio.TimeoutError as e:
            raise SyncTransportError(f"{path} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise SyncTransportError(f"{path} failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise SyncTransportError("response body is not JSON", response.status_code) from e
        if not isinstance(data, dict) or not isinstance(data.get("snapshot"), dict):
            raise SyncTransportError("response carries no snapshot", response.status_code)
        revision = data.get("revision")
        if isinstance(revision, bool) or not isinstance(revision, int):
            raise SyncTransportError("response carries no revision", response.status_code)
        return data

    async def pull(self, share_token: str, profile_id: Optional[str] = None) -> Optional[PullResponse]:
        """Fetch the stored snapshot. Returns None when the server has none yet (404)."""
        body: Dict[str, Any] = {"shareToken": share_token}
        if profile_id:
            body["profileId"] = profile_id

        response = await self._request("/api/sync/pull", body)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise SyncTransportError(f"pull returned {response.status_code}", response.status_code)
        data = self._parse(response)
        return PullResponse(snapshot=data["snapshot"], revision=data["revision"])

    async def push(
        self,
        share_token: str,
        profile_id: str,
        base_revision: int,
        snapshot: Dict[str, Any],
    ) -> PushResponse:
        """Send a snapshot. A 409 is returned as ``PushResponse(conflict=True)``, not raised."""
        response = await self._request(
            "/api/sync/push",
            {
                "shareToken": share_token,
                "profileId": profile_id,
                "baseRevision": base_revision,
                "snapshot": snapshot,
            },
        )
        if response.status_code not in (200, 409):
            raise SyncTransportError(f"push returned {response.status_code}", response.status_code)
        data = self._parse(response)
        return PushResponse(
            snapshot=data["snapshot"],
            revision=data["revision"],
            conflict=response.status_code == 409,
        )
