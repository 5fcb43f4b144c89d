"""Agones SDK client over the SDK server's REST gateway.

Every game server pod runs an Agones SDK server next to the game. Its
HTTP gateway listens on localhost:$AGONES_SDK_HTTP_PORT (9358 unless
configured otherwise) and mirrors the gRPC SDK:

    GET  /gameserver  -- current GameServer resource
    POST /ready       -- mark the GameServer Ready
    POST /health      -- health ping

Usage:
    sdk = AgonesSDK(port=settings.agones_sdk_http_port)
    await sdk.connect()
    await sdk.ready()
    await sdk.health()
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from sidecar.errors import SDKConnectionError, SDKError
from sidecar.log import get_logger
from sidecar.retry import async_retry
from sidecar.shutdown import ShutdownSignal


class LifecycleSDK(Protocol):
    """The two calls the lifecycle manager makes on the orchestrator."""

    async def ready(self) -> None: ...

    async def health(self) -> None: ...


class AgonesSDK:
    """Async client for the Agones SDK server."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 9358,
        timeout: float = 10.0,
        logger: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = f"http://{host}:{port}"
        self.timeout = timeout
        self.logger = logger or get_logger("agones-sdk")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def connect(self, shutdown: ShutdownSignal | None = None) -> dict[str, Any]:
        """Check that the SDK server answers and return the GameServer.

        Retries with backoff while the SDK server starts up, which can
        lag behind the sidecar container by a few seconds.
        """
        try:
            gameserver = await self._get_gameserver(shutdown=shutdown)
        except (httpx.HTTPError, ValueError) as exc:
            raise SDKConnectionError(
                f"could not connect to Agones SDK at {self.url}: {exc}"
            ) from exc

        meta = gameserver.get("object_meta") or {}
        status = gameserver.get("status") or {}
        self.logger.info(
            "agones_sdk_connected",
            url=self.url,
            gameserver=meta.get("name", ""),
            state=status.get("state", ""),
        )
        return gameserver

    @async_retry(max_retries=5, base_delay=0.5, max_delay=8.0, exceptions=(httpx.HTTPError,))
    async def _get_gameserver(self, shutdown: ShutdownSignal | None = None) -> dict[str, Any]:
        client = await self._get_client()
        resp = await client.get("/gameserver")
        resp.raise_for_status()
        return resp.json()

    async def ready(self) -> None:
        """Tell Agones the game server can take players."""
        await self._post("/ready")

    async def health(self) -> None:
        """Send one health ping."""
        await self._post("/health")

    async def _post(self, path: str) -> None:
        client = await self._get_client()
        try:
            resp = await client.post(path, json={})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SDKError(f"POST {path} failed: {exc}") from exc
