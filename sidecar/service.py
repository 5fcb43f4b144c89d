"""Sidecar process runner.

Connects to the Agones SDK, then runs two independent tasks that share
nothing but the shutdown signal:

  - the lifecycle manager (probe, Ready, health pings)
  - the file manager API, when AGNOSTIC_SIDECAR_API_ENABLED is set

Usage:
    service = SidecarService(Settings())
    exit_code = asyncio.run(service.start())
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

from sidecar.agones import AgonesSDK
from sidecar.api.server import create_app, start_api_server
from sidecar.config import Settings
from sidecar.errors import SDKConnectionError
from sidecar.lifecycle import LifecycleConfig, LifecycleManager, LifecycleResult
from sidecar.log import get_logger
from sidecar.shutdown import ShutdownSignal

EXIT_OK = 0
EXIT_FAILURE = 1


class SidecarService:
    name: str = "agnostic-sidecar"

    def __init__(
        self,
        settings: Settings,
        sdk: Any = None,
        lifecycle: LifecycleManager | None = None,
        logger: Any = None,
    ) -> None:
        self.settings = settings
        self.logger = logger or get_logger("service")
        self.shutdown = ShutdownSignal()
        self.sdk = sdk or AgonesSDK(
            host=settings.agones_sdk_host,
            port=settings.agones_sdk_http_port,
            logger=get_logger("agones-sdk"),
        )
        self.lifecycle = lifecycle or LifecycleManager(
            LifecycleConfig.from_settings(settings),
            self.sdk,
            logger=get_logger("lifecycle"),
        )
        self.result: LifecycleResult | None = None
        self._api_task: asyncio.Task | None = None
        self._signals: list[signal.Signals] = []

    async def start(self) -> int:
        """Run until shutdown or failure and return the process exit code."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)
            self._signals.append(sig)

        self.logger.info("service_starting", service=self.name)
        try:
            return await self.run()
        finally:
            await self.close()

    def _handle_shutdown(self, sig: signal.Signals) -> None:
        self.logger.info("shutdown_signal_received", signal=sig.name)
        self.shutdown.trigger(f"received {sig.name}")

    async def run(self) -> int:
        try:
            await self.sdk.connect(shutdown=self.shutdown)
        except SDKConnectionError as exc:
            self.logger.error("monitor_failed", error=str(exc))
            return EXIT_FAILURE

        if self.settings.api_enabled:
            self._api_task = asyncio.create_task(self._run_api())

        self.result = await self.lifecycle.run(self.shutdown)
        if self.result.ok:
            self.logger.info("monitor_finished_gracefully")
        else:
            self.logger.error("monitor_failed", error=self.result.cause)
            # Take the API down with us, the pod is going away.
            self.shutdown.trigger("lifecycle failed")

        if self._api_task is not None:
            await self._api_task
        return EXIT_OK if self.result.ok else EXIT_FAILURE

    async def _run_api(self) -> None:
        app = create_app(self.settings, self.shutdown)
        try:
            await start_api_server(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                shutdown=self.shutdown,
            )
        except OSError as exc:
            # The lifecycle keeps going without the API.
            self.logger.error("api_server_crashed", error=str(exc))

    async def close(self) -> None:
        """Clean up resources."""
        self.logger.info("service_shutting_down")
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
        if self._api_task and not self._api_task.done():
            self._api_task.cancel()
            try:
                await self._api_task
            except asyncio.CancelledError:
                pass
        await self.sdk.close()
        self.logger.info("service_stopped")
