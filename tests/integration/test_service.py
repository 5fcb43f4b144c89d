"""End-to-end runs of the sidecar service against a fake Agones SDK."""

import asyncio
import os
import signal
import socket

import httpx
import pytest

from sidecar.config import Settings
from sidecar.lifecycle import LifecyclePhase
from sidecar.service import EXIT_FAILURE, EXIT_OK, SidecarService
from tests.fakes import FakeSDK, wait_until


def make_settings(port: int, **overrides) -> Settings:
    values = dict(
        ping_port=str(port),
        ping_timeout=1.0,
        initial_delay=0.0,
        retry_interval=0.05,
        health_interval=0.05,
    )
    values.update(overrides)
    return Settings(**values)


async def api_health(port: int) -> int | None:
    async with httpx.AsyncClient() as client:
        try:
            resp = await client.get(f"http://127.0.0.1:{port}/health")
        except httpx.TransportError:
            return None
        return resp.status_code


class TestSidecarService:
    @pytest.mark.asyncio
    async def test_graceful_run(self, sidecar_env, tcp_server):
        sdk = FakeSDK()
        service = SidecarService(make_settings(tcp_server.port), sdk=sdk)

        task = asyncio.create_task(service.start())
        await wait_until(lambda: sdk.count("health") >= 2)
        service.shutdown.trigger("test done")
        exit_code = await task

        assert exit_code == EXIT_OK
        assert sdk.calls[:2] == ["connect", "ready"]
        assert sdk.count("ready") == 1
        assert service.result.phase is LifecyclePhase.TERMINATED
        assert sdk.closed

    @pytest.mark.asyncio
    async def test_sigterm_stops_the_service(self, sidecar_env, tcp_server):
        sdk = FakeSDK()
        service = SidecarService(make_settings(tcp_server.port), sdk=sdk)

        task = asyncio.create_task(service.start())
        await wait_until(lambda: sdk.count("health") >= 1)
        os.kill(os.getpid(), signal.SIGTERM)
        exit_code = await asyncio.wait_for(task, timeout=5)

        assert exit_code == EXIT_OK
        assert service.shutdown.reason == "received SIGTERM"

    @pytest.mark.asyncio
    async def test_sdk_unreachable(self, sidecar_env, tcp_server):
        sdk = FakeSDK(fail_connect=True)
        service = SidecarService(make_settings(tcp_server.port), sdk=sdk)

        assert await service.start() == EXIT_FAILURE
        assert sdk.calls == ["connect"]
        assert sdk.closed

    @pytest.mark.asyncio
    async def test_ready_rejected(self, sidecar_env, tcp_server):
        sdk = FakeSDK(fail_ready=True)
        service = SidecarService(make_settings(tcp_server.port), sdk=sdk)

        assert await service.start() == EXIT_FAILURE
        assert sdk.count("health") == 0
        assert service.result.phase is LifecyclePhase.FAILED

    @pytest.mark.asyncio
    async def test_api_served_next_to_lifecycle(self, sidecar_env, tcp_server, free_port, tmp_path):
        sdk = FakeSDK()
        settings = make_settings(
            tcp_server.port,
            api_enabled=True,
            api_host="127.0.0.1",
            api_port=free_port,
            data_root=str(tmp_path),
        )
        service = SidecarService(settings, sdk=sdk)

        task = asyncio.create_task(service.start())
        statuses = []

        async def poll() -> None:
            while not statuses or statuses[-1] != 200:
                statuses.append(await api_health(free_port))
                await asyncio.sleep(0.02)

        await asyncio.wait_for(poll(), timeout=5)
        service.shutdown.trigger("test done")

        assert await asyncio.wait_for(task, timeout=10) == EXIT_OK
        assert await api_health(free_port) is None

    @pytest.mark.asyncio
    async def test_lifecycle_failure_stops_api(self, sidecar_env, tcp_server, free_port, tmp_path):
        sdk = FakeSDK(fail_ready=True)
        settings = make_settings(
            tcp_server.port,
            api_enabled=True,
            api_host="127.0.0.1",
            api_port=free_port,
            data_root=str(tmp_path),
        )
        service = SidecarService(settings, sdk=sdk)

        assert await asyncio.wait_for(service.start(), timeout=10) == EXIT_FAILURE
        assert service.shutdown.reason == "lifecycle failed"

    @pytest.mark.asyncio
    async def test_api_bind_failure_does_not_stop_lifecycle(self, sidecar_env, tcp_server, tmp_path):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        try:
            sdk = FakeSDK()
            settings = make_settings(
                tcp_server.port,
                api_enabled=True,
                api_host="127.0.0.1",
                api_port=blocker.getsockname()[1],
                data_root=str(tmp_path),
            )
            service = SidecarService(settings, sdk=sdk)

            task = asyncio.create_task(service.start())
            await wait_until(lambda: sdk.count("health") >= 2)
            service.shutdown.trigger("test done")

            assert await asyncio.wait_for(task, timeout=5) == EXIT_OK
        finally:
            blocker.close()
