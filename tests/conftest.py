import asyncio
import socket

import pytest
import pytest_asyncio

from sidecar.log import setup_logging

setup_logging("DEBUG", "console")


@pytest.fixture
def free_port() -> int:
    """A localhost TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest_asyncio.fixture
async def tcp_server():
    """A TCP server on localhost that accepts and drops connections."""
    accepted: list[int] = []

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        accepted.append(1)
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.accepted = accepted  # type: ignore[attr-defined]
    server.port = port  # type: ignore[attr-defined]
    try:
        yield server
    finally:
        server.close()
        await server.wait_closed()


@pytest.fixture
def silent_udp_port():
    """A bound UDP socket that never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


@pytest.fixture
def sidecar_env(monkeypatch):
    """Clear sidecar variables inherited from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("AGNOSTIC_SIDECAR_") or key == "AGONES_SDK_HTTP_PORT":
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
