"""Readiness probe strategies.

A strategy makes exactly one connectivity check against an endpoint and
reports the outcome. It never retries; ReadinessLoop does that.

    TCP  success iff the connection establishes (closed right away)
    UDP  success iff the probe datagram could be written; any reply is
         read only for the logs, most game servers ignore stray packets
"""

from __future__ import annotations

import asyncio
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from sidecar.errors import ConfigurationError, UnsupportedTransportError
from sidecar.log import get_logger

UDP_PAYLOAD = b"ping"
UDP_READ_BUFFER = 1024


class Transport(str, Enum):
    TCP = "tcp"
    UDP = "udp"

    @classmethod
    def parse(cls, value: str) -> Transport:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UnsupportedTransportError(value) from None


@dataclass(frozen=True)
class EndpointTarget:
    """What to probe."""

    host: str
    port: str
    transport: Transport = Transport.TCP
    dial_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.port.isdigit() or not 0 < int(self.port) < 65536:
            raise ConfigurationError(f"invalid port: {self.port}")

    @property
    def address(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


@dataclass(frozen=True)
class ProbeOutcome:
    success: bool
    error: BaseException | None = None

    @classmethod
    def ok(cls) -> ProbeOutcome:
        return cls(True)

    @classmethod
    def failed(cls, error: BaseException) -> ProbeOutcome:
        return cls(False, error)

    @property
    def fatal(self) -> bool:
        """True when retrying can never turn this into a success."""
        return isinstance(self.error, ConfigurationError)

    def describe(self) -> str:
        if self.success:
            return "ok"
        if isinstance(self.error, asyncio.TimeoutError):
            return "timeout"
        return str(self.error) or type(self.error).__name__


class ProbeStrategy(ABC):
    """One bounded connectivity check. Subclasses declare their transport."""

    transport: ClassVar[Transport]

    def __init__(self, logger: Any = None) -> None:
        self.logger = logger or get_logger("probe")

    async def attempt(self, target: EndpointTarget) -> ProbeOutcome:
        if target.transport is not self.transport:
            return ProbeOutcome.failed(UnsupportedTransportError(target.transport.value))
        try:
            await self._dial(target)
        except (OSError, asyncio.TimeoutError) as exc:
            return ProbeOutcome.failed(exc)
        except UnicodeError as exc:
            # The resolver cannot even encode the host name (empty or
            # over-long label); retrying will not change that.
            return ProbeOutcome.failed(
                ConfigurationError(f"invalid host {target.host!r}: {exc}")
            )
        return ProbeOutcome.ok()

    @abstractmethod
    async def _dial(self, target: EndpointTarget) -> None:
        """Raise OSError or TimeoutError when the endpoint is not reachable."""


class TcpProbe(ProbeStrategy):
    transport = Transport.TCP

    async def _dial(self, target: EndpointTarget) -> None:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(target.host, int(target.port)),
            timeout=target.dial_timeout,
        )
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


class UdpProbe(ProbeStrategy):
    """Write a datagram to the target.

    The write is all that decides the outcome. With ``read_response`` on,
    the probe then waits up to the dial timeout for a reply and logs what
    happened; silence there is expected and ignored.
    """

    transport = Transport.UDP

    def __init__(self, logger: Any = None, read_response: bool = True) -> None:
        super().__init__(logger)
        self.read_response = read_response

    async def _dial(self, target: EndpointTarget) -> None:
        loop = asyncio.get_running_loop()
        sock = await asyncio.wait_for(self._send(loop, target), timeout=target.dial_timeout)
        try:
            if self.read_response:
                await self._read_reply(loop, sock, target)
        finally:
            sock.close()

    async def _send(self, loop: asyncio.AbstractEventLoop, target: EndpointTarget) -> socket.socket:
        infos = await loop.getaddrinfo(
            target.host, int(target.port), type=socket.SOCK_DGRAM,
        )
        family, type_, proto, _canon, addr = infos[0]
        sock = socket.socket(family, type_, proto)
        try:
            sock.setblocking(False)
            await loop.sock_connect(sock, addr)
            await loop.sock_sendall(sock, UDP_PAYLOAD)
        except BaseException:
            sock.close()
            raise
        return sock

    async def _read_reply(
        self, loop: asyncio.AbstractEventLoop, sock: socket.socket, target: EndpointTarget,
    ) -> None:
        try:
            data = await asyncio.wait_for(
                loop.sock_recv(sock, UDP_READ_BUFFER), timeout=target.dial_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.debug("udp_no_response", address=target.address)
        except OSError as exc:
            # ICMP port unreachable surfaces here as ConnectionRefusedError.
            self.logger.debug("udp_read_failed", address=target.address, error=str(exc))
        else:
            self.logger.debug("udp_response_received", address=target.address, size=len(data))


STRATEGIES: dict[Transport, type[ProbeStrategy]] = {
    Transport.TCP: TcpProbe,
    Transport.UDP: UdpProbe,
}


def strategy_for(transport: Transport | str, logger: Any = None) -> ProbeStrategy:
    """Build the probe for a transport. Fails fast on unknown transports."""
    if not isinstance(transport, Transport):
        transport = Transport.parse(transport)
    try:
        cls = STRATEGIES[transport]
    except KeyError:
        raise UnsupportedTransportError(transport.value) from None
    return cls(logger=logger)
