"""Tests for the TCP and UDP probe strategies."""

import asyncio
import socket

import pytest

from sidecar.errors import ConfigurationError, UnsupportedTransportError
from sidecar.probe import (
    EndpointTarget,
    ProbeOutcome,
    TcpProbe,
    Transport,
    UdpProbe,
    strategy_for,
)


def tcp_target(port: int, timeout: float = 1.0) -> EndpointTarget:
    return EndpointTarget("127.0.0.1", str(port), Transport.TCP, timeout)


def udp_target(port: int, timeout: float = 0.2) -> EndpointTarget:
    return EndpointTarget("127.0.0.1", str(port), Transport.UDP, timeout)


class TestEndpointTarget:
    def test_address(self):
        assert EndpointTarget("10.0.0.5", "7777").address == "10.0.0.5:7777"

    def test_ipv6_address_is_bracketed(self):
        assert EndpointTarget("::1", "7777").address == "[::1]:7777"

    @pytest.mark.parametrize("port", ["", "0", "65536", "abc"])
    def test_invalid_port(self, port):
        with pytest.raises(ConfigurationError):
            EndpointTarget("127.0.0.1", port)

    def test_is_immutable(self):
        target = EndpointTarget("127.0.0.1", "7777")
        with pytest.raises(AttributeError):
            target.port = "8888"  # type: ignore[misc]


class TestProbeOutcome:
    def test_transient_failure_is_not_fatal(self):
        outcome = ProbeOutcome.failed(ConnectionRefusedError(111, "Connection refused"))
        assert not outcome.success
        assert not outcome.fatal

    def test_configuration_failure_is_fatal(self):
        assert ProbeOutcome.failed(UnsupportedTransportError("sctp")).fatal

    def test_describe_timeout(self):
        assert ProbeOutcome.failed(asyncio.TimeoutError()).describe() == "timeout"


class TestTcpProbe:
    @pytest.mark.asyncio
    async def test_accepting_target_succeeds(self, tcp_server):
        outcome = await TcpProbe().attempt(tcp_target(tcp_server.port))

        assert outcome.success
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_connection_is_closed_without_data(self, tcp_server):
        await TcpProbe().attempt(tcp_target(tcp_server.port))
        await asyncio.sleep(0.05)

        assert len(tcp_server.accepted) == 1

    @pytest.mark.asyncio
    async def test_refused_target_fails_with_cause(self, free_port):
        outcome = await TcpProbe().attempt(tcp_target(free_port))

        assert not outcome.success
        assert isinstance(outcome.error, ConnectionRefusedError)
        assert not outcome.fatal

    @pytest.mark.asyncio
    async def test_unreachable_target_fails_within_timeout(self):
        # TEST-NET-1, never routed: either times out or is unreachable.
        target = EndpointTarget("192.0.2.1", "7777", Transport.TCP, 0.2)

        outcome = await asyncio.wait_for(TcpProbe().attempt(target), timeout=2)

        assert not outcome.success
        assert isinstance(outcome.error, OSError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("host", ["game..svc", "a" * 64 + ".example"])
    @pytest.mark.parametrize("transport", [Transport.TCP, Transport.UDP])
    async def test_unencodable_host_is_fatal(self, host, transport):
        target = EndpointTarget(host, "7777", transport, 0.5)

        outcome = await strategy_for(transport).attempt(target)

        assert not outcome.success
        assert outcome.fatal
        assert host in outcome.describe()

    @pytest.mark.asyncio
    async def test_wrong_transport_is_fatal(self, tcp_server):
        outcome = await TcpProbe().attempt(udp_target(tcp_server.port))

        assert not outcome.success
        assert outcome.fatal


class TestUdpProbe:
    @pytest.mark.asyncio
    async def test_silent_target_succeeds(self, silent_udp_port):
        outcome = await UdpProbe().attempt(udp_target(silent_udp_port))

        assert outcome.success

    @pytest.mark.asyncio
    async def test_payload_is_sent(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        server.bind(("127.0.0.1", 0))
        server.settimeout(1)
        try:
            port = server.getsockname()[1]
            outcome = await UdpProbe(read_response=False).attempt(udp_target(port))
            data, _ = server.recvfrom(64)
        finally:
            server.close()

        assert outcome.success
        assert data == b"ping"

    @pytest.mark.asyncio
    async def test_replying_target_succeeds(self):
        class Echo(asyncio.DatagramProtocol):
            def connection_made(self, transport):
                self.transport = transport

            def datagram_received(self, data, addr):
                self.transport.sendto(b"pong", addr)

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(Echo, local_addr=("127.0.0.1", 0))
        try:
            port = transport.get_extra_info("sockname")[1]
            outcome = await UdpProbe().attempt(udp_target(port))
        finally:
            transport.close()

        assert outcome.success

    @pytest.mark.asyncio
    async def test_read_does_not_change_outcome_when_port_closed(self, free_port):
        # The write succeeds; the ICMP refusal only shows up on the read.
        outcome = await UdpProbe().attempt(udp_target(free_port))

        assert outcome.success

    @pytest.mark.asyncio
    async def test_resolution_failure_fails(self):
        target = EndpointTarget("host.invalid", "7777", Transport.UDP, 1.0)

        outcome = await UdpProbe().attempt(target)

        assert not outcome.success
        assert isinstance(outcome.error, OSError)


class TestStrategyFor:
    def test_tcp(self):
        assert isinstance(strategy_for("tcp"), TcpProbe)

    def test_udp_is_case_insensitive(self):
        assert isinstance(strategy_for("UDP"), UdpProbe)

    def test_transport_enum(self):
        assert isinstance(strategy_for(Transport.UDP), UdpProbe)

    def test_unsupported_transport_fails_fast(self):
        with pytest.raises(UnsupportedTransportError, match="unsupported protocol: sctp"):
            strategy_for("sctp")
