"""Game server lifecycle: delay, probe, Ready, then health pings.

    DELAYING -> PROBING -> READY -> HEALTH_CHECKING -> TERMINATED
        |           |         |
        +-----------+---------+--> FAILED

Shutdown during the initial delay or the health phase ends the run
cleanly (TERMINATED). Shutdown while still probing means the server
never became Ready, which is a failure. A failed Ready call is fatal and
never retried; failed health pings are logged and the next tick tries
again, Agones marks the server Unhealthy on its own if they keep failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sidecar.agones import LifecycleSDK
from sidecar.config import Settings
from sidecar.errors import SDKError
from sidecar.log import get_logger
from sidecar.probe import EndpointTarget, ProbeStrategy, Transport, strategy_for
from sidecar.readiness import PhaseResult, ReadinessLoop
from sidecar.shutdown import ShutdownSignal, Ticker


class LifecyclePhase(str, Enum):
    DELAYING = "delaying"
    PROBING = "probing"
    READY = "ready"
    HEALTH_CHECKING = "health_checking"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(frozen=True)
class LifecycleConfig:
    target: EndpointTarget
    initial_delay: float = 30.0
    health_interval: float = 15.0
    retry_interval: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> LifecycleConfig:
        return cls(
            target=EndpointTarget(
                host=settings.ping_host,
                port=settings.ping_port,
                transport=Transport.parse(settings.ping_protocol),
                dial_timeout=settings.ping_timeout,
            ),
            initial_delay=settings.initial_delay,
            health_interval=settings.health_interval,
            retry_interval=settings.retry_interval,
        )


@dataclass(frozen=True)
class LifecycleResult:
    phase: LifecyclePhase
    cause: str | None = None
    probe_attempts: int = 0
    health_signals: int = 0
    health_failures: int = 0

    @property
    def ok(self) -> bool:
        return self.phase is LifecyclePhase.TERMINATED


class LifecycleManager:
    """Runs the lifecycle once, from startup until shutdown or failure."""

    def __init__(
        self,
        config: LifecycleConfig,
        sdk: LifecycleSDK,
        probe: ProbeStrategy | None = None,
        logger: Any = None,
    ) -> None:
        self.config = config
        self.sdk = sdk
        self.logger = logger or get_logger("lifecycle")
        self.probe = probe or strategy_for(config.target.transport, logger=self.logger)
        self.phase = LifecyclePhase.DELAYING
        self.probe_attempts = 0
        self.health_signals = 0
        self.health_failures = 0

    async def run(self, shutdown: ShutdownSignal) -> LifecycleResult:
        self.logger.info("waiting_for_initial_delay", duration=self.config.initial_delay)
        if await shutdown.sleep(self.config.initial_delay):
            return self._finish(LifecyclePhase.TERMINATED, shutdown.reason)

        self._transition(LifecyclePhase.PROBING, target=self.config.target.address)
        loop = ReadinessLoop(
            self.probe,
            self.config.target,
            retry_interval=self.config.retry_interval,
            logger=self.logger,
        )
        readiness = await loop.run(shutdown)
        self.probe_attempts = readiness.attempts
        if readiness.result is PhaseResult.CANCELLED or shutdown.is_set():
            return self._finish(
                LifecyclePhase.FAILED,
                f"readiness probe cancelled: {shutdown.reason or readiness.cause}",
            )
        if readiness.result is PhaseResult.FATAL:
            return self._finish(LifecyclePhase.FAILED, f"readiness probe failed: {readiness.cause}")

        self._transition(LifecyclePhase.READY)
        try:
            await self.sdk.ready()
        except SDKError as exc:
            self.logger.error("ready_signal_failed", error=str(exc))
            return self._finish(LifecyclePhase.FAILED, f"failed to send Ready signal: {exc}")
        self.logger.info("server_ready_starting_health_checks")

        self._transition(LifecyclePhase.HEALTH_CHECKING, interval=self.config.health_interval)
        ticker = Ticker(self.config.health_interval, shutdown)
        while await ticker.tick():
            self.health_signals += 1
            try:
                await self.sdk.health()
            except SDKError as exc:
                self.health_failures += 1
                self.logger.warning("health_ping_failed", error=str(exc))
            else:
                self.logger.debug("health_ping_sent")

        self.logger.info("shutdown_signal_received", reason=shutdown.reason)
        return self._finish(LifecyclePhase.TERMINATED, shutdown.reason)

    def _transition(self, phase: LifecyclePhase, **context: Any) -> None:
        self.logger.info(
            "lifecycle_phase_changed",
            previous=self.phase.value,
            phase=phase.value,
            **context,
        )
        self.phase = phase

    def _finish(self, phase: LifecyclePhase, cause: str | None) -> LifecycleResult:
        self._transition(phase, cause=cause)
        return LifecycleResult(
            phase=phase,
            cause=cause,
            probe_attempts=self.probe_attempts,
            health_signals=self.health_signals,
            health_failures=self.health_failures,
        )
