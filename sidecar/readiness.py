"""Readiness loop: probe the game server until it answers.

Attempts run strictly one after another on a fixed period. A failed
attempt is logged and retried on the next tick, forever; only a probe
success, a configuration error or shutdown ends the loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sidecar.log import get_logger
from sidecar.probe import EndpointTarget, ProbeOutcome, ProbeStrategy
from sidecar.shutdown import ShutdownSignal, Ticker


class PhaseResult(str, Enum):
    """What a lifecycle phase resolved to."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass(frozen=True)
class ReadinessResult:
    result: PhaseResult
    attempts: int = 0
    cause: str | None = None

    @property
    def ready(self) -> bool:
        return self.result is PhaseResult.SUCCESS


class ReadinessLoop:
    """Drives a ProbeStrategy against one target until it succeeds."""

    def __init__(
        self,
        probe: ProbeStrategy,
        target: EndpointTarget,
        retry_interval: float = 5.0,
        logger: Any = None,
    ) -> None:
        self.probe = probe
        self.target = target
        self.retry_interval = retry_interval
        self.logger = logger or get_logger("readiness")
        self.last_outcome: ProbeOutcome | None = None

    async def run(self, shutdown: ShutdownSignal) -> ReadinessResult:
        self.logger.info(
            "readiness_probe_started",
            address=self.target.address,
            protocol=self.target.transport.value,
            retry_interval=self.retry_interval,
        )
        ticker = Ticker(self.retry_interval, shutdown)
        attempts = 0

        while True:
            if not await ticker.tick():
                return self._cancelled(attempts, shutdown)

            attempts += 1
            completed, outcome = await shutdown.race(self.probe.attempt(self.target))
            if not completed:
                return self._cancelled(attempts, shutdown)
            self.last_outcome = outcome

            if outcome.success:
                self.logger.info("readiness_probe_successful", attempts=attempts)
                return ReadinessResult(PhaseResult.SUCCESS, attempts)

            if outcome.fatal:
                self.logger.error(
                    "readiness_probe_misconfigured",
                    attempts=attempts,
                    error=outcome.describe(),
                )
                return ReadinessResult(PhaseResult.FATAL, attempts, outcome.describe())

            self.logger.warning(
                "readiness_probe_attempt_failed",
                attempt=attempts,
                error=outcome.describe(),
            )

    def _cancelled(self, attempts: int, shutdown: ShutdownSignal) -> ReadinessResult:
        self.logger.info("readiness_probe_cancelled", attempts=attempts, reason=shutdown.reason)
        return ReadinessResult(PhaseResult.CANCELLED, attempts, shutdown.reason)
