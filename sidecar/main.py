"""Agnostic Agones Sidecar entry point.

Marks an unmodified game server Ready in Agones once its port answers,
then keeps it Healthy until the pod shuts down.

Exit status is 0 after a graceful shutdown and 1 on any fatal error:
invalid configuration, no Agones SDK, probe never ready, Ready rejected.
"""

from __future__ import annotations

import asyncio
import sys

from pydantic import ValidationError

import sidecar
from sidecar.config import Settings
from sidecar.errors import ConfigurationError
from sidecar.log import get_logger, setup_logging
from sidecar.service import EXIT_FAILURE, SidecarService


def load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError("; ".join(errors)) from exc


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        setup_logging()
        get_logger("main").error("invalid_configuration", error=str(exc))
        sys.exit(EXIT_FAILURE)

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("main")
    logger.info(
        "starting_agnostic_agones_sidecar",
        version=sidecar.__version__,
        target=f"{settings.ping_host}:{settings.ping_port}",
        protocol=settings.ping_protocol,
        api_enabled=settings.api_enabled,
    )

    service = SidecarService(settings)
    sys.exit(asyncio.run(service.start()))


if __name__ == "__main__":
    main()
