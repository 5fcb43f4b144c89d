"""Sidecar configuration loaded from environment variables / .env file.

Every key is read with the AGNOSTIC_SIDECAR_ prefix, e.g.
AGNOSTIC_SIDECAR_PING_PORT=7777. The Agones SDK port is the exception:
Agones injects AGONES_SDK_HTTP_PORT into every container of the pod, so
that name is honoured as-is.

Durations accept Go-style strings ("30s", "1m30s", "500ms") or a bare
number of seconds.

Usage:
    from sidecar.config import Settings
    settings = Settings()
    print(settings.ping_port)
"""

from __future__ import annotations

import math
import re
from typing import Any

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sidecar.log import get_logger

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Raises ValueError for anything that is not a duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration {value!r}")
        return seconds

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return total


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGNOSTIC_SIDECAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Lifecycle timing (seconds) ---
    initial_delay: float = 30.0  # wait before the first probe
    health_interval: float = 15.0  # period between health pings
    retry_interval: float = 5.0  # wait between failed probe attempts

    # --- Readiness probe ---
    ping_host: str = "127.0.0.1"
    ping_port: str  # game server port, no sensible default
    ping_protocol: str = "tcp"
    ping_timeout: float = 5.0  # per-attempt dial timeout

    # --- Agones SDK server (REST gateway) ---
    agones_sdk_host: str = "localhost"
    agones_sdk_http_port: int = Field(
        default=9358,
        validation_alias=AliasChoices(
            "AGONES_SDK_HTTP_PORT", "AGNOSTIC_SIDECAR_AGONES_SDK_HTTP_PORT"
        ),
    )

    # --- File manager API ---
    api_enabled: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    data_root: str = "/data"
    stdout_log_file: str = "stdout.log"  # relative to data_root
    rate_limit: int = 60  # requests per client IP per minute

    # --- General ---
    log_level: str = "INFO"
    log_format: str = "auto"  # "json", "console" or "auto"

    @field_validator(
        "initial_delay", "health_interval", "retry_interval", "ping_timeout",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str):
            return value
        try:
            return parse_duration(value)
        except ValueError:
            default = cls.model_fields[info.field_name].default
            get_logger("config").warning(
                "invalid_duration_using_default",
                key=info.field_name,
                value=value,
                default=default,
            )
            return default

    @field_validator("health_interval", "retry_interval", "ping_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("initial_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("duration must not be negative")
        return value

    @field_validator("ping_protocol")
    @classmethod
    def _known_protocol(cls, value: str) -> str:
        protocol = value.strip().lower()
        if protocol not in ("tcp", "udp"):
            raise ValueError(f"unsupported protocol: {value}")
        return protocol

    @field_validator("ping_port", mode="before")
    @classmethod
    def _valid_port(cls, value: Any) -> str:
        port = str(value).strip()
        if not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"invalid port: {value}")
        return port

    @field_validator("rate_limit", mode="before")
    @classmethod
    def _rate_limit_or_default(cls, value: Any) -> Any:
        try:
            limit = int(value)
        except (TypeError, ValueError):
            limit = 0
        if limit <= 0:
            get_logger("config").warning(
                "invalid_rate_limit_using_default", value=value, default=60,
            )
            return 60
        return limit
