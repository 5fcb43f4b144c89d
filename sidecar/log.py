"""Structured logging for the sidecar.

Every line is one event with a fixed shape, so log pipelines in the
cluster can index sidecars of every game the same way:

    {"timestamp": ..., "level": "info", "service": "agnostic-sidecar",
     "component": "lifecycle", "msg": "lifecycle_phase_changed",
     "context": {"previous": "probing", "phase": "ready"}}

Usage:
    from sidecar.log import get_logger
    logger = get_logger("probe")
    logger.info("probe_started", address="127.0.0.1:7777")

Lifecycle components take a bound logger at construction and fall back
to get_logger(); the API modules keep a module-level one.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

SERVICE_NAME = "agnostic-sidecar"

_TOP_LEVEL_KEYS = frozenset({"timestamp", "level", "service", "component", "msg", "context", "exception"})

_initialized = False


def _shape_event(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Move the event name to ``msg`` and everything else into ``context``."""
    if "event" in event_dict:
        event_dict.setdefault("msg", event_dict.pop("event"))

    context = event_dict.pop("context", None)
    if not isinstance(context, dict):
        context = {} if context is None else {"value": context}

    for key in [k for k in event_dict if k not in _TOP_LEVEL_KEYS]:
        context[key] = event_dict.pop(key)
    event_dict["context"] = context
    return event_dict


def _use_json(log_format: str) -> bool:
    fmt = log_format.lower()
    if fmt == "auto":
        # Containers have no TTY; a developer shell does.
        return not sys.stdout.isatty()
    return fmt == "json"


def setup_logging(level: str = "INFO", log_format: str = "auto") -> None:
    """Configure structlog. Safe to call again, e.g. once settings are loaded."""
    global _initialized

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
    ]
    if _use_json(log_format):
        processors += [
            structlog.processors.format_exc_info,
            _shape_event,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )
    _initialized = True


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to the sidecar service name and one component."""
    if not _initialized:
        setup_logging()
    return structlog.get_logger(service=SERVICE_NAME, component=component)
