"""Exception hierarchy for the sidecar.

Transient probe failures never show up here; they live inside a
ProbeOutcome and are retried by the readiness loop.
"""

from __future__ import annotations


class SidecarError(Exception):
    """Base class for all sidecar errors."""


class ConfigurationError(SidecarError):
    """Settings that can never work. Retrying will not help."""


class UnsupportedTransportError(ConfigurationError):
    def __init__(self, transport: object) -> None:
        super().__init__(f"unsupported protocol: {transport}")
        self.transport = transport


class SDKError(SidecarError):
    """A call to the Agones SDK server failed."""


class SDKConnectionError(SDKError):
    """The Agones SDK server could not be reached at startup."""
