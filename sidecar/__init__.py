"""Agones lifecycle sidecar for game servers that know nothing about Agones."""

from sidecar.config import Settings
from sidecar.log import get_logger

__all__ = ["Settings", "get_logger"]

__version__ = "0.3.0"
