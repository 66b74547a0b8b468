"""Client for the hosted TimeStitch backend."""

from .client import RemoteClient

__all__ = ["RemoteClient"]
