"""Error types raised by heapscope."""

from __future__ import annotations

from typing import Optional


class ProfilingError(RuntimeError):
    """Base class for profiling failures surfaced to the host pipeline."""


class ProtocolError(ProfilingError):
    """Raised when an inspector command fails at the transport."""

    def __init__(self, message: str, *, method: str = "", code: Optional[int] = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code


class StorageError(ProfilingError):
    """Raised when an artifact directory or file cannot be written."""

    def __init__(self, message: str, *, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class ConfigurationError(ProfilingError, ValueError):
    """Raised eagerly when profiling options are invalid."""


__all__ = ["ConfigurationError", "ProfilingError", "ProtocolError", "StorageError"]
