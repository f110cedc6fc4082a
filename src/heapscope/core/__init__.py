"""
Core abstractions shared by the heapscope coordinator, transports and CLI.
"""

from .errors import ConfigurationError, ProfilingError, ProtocolError, StorageError
from .hooks import AsyncSeriesHook, Pipeline, PipelineHooks
from .registry import ModeRegistry, TransportRegistry
from .transport import InspectorTransport
from .types import Artifact, CycleReport, ModeFailure, ModeKind, ModeState, ProfilingConfig

__all__ = [
    "Artifact",
    "AsyncSeriesHook",
    "ConfigurationError",
    "CycleReport",
    "InspectorTransport",
    "ModeFailure",
    "ModeKind",
    "ModeRegistry",
    "ModeState",
    "Pipeline",
    "PipelineHooks",
    "ProfilingConfig",
    "ProfilingError",
    "ProtocolError",
    "StorageError",
    "TransportRegistry",
]
