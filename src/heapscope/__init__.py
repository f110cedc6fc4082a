"""
heapscope: heap profiling for long-running pipelines.

This module exposes the primary entry points so integrators can import from
a single namespace.
"""

from .core.errors import ConfigurationError, ProfilingError, ProtocolError, StorageError
from .core.hooks import AsyncSeriesHook, Pipeline, PipelineHooks
from .core.registry import ModeRegistry, TransportRegistry
from .core.transport import InspectorTransport
from .core.types import CycleReport, ModeKind, ModeState, ProfilingConfig
from .execution import (
    ArtifactWriter,
    MemoryPeakSampler,
    ProtocolSession,
    ScriptPipeline,
    SessionCoordinator,
    WindowPipeline,
)
from .inspector import LocalInspectorTransport, RemoteInspectorTransport

__all__ = [
    "ArtifactWriter",
    "AsyncSeriesHook",
    "ConfigurationError",
    "CycleReport",
    "InspectorTransport",
    "LocalInspectorTransport",
    "MemoryPeakSampler",
    "ModeKind",
    "ModeRegistry",
    "ModeState",
    "Pipeline",
    "PipelineHooks",
    "ProfilingConfig",
    "ProfilingError",
    "ProtocolError",
    "ProtocolSession",
    "RemoteInspectorTransport",
    "ScriptPipeline",
    "SessionCoordinator",
    "StorageError",
    "TransportRegistry",
    "WindowPipeline",
]
