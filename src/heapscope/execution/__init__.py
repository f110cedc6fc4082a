"""Execution components for heapscope profiling cycles."""

from .coordinator import SessionCoordinator
from .modes import AllocationTrackingMode, HeapSnapshotMode, InstrumentationMode, SamplingProfileMode
from .pipeline import ScriptPipeline, WindowPipeline
from .resolution import ensure_transport_available, resolve_transport
from .sampler import MemoryPeakSampler
from .session import ProtocolSession
from .writer import ArtifactWriter, LocalStorage

__all__ = [
    "AllocationTrackingMode",
    "ArtifactWriter",
    "HeapSnapshotMode",
    "InstrumentationMode",
    "LocalStorage",
    "MemoryPeakSampler",
    "ProtocolSession",
    "SamplingProfileMode",
    "ScriptPipeline",
    "SessionCoordinator",
    "WindowPipeline",
    "ensure_transport_available",
    "resolve_transport",
]
