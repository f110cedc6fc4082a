from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

DEFAULT_SAMPLE_INTERVAL_MS = 1000
DEFAULT_SAMPLING_PROFILE_PATH = "v8-heap-sample.heapprofile"
DEFAULT_ALLOCATION_PATH = "v8-heap-allocations.json"
DEFAULT_SNAPSHOT_PATH = "v8-heap.heapsnapshot"


class ModeKind(str, enum.Enum):
    """Instrumentation modes, declared in start order."""

    SAMPLING_PROFILE = "sampling_profile"
    ALLOCATION_TRACKING = "allocation_tracking"
    HEAP_SNAPSHOT = "heap_snapshot"

    @classmethod
    def ordered(cls, kinds: Iterable["ModeKind"]) -> list["ModeKind"]:
        wanted = set(kinds)
        return [kind for kind in cls if kind in wanted]


class ModeState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    COMPLETED = "completed"
    FAILED = "failed"


# Option name -> mode it toggles.
_MODE_OPTIONS = {
    "heap_profile": ModeKind.SAMPLING_PROFILE,
    "allocation_tracking": ModeKind.ALLOCATION_TRACKING,
    "heap_snapshot": ModeKind.HEAP_SNAPSHOT,
}

# Option name -> ProfilingConfig field.
_FIELD_OPTIONS = {
    "check_peak_memory": "check_peak_memory",
    "check_peak_memory_interval_ms": "peak_memory_sample_interval_ms",
    "output_path": "sampling_profile_output_path",
    "allocation_output_path": "allocation_output_path",
    "snapshot_output_path": "snapshot_output_path",
    "command_timeout": "command_timeout",
}

_PATH_FIELDS = {
    ModeKind.SAMPLING_PROFILE: "sampling_profile_output_path",
    ModeKind.ALLOCATION_TRACKING: "allocation_output_path",
    ModeKind.HEAP_SNAPSHOT: "snapshot_output_path",
}

_DEFAULT_PATHS = {
    ModeKind.SAMPLING_PROFILE: DEFAULT_SAMPLING_PROFILE_PATH,
    ModeKind.ALLOCATION_TRACKING: DEFAULT_ALLOCATION_PATH,
    ModeKind.HEAP_SNAPSHOT: DEFAULT_SNAPSHOT_PATH,
}


@dataclass(frozen=True, slots=True)
class ProfilingConfig:
    """Resolved profiling options for one coordinator.

    Output paths left as ``None`` are resolved when the coordinator is bound
    to a pipeline; see :meth:`resolve_paths`.
    """

    enabled_modes: frozenset[ModeKind] = frozenset()
    check_peak_memory: bool = False
    peak_memory_sample_interval_ms: int = DEFAULT_SAMPLE_INTERVAL_MS
    sampling_profile_output_path: Optional[Path] = None
    allocation_output_path: Optional[Path] = None
    snapshot_output_path: Optional[Path] = None
    command_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        modes = self.enabled_modes
        if isinstance(modes, (str, bytes)) or not isinstance(modes, Iterable):
            raise ConfigurationError(f"enabled_modes must be a collection of modes, got {modes!r}")
        resolved: set[ModeKind] = set()
        for mode in modes:
            try:
                resolved.add(ModeKind(mode))
            except ValueError as exc:
                raise ConfigurationError(f"Unknown instrumentation mode {mode!r}") from exc
        object.__setattr__(self, "enabled_modes", frozenset(resolved))

        interval = self.peak_memory_sample_interval_ms
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ConfigurationError(
                f"Peak memory sample interval must be a positive integer, got {interval!r}"
            )

        for name in ("sampling_profile_output_path", "allocation_output_path", "snapshot_output_path"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, (str, os.PathLike)) or not str(value).strip():
                raise ConfigurationError(f"{name} must be a non-empty path, got {value!r}")
            object.__setattr__(self, name, Path(value))

        timeout = self.command_timeout
        if timeout is not None and (isinstance(timeout, bool) or timeout <= 0):
            raise ConfigurationError(f"command_timeout must be positive, got {timeout!r}")

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "ProfilingConfig":
        """Build a config from integrator-facing option names."""
        modes: set[ModeKind] = set()
        kwargs: dict[str, Any] = {}
        for key, value in (options or {}).items():
            if key in _MODE_OPTIONS:
                if value:
                    modes.add(_MODE_OPTIONS[key])
            elif key in _FIELD_OPTIONS:
                if value is not None:
                    kwargs[_FIELD_OPTIONS[key]] = value
            else:
                logger.warning("Ignoring unrecognized profiling option %r", key)
        if "check_peak_memory" in kwargs:
            kwargs["check_peak_memory"] = bool(kwargs["check_peak_memory"])
        return cls(enabled_modes=frozenset(modes), **kwargs)

    def resolve_paths(self, output_dir: Optional[PathLike] = None) -> "ProfilingConfig":
        """Return a copy with every unset artifact path made explicit.

        Unset paths land in ``output_dir`` when the pipeline has one.
        """
        updates: dict[str, Path] = {}
        for kind in ModeKind:
            name = _PATH_FIELDS[kind]
            if getattr(self, name) is None:
                default = _DEFAULT_PATHS[kind]
                updates[name] = Path(output_dir, default) if output_dir else Path(default)
        return replace(self, **updates) if updates else self

    @property
    def is_active(self) -> bool:
        return bool(self.enabled_modes) or self.check_peak_memory

    def output_path_for(self, kind: ModeKind) -> Path:
        """Return the artifact path for ``kind``, falling back to its default name."""
        return getattr(self, _PATH_FIELDS[kind]) or Path(_DEFAULT_PATHS[kind])


@dataclass(slots=True)
class Artifact:
    """Payload produced by one completed mode."""

    kind: ModeKind
    path: Path
    payload: Any = None


@dataclass(slots=True)
class ModeFailure:
    kind: Optional[ModeKind]
    phase: str
    error: str


@dataclass(slots=True)
class CycleReport:
    """Outcome of one before-run -> after-completion cycle."""

    artifacts: list[Path] = field(default_factory=list)
    failures: list[ModeFailure] = field(default_factory=list)
    peak_memory_bytes: Optional[int] = None
    disabled: bool = False

    @property
    def peak_memory_mb(self) -> Optional[float]:
        if self.peak_memory_bytes is None:
            return None
        return round(self.peak_memory_bytes / 1024 / 1024, 2)


__all__ = [
    "Artifact",
    "CycleReport",
    "DEFAULT_ALLOCATION_PATH",
    "DEFAULT_SAMPLE_INTERVAL_MS",
    "DEFAULT_SAMPLING_PROFILE_PATH",
    "DEFAULT_SNAPSHOT_PATH",
    "ModeFailure",
    "ModeKind",
    "ModeState",
    "PathLike",
    "ProfilingConfig",
]
