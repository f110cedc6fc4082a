"""Inspector transports bundled with heapscope."""

from .local import LocalInspectorTransport
from .remote import (
    DEFAULT_TARGET,
    RemoteInspectorTransport,
    discover_debugger_url,
    normalize_target,
)

__all__ = [
    "DEFAULT_TARGET",
    "LocalInspectorTransport",
    "RemoteInspectorTransport",
    "discover_debugger_url",
    "normalize_target",
]
