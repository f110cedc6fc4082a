from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional

EventListener = Callable[[Mapping[str, Any]], None]


class InspectorTransport(ABC):
    """Base class for heap-profiler protocol transports.

    A transport accepts named commands and replies with a result mapping.
    Out-of-band events (snapshot chunks, tracking stats) are delivered to
    listeners registered per event name, in arrival order.
    """

    transport_id: str
    transport_name: str

    def __init__(self) -> None:
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)

    @classmethod
    @abstractmethod
    def is_available(cls) -> bool:
        """Return True when the transport can be connected."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying channel."""

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying channel; safe to call twice."""

    @abstractmethod
    async def send(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Send ``method`` and return its result, raising ``ProtocolError`` on failure."""

    def add_listener(self, event: str, listener: EventListener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: str, params: Mapping[str, Any]) -> None:
        for listener in list(self._listeners.get(event, ())):
            listener(params)


__all__ = ["EventListener", "InspectorTransport"]
