"""Cycle-scoped heap profiler session."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from ..core.errors import ProtocolError
from ..core.transport import EventListener, InspectorTransport

logger = logging.getLogger(__name__)

ENABLE = "HeapProfiler.enable"
DISABLE = "HeapProfiler.disable"
_DOMAIN_COMMANDS = frozenset({ENABLE, DISABLE})


def _stream_item(item: Any, method: str, event: str, field: str) -> Any:
    if not isinstance(item, (str, bytes)):
        raise ProtocolError(f"{event} carried no {field!r} payload", method=method)
    return item


class ProtocolSession:
    """One open connection to an inspector transport for one profiling cycle.

    Only the coordinator enables and disables the session; instrumentation
    modes receive the session and use :meth:`send` and :meth:`stream`, which
    refuse to run before :meth:`enable` or after :meth:`disable`.
    """

    def __init__(self, transport: InspectorTransport, *, command_timeout: Optional[float] = None) -> None:
        self._transport = transport
        self._command_timeout = command_timeout
        self._connected = False
        self._enabled = False
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def open(self) -> None:
        if self._closed:
            raise ProtocolError("Session already closed")
        if not self._connected:
            try:
                await self._transport.connect()
            except ProtocolError:
                raise
            except Exception as exc:
                raise ProtocolError(f"Unable to connect to the inspector: {exc!r}") from exc
            self._connected = True

    async def enable(self) -> None:
        await self._call(ENABLE, None)
        self._enabled = True

    async def disable(self) -> None:
        try:
            await self._call(DISABLE, None)
        finally:
            self._enabled = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._connected:
            await self._transport.close()
            self._connected = False

    def subscribe(self, event: str, listener: EventListener) -> None:
        self._transport.add_listener(event, listener)

    def unsubscribe(self, event: str, listener: EventListener) -> None:
        self._transport.remove_listener(event, listener)

    async def send(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Send a mode command and await its reply."""
        self._check_mode_command(method)
        return await self._call(method, params)

    async def stream(
        self,
        method: str,
        event: str,
        field: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[Any]:
        """Run ``method`` and yield ``params[field]`` of each ``event`` until it replies.

        Items are yielded in arrival order as soon as they are delivered; the
        command reply marks the end of the stream. An event whose ``field`` is
        not text or bytes ends the stream with ``ProtocolError``.
        """
        self._check_mode_command(method)
        queue: asyncio.Queue[Any] = asyncio.Queue()

        def _on_event(event_params: Mapping[str, Any]) -> None:
            queue.put_nowait(event_params.get(field))

        self._transport.add_listener(event, _on_event)
        command = asyncio.ensure_future(self._call(method, params))
        getter: Optional[asyncio.Future[Any]] = None
        try:
            while True:
                if not queue.empty():
                    yield _stream_item(queue.get_nowait(), method, event, field)
                    continue
                if command.done():
                    break
                getter = asyncio.ensure_future(queue.get())
                await asyncio.wait({getter, command}, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    item, getter = getter.result(), None
                    yield _stream_item(item, method, event, field)
                else:
                    # The item, if any, stays queued for the next pass.
                    getter.cancel()
                    getter = None
            command.result()
        finally:
            self._transport.remove_listener(event, _on_event)
            if getter is not None:
                getter.cancel()
            if not command.done():
                command.cancel()
                try:
                    await command
                except (asyncio.CancelledError, ProtocolError):
                    pass

    def _check_mode_command(self, method: str) -> None:
        if method in _DOMAIN_COMMANDS:
            raise ProtocolError(f"{method} is reserved for the session owner", method=method)
        if not self._enabled:
            raise ProtocolError("Session is not enabled", method=method)

    async def _call(self, method: str, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not self._connected:
            raise ProtocolError("Session is not connected", method=method)
        logger.debug("-> %s", method)
        request = self._transport.send(method, params)
        try:
            if self._command_timeout is None:
                return await request
            return await asyncio.wait_for(request, timeout=self._command_timeout)
        except ProtocolError:
            raise
        except Exception as exc:
            # Transports may raise anything; callers only ever see ProtocolError.
            if isinstance(exc, asyncio.TimeoutError) and self._command_timeout is not None:
                message = f"{method} timed out after {self._command_timeout:g}s"
            else:
                message = f"{method} failed: {exc!r}"
            raise ProtocolError(message, method=method) from exc


__all__ = ["DISABLE", "ENABLE", "ProtocolSession"]
