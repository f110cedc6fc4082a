"""Chrome DevTools Protocol transport for runtimes started with ``--inspect``."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.errors import ProtocolError
from ..core.registry import TransportRegistry
from ..core.transport import InspectorTransport

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "127.0.0.1:9229"
_DEFAULT_PORT = 9229


def normalize_target(target: str) -> str:
    """Reduce ``target`` to ``host:port``."""
    for prefix in ("http://", "https://", "ws://", "wss://"):
        if target.startswith(prefix):
            target = target[len(prefix) :]
    if "/" in target:
        target = target.split("/", 1)[0]
    if not target:
        target = DEFAULT_TARGET
    if ":" not in target:
        target += f":{_DEFAULT_PORT}"
    return target


def _pick_debugger_url(entries: Any, target: str) -> str:
    if isinstance(entries, list):
        for entry in entries:
            if isinstance(entry, Mapping) and entry.get("webSocketDebuggerUrl"):
                return str(entry["webSocketDebuggerUrl"])
    raise ProtocolError(f"No debuggable inspector target found at {target}")


def discover_debugger_url(target: str = DEFAULT_TARGET, *, timeout: float = 2.0) -> str:
    """Resolve the websocket URL of the first inspector target.

    ``ws://`` targets are returned unchanged; anything else is looked up via
    the inspector's ``/json/list`` endpoint.
    """
    if target.startswith(("ws://", "wss://")):
        return target
    host = normalize_target(target)
    try:
        response = httpx.get(f"http://{host}/json/list", timeout=timeout)
        response.raise_for_status()
        entries = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ProtocolError(f"Inspector discovery failed for {host}: {exc}") from exc
    return _pick_debugger_url(entries, host)


@TransportRegistry.register("remote")
class RemoteInspectorTransport(InspectorTransport):
    transport_id = "remote"
    transport_name = "Remote inspector (CDP)"

    def __init__(self, target: str = DEFAULT_TARGET, *, discovery_timeout: float = 2.0) -> None:
        super().__init__()
        self._target = target
        self._discovery_timeout = discovery_timeout
        self._socket: Any = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, Tuple[str, asyncio.Future[Dict[str, Any]]]] = {}

    @classmethod
    def is_available(cls, target: str = DEFAULT_TARGET) -> bool:
        try:
            discover_debugger_url(target, timeout=1.0)
            return True
        except ProtocolError:
            return False

    async def connect(self) -> None:
        if self._socket is not None:
            return
        url = await self._discover()
        try:
            self._socket = await websockets.connect(url, max_size=None)
        except (OSError, WebSocketException) as exc:
            raise ProtocolError(f"Unable to connect to inspector at {url}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop(), name="heapscope-inspector-reader")
        logger.debug("Connected to inspector at %s", url)

    async def _discover(self) -> str:
        return await asyncio.to_thread(
            discover_debugger_url, self._target, timeout=self._discovery_timeout
        )

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        socket, self._socket = self._socket, None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if socket is not None:
            await socket.close()
        self._fail_pending("Inspector session closed")

    async def send(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        if self._socket is None:
            raise ProtocolError("Session is not connected", method=method)
        message_id = next(self._ids)
        future: asyncio.Future[Dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = (method, future)
        payload = {"id": message_id, "method": method, "params": dict(params or {})}
        try:
            await self._socket.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._pending.pop(message_id, None)
            raise ProtocolError(f"Inspector connection closed: {exc}", method=method) from exc
        try:
            return await future
        finally:
            self._pending.pop(message_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._socket:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping malformed inspector message")
                    continue
                self._dispatch(message)
        except ConnectionClosed:
            logger.debug("Inspector connection closed by peer")
        finally:
            self._fail_pending("Inspector connection closed")

    def _dispatch(self, message: Mapping[str, Any]) -> None:
        if "id" in message:
            entry = self._pending.get(message["id"])
            if entry is None:
                return
            method, future = entry
            if future.done():
                return
            error = message.get("error")
            if error:
                future.set_exception(
                    ProtocolError(
                        str(error.get("message", "Inspector command failed")),
                        method=method,
                        code=error.get("code"),
                    )
                )
            else:
                future.set_result(dict(message.get("result") or {}))
        elif "method" in message:
            try:
                self._emit(str(message["method"]), message.get("params") or {})
            except Exception:
                logger.exception("Event listener for %s failed", message["method"])

    def _fail_pending(self, reason: str) -> None:
        for method, future in self._pending.values():
            if not future.done():
                future.set_exception(ProtocolError(reason, method=method))
        self._pending.clear()


__all__ = [
    "DEFAULT_TARGET",
    "RemoteInspectorTransport",
    "discover_debugger_url",
    "normalize_target",
]
