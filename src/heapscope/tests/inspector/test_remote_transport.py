from __future__ import annotations

import asyncio
import json
from typing import Any, List
from unittest.mock import Mock

import httpx
import pytest

from heapscope.core.errors import ProtocolError
from heapscope.inspector import remote
from heapscope.inspector.remote import (
    RemoteInspectorTransport,
    discover_debugger_url,
    normalize_target,
)


class FakeSocket:
    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.closed = False

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True


@pytest.mark.parametrize(
    "target, expected",
    [
        ("127.0.0.1:9229", "127.0.0.1:9229"),
        ("localhost", "localhost:9229"),
        ("http://example:9300/json/list", "example:9300"),
        ("", "127.0.0.1:9229"),
    ],
)
def test_normalize_target(target: str, expected: str) -> None:
    assert normalize_target(target) == expected


class TestDiscovery:
    def test_websocket_url_is_returned_unchanged(self) -> None:
        url = "ws://127.0.0.1:9229/abc"
        assert discover_debugger_url(url) == url

    def test_picks_first_debuggable_entry(self, monkeypatch: pytest.MonkeyPatch) -> None:
        response = Mock()
        response.json.return_value = [
            {"id": "worker"},
            {"id": "main", "webSocketDebuggerUrl": "ws://127.0.0.1:9229/main"},
        ]
        get = Mock(return_value=response)
        monkeypatch.setattr(remote.httpx, "get", get)

        assert discover_debugger_url("127.0.0.1:9229") == "ws://127.0.0.1:9229/main"
        get.assert_called_once_with("http://127.0.0.1:9229/json/list", timeout=2.0)

    def test_no_targets(self, monkeypatch: pytest.MonkeyPatch) -> None:
        response = Mock()
        response.json.return_value = []
        monkeypatch.setattr(remote.httpx, "get", Mock(return_value=response))
        with pytest.raises(ProtocolError, match="No debuggable inspector target"):
            discover_debugger_url("127.0.0.1:9229")

    def test_http_error_is_wrapped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(remote.httpx, "get", Mock(side_effect=httpx.ConnectError("refused")))
        with pytest.raises(ProtocolError, match="discovery failed"):
            discover_debugger_url("127.0.0.1:9229")

    def test_is_available_reflects_discovery(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(remote.httpx, "get", Mock(side_effect=httpx.ConnectError("refused")))
        assert RemoteInspectorTransport.is_available() is False


class TestRemoteInspectorTransport:
    @pytest.mark.asyncio
    async def test_send_requires_connection(self) -> None:
        transport = RemoteInspectorTransport()
        with pytest.raises(ProtocolError, match="not connected"):
            await transport.send("HeapProfiler.enable")

    @pytest.mark.asyncio
    async def test_reply_resolves_matching_request(self) -> None:
        transport = RemoteInspectorTransport()
        socket = FakeSocket()
        transport._socket = socket

        pending = asyncio.ensure_future(transport.send("HeapProfiler.stopSampling", {"a": 1}))
        await asyncio.sleep(0)
        assert socket.sent == [{"id": 1, "method": "HeapProfiler.stopSampling", "params": {"a": 1}}]

        transport._dispatch({"id": 1, "result": {"profile": {"head": {}}}})
        assert await pending == {"profile": {"head": {}}}
        assert transport._pending == {}

    @pytest.mark.asyncio
    async def test_error_reply_raises_protocol_error(self) -> None:
        transport = RemoteInspectorTransport()
        transport._socket = FakeSocket()

        pending = asyncio.ensure_future(transport.send("HeapProfiler.startSampling"))
        await asyncio.sleep(0)
        transport._dispatch({"id": 1, "error": {"code": -32000, "message": "already started"}})

        with pytest.raises(ProtocolError) as excinfo:
            await pending
        assert excinfo.value.code == -32000
        assert excinfo.value.method == "HeapProfiler.startSampling"

    @pytest.mark.asyncio
    async def test_events_reach_listeners(self) -> None:
        transport = RemoteInspectorTransport()
        received: List[Any] = []
        transport.add_listener("HeapProfiler.addHeapSnapshotChunk", received.append)

        transport._dispatch({"method": "HeapProfiler.addHeapSnapshotChunk", "params": {"chunk": "{"}})
        transport._dispatch({"method": "HeapProfiler.heapStatsUpdate", "params": {"statsUpdate": []}})

        assert received == [{"chunk": "{"}]

    @pytest.mark.asyncio
    async def test_listener_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = RemoteInspectorTransport()

        def broken(params: Any) -> None:
            raise RuntimeError("listener broke")

        transport.add_listener("HeapProfiler.lastSeenObjectId", broken)
        transport._dispatch({"method": "HeapProfiler.lastSeenObjectId", "params": {}})
        assert "Event listener for HeapProfiler.lastSeenObjectId failed" in caplog.text

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self) -> None:
        transport = RemoteInspectorTransport()
        socket = FakeSocket()
        transport._socket = socket

        pending = asyncio.ensure_future(transport.send("HeapProfiler.takeHeapSnapshot"))
        await asyncio.sleep(0)
        await transport.close()

        assert socket.closed
        with pytest.raises(ProtocolError, match="closed"):
            await pending

    @pytest.mark.asyncio
    async def test_discover_uses_json_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        response = Mock()
        response.json.return_value = [{"webSocketDebuggerUrl": "ws://host:9300/page"}]
        get = Mock(return_value=response)
        monkeypatch.setattr(remote.httpx, "get", get)

        transport = RemoteInspectorTransport("host:9300", discovery_timeout=0.5)
        assert await transport._discover() == "ws://host:9300/page"
        get.assert_called_once_with("http://host:9300/json/list", timeout=0.5)

    @pytest.mark.asyncio
    async def test_connect_wraps_discovery_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def failing_discovery(self: RemoteInspectorTransport) -> str:
            raise ProtocolError("Inspector discovery failed for 127.0.0.1:9229")

        monkeypatch.setattr(RemoteInspectorTransport, "_discover", failing_discovery)
        transport = RemoteInspectorTransport()
        with pytest.raises(ProtocolError):
            await transport.connect()
        assert transport._socket is None
