from __future__ import annotations

import time
from collections import deque
from typing import Any

import pytest
import websocket

from devtools_driver.errors import ConnectionLost, DevToolsConnectionError, ResponseTimeout, TransportError
from devtools_driver.transport import WebSocketTransport


class DummyWs:
    def __init__(self, incoming: list[Any] | None = None) -> None:
        self.incoming: deque[Any] = deque(incoming or [])
        self.sent: list[tuple[Any, int]] = []
        self.timeouts: list[float] = []
        self.connected = True
        self.closed = False
        self.sock = None

    def settimeout(self, value: float) -> None:
        self.timeouts.append(value)

    def send(self, payload: Any, opcode: int = websocket.ABNF.OPCODE_TEXT) -> None:
        self.sent.append((payload, opcode))

    def recv(self) -> Any:
        item = self.incoming.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self, timeout: float | None = None) -> None:  # noqa: ARG002
        self.closed = True


def _connect(monkeypatch, ws: DummyWs, **kwargs: Any) -> tuple[WebSocketTransport, dict[str, Any]]:  # noqa: ANN001
    calls: dict[str, Any] = {}

    def fake_create_connection(url: str, **options: Any) -> DummyWs:
        calls["url"] = url
        calls.update(options)
        return ws

    monkeypatch.setattr(websocket, "create_connection", fake_create_connection)
    transport = WebSocketTransport(read_poll_interval=0.01, **kwargs)
    transport.connect("ws://127.0.0.1:9222/devtools/page/T1")
    return transport, calls


def test_connect_suppresses_origin(monkeypatch) -> None:  # noqa: ANN001
    transport, calls = _connect(monkeypatch, DummyWs(), connect_timeout=3.0)
    assert calls["url"] == "ws://127.0.0.1:9222/devtools/page/T1"
    assert calls["suppress_origin"] is True
    assert calls["timeout"] == 3.0
    assert transport.connected


def test_connect_failure_is_wrapped(monkeypatch) -> None:  # noqa: ANN001
    def refuse(url: str, **options: Any) -> DummyWs:  # noqa: ARG001
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(websocket, "create_connection", refuse)
    with pytest.raises(DevToolsConnectionError):
        WebSocketTransport().connect("ws://127.0.0.1:1/devtools/page/x")


def test_send_writes_single_text_frame(monkeypatch) -> None:  # noqa: ANN001
    ws = DummyWs()
    transport, _ = _connect(monkeypatch, ws)
    transport.send_bytes(b'{"id":1,"method":"Page.enable"}')
    assert ws.sent == [(b'{"id":1,"method":"Page.enable"}', websocket.ABNF.OPCODE_TEXT)]


def test_oversized_message_is_rejected_before_sending(monkeypatch) -> None:  # noqa: ANN001
    ws = DummyWs()
    transport, _ = _connect(monkeypatch, ws, max_message_size=16)
    with pytest.raises(TransportError):
        transport.send_bytes(b"x" * 17)
    assert ws.sent == []


def test_send_failure_is_connection_lost(monkeypatch) -> None:  # noqa: ANN001
    class BrokenWs(DummyWs):
        def send(self, payload: Any, opcode: int = websocket.ABNF.OPCODE_TEXT) -> None:
            raise websocket.WebSocketConnectionClosedException("closed")

    transport, _ = _connect(monkeypatch, BrokenWs())
    with pytest.raises(ConnectionLost):
        transport.send_bytes(b"{}")


def test_receive_retries_idle_timeouts(monkeypatch) -> None:  # noqa: ANN001
    ws = DummyWs(
        [
            websocket.WebSocketTimeoutException("timed out"),
            websocket.WebSocketTimeoutException("timed out"),
            '{"method":"Page.loadEventFired"}',
        ]
    )
    transport, _ = _connect(monkeypatch, ws)
    assert transport.receive_bytes() == b'{"method":"Page.loadEventFired"}'


def test_receive_returns_none_on_close(monkeypatch) -> None:  # noqa: ANN001
    transport, _ = _connect(monkeypatch, DummyWs([""]))
    assert transport.receive_bytes() is None
    # Once closed, further reads keep reporting end-of-stream.
    assert transport.receive_bytes() is None


def test_receive_returns_none_when_peer_drops(monkeypatch) -> None:  # noqa: ANN001
    transport, _ = _connect(monkeypatch, DummyWs([websocket.WebSocketConnectionClosedException("gone")]))
    assert transport.receive_bytes() is None


def test_receive_honours_deadline(monkeypatch) -> None:  # noqa: ANN001
    transport, _ = _connect(monkeypatch, DummyWs())
    with pytest.raises(ResponseTimeout):
        transport.receive_bytes(deadline=time.monotonic() - 1)


def test_close_never_raises(monkeypatch) -> None:  # noqa: ANN001
    class BadClose(DummyWs):
        def close(self, timeout: float | None = None) -> None:  # noqa: ARG002
            raise OSError("socket already closed")

    transport, _ = _connect(monkeypatch, BadClose())
    transport.close()
    transport.close()
    assert not transport.connected
    with pytest.raises(ConnectionLost):
        transport.send_bytes(b"{}")
