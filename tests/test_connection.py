from __future__ import annotations

import json
from collections import deque
from typing import Any

import pytest

from devtools_driver.config import DriverConfig
from devtools_driver.connection import Connection
from devtools_driver.errors import ConnectionLost, MalformedFrame, ProtocolError, TransportError
from devtools_driver.wire import Event


class DummyTransport:
    def __init__(self, auto_reply: bool = True) -> None:
        self.auto_reply = auto_reply
        self.sent: list[dict[str, Any]] = []
        self.inbox: deque[bytes] = deque()
        self.url: str | None = None
        self.closed = False
        self.aborted = False

    def connect(self, url: str) -> None:
        self.url = url

    def send_bytes(self, payload: bytes) -> None:
        msg = json.loads(payload)
        self.sent.append(msg)
        if self.auto_reply:
            self.push({"id": msg["id"], "result": {"echo": msg["method"]}})

    def push(self, frame: Any) -> None:
        self.inbox.append(frame if isinstance(frame, bytes) else json.dumps(frame).encode())

    def receive_bytes(self, deadline: float | None = None) -> bytes | None:  # noqa: ARG002
        return self.inbox.popleft() if self.inbox else None

    def abort(self) -> None:
        self.aborted = True

    def close(self) -> None:
        self.closed = True


def _connected(transport: DummyTransport) -> Connection:
    conn = Connection(transport, DriverConfig())
    conn.connect("ws://127.0.0.1:9222/devtools/page/T1")
    return conn


def test_send_returns_result_and_omits_empty_params() -> None:
    transport = DummyTransport()
    conn = _connected(transport)
    assert conn.send("Page.enable") == {"echo": "Page.enable"}
    assert transport.sent == [{"id": 1, "method": "Page.enable"}]
    assert transport.url == "ws://127.0.0.1:9222/devtools/page/T1"


def test_events_reach_handler_while_waiting() -> None:
    transport = DummyTransport(auto_reply=False)
    conn = _connected(transport)
    events: list[Event] = []
    conn.set_event_handler(events.append)

    command_id = conn.send_async("Page.reload")
    transport.push({"method": "Page.frameStartedLoading", "params": {"frameId": "F"}})
    transport.push({"id": command_id, "result": {}})
    assert conn.await_response(command_id) == {}
    assert [e.method for e in events] == ["Page.frameStartedLoading"]


def test_send_async_then_await_later() -> None:
    transport = DummyTransport()
    conn = _connected(transport)
    first = conn.send_async("Input.dispatchKeyEvent", {"type": "keyDown", "text": "a"})
    second = conn.send_async("Input.dispatchKeyEvent", {"type": "keyUp"})
    assert conn.await_response(second) == {"echo": "Input.dispatchKeyEvent"}
    assert conn.await_response(first) == {"echo": "Input.dispatchKeyEvent"}


def test_error_response_raises() -> None:
    transport = DummyTransport(auto_reply=False)
    conn = _connected(transport)
    command_id = conn.send_async("Nope.nope")
    transport.push({"id": command_id, "error": {"code": -32601, "message": "'Nope.nope' wasn't found"}})
    with pytest.raises(ProtocolError) as info:
        conn.await_response(command_id)
    assert info.value.code == ProtocolError.METHOD_NOT_FOUND


def test_peer_close_mid_wait_raises_connection_lost() -> None:
    transport = DummyTransport(auto_reply=False)
    conn = _connected(transport)
    with pytest.raises(ConnectionLost):
        conn.send("Runtime.evaluate", {"expression": "1"})
    with pytest.raises(ConnectionLost):
        conn.send_async("Page.enable")


def test_malformed_frame_is_fatal_to_wait() -> None:
    transport = DummyTransport(auto_reply=False)
    conn = _connected(transport)
    command_id = conn.send_async("Page.enable")
    transport.push(b"{broken")
    with pytest.raises(MalformedFrame):
        conn.await_response(command_id)


def test_pump_until_dispatches_until_predicate() -> None:
    transport = DummyTransport(auto_reply=False)
    conn = _connected(transport)
    seen: list[str] = []
    conn.set_event_handler(lambda e: seen.append(e.method))
    transport.push({"method": "A.one"})
    transport.push({"method": "A.two"})
    transport.push({"method": "A.three"})
    conn.pump_until(lambda: "A.two" in seen)
    assert seen == ["A.one", "A.two"]
    assert len(transport.inbox) == 1


def test_close_is_idempotent_and_swallows_transport_errors() -> None:
    class FailingClose(DummyTransport):
        def close(self) -> None:
            raise OSError("already gone")

    conn = _connected(FailingClose())
    conn.close()
    conn.close()
    assert conn.closed
    with pytest.raises(ConnectionLost):
        conn.send_async("Page.enable")


def test_abort_forwards_to_transport() -> None:
    transport = DummyTransport()
    conn = _connected(transport)
    conn.abort()
    assert transport.aborted


def test_failed_send_leaves_nothing_pending() -> None:
    class RejectingTransport(DummyTransport):
        def send_bytes(self, payload: bytes) -> None:
            raise TransportError("Message too large")

    conn = _connected(RejectingTransport())
    with pytest.raises(TransportError):
        conn.send_async("Page.setDocumentContent", {"html": "x" * 64})
    assert conn.correlator.pending == {}
