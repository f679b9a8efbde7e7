"""Transport + codec + correlator behind a single blocking command API."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol

from . import wire
from .config import DriverConfig
from .correlator import RequestCorrelator
from .errors import ConnectionLost
from .transport import WebSocketTransport
from .wire import Event, Frame, Response

logger = logging.getLogger("devtools_driver.connection")

EventHandler = Callable[[Event], None]


class Transport(Protocol):
    def connect(self, url: str) -> None: ...

    def send_bytes(self, payload: bytes) -> None: ...

    def receive_bytes(self, deadline: float | None = None) -> bytes | None: ...

    def abort(self) -> None: ...

    def close(self) -> None: ...


class Connection:
    """One CDP connection: issue commands, pump frames, dispatch events.

    All inbound frames are handled on the caller's thread by whichever blocking
    call is pumping. Responses go to the correlator; events go to the single
    handler installed with ``set_event_handler``.
    """

    def __init__(self, transport: Transport | None = None, config: DriverConfig | None = None) -> None:
        self.config = config or DriverConfig()
        self.transport: Transport = transport or WebSocketTransport(
            connect_timeout=self.config.connect_timeout,
            read_poll_interval=self.config.read_poll_interval,
            max_message_size=self.config.max_message_size,
        )
        self.correlator = RequestCorrelator()
        self.url: str | None = None
        self._event_handler: EventHandler | None = None
        self._closed = False

    def set_event_handler(self, handler: EventHandler | None) -> None:
        self._event_handler = handler

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self, url: str) -> None:
        self.transport.connect(url)
        self.url = url
        self._closed = False
        self.correlator = RequestCorrelator()

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def send(self, method: str, params: dict[str, Any] | None = None, *, session_id: str | None = None) -> dict[str, Any]:
        """Send a command and block until its result arrives."""
        command_id = self.send_async(method, params, session_id=session_id)
        return self.await_response(command_id)

    def send_async(self, method: str, params: dict[str, Any] | None = None, *, session_id: str | None = None) -> int:
        """Send a command without waiting. Returns its id for ``await_response``."""
        if self._closed:
            raise ConnectionLost("Connection is closed")
        command = self.correlator.issue(method, params, session_id=session_id)
        logger.debug("> %s (id=%s)", method, command.id)
        try:
            self.transport.send_bytes(wire.encode(command))
        except Exception:
            self.correlator.discard(command.id)
            raise
        return command.id

    def await_response(self, command_id: int) -> dict[str, Any]:
        response = self.correlator.await_response(command_id, self._pump_deadline(), self._dispatch_event)
        return response.result if response.result is not None else {}

    # ─────────────────────────────────────────────────────────────────────────
    # Pumping
    # ─────────────────────────────────────────────────────────────────────────

    def next_frame(self, deadline: float | None = None) -> Frame | None:
        """Read and decode one frame. None means the stream is closed."""
        raw = self.transport.receive_bytes(deadline)
        if raw is None:
            return None
        frame = wire.decode(raw)
        if isinstance(frame, Event):
            logger.debug("< %s", frame.method)
        return frame

    def dispatch(self, frame: Frame) -> None:
        if isinstance(frame, Response):
            self.correlator.resolve(frame)
        else:
            self._dispatch_event(frame)

    def pump_once(self, deadline: float | None = None) -> None:
        frame = self.next_frame(deadline)
        if frame is None:
            self.correlator.cancel_all("Connection closed by peer")
            raise ConnectionLost("Connection closed by peer")
        self.dispatch(frame)

    def pump_until(self, predicate: Callable[[], bool], *, timeout: float | None = None) -> None:
        """Dispatch frames until ``predicate()`` holds.

        ``timeout`` (seconds) overrides the configured command timeout; None
        with no configured timeout waits indefinitely.
        """
        if timeout is None:
            timeout = self.config.command_timeout
        deadline = time.monotonic() + timeout if timeout is not None else None
        while not predicate():
            self.pump_once(deadline)

    def _pump_deadline(self) -> Callable[[], Frame | None]:
        timeout = self.config.command_timeout
        deadline = time.monotonic() + timeout if timeout is not None else None

        def pump() -> Frame | None:
            return self.next_frame(deadline)

        return pump

    def _dispatch_event(self, event: Event) -> None:
        handler = self._event_handler
        if handler is not None:
            handler(event)

    # ─────────────────────────────────────────────────────────────────────────
    # Teardown
    # ─────────────────────────────────────────────────────────────────────────

    def abort(self) -> None:
        """Break the socket from another thread; the blocked call raises ConnectionLost."""
        with suppress(Exception):
            self.transport.abort()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.correlator.cancel_all("Connection closed")
        try:
            self.transport.close()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Ignoring transport close error: %s", exc)


__all__ = ["Connection", "EventHandler", "Transport"]
