"""Websocket transport to a DevTools debugging endpoint.

One persistent connection, raw send/receive of whole messages, and a close
that never raises. Framing and JSON live in ``wire.py``.
"""

from __future__ import annotations

import logging
import socket
import time
from contextlib import suppress

import websocket

from .config import DEFAULT_MAX_MESSAGE_SIZE
from .errors import ConnectionLost, DevToolsConnectionError, ResponseTimeout, TransportError

logger = logging.getLogger("devtools_driver.transport")


def _is_idle_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (websocket.WebSocketTimeoutException, TimeoutError, socket.timeout)):
        return True
    return "timed out" in str(exc).lower()


class WebSocketTransport:
    """Blocking websocket-client transport.

    Outgoing messages are written as one text frame each; Chrome closes the
    connection when it receives a logical message split into continuation
    frames. ``max_message_size`` caps what may be sent that way.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        read_poll_interval: float = 0.5,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.read_poll_interval = read_poll_interval
        self.max_message_size = max_message_size
        self.url: str | None = None
        self.ws: websocket.WebSocket | None = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self._closed and bool(getattr(self.ws, "connected", True))

    def connect(self, url: str) -> None:
        if self.connected:
            return
        logger.debug("Connecting to %s", url)
        try:
            # Newer Chrome rejects handshakes whose Origin is not allow-listed.
            self.ws = websocket.create_connection(url, timeout=self.connect_timeout, suppress_origin=True)
        except (websocket.WebSocketException, OSError) as exc:
            raise DevToolsConnectionError(f"Cannot connect to {url}: {exc}") from exc
        self.url = url
        self._closed = False
        with suppress(Exception):
            self.ws.settimeout(self.read_poll_interval)

    def send_bytes(self, payload: bytes) -> None:
        ws = self._require_ws()
        if len(payload) > self.max_message_size:
            raise TransportError(
                f"Message of {len(payload)} bytes exceeds the single-frame limit of {self.max_message_size} bytes"
            )
        try:
            ws.send(payload, opcode=websocket.ABNF.OPCODE_TEXT)
        except (websocket.WebSocketException, OSError) as exc:
            raise ConnectionLost(f"Send failed: {exc}") from exc

    def receive_bytes(self, deadline: float | None = None) -> bytes | None:
        """Return the next message, or None once the peer has closed the stream.

        Read timeouts are idle ticks and are retried; only a deadline (a
        ``time.monotonic()`` value) turns a long idle into ResponseTimeout.
        """
        ws = self._require_ws(lost_ok=True)
        if ws is None:
            return None
        while True:
            poll = self.read_poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ResponseTimeout("Timed out waiting for a frame from the browser")
                poll = min(poll, remaining)
            try:
                ws.settimeout(poll)
                raw = ws.recv()
            except websocket.WebSocketConnectionClosedException:
                logger.debug("Peer closed the connection")
                self._closed = True
                return None
            except Exception as exc:  # noqa: BLE001
                if _is_idle_timeout(exc):
                    continue
                if self._closed:
                    return None
                raise ConnectionLost(f"Receive failed: {exc}") from exc

            # websocket-client answers a close frame with an empty payload.
            if raw == "" or raw == b"":
                logger.debug("Received close frame")
                self._closed = True
                return None
            if isinstance(raw, str):
                return raw.encode("utf-8")
            return bytes(raw)

    def abort(self) -> None:
        """Hard-break the raw socket so a receive blocked elsewhere returns."""
        self._closed = True
        ws = self.ws
        sock = getattr(ws, "sock", None) if ws is not None else None
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()

    def close(self) -> None:
        ws = self.ws
        self._closed = True
        if ws is None:
            return
        try:
            ws.close(timeout=1.0)
        except Exception as exc:  # noqa: BLE001
            # The browser may already be gone; cleanup must not fail because of it.
            logger.debug("Ignoring error while closing %s: %s", self.url, exc)
            self.abort()
        finally:
            self.ws = None

    def _require_ws(self, *, lost_ok: bool = False) -> websocket.WebSocket | None:
        if self.ws is None or self._closed:
            if lost_ok:
                return None
            raise ConnectionLost("Transport is not connected")
        return self.ws


__all__ = ["WebSocketTransport"]
