"""Request/response correlation for the multiplexed CDP stream."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ConnectionLost, ProtocolError
from .wire import Command, Event, Frame, Response

logger = logging.getLogger("devtools_driver.correlator")


@dataclass(slots=True)
class PendingRequest:
    id: int
    method: str
    issued_at: float = field(default_factory=time.monotonic)


class RequestCorrelator:
    """Allocates command ids and matches responses to them.

    Responses for commands nobody is waiting on yet (``send_async``) are parked
    in a bounded table so a later ``await_response`` still finds them.
    """

    def __init__(self, *, max_completed: int = 2000) -> None:
        self._last_id = 0
        self._pending: dict[int, PendingRequest] = {}
        self._completed: OrderedDict[int, Response] = OrderedDict()
        self._max_completed = max_completed
        self._closed_reason: str | None = None

    @property
    def pending(self) -> dict[int, PendingRequest]:
        return dict(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    def next_id(self) -> int:
        self._last_id += 1
        return self._last_id

    def issue(self, method: str, params: dict[str, Any] | None = None, *, session_id: str | None = None) -> Command:
        if self._closed_reason is not None:
            raise ConnectionLost(self._closed_reason)
        command = Command(id=self.next_id(), method=method, params=dict(params or {}), session_id=session_id)
        self._pending[command.id] = PendingRequest(id=command.id, method=method)
        return command

    def discard(self, command_id: int) -> None:
        """Forget a command that never made it onto the wire."""
        self._pending.pop(command_id, None)

    def resolve(self, response: Response) -> bool:
        """Record a response. Returns False when it matched no pending request."""
        pending = self._pending.pop(response.id, None)
        if pending is None:
            logger.debug("Discarding response for unknown command id=%s", response.id)
            return False
        if response.is_error:
            logger.debug("%s (id=%s) failed: %s", pending.method, response.id, response.error)
        self._completed[response.id] = response
        if len(self._completed) > self._max_completed:
            # Fire-and-forget commands are never awaited; drop the oldest answers.
            self._completed.popitem(last=False)
        return True

    def await_response(
        self,
        command_id: int,
        pump: Callable[[], Frame | None],
        on_event: Callable[[Event], None],
    ) -> Response:
        """Pump frames until ``command_id`` is answered.

        Unrelated responses are resolved (or discarded), events go to
        ``on_event``. Raises ConnectionLost when ``pump`` reports a closed
        stream and ProtocolError when the command was answered with an error.
        """
        method = self._method_for(command_id)
        while True:
            response = self._completed.pop(command_id, None)
            if response is not None:
                if response.is_error:
                    raise ProtocolError.from_error(response.error, method=method)
                return response

            if self._closed_reason is not None:
                raise ConnectionLost(self._closed_reason)
            if command_id not in self._pending:
                raise ConnectionLost(f"Command id={command_id} is not in flight")

            frame = pump()
            if frame is None:
                self.cancel_all("Connection closed while waiting for a response")
                raise ConnectionLost(f"Connection closed while waiting for {method or 'command'} (id={command_id})")
            if isinstance(frame, Response):
                self.resolve(frame)
            else:
                on_event(frame)

    def cancel_all(self, reason: str = "Connection closed") -> None:
        if self._pending:
            logger.debug("Cancelling %d pending command(s): %s", len(self._pending), reason)
        self._pending.clear()
        self._completed.clear()
        self._closed_reason = reason

    def _method_for(self, command_id: int) -> str | None:
        pending = self._pending.get(command_id)
        return pending.method if pending is not None else None


__all__ = ["PendingRequest", "RequestCorrelator"]
