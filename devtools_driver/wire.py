"""CDP wire codec.

Outgoing: ``{"id", "method", "params"?, "sessionId"?}``.
Incoming: a Response (``{"id", "result"}`` or ``{"id", "error"}``) or an
Event (``{"method", "params"}``). Nothing else is accepted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import MalformedFrame, ProtocolError


@dataclass(slots=True)
class Command:
    id: int
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None


@dataclass(slots=True)
class Response:
    id: int
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    session_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self, method: str | None = None) -> dict[str, Any]:
        """Return the result payload or raise the remote error."""
        if self.error is not None:
            raise ProtocolError.from_error(self.error, method=method)
        return self.result if self.result is not None else {}


@dataclass(slots=True)
class Event:
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None

    @property
    def domain(self) -> str:
        return self.method.split(".", 1)[0]


Frame = Union[Response, Event]


def encode(command: Command) -> bytes:
    payload: dict[str, Any] = {"id": command.id, "method": command.method}
    # Some receivers reject a present-but-empty params object.
    if command.params:
        payload["params"] = command.params
    if command.session_id:
        payload["sessionId"] = command.session_id
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode(raw: bytes | str) -> Frame:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedFrame(f"Frame is not valid JSON: {exc}", raw) from exc

    if not isinstance(data, dict):
        raise MalformedFrame("Frame is not a JSON object", raw)

    session_id = data.get("sessionId") if isinstance(data.get("sessionId"), str) else None

    if "id" in data:
        msg_id = data.get("id")
        if isinstance(msg_id, bool) or not isinstance(msg_id, int):
            raise MalformedFrame(f"Response id is not an integer: {msg_id!r}", raw)
        if "error" in data:
            error = data.get("error")
            if not isinstance(error, dict):
                error = {"code": -1, "message": str(error)}
            return Response(id=msg_id, error=error, session_id=session_id)
        if "result" not in data:
            raise MalformedFrame("Response carries neither result nor error", raw)
        result = data.get("result")
        if result is None:
            result = {}
        if not isinstance(result, dict):
            raise MalformedFrame("Response result is not an object", raw)
        return Response(id=msg_id, result=result, session_id=session_id)

    method = data.get("method")
    if isinstance(method, str) and method:
        params = data.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise MalformedFrame(f"Event params for {method} is not an object", raw)
        return Event(method=method, params=params, session_id=session_id)

    raise MalformedFrame("Frame is neither a response nor an event", raw)


__all__ = ["Command", "Event", "Frame", "Response", "decode", "encode"]
