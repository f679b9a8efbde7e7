"""Exception taxonomy for the DevTools driver.

Every error raised by the driver derives from DriverError so callers can catch
the whole family with one clause. Transport-level failures are
DevToolsConnectionError subclasses; remote rejections carry the CDP error code.
"""

from __future__ import annotations

from typing import Any


class DriverError(Exception):
    pass


class DevToolsConnectionError(DriverError):
    """The debugging endpoint could not be reached (refused, timed out, bad handshake)."""


class ConnectionLost(DevToolsConnectionError):
    """The connection went away while a call was in flight."""


class TransportError(DriverError):
    """A message could not be written as a single frame."""


class ResponseTimeout(DriverError):
    """A configured deadline elapsed before the awaited frame arrived."""


class MalformedFrame(DriverError):
    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class ProtocolError(DriverError):
    """The browser answered a command with an ``error`` field."""

    # JSON-RPC codes Chrome uses for "not available in this mode".
    METHOD_NOT_FOUND = -32601
    SERVER_ERROR = -32000

    def __init__(self, code: int, message: str, data: Any = None, *, method: str | None = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        self.method = method
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}CDP error {code}: {message}")

    @classmethod
    def from_error(cls, error: Any, *, method: str | None = None) -> ProtocolError:
        if not isinstance(error, dict):
            return cls(-1, str(error), method=method)
        try:
            code = int(error.get("code", -1))
        except (TypeError, ValueError):
            code = -1
        message = error.get("message")
        return cls(code, str(message) if message is not None else "Unknown error", error.get("data"), method=method)

    @property
    def is_unsupported(self) -> bool:
        return self.code in (self.METHOD_NOT_FOUND, self.SERVER_ERROR)


class ScriptError(DriverError):
    """In-page evaluation raised an exception."""

    def __init__(self, description: str, class_name: str | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.class_name = class_name


class NoSuchFrame(ScriptError):
    pass


class JavascriptDialogOpen(DriverError):
    """A blocking alert/confirm/prompt prevents in-page evaluation."""


class BrowserCrashed(DriverError):
    """The inspected target crashed. The session cannot be recovered."""


class PageLoadTimeout(DriverError):
    pass


class DiscoveryError(DriverError):
    pass


__all__ = [
    "BrowserCrashed",
    "ConnectionLost",
    "DevToolsConnectionError",
    "DiscoveryError",
    "DriverError",
    "JavascriptDialogOpen",
    "MalformedFrame",
    "NoSuchFrame",
    "PageLoadTimeout",
    "ProtocolError",
    "ResponseTimeout",
    "ScriptError",
    "TransportError",
]
