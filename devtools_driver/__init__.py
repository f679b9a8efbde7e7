"""Synchronous Chrome DevTools Protocol driver.

Typical use::

    from devtools_driver import Browser, DriverConfig

    with Browser(DriverConfig.from_env()) as session:
        session.visit("/login")
        session.wait_for_load()
        status = session.get_response().status
"""

from __future__ import annotations

from .browser import Browser
from .config import DriverConfig
from .connection import Connection
from .discovery import DiscoveryClient
from .errors import (
    BrowserCrashed,
    ConnectionLost,
    DevToolsConnectionError,
    DiscoveryError,
    DriverError,
    JavascriptDialogOpen,
    MalformedFrame,
    NoSuchFrame,
    PageLoadTimeout,
    ProtocolError,
    ResponseTimeout,
    ScriptError,
    TransportError,
)
from .page_state import NetworkResponse, PageState, PageStatus
from .session import Session
from .transport import WebSocketTransport

__all__ = [
    "Browser",
    "BrowserCrashed",
    "Connection",
    "ConnectionLost",
    "DevToolsConnectionError",
    "DiscoveryClient",
    "DiscoveryError",
    "DriverConfig",
    "DriverError",
    "JavascriptDialogOpen",
    "MalformedFrame",
    "NetworkResponse",
    "NoSuchFrame",
    "PageLoadTimeout",
    "PageState",
    "PageStatus",
    "ProtocolError",
    "ResponseTimeout",
    "ScriptError",
    "Session",
    "TransportError",
    "WebSocketTransport",
]
