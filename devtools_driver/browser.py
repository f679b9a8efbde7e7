"""Browser-level target management.

Opens the page target a Session drives. Headless browsers get an isolated
browser context created over the browser websocket; everything else (or a
headless build that rejects the Target domain) gets a plain tab via
``/json/new``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .config import DriverConfig
from .connection import Connection
from .discovery import DiscoveryClient, parse_major_version
from .errors import DiscoveryError, DriverError, ProtocolError
from .session import Session

logger = logging.getLogger("devtools_driver.browser")

ConnectionFactory = Callable[[], Connection]


class Browser:
    def __init__(
        self,
        config: DriverConfig | None = None,
        *,
        discovery: DiscoveryClient | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.config = config or DriverConfig()
        self.discovery = discovery or DiscoveryClient(self.config.api_url, self.config.http_timeout)
        self._connection_factory = connection_factory or (lambda: Connection(config=self.config))
        self.version: int | None = None
        self.headless = False
        self.browser_context_id: str | None = None
        self.target_id: str | None = None
        self.conn: Connection | None = None
        self.sessions: list[Session] = []

    def __enter__(self) -> Session:
        return self.start()

    def __exit__(self, *args: Any) -> None:
        self.close()

    def start(self, url: str = "about:blank") -> Session:
        info = self.discovery.version()
        product = str(info.get("Browser") or "")
        self.version = parse_major_version(product)
        self.headless = "headless" in product.lower() or "headless" in str(info.get("User-Agent") or "").lower()
        logger.debug("Browser %s (major=%s, headless=%s)", product, self.version, self.headless)

        target_id = None
        if self.headless:
            target_id = self._create_context_target(info.get("webSocketDebuggerUrl"), url)
        if target_id is None:
            target_id = str(self.discovery.new_target(url)["id"])
        self.target_id = target_id
        return self.open_session(target_id)

    def _create_context_target(self, ws_url: Any, url: str) -> str | None:
        if not isinstance(ws_url, str) or not ws_url:
            self.headless = False
            return None
        conn = self._connection_factory()
        conn.connect(ws_url)
        self.conn = conn
        try:
            context = conn.send("Target.createBrowserContext")
            self.browser_context_id = str(context["browserContextId"])
            created = conn.send("Target.createTarget", {"url": url, "browserContextId": self.browser_context_id})
            return str(created["targetId"])
        except ProtocolError as exc:
            if not exc.is_unsupported:
                raise
            logger.info("Browser contexts unavailable (%s), opening a plain tab", exc.message)
            if self.browser_context_id:
                with suppress(DriverError):
                    conn.send("Target.disposeBrowserContext", {"browserContextId": self.browser_context_id})
            self.headless = False
            self.browser_context_id = None
            self.conn = None
            conn.close()
            return None

    def open_session(self, target_id: str) -> Session:
        """Start a Session on an existing page target (used to switch tabs)."""
        ws_url = self.discovery.target_ws_url(target_id)
        session = Session(
            ws_url,
            target_id,
            config=self.config,
            connection=self._connection_factory(),
            browser_version=self.version,
        )
        session.start()
        self.sessions.append(session)
        return session

    def close(self) -> None:
        for session in self.sessions:
            session.close()
        self.sessions = []

        failure: DriverError | None = None
        if self.browser_context_id and self.conn is not None:
            try:
                self.conn.send("Target.disposeBrowserContext", {"browserContextId": self.browser_context_id})
            except DriverError as exc:
                failure = exc
            self.browser_context_id = None
        elif self.target_id:
            try:
                self.discovery.close_target(self.target_id)
            except DiscoveryError as exc:
                logger.debug("Ignoring error while closing target %s: %s", self.target_id, exc)
        self.target_id = None

        if self.conn is not None:
            self.conn.close()
            self.conn = None
        if failure is not None:
            raise DriverError("Unable to close browser context") from failure


__all__ = ["Browser", "ConnectionFactory"]
