from __future__ import annotations

import json
from collections import deque
from typing import Any

import pytest

from devtools_driver.browser import Browser
from devtools_driver.config import DriverConfig
from devtools_driver.connection import Connection
from devtools_driver.errors import DriverError


class DummyTransport:
    def __init__(self, errors: dict[str, int] | None = None, results: dict[str, dict[str, Any]] | None = None) -> None:
        self.errors = errors or {}
        self.results = results or {}
        self.sent: list[dict[str, Any]] = []
        self.inbox: deque[bytes] = deque()
        self.url: str | None = None
        self.closed = False

    def connect(self, url: str) -> None:
        self.url = url

    def send_bytes(self, payload: bytes) -> None:
        msg = json.loads(payload)
        self.sent.append(msg)
        method = msg["method"]
        if method in self.errors:
            reply = {"id": msg["id"], "error": {"code": self.errors[method], "message": "nope"}}
        else:
            reply = {"id": msg["id"], "result": self.results.get(method, {})}
        self.inbox.append(json.dumps(reply).encode())

    def receive_bytes(self, deadline: float | None = None) -> bytes | None:  # noqa: ARG002
        return self.inbox.popleft() if self.inbox else None

    def abort(self) -> None:
        self.closed = True

    def close(self) -> None:
        self.closed = True

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]


class DummyDiscovery:
    def __init__(self, product: str) -> None:
        self.product = product
        self.new_targets: list[str] = []
        self.closed_targets: list[str] = []

    def version(self) -> dict[str, Any]:
        return {"Browser": self.product, "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/browser/B"}

    def new_target(self, url: str = "about:blank") -> dict[str, Any]:
        self.new_targets.append(url)
        return {"id": "TAB"}

    def target_ws_url(self, target_id: str) -> str:
        return f"ws://127.0.0.1:9222/devtools/page/{target_id}"

    def close_target(self, target_id: str) -> None:
        self.closed_targets.append(target_id)


def _browser(product: str, transports: list[DummyTransport]) -> tuple[Browser, DummyDiscovery, list[DummyTransport]]:
    config = DriverConfig()
    pool = deque(transports)
    used: list[DummyTransport] = []

    def factory() -> Connection:
        transport = pool.popleft() if pool else DummyTransport()
        used.append(transport)
        return Connection(transport, config)

    discovery = DummyDiscovery(product)
    return Browser(config, discovery=discovery, connection_factory=factory), discovery, used  # type: ignore[arg-type]


def test_headed_browser_opens_plain_tab() -> None:
    browser, discovery, used = _browser("Chrome/120.0.6099.71", [])
    session = browser.start("http://localhost/")
    assert browser.version == 120
    assert not browser.headless
    assert discovery.new_targets == ["http://localhost/"]
    assert session.target_id == "TAB"
    assert session.browser_version == 120
    assert used[0].url == "ws://127.0.0.1:9222/devtools/page/TAB"

    browser.close()
    assert discovery.closed_targets == ["TAB"]
    assert used[0].closed


def test_headless_browser_uses_isolated_context() -> None:
    browser_level = DummyTransport(
        results={
            "Target.createBrowserContext": {"browserContextId": "CTX"},
            "Target.createTarget": {"targetId": "T9"},
        }
    )
    browser, discovery, used = _browser("HeadlessChrome/120.0", [browser_level])
    session = browser.start()
    assert browser.headless
    assert browser.browser_context_id == "CTX"
    assert discovery.new_targets == []
    assert session.target_id == "T9"
    assert browser_level.url == "ws://127.0.0.1:9222/devtools/browser/B"
    create = [m for m in browser_level.sent if m["method"] == "Target.createTarget"][0]
    assert create["params"] == {"url": "about:blank", "browserContextId": "CTX"}

    browser.close()
    assert "Target.disposeBrowserContext" in browser_level.methods()
    assert discovery.closed_targets == []
    assert browser_level.closed


def test_headless_without_target_domain_falls_back_to_new_tab() -> None:
    browser_level = DummyTransport(errors={"Target.createBrowserContext": -32601})
    browser, discovery, _ = _browser("HeadlessChrome/59.0", [browser_level])
    session = browser.start()
    assert not browser.headless
    assert browser.browser_context_id is None
    assert discovery.new_targets == ["about:blank"]
    assert session.target_id == "TAB"
    assert browser_level.closed


def test_dispose_failure_raises() -> None:
    browser_level = DummyTransport(
        results={
            "Target.createBrowserContext": {"browserContextId": "CTX"},
            "Target.createTarget": {"targetId": "T9"},
        },
        errors={"Target.disposeBrowserContext": -32000},
    )
    browser, _, _ = _browser("HeadlessChrome/120.0", [browser_level])
    browser.start()
    with pytest.raises(DriverError):
        browser.close()
    assert browser_level.closed


def test_open_session_switches_tabs() -> None:
    browser, _, used = _browser("Chrome/120.0", [])
    browser.start()
    other = browser.open_session("OTHER")
    assert other.target_id == "OTHER"
    assert used[-1].url == "ws://127.0.0.1:9222/devtools/page/OTHER"
    assert len(browser.sessions) == 2
