"""Page-level session over one CDP connection.

A Session owns the Connection to a single page target and the PageState fed
by that connection's events. Every blocking call (``send``, ``evaluate``,
``wait_for_load``...) pumps the same frame loop, so page-state tracking
advances whichever call happens to be waiting.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from collections.abc import Callable, Iterator
from contextlib import suppress
from typing import Any
from urllib.parse import quote_plus, unquote_plus, urljoin

from .config import DriverConfig
from .connection import Connection
from .errors import (
    ConnectionLost,
    DriverError,
    JavascriptDialogOpen,
    NoSuchFrame,
    PageLoadTimeout,
    ProtocolError,
    ResponseTimeout,
    ScriptError,
)
from .page_state import NetworkResponse, PageState
from .remote_object import RemoteKind, RemoteObject
from .wire import Event

logger = logging.getLogger("devtools_driver.session")

OBJECT_GROUP = "devtools-driver"
# The page may hand out a fresh objectId for an object it already returned.
MAX_OBJECT_DEPTH = 64

_ILLEGAL_RETURN = "Illegal return"
_DETACHED_FRAME = re.compile(
    r"Cannot read propert(?:y|ies) .?document.? of null|of null \(reading 'document'\)"
)


def _walk_nodes(node: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield node
    for child in node.get("children") or []:
        yield from _walk_nodes(child)
    for root in node.get("shadowRoots") or []:
        yield from _walk_nodes(root)
    for key in ("contentDocument", "templateContent"):
        nested = node.get(key)
        if isinstance(nested, dict):
            yield from _walk_nodes(nested)


class Session:
    """
    Browser automation session for one page target.

    ``visit()`` returns as soon as the navigation is issued; call
    ``wait_for_load()`` or ``get_response()`` to block on it. ``evaluate()``
    waits for the page on its own.
    """

    def __init__(
        self,
        ws_url: str,
        target_id: str,
        *,
        config: DriverConfig | None = None,
        connection: Connection | None = None,
        browser_version: int | None = None,
    ) -> None:
        self.config = config or DriverConfig()
        self.ws_url = ws_url
        self.target_id = target_id
        self.browser_version = browser_version
        self.conn = connection or Connection(config=self.config)
        self.page_state = PageState(target_id=target_id, send_async=self.conn.send_async)
        self.conn.set_event_handler(self._handle_event)
        self._event_sink: Callable[[Event], None] | None = None
        self._request_headers: dict[str, str] = {}
        self._started = False

    def __enter__(self) -> Session:
        if not self._started:
            self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def started(self) -> bool:
        return self._started

    def set_event_sink(self, sink: Callable[[Event], None] | None) -> None:
        """Observe every event after PageState has processed it (best-effort)."""
        self._event_sink = sink

    def _handle_event(self, event: Event) -> None:
        self.page_state.handle_event(event)
        sink = self._event_sink
        if sink is not None:
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.debug("Event sink failed for %s", event.method, exc_info=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> str:
        """Connect, enable the protocol domains we track, return the target id."""
        self.conn.connect(self.ws_url)
        for method in ("Page.enable", "DOM.enable", "Network.enable", "Runtime.enable"):
            self.conn.send(method)
        try:
            self.conn.send("Target.setDiscoverTargets", {"discover": True})
        except ProtocolError as exc:
            if not exc.is_unsupported:
                raise
            logger.info("Target discovery unavailable on this target: %s", exc.message)

        with suppress(ProtocolError):
            tree = self.conn.send("Page.getFrameTree")
            frame = (tree.get("frameTree") or {}).get("frame") or {}
            if frame.get("id"):
                self.page_state.main_frame_id = str(frame["id"])

        if self.config.animation_playback_rate:
            self.conn.send_async("Animation.setPlaybackRate", {"playbackRate": self.config.animation_playback_rate})
        if self.config.ignore_certificate_errors:
            self.set_ignore_certificate_errors(True)

        self._started = True
        logger.debug("Session started for target %s", self.target_id)
        return self.target_id

    def close(self, *, close_target: bool = False) -> None:
        """Tear the connection down. Never raises."""
        if close_target:
            with suppress(DriverError):
                self.conn.send_async("Target.closeTarget", {"targetId": self.target_id})
        try:
            self.conn.close()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Ignoring error while closing session %s: %s", self.target_id, exc)
        self._started = False

    def abort(self) -> None:
        """Break a stuck wait from another thread."""
        self.conn.abort()

    def reset(self) -> None:
        """Drop the captured response and any extra request headers."""
        self.page_state.clear_response()
        self._request_headers = {}
        self._send_request_headers()

    # ─────────────────────────────────────────────────────────────────────────
    # Raw protocol
    # ─────────────────────────────────────────────────────────────────────────

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.conn.send(method, params)

    def send_async(self, method: str, params: dict[str, Any] | None = None) -> int:
        return self.conn.send_async(method, params)

    def await_response(self, command_id: int) -> dict[str, Any]:
        return self.conn.await_response(command_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    def _absolute_url(self, url: str) -> str:
        if "://" in url or url.startswith(("about:", "data:", "javascript:", "chrome:", "blob:")):
            return url
        return urljoin(self.config.base_url.rstrip("/") + "/", url.lstrip("/"))

    def visit(self, url: str) -> None:
        """Start navigating to ``url`` and return without waiting for the load."""
        url = self._absolute_url(url)
        self.conn.send_async("Page.stopLoading")
        self.page_state.reset_navigation()
        known_main = self.page_state.main_frame_id
        if known_main:
            self.page_state.begin_navigation(known_main)

        result = self.conn.send("Page.navigate", {"url": url})
        frame_id = result.get("frameId")
        # No loaderId means a same-document navigation: nothing will load.
        if frame_id and not known_main and result.get("loaderId"):
            self.page_state.begin_navigation(str(frame_id))

        error_text = result.get("errorText")
        if error_text:
            logger.info("Navigation to %s reported %s", url, error_text)
            if error_text == "net::ERR_ABORTED" and frame_id:
                # Nothing commits for aborted navigations (downloads, 204s).
                self.page_state.pending_navigation_frame_ids.discard(str(frame_id))

    def reload(self, *, ignore_cache: bool = False) -> None:
        self.page_state.reset_navigation()
        self.page_state.begin_navigation(self.page_state.main_frame_id)
        params = {"ignoreCache": True} if ignore_cache else None
        self.conn.send_async("Page.reload", params)

    def back(self) -> bool:
        return self._navigate_history(-1)

    def forward(self) -> bool:
        return self._navigate_history(1)

    def _navigate_history(self, delta: int) -> bool:
        history = self.conn.send("Page.getNavigationHistory")
        entries = history.get("entries") or []
        index = int(history.get("currentIndex", 0)) + delta
        if index < 0 or index >= len(entries):
            return False
        self.page_state.reset_navigation()
        self.page_state.begin_navigation(self.page_state.main_frame_id)
        self.conn.send("Page.navigateToHistoryEntry", {"entryId": entries[index]["id"]})
        return True

    def wait_for_load(self, timeout: float | None = None) -> None:
        """Pump events until the page is ready.

        Returns early while a JavaScript dialog is open: nothing finishes
        loading until the dialog is handled, and handling it is the caller's
        next move.
        """
        state = self.page_state
        try:
            self.conn.pump_until(lambda: state.ready or state.has_dialog, timeout=timeout)
        except ConnectionLost as exc:
            raise PageLoadTimeout("Connection lost while waiting for the page to load") from exc
        except ResponseTimeout as exc:
            raise PageLoadTimeout("Timed out waiting for the page to load") from exc

    def get_response(self) -> NetworkResponse:
        """Return the top-level document response of the current page."""
        state = self.page_state
        if state.last_response is None:
            dom_ready = self._runtime_value('document.readyState == "complete"')
            if dom_ready and not state.network_observed:
                return NetworkResponse.default()
        # A captured response is not final while other document requests are in flight.
        try:
            self.conn.pump_until(
                lambda: (state.last_response is not None or state.ready or state.has_dialog)
                and not state.pending_request_ids
            )
        except (ConnectionLost, ResponseTimeout) as exc:
            raise PageLoadTimeout("Connection lost while waiting for the document response") from exc
        if state.last_response is None:
            if not state.network_observed:
                return NetworkResponse.default()
            raise DriverError("The document request finished without a response")
        return state.last_response

    def get_current_url(self) -> str:
        history = self.conn.send("Page.getNavigationHistory")
        entries = history.get("entries") or []
        index = int(history.get("currentIndex", len(entries) - 1))
        if 0 <= index < len(entries):
            return str(entries[index].get("url") or "")
        return ""

    def get_content(self) -> str:
        return self.evaluate("document.documentElement ? document.documentElement.outerHTML : ''") or ""

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    def _runtime_value(self, expression: str) -> Any:
        """Evaluate by value without waiting for the page to load."""
        result = self.conn.send("Runtime.evaluate", {"expression": expression, "returnByValue": True})
        return (result.get("result") or {}).get("value")

    def evaluate(self, script: str) -> Any:
        """Evaluate ``script`` in the page and return its value as Python data.

        Objects become dicts, arrays become lists (both read from the page
        property by property). A bare ``return`` outside a function is retried
        once wrapped in an immediately-invoked function.
        """
        if script.startswith("function"):
            script = f"({script})"
            if script.endswith(";)"):
                script = script[:-2] + ")"
        return self._evaluate(script, allow_wrap=True)

    def _evaluate(self, script: str, *, allow_wrap: bool) -> Any:
        self.wait_for_load()
        if self.page_state.has_dialog:
            kind = (self.page_state.dialog or {}).get("type") or "dialog"
            raise JavascriptDialogOpen(f"A JavaScript {kind} is blocking the page; accept or dismiss it first")

        result = self.conn.send("Runtime.evaluate", {"expression": script, "objectGroup": OBJECT_GROUP})
        try:
            remote = RemoteObject.from_cdp(result.get("result"))
            details = result.get("exceptionDetails")

            if remote.kind is RemoteKind.ERROR or isinstance(details, dict):
                description = remote.description or ""
                if not description and isinstance(details, dict):
                    description = str(details.get("text") or "")
                    if remote.has_value and remote.value is not None:
                        description = f"{description} {remote.value}".strip()
                if allow_wrap and remote.class_name == "SyntaxError" and _ILLEGAL_RETURN in description:
                    logger.debug("Retrying script wrapped in a function")
                    return self._evaluate(f"(function() {{{script}}}());", allow_wrap=False)
                if _DETACHED_FRAME.search(description):
                    raise NoSuchFrame("The iframe no longer exists", remote.class_name)
                raise ScriptError(description or "Script evaluation failed", remote.class_name)

            return self._to_python(remote)
        finally:
            with suppress(DriverError):
                self.conn.send_async("Runtime.releaseObjectGroup", {"objectGroup": OBJECT_GROUP})

    def _to_python(self, remote: RemoteObject, seen: frozenset[str] = frozenset()) -> Any:
        if remote.kind in (RemoteKind.NULL, RemoteKind.UNDEFINED):
            return None
        if remote.needs_fetch:
            if remote.object_id in seen:
                # Back-reference to an object already being decoded.
                return None
            if len(seen) >= MAX_OBJECT_DEPTH:
                raise ScriptError("Object is nested too deeply to decode", remote.class_name)
            return self._fetch_properties(remote, seen | {remote.object_id})
        if remote.has_value:
            return remote.value
        if remote.kind is RemoteKind.ARRAY:
            return []
        if remote.kind is RemoteKind.OBJECT:
            return {}
        return None

    def _fetch_properties(self, remote: RemoteObject, seen: frozenset[str]) -> list[Any] | dict[str, Any]:
        result = self.conn.send("Runtime.getProperties", {"objectId": remote.object_id, "ownProperties": True})
        is_array = remote.kind is RemoteKind.ARRAY
        values: dict[str, Any] = {}
        for prop in result.get("result") or []:
            name = prop.get("name")
            if not isinstance(name, str) or name == "__proto__" or "symbol" in prop:
                continue
            if is_array and name == "length":
                continue
            if "value" not in prop:
                # Accessor property; reading it would run page code.
                continue
            values[name] = self._to_python(RemoteObject.from_cdp(prop["value"]), seen)

        if not is_array:
            return values
        indexed = sorted((int(k), v) for k, v in values.items() if k.isdigit())
        return [v for _, v in indexed]

    def execute_script(self, script: str) -> None:
        self.evaluate(script)

    def run_async_script(self, script: str) -> int:
        """Fire a script without waiting for the page or the result."""
        return self.conn.send_async("Runtime.evaluate", {"expression": script})

    def wait(self, timeout_ms: int, condition: str) -> bool:
        """Poll ``condition`` until it is truthy or ``timeout_ms`` elapses."""
        deadline = time.monotonic() + max(0, timeout_ms) / 1000.0
        result = bool(self.evaluate(condition))
        while not result and time.monotonic() < deadline:
            time.sleep(self.config.wait_poll_interval)
            result = bool(self.evaluate(condition))
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Dialogs
    # ─────────────────────────────────────────────────────────────────────────

    def has_javascript_dialog(self) -> bool:
        return self.page_state.has_dialog

    def accept_alert(self, text: str = "") -> None:
        self.conn.send("Page.handleJavaScriptDialog", {"accept": True, "promptText": text})

    def dismiss_alert(self) -> None:
        self.conn.send("Page.handleJavaScriptDialog", {"accept": False})

    # ─────────────────────────────────────────────────────────────────────────
    # Cookies & headers
    # ─────────────────────────────────────────────────────────────────────────

    def get_cookies(self) -> list[dict[str, Any]]:
        return list(self.conn.send("Network.getCookies").get("cookies") or [])

    def get_cookie(self, name: str) -> str | None:
        for cookie in self.get_cookies():
            if cookie.get("name") == name:
                return unquote_plus(str(cookie.get("value") or ""))
        return None

    def _all_cookies(self) -> list[dict[str, Any]]:
        try:
            return list(self.conn.send("Network.getAllCookies").get("cookies") or [])
        except ProtocolError as exc:
            if exc.code != ProtocolError.METHOD_NOT_FOUND:
                raise
            logger.info("Network.getAllCookies unavailable, using Storage.getCookies")
            return list(self.conn.send("Storage.getCookies").get("cookies") or [])

    def set_cookie(self, name: str, value: str | None = None) -> None:
        """Set a cookie on ``base_url``; ``value=None`` deletes every cookie named ``name``."""
        if value is not None:
            url = self.config.base_url.rstrip("/") + "/"
            self.conn.send("Network.setCookie", {"url": url, "name": name, "value": quote_plus(value)})
            return

        legacy = self.browser_version is not None and self.browser_version < 63
        for cookie in self._all_cookies():
            if cookie.get("name") != name:
                continue
            domain = str(cookie.get("domain") or "").lstrip(".")
            url = f"http://{domain}{cookie.get('path') or '/'}"
            if legacy:
                self.conn.send("Network.deleteCookie", {"cookieName": name, "url": url})
            else:
                self.conn.send("Network.deleteCookies", {"name": name, "url": url})

    def delete_all_cookies(self) -> None:
        self.conn.send("Network.clearBrowserCookies")

    def set_request_header(self, name: str, value: str) -> None:
        self._request_headers[name] = value
        self._send_request_headers()

    def unset_request_header(self, name: str) -> None:
        if name in self._request_headers:
            del self._request_headers[name]
            self._send_request_headers()

    def _send_request_headers(self) -> None:
        self.conn.send("Network.setExtraHTTPHeaders", {"headers": dict(self._request_headers)})

    # ─────────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────────

    def move_mouse(self, x: float, y: float, *, sync: bool = False) -> None:
        params = {"type": "mouseMoved", "x": x, "y": y}
        if sync:
            self.conn.send("Input.dispatchMouseEvent", params)
        else:
            self.conn.send_async("Input.dispatchMouseEvent", params)

    def press_mouse_button(self, x: float, y: float, button: str = "left", click_count: int | None = None) -> None:
        params: dict[str, Any] = {"type": "mousePressed", "x": x, "y": y, "button": button}
        if click_count is not None:
            params["clickCount"] = click_count
        self.conn.send_async("Input.dispatchMouseEvent", params)

    def release_mouse_button(self, x: float, y: float, button: str = "left", click_count: int | None = None) -> None:
        """Release the button, then wait for any navigation the click triggered."""
        params: dict[str, Any] = {"type": "mouseReleased", "x": x, "y": y, "button": button}
        if click_count is not None:
            params["clickCount"] = click_count
        self.conn.send("Input.dispatchMouseEvent", params)
        # Give click handlers a moment to start a request before checking readiness.
        time.sleep(0.005)
        self.wait_for_load()

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        self.press_mouse_button(x, y, button, click_count)
        self.release_mouse_button(x, y, button, click_count)

    def clear_focused_input(self) -> None:
        self.conn.send_async(
            "Input.dispatchKeyEvent",
            {"type": "rawKeyDown", "nativeVirtualKeyCode": 8, "windowsVirtualKeyCode": 8},
        )
        self.conn.send_async("Input.dispatchKeyEvent", {"type": "keyUp"})

    def simulate_typing(self, value: str) -> None:
        last_id: int | None = None
        for char in value.replace("\n", "\r"):
            self.conn.send_async("Input.dispatchKeyEvent", {"type": "keyDown", "text": char})
            last_id = self.conn.send_async("Input.dispatchKeyEvent", {"type": "keyUp"})
        if last_id is not None:
            self.conn.await_response(last_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Page utilities
    # ─────────────────────────────────────────────────────────────────────────

    def capture_screenshot(self, format: str = "png", clip: dict[str, Any] | None = None, **options: Any) -> bytes:
        params: dict[str, Any] = {"format": format, **options}
        if clip:
            params["clip"] = clip
        result = self.conn.send("Page.captureScreenshot", params)
        return base64.b64decode(result.get("data") or "")

    def print_to_pdf(self, **options: Any) -> bytes:
        result = self.conn.send("Page.printToPDF", options or None)
        return base64.b64decode(result.get("data") or "")

    def attach_file(self, name: str, path: str, include_iframes: bool = False) -> bool:
        """Set ``path`` on the first element whose ``name`` attribute is ``name``."""
        document = self.conn.send("DOM.getDocument", {"depth": -1, "pierce": include_iframes})
        root = document.get("root")
        if not isinstance(root, dict):
            return False
        for node in _walk_nodes(root):
            attributes = node.get("attributes") or []
            pairs = zip(attributes[0::2], attributes[1::2])
            if ("name", name) in pairs:
                self.conn.send("DOM.setFileInputFiles", {"nodeId": node["nodeId"], "files": [path]})
                return True
        return False

    def get_tabs(self) -> list[dict[str, Any]]:
        targets = self.conn.send("Target.getTargets").get("targetInfos") or []
        return [t for t in reversed(targets) if t.get("type") == "page"]

    def get_target_info(self, target_id: str | None = None) -> dict[str, Any]:
        result = self.conn.send("Target.getTargetInfo", {"targetId": target_id or self.target_id})
        return result.get("targetInfo") or {}

    def set_visible_size(self, width: int, height: int) -> None:
        self.conn.send_async(
            "Emulation.setDeviceMetricsOverride",
            {"width": width, "height": height, "deviceScaleFactor": 0, "mobile": False},
        )

    def maximize(self) -> None:
        try:
            window_id = self.conn.send("Browser.getWindowForTarget", {"targetId": self.target_id}).get("windowId", 1)
        except ProtocolError as exc:
            if not exc.is_unsupported:
                raise
            window_id = 1
        self.conn.send_async("Browser.setWindowBounds", {"windowId": window_id, "bounds": {"windowState": "maximized"}})

    def set_download_behavior(self, behavior: str, download_path: str | None = None) -> None:
        params: dict[str, Any] = {"behavior": behavior}
        if download_path:
            params["downloadPath"] = download_path
        try:
            self.conn.send("Browser.setDownloadBehavior", params)
        except ProtocolError as exc:
            if not exc.is_unsupported:
                raise
            logger.info("Browser.setDownloadBehavior unavailable, using Page.setDownloadBehavior")
            self.conn.send("Page.setDownloadBehavior", params)

    def set_ignore_certificate_errors(self, ignore: bool = True) -> None:
        try:
            self.conn.send("Security.setIgnoreCertificateErrors", {"ignore": ignore})
            self.page_state.override_certificate_errors = False
        except ProtocolError as exc:
            if exc.code != ProtocolError.METHOD_NOT_FOUND:
                raise
            logger.info("Falling back to Security.setOverrideCertificateErrors")
            self.conn.send("Security.enable")
            self.conn.send("Security.setOverrideCertificateErrors", {"override": ignore})
            self.page_state.override_certificate_errors = ignore


__all__ = ["MAX_OBJECT_DEPTH", "OBJECT_GROUP", "Session"]
