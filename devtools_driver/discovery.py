"""HTTP discovery endpoints of a DevTools-enabled browser (``/json/*``)."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlsplit
from urllib.request import Request, urlopen

from .config import DriverConfig
from .errors import DiscoveryError

logger = logging.getLogger("devtools_driver.discovery")


def parse_major_version(browser: str | None) -> int | None:
    """``"Chrome/120.0.6099.71"`` -> 120; ``"HeadlessChrome/63.0"`` -> 63."""
    if not browser or "/" not in browser:
        return None
    head = browser.split("/", 1)[1].split(".", 1)[0]
    try:
        return int(head)
    except ValueError:
        return None


class DiscoveryClient:
    def __init__(self, api_url: str | None = None, timeout: float = 5.0) -> None:
        self.api_url = DriverConfig.normalize_api_url(api_url)
        self.timeout = timeout

    def _request(self, path: str, method: str = "GET") -> Any:
        url = f"{self.api_url}{path}"
        req = Request(url, method=method, headers={"User-Agent": "devtools-driver/1.0"})
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode(errors="replace")
        except HTTPError:
            raise
        except (TimeoutError, URLError, OSError) as exc:
            raise DiscoveryError(f"{method} {url} failed: {exc}") from exc
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError:
            # /json/close and /json/activate answer with plain text.
            return body

    def _get_json(self, path: str, method: str = "GET") -> Any:
        try:
            return self._request(path, method)
        except HTTPError as exc:
            raise DiscoveryError(f"{method} {self.api_url}{path} returned HTTP {exc.code}") from exc

    def version(self) -> dict[str, Any]:
        data = self._get_json("/json/version")
        if not isinstance(data, dict):
            raise DiscoveryError("Unexpected /json/version payload")
        return data

    def list_targets(self) -> list[dict[str, Any]]:
        data = self._get_json("/json/list")
        if not isinstance(data, list):
            raise DiscoveryError("Unexpected /json/list payload")
        return [t for t in data if isinstance(t, dict)]

    def new_target(self, url: str = "about:blank") -> dict[str, Any]:
        """Open a new tab. Newer Chrome only accepts PUT here; older builds only GET."""
        path = f"/json/new?{quote(url, safe=':/?&=#%')}"
        try:
            data = self._request(path, "PUT")
        except HTTPError as exc:
            if exc.code != 405:
                raise DiscoveryError(f"PUT {self.api_url}{path} returned HTTP {exc.code}") from exc
            logger.debug("PUT /json/new rejected, retrying with GET")
            data = self._get_json(path)
        if not isinstance(data, dict) or not data.get("id"):
            raise DiscoveryError("Unexpected /json/new payload")
        return data

    def close_target(self, target_id: str) -> None:
        self._get_json(f"/json/close/{target_id}")

    def activate_target(self, target_id: str) -> None:
        self._get_json(f"/json/activate/{target_id}")

    def target_ws_url(self, target_id: str) -> str:
        """Debugger URL of ``target_id``.

        Chrome omits ``webSocketDebuggerUrl`` while another client is attached,
        and targets inside a fresh browser context may not be listed yet, so fall
        back to the canonical page path on the API host.
        """
        for target in self.list_targets():
            if target.get("id") == target_id:
                ws_url = target.get("webSocketDebuggerUrl")
                if isinstance(ws_url, str) and ws_url:
                    return ws_url
                break
        scheme = "wss" if self.api_url.startswith("https") else "ws"
        return f"{scheme}://{urlsplit(self.api_url).netloc}/devtools/page/{target_id}"


__all__ = ["DiscoveryClient", "parse_major_version"]
