"""Page readiness tracking from CDP events.

PageState is fed every inbound event by the pump loop and derives:
- whether the page finished loading (no pending document requests and no
  frame awaiting navigation),
- whether a JavaScript dialog is blocking the page,
- the last top-level document response.

A dialog always wins: while it is open the page is never reported ready.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import BrowserCrashed
from .wire import Event

logger = logging.getLogger("devtools_driver.page_state")

AsyncSender = Callable[[str, "dict[str, Any] | None"], int]


class PageStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    DIALOG_BLOCKED = "dialog_blocked"


@dataclass(slots=True)
class NetworkResponse:
    """Subset of ``Network.Response`` for the top-level document."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    status_text: str = ""
    mime_type: str = ""
    synthesized: bool = False

    @classmethod
    def from_cdp(cls, response: dict[str, Any]) -> NetworkResponse:
        headers_raw = response.get("headers")
        headers = {str(k): str(v) for k, v in headers_raw.items()} if isinstance(headers_raw, dict) else {}
        try:
            status = int(response.get("status") or 0)
        except (TypeError, ValueError):
            status = 0
        return cls(
            status=status,
            headers=headers,
            url=str(response.get("url") or ""),
            status_text=str(response.get("statusText") or ""),
            mime_type=str(response.get("mimeType") or ""),
        )

    @classmethod
    def default(cls, url: str = "") -> NetworkResponse:
        """Stand-in for navigations that produced no observable network traffic."""
        return cls(status=200, url=url, synthesized=True)


def _frame_id(params: dict[str, Any]) -> str | None:
    frame_id = params.get("frameId")
    if not frame_id:
        frame = params.get("frame")
        if isinstance(frame, dict):
            frame_id = frame.get("id")
    return str(frame_id) if frame_id else None


class PageState:
    def __init__(self, *, target_id: str | None = None, send_async: AsyncSender | None = None) -> None:
        self.target_id = target_id
        self._send_async = send_async
        self.pending_request_ids: set[str] = set()
        self.pending_navigation_frame_ids: set[str] = set()
        self.has_dialog = False
        self.dialog: dict[str, Any] | None = None
        self.last_response: NetworkResponse | None = None
        self.main_frame_id: str | None = None
        self.network_observed = False
        self.override_certificate_errors = False

    @property
    def ready(self) -> bool:
        if self.has_dialog:
            return False
        return not self.pending_request_ids and not self.pending_navigation_frame_ids

    @property
    def status(self) -> PageStatus:
        if self.has_dialog:
            return PageStatus.DIALOG_BLOCKED
        return PageStatus.READY if self.ready else PageStatus.LOADING

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "ready": self.ready,
            "hasDialog": self.has_dialog,
            "pendingRequestIds": sorted(self.pending_request_ids),
            "pendingNavigationFrameIds": sorted(self.pending_navigation_frame_ids),
            "lastResponse": self.last_response.status if self.last_response else None,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Driver-initiated transitions
    # ─────────────────────────────────────────────────────────────────────────

    def reset_navigation(self) -> None:
        """Forget everything about the previous document (before a new navigation)."""
        self.pending_request_ids.clear()
        self.pending_navigation_frame_ids.clear()
        self.last_response = None
        self.network_observed = False

    def begin_navigation(self, frame_id: str | None) -> None:
        """Register a navigation issued by the driver (navigate/reload/history)."""
        if frame_id:
            self.main_frame_id = frame_id
            self.pending_navigation_frame_ids.add(frame_id)
        self.last_response = None

    def clear_response(self) -> None:
        self.last_response = None

    def _is_main_frame(self, frame_id: str | None) -> bool:
        return self.main_frame_id is None or frame_id is None or frame_id == self.main_frame_id

    # ─────────────────────────────────────────────────────────────────────────
    # Event ingestion
    # ─────────────────────────────────────────────────────────────────────────

    def handle_event(self, event: Event) -> None:
        method = event.method
        params = event.params

        # Frames
        if method in ("Page.frameStartedLoading", "Page.frameScheduledNavigation", "Page.frameRequestedNavigation"):
            frame_id = _frame_id(params)
            if frame_id:
                self.pending_navigation_frame_ids.add(frame_id)
            if self._is_main_frame(frame_id):
                self.last_response = None
            return

        if method == "Page.frameNavigated":
            frame = params.get("frame") if isinstance(params.get("frame"), dict) else {}
            frame_id = _frame_id(params)
            if frame_id and not frame.get("parentId"):
                self.main_frame_id = frame_id
            self.pending_navigation_frame_ids.discard(frame_id or "")
            return

        if method in ("Page.frameStoppedLoading", "Page.navigatedWithinDocument", "Page.frameDetached"):
            self.pending_navigation_frame_ids.discard(_frame_id(params) or "")
            return

        # Network (document requests only)
        if method == "Network.requestWillBeSent":
            if params.get("type") == "Document" and params.get("requestId"):
                self.pending_request_ids.add(str(params["requestId"]))
                self.network_observed = True
            return

        if method == "Network.responseReceived":
            if params.get("type") != "Document":
                return
            self.network_observed = True
            self.pending_request_ids.discard(str(params.get("requestId") or ""))
            response = params.get("response")
            if isinstance(response, dict) and self._is_main_frame(params.get("frameId")):
                self.last_response = NetworkResponse.from_cdp(response)
            return

        if method in ("Network.loadingFailed", "Network.requestServedFromCache"):
            request_id = str(params.get("requestId") or "")
            if request_id in self.pending_request_ids:
                self.pending_request_ids.discard(request_id)
                if method == "Network.loadingFailed" and not params.get("canceled"):
                    logger.debug("Document request %s failed: %s", request_id, params.get("errorText"))
            return

        # Dialogs
        if method == "Page.javascriptDialogOpening":
            self.has_dialog = True
            self.dialog = {
                "type": params.get("type"),
                "message": params.get("message"),
                "url": params.get("url"),
                "defaultPrompt": params.get("defaultPrompt"),
            }
            return

        if method == "Page.javascriptDialogClosed":
            self.has_dialog = False
            self.dialog = None
            return

        # Crashes
        if method == "Inspector.targetCrashed":
            logger.error("Inspected target crashed")
            raise BrowserCrashed("Browser crashed")

        if method == "Target.targetCrashed":
            crashed = params.get("targetId")
            if self.target_id is not None and crashed == self.target_id:
                logger.error("Target %s crashed (status=%s)", crashed, params.get("status"))
                raise BrowserCrashed(f"Browser crashed (target {crashed})")
            return

        # Certificates (legacy override protocol)
        if method == "Security.certificateError":
            event_id = params.get("eventId")
            if self.override_certificate_errors and event_id is not None and self._send_async is not None:
                self._send_async("Security.handleCertificateError", {"eventId": event_id, "action": "continue"})
            return


__all__ = ["AsyncSender", "NetworkResponse", "PageState", "PageStatus"]
