"""
navigation_coordinator.py

Long-lived arbiter of capture mode across page loads.

States:
  IDLE                      capture off
  ACTIVE                    capture on, page listens for clicks
  SUSPENDED_FOR_NAVIGATION  a navigation trigger was captured; the page turned
                            its listeners off and is about to navigate
  RESUME_SCHEDULED          the next page finished loading; resume message in
                            flight (one retry allowed)

The in-memory resume latch (CaptureSession.should_resume) is what drives the
resume path. The persisted pendingNavigation flag only feeds the operator
banner and is soft-cleared after pending_banner_timeout_s. After a process
restart the latch is gone, so capture comes back through the ordinary
"captureMode is on" check on the next load; the from-edge chain survives
because lastElementId is persisted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from capture_config import CaptureConfig, setup_logger
from capture_models import InvalidTransitionError, StoreUnavailableError
from capture_store import (
    CAPTURE_MODE,
    ELEMENT_DATA,
    LAST_ELEMENT_ID,
    LAST_NAVIGATION_ELEMENT_ID,
    PAGE_DATA,
    PENDING_NAVIGATION,
    CaptureStore,
)
from id_registry import IdRegistry
from message_channel import DeliveryResult, PageChannel, RetryPolicy, deliver_with_retry

logger = setup_logger("NavigationCoordinator")

EventSink = Callable[[str, Dict[str, Any]], None]


class CaptureState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    SUSPENDED_FOR_NAVIGATION = "suspended_for_navigation"
    RESUME_SCHEDULED = "resume_scheduled"


class CaptureEvent(str, Enum):
    TOGGLE_ON = "toggle_on"
    TOGGLE_OFF = "toggle_off"
    RESET = "reset"
    ELEMENT_CAPTURED = "element_captured"
    NAVIGATION_TRIGGERED = "navigation_triggered"
    PAGE_LOADED = "page_loaded"
    RESUME_DELIVERED = "resume_delivered"
    RESUME_FAILED = "resume_failed"


S = CaptureState
E = CaptureEvent

_TRANSITIONS: Dict[tuple, CaptureState] = {
    **{(s, E.TOGGLE_ON): S.ACTIVE for s in S},
    **{(s, E.TOGGLE_OFF): S.IDLE for s in S},
    **{(s, E.RESET): S.IDLE for s in S},
    (S.ACTIVE, E.ELEMENT_CAPTURED): S.ACTIVE,
    (S.ACTIVE, E.NAVIGATION_TRIGGERED): S.SUSPENDED_FOR_NAVIGATION,
    (S.SUSPENDED_FOR_NAVIGATION, E.NAVIGATION_TRIGGERED): S.SUSPENDED_FOR_NAVIGATION,
    (S.IDLE, E.PAGE_LOADED): S.IDLE,
    (S.ACTIVE, E.PAGE_LOADED): S.ACTIVE,
    (S.SUSPENDED_FOR_NAVIGATION, E.PAGE_LOADED): S.RESUME_SCHEDULED,
    (S.RESUME_SCHEDULED, E.PAGE_LOADED): S.RESUME_SCHEDULED,
    (S.RESUME_SCHEDULED, E.RESUME_DELIVERED): S.ACTIVE,
    (S.RESUME_SCHEDULED, E.RESUME_FAILED): S.ACTIVE,
}


@dataclass
class CaptureSession:
    state: CaptureState = CaptureState.IDLE
    should_resume: bool = False
    last_navigation_element_id: Optional[str] = None
    # None until a resume has been attempted; False means the operator must re-toggle
    resume_confirmed: Optional[bool] = None

    def can_apply(self, event: CaptureEvent) -> bool:
        if event is E.PAGE_LOADED and self.state is S.SUSPENDED_FOR_NAVIGATION and not self.should_resume:
            return False
        return (self.state, event) in _TRANSITIONS

    def apply(self, event: CaptureEvent) -> CaptureState:
        if not self.can_apply(event):
            raise InvalidTransitionError(self.state.value, event.value)

        if event in (E.TOGGLE_ON, E.TOGGLE_OFF, E.RESET):
            self.should_resume = False
        elif event is E.NAVIGATION_TRIGGERED:
            self.should_resume = True
        elif event is E.PAGE_LOADED and self.state is S.SUSPENDED_FOR_NAVIGATION:
            self.should_resume = False
        elif event is E.RESUME_DELIVERED:
            self.resume_confirmed = True
        elif event is E.RESUME_FAILED:
            self.resume_confirmed = False

        self.state = _TRANSITIONS[(self.state, event)]
        return self.state


class NavigationCoordinator:
    def __init__(
        self,
        store: CaptureStore,
        registry: IdRegistry,
        config: Optional[CaptureConfig] = None,
        event_sink: Optional[EventSink] = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or CaptureConfig()
        self.event_sink = event_sink or (lambda event_type, data: None)

        self.current_channel: Optional[PageChannel] = None
        self._banner_timer: Optional[asyncio.TimerHandle] = None

        try:
            capture_mode = bool(self.store.get(CAPTURE_MODE)[CAPTURE_MODE])
        except StoreUnavailableError as e:
            logger.warning("state unreadable at startup, starting idle: %s", e)
            capture_mode = False
        self.session = CaptureSession(state=S.ACTIVE if capture_mode else S.IDLE)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    @property
    def state(self) -> CaptureState:
        return self.session.state

    def _apply(self, event: CaptureEvent) -> bool:
        before = self.session.state
        try:
            after = self.session.apply(event)
        except InvalidTransitionError as e:
            logger.warning("ignored: %s", e)
            return False
        if after is not before:
            logger.info("capture state %s -> %s (%s)", before.value, after.value, event.value)
        return True

    def _persist(self, values: Dict[str, Any]) -> bool:
        try:
            self.store.set(values)
            return True
        except StoreUnavailableError as e:
            logger.error("could not persist %s: %s", sorted(values), e)
            return False

    def _capture_mode_on(self) -> bool:
        try:
            return bool(self.store.get(CAPTURE_MODE)[CAPTURE_MODE])
        except StoreUnavailableError as e:
            logger.warning("captureMode unreadable: %s", e)
            return False

    def _cancel_banner(self) -> None:
        if self._banner_timer is not None:
            self._banner_timer.cancel()
            self._banner_timer = None

    def _schedule_banner_clear(self) -> None:
        self._cancel_banner()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._banner_timer = loop.call_later(self.config.pending_banner_timeout_s, self._clear_pending_banner)

    def _clear_pending_banner(self) -> None:
        self._banner_timer = None
        try:
            pending = self.store.get(PENDING_NAVIGATION)[PENDING_NAVIGATION]
        except StoreUnavailableError as e:
            logger.warning("pendingNavigation banner not cleared: %s", e)
            return
        if pending:
            self._persist({PENDING_NAVIGATION: False})
            logger.debug("pendingNavigation banner cleared by timeout")

    async def _send_once(self, channel: Optional[PageChannel], message: Dict[str, Any]) -> Optional[DeliveryResult]:
        channel = channel or self.current_channel
        if channel is None:
            return None
        policy = RetryPolicy(max_retries=0, timeout_s=self.config.delivery_timeout_s)
        result = await deliver_with_retry(channel.send, message, policy, log=logger)
        if not result.ok:
            logger.info("page %s did not take %r: %s", channel.name, message.get("action"), result.error)
        return result

    # -------------------------------------------------------------------------
    # Operator controls
    # -------------------------------------------------------------------------
    async def enable_capture(self, channel: Optional[PageChannel] = None) -> Dict[str, Any]:
        self._apply(E.TOGGLE_ON)
        self._persist({CAPTURE_MODE: True})
        self.event_sink("capture_mode", {"enabled": True})
        await self._send_once(channel, {"action": "enableCapture"})
        return {"success": True}

    async def disable_capture(self, channel: Optional[PageChannel] = None) -> Dict[str, Any]:
        self._apply(E.TOGGLE_OFF)
        self._cancel_banner()
        self._persist({CAPTURE_MODE: False, PENDING_NAVIGATION: False})
        self.event_sink("capture_mode", {"enabled": False})
        await self._send_once(channel, {"action": "disableCapture"})
        return {"success": True}

    async def reset(self, platform: Optional[str] = None, channel: Optional[PageChannel] = None) -> Dict[str, Any]:
        platform = platform or self.registry.get_platform_key()
        self._apply(E.RESET)
        self._cancel_banner()
        try:
            self.registry.reset_registry(platform)
            self.store.clear_captures(platform)
        except StoreUnavailableError as e:
            logger.error("reset of %s failed: %s", platform, e)
            return {"success": False, "error": str(e)}
        self._persist({CAPTURE_MODE: False, PENDING_NAVIGATION: False, LAST_NAVIGATION_ELEMENT_ID: None})
        self.session.last_navigation_element_id = None
        self.event_sink("data_reset", {"platform": platform})
        await self._send_once(channel, {"action": "disableCapture"})
        return {"success": True}

    def set_platform_key(self, platform: str) -> Dict[str, Any]:
        try:
            platform = self.registry.set_platform_key(platform)
        except StoreUnavailableError as e:
            return {"success": False, "error": str(e)}
        self.event_sink("platform_changed", {"platform": platform})
        return {"success": True, "platformKey": platform}

    def import_id_registry(self, data: Any) -> Dict[str, Any]:
        try:
            self.registry.import_all(data)
        except (ValueError, StoreUnavailableError) as e:
            logger.error("registry import rejected: %s", e)
            return {"success": False, "error": str(e)}
        return {"success": True}

    # -------------------------------------------------------------------------
    # Page-driven events
    # -------------------------------------------------------------------------
    def note_element_captured(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._apply(E.ELEMENT_CAPTURED)
        logger.debug("element captured: %s", data)
        self.event_sink("element_captured", data)
        return {"success": True}

    def note_page_captured(self, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("page captured: %s", data)
        self.event_sink("page_captured", data)
        return {"success": True}

    def temporary_disable_for_navigation(self, last_element_id: Optional[str]) -> Dict[str, Any]:
        """Suspend capture across the coming navigation. captureMode stays on in the store."""
        if not self._apply(E.NAVIGATION_TRIGGERED):
            return {"success": False, "error": f"cannot suspend from {self.state.value}"}
        self.session.last_navigation_element_id = last_element_id
        self._persist({PENDING_NAVIGATION: True, LAST_NAVIGATION_ELEMENT_ID: last_element_id})
        self._schedule_banner_clear()
        logger.info("capture suspended for navigation after %s", last_element_id)
        self.event_sink("navigation_suspended", {"lastElementId": last_element_id})
        return {"success": True}

    async def on_page_loaded(self, channel: PageChannel) -> Optional[DeliveryResult]:
        """Called when a page reports load complete."""
        self.current_channel = channel

        if self.session.should_resume:
            self._apply(E.PAGE_LOADED)
            anchor = self.session.last_navigation_element_id
            message = {"action": "checkPendingNavigation", "resumeCapture": True, "lastElementId": anchor}
            policy = RetryPolicy(
                max_retries=1,
                delay_s=self.config.resume_retry_delay_s,
                timeout_s=self.config.delivery_timeout_s,
            )
            result = await deliver_with_retry(channel.send, message, policy, log=logger)
            if result.ok:
                self._apply(E.RESUME_DELIVERED)
                self._cancel_banner()
                self._persist({PENDING_NAVIGATION: False})
                logger.info("capture resumed on %s (anchor %s)", channel.name, anchor)
                self.event_sink("navigation_resumed", {"url": channel.name, "lastElementId": anchor})
            else:
                self._apply(E.RESUME_FAILED)
                logger.warning(
                    "could not resume capture on %s after %d attempt(s): %s; re-toggle capture to continue",
                    channel.name, result.attempts, result.error,
                )
                self.event_sink("navigation_resume_failed", {"url": channel.name, "error": result.error})
            return result

        self._apply(E.PAGE_LOADED)
        if self._capture_mode_on():
            return await self._send_once(channel, {"action": "enableCapture"})
        return None

    # -------------------------------------------------------------------------
    # Message dispatch
    # -------------------------------------------------------------------------
    async def handle_message(self, message: Dict[str, Any], channel: Optional[PageChannel] = None) -> Dict[str, Any]:
        if not isinstance(message, dict):
            return {"success": False, "error": "message must be an object"}
        action = message.get("action")
        logger.debug("message %r from %s", action, channel.name if channel else "operator")

        if action == "enableCapture":
            return await self.enable_capture(channel)
        if action == "disableCapture":
            return await self.disable_capture(channel)
        if action == "captureModeChanged":
            if message.get("isEnabled"):
                self._apply(E.TOGGLE_ON)
                self._persist({CAPTURE_MODE: True})
            else:
                self._apply(E.TOGGLE_OFF)
                self._cancel_banner()
                self._persist({CAPTURE_MODE: False, PENDING_NAVIGATION: False})
            return {"success": True}
        if action == "temporaryDisableForNavigation":
            return self.temporary_disable_for_navigation(message.get("lastElementId"))
        if action == "checkPendingNavigation":
            return {
                "success": True,
                "pendingNavigation": self.session.state is S.SUSPENDED_FOR_NAVIGATION,
                "lastElementId": self.session.last_navigation_element_id,
            }
        if action == "setPlatformKey":
            return self.set_platform_key(message.get("platformKey") or "")
        if action == "importIdRegistry":
            return self.import_id_registry(message.get("data"))
        if action == "logCapturedElement":
            return self.note_element_captured(message.get("data") or {})
        if action == "logCapturedPage":
            return self.note_page_captured(message.get("data") or {})
        if action == "dataReset":
            return await self.reset(channel=channel)

        logger.warning("unknown message action: %r", action)
        return {"success": False, "error": f"unknown action: {action}"}

    def status(self) -> Dict[str, Any]:
        platform = self.registry.get_platform_key()
        try:
            persisted = self.store.get(CAPTURE_MODE, PENDING_NAVIGATION, LAST_NAVIGATION_ELEMENT_ID)
            captures = self.store.captures(platform)
        except StoreUnavailableError as e:
            return {"state": self.state.value, "error": str(e)}
        return {
            "state": self.state.value,
            "platform": platform,
            "captureMode": bool(persisted[CAPTURE_MODE]),
            "pendingNavigation": bool(persisted[PENDING_NAVIGATION]),
            "lastNavigationElementId": persisted[LAST_NAVIGATION_ELEMENT_ID],
            "resumeConfirmed": self.session.resume_confirmed,
            "pages": len(captures[PAGE_DATA]),
            "elements": len(captures[ELEMENT_DATA]),
            "lastElementId": captures[LAST_ELEMENT_ID],
        }
