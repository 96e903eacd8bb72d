"""
message_channel.py

Coordinator -> page messaging.

Delivery is best-effort: a page that is mid-navigation or whose capture script
has not attached yet rejects the message. deliver_with_retry() makes at most one
extra attempt after a fixed delay, each attempt bounded by a timeout, and
reports the outcome instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from playwright.async_api import Error as PWError, Page

from capture_config import setup_logger
from capture_models import MessageDeliveryError

logger = setup_logger("MessageChannel")

SendFn = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

_RECEIVE_JS = """
(msg) => {
  if (!window.__domCapture || typeof window.__domCapture.receive !== "function") {
    throw new Error("capture script not attached");
  }
  return window.__domCapture.receive(msg);
}
"""


class PageChannel(Protocol):
    name: str

    async def send(self, message: Dict[str, Any]) -> Dict[str, Any]: ...


class PlaywrightPageChannel:
    def __init__(self, page: Page):
        self.page = page

    @property
    def name(self) -> str:
        try:
            return self.page.url or "about:blank"
        except Exception:
            return "<closed page>"

    async def send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if self.page.is_closed():
            raise MessageDeliveryError("page is closed")
        try:
            response = await self.page.evaluate(_RECEIVE_JS, message)
        except PWError as e:
            raise MessageDeliveryError(str(e)) from e
        return response if isinstance(response, dict) else {"success": True}


@dataclass
class RetryPolicy:
    max_retries: int = 1
    delay_s: float = 1.0
    timeout_s: float = 3.0


@dataclass
class DeliveryResult:
    ok: bool
    attempts: int
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


async def deliver_with_retry(
    send: SendFn,
    message: Dict[str, Any],
    policy: Optional[RetryPolicy] = None,
    log: Optional[logging.Logger] = None,
) -> DeliveryResult:
    policy = policy or RetryPolicy()
    log = log or logger
    attempts = 0
    last_error: Optional[str] = None
    action = message.get("action")

    while attempts <= max(0, policy.max_retries):
        if attempts:
            await asyncio.sleep(policy.delay_s)
        attempts += 1
        try:
            response = await asyncio.wait_for(send(message), timeout=policy.timeout_s)
            return DeliveryResult(ok=True, attempts=attempts, response=response)
        except asyncio.TimeoutError:
            last_error = f"timed out after {policy.timeout_s:.1f}s"
        except MessageDeliveryError as e:
            last_error = str(e)
        log.info("delivery of %r failed (attempt %d): %s", action, attempts, last_error)

    return DeliveryResult(ok=False, attempts=attempts, error=last_error)
