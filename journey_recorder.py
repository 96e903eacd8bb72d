#!/usr/bin/env python3
from __future__ import annotations

"""
journey_recorder.py

Operator-driven DOM journey capture in a headed Playwright browser.

- Every page gets the capture script (capture_script.py) via add_init_script.
- Pages talk to the recorder through the "domCaptureSend" binding; each page
  load gets a fresh PageContext rebuilt from the state file.
- The NavigationCoordinator lives for the whole run and watches page "load"
  events to resume capture after a navigation trigger.
- Console commands stand in for the extension popup.

Usage:
  python journey_recorder.py record --url https://app.example.com/dashboard --platform crm
  python journey_recorder.py export --out ./exports
  python journey_recorder.py import-registry ./exports/dom-capture-export-crm-2026-10-19.json
  python journey_recorder.py status
"""

import argparse
import asyncio
import json
import queue
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import BrowserContext, Page, async_playwright
from pydantic import ValidationError

from capture_config import CaptureConfig, setup_logger
from capture_models import CaptureValidationError, ElementSnapshot, StoreUnavailableError
from capture_orchestrator import CaptureOrchestrator
from capture_script import capture_script
from capture_store import CaptureStore
from export_data import load_registries, prepare_export, write_export
from id_registry import IdRegistry
from message_channel import PlaywrightPageChannel
from navigation_coordinator import NavigationCoordinator

logger = setup_logger("JourneyRecorder")

CONSOLE_HELP = """Commands:
  on               enable capture mode
  off              disable capture mode
  status           show capture state and counts
  export [DIR]     write the export bundle
  reset            wipe captured data and the ID registry for the current platform
  platform KEY     switch platform
  stop             close the browser and exit
"""


# -----------------------------
# Event journal (events.jsonl)
# -----------------------------
class EventJournal:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.event_queue: "queue.Queue[dict]" = queue.Queue()
        self._writer: Optional[threading.Thread] = None
        self._seq = 0
        self._seq_lock = threading.Lock()
        self.session_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    def _next_event_id(self) -> str:
        with self._seq_lock:
            self._seq += 1
            seq = self._seq
        return f"{self.session_id}_{seq:08d}"

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        self.event_queue.put({
            "event_id": self._next_event_id(),
            "timestamp": datetime.now().isoformat(),
            "time_ms": int(time.time() * 1000),
            "event_type": event_type,
            **data,
        })

    def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        def write_events():
            with open(self.path, "a", encoding="utf-8") as f:
                while True:
                    event = self.event_queue.get()
                    if isinstance(event, dict) and event.get("event_type") == "__STOP__":
                        break
                    f.write(json.dumps(event) + "\n")
                    f.flush()

        self._writer = threading.Thread(target=write_events, daemon=True)
        self._writer.start()

    def stop(self) -> None:
        self.event_queue.put({"event_type": "__STOP__"})
        if self._writer:
            self._writer.join(timeout=3)


# -----------------------------
# Per-load page context
# -----------------------------
class PageContext:
    """Disposable: built on every pageReady, holds nothing the store does not."""

    def __init__(self, page: Page, store: CaptureStore, registry: IdRegistry, coordinator: NavigationCoordinator):
        self.page = page
        self.store = store
        self.registry = registry
        self.coordinator = coordinator
        self.channel = PlaywrightPageChannel(page)
        self.orchestrator = CaptureOrchestrator(store, registry)

    @property
    def platform(self) -> str:
        # Read per request: the operator may switch platform while this page is open
        return self.registry.get_platform_key()

    async def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        try:
            if action == "pageReady":
                return self._page_ready(payload)
            if action == "captureElement":
                return self._capture_element(payload)
        except StoreUnavailableError as e:
            logger.error("%s failed, state file unavailable: %s", action, e)
            return {"success": False, "error": f"state unavailable: {e}"}
        return await self.coordinator.handle_message(payload, self.channel)

    def _page_ready(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        platform = self.platform
        record, created = self.orchestrator.capture_page(
            platform,
            payload.get("url") or self.page.url,
            payload.get("title") or "",
            payload.get("framework"),
        )
        if created:
            self.coordinator.note_page_captured(record.model_dump())
        try:
            last_element_id = self.store.last_element_id(platform)
        except StoreUnavailableError as e:
            logger.warning("continuity anchor unreadable for %s: %s", platform, e)
            last_element_id = None
        return {"success": True, "page_id": record.page_id, "lastElementId": last_element_id}

    def _capture_element(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        platform = self.platform
        # SPA route changes do not reload the page, so resolve the page from the current URL
        page_record, created = self.orchestrator.capture_page(
            platform, payload.get("url") or self.page.url, payload.get("title") or "", None
        )
        if created:
            self.coordinator.note_page_captured(page_record.model_dump())

        try:
            element = ElementSnapshot.model_validate(payload.get("element") or {})
        except ValidationError as e:
            return {"success": False, "error": f"bad element snapshot: {e.error_count()} error(s)"}

        try:
            record = self.orchestrator.capture_element(
                platform,
                page_record.page_id,
                element,
                payload.get("description") or "",
                payload.get("kpi"),
                fallback_anchor=payload.get("lastElementId"),
            )
        except CaptureValidationError as e:
            return {"success": False, "error": str(e)}

        self.coordinator.note_element_captured({
            **record.to_store(),
            "isNavigationTrigger": bool(payload.get("isNavigationTrigger")),
        })
        return {"success": True, "element_id": record.element_id, "page_id": record.page_id}


# -----------------------------
# Recorder
# -----------------------------
class JourneyRecorder:
    def __init__(self, config: Optional[CaptureConfig] = None, platform: Optional[str] = None):
        self.config = config or CaptureConfig.from_env()
        self.store = CaptureStore(self.config.state_path)
        try:
            self.store.initialize(self.config.default_platform)
        except StoreUnavailableError as e:
            logger.error("state file unusable, IDs will not be registered: %s", e)
        self.registry = IdRegistry(self.store)
        if platform:
            try:
                self.registry.set_platform_key(platform)
            except StoreUnavailableError as e:
                logger.error("could not switch platform to %s: %s", platform, e)

        self.journal = EventJournal(self.config.events_path)
        self.coordinator = NavigationCoordinator(
            self.store, self.registry, self.config, event_sink=self.journal.log_event
        )

        self.playwright = None
        self.browser = None
        self.browser_context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._page_contexts: Dict[Page, PageContext] = {}
        self._attached_pages: set = set()
        self._tasks: List[asyncio.Task] = []

    # -----------------------------
    # Browser instrumentation
    # -----------------------------
    async def _binding(self, source, payload):
        if not isinstance(payload, dict):
            return {"success": False, "error": "payload must be an object"}

        page = source.get("page") if isinstance(source, dict) else getattr(source, "page", None)
        if page is None:
            return await self.coordinator.handle_message(payload)

        ctx = self._page_contexts.get(page)
        if ctx is None or payload.get("action") == "pageReady":
            ctx = PageContext(page, self.store, self.registry, self.coordinator)
            self._page_contexts[page] = ctx
        return await ctx.handle(payload)

    def _attach_page(self, page: Page) -> None:
        # The context "page" event also fires for new_page(); attach once
        if page in self._attached_pages:
            return
        self._attached_pages.add(page)
        loop = asyncio.get_running_loop()

        def on_load(p):
            task = loop.create_task(self.coordinator.on_page_loaded(PlaywrightPageChannel(page)))
            self._tasks.append(task)
            task.add_done_callback(self._tasks.remove)

        def on_close(p):
            self._page_contexts.pop(page, None)
            self._attached_pages.discard(page)

        page.on("load", on_load)
        page.on("close", on_close)

    async def start(self, start_url: Optional[str] = None) -> Page:
        self.journal.start()
        self.playwright = await async_playwright().start()

        launch_args = {"headless": self.config.headless, "args": ["--disable-blink-features=AutomationControlled"]}
        if self.config.browser_channel:
            launch_args["channel"] = self.config.browser_channel

        self.browser = await self.playwright.chromium.launch(**launch_args)
        self.browser_context = await self.browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            ignore_https_errors=True,
        )
        await self.browser_context.expose_binding("domCaptureSend", self._binding)
        await self.browser_context.add_init_script(capture_script)
        self.browser_context.on("page", self._attach_page)

        page = await self.browser_context.new_page()
        self.page = page
        self._attach_page(page)

        self.journal.log_event("recording_started", {
            "platform": self.registry.get_platform_key(),
            "state_path": str(self.config.state_path),
        })

        if start_url:
            await page.goto(start_url, wait_until="domcontentloaded")

        print("Browser instrumentation started (chromium" + (f" via {self.config.browser_channel}" if self.config.browser_channel else "") + ")")
        return page

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()

        if self.browser_context:
            try:
                await self.browser_context.close()
            except Exception as e:
                print(f"Warning: Error closing browser context: {e}")
        if self.browser:
            try:
                await self.browser.close()
            except Exception as e:
                print(f"Warning: Error closing browser: {e}")
        if self.playwright:
            try:
                await self.playwright.stop()
            except Exception as e:
                print(f"Warning: Error stopping playwright: {e}")

        self.journal.log_event("recording_stopped", {})
        self.journal.stop()

    # -----------------------------
    # Console commands
    # -----------------------------
    def _active_channel(self) -> Optional[PlaywrightPageChannel]:
        if self.page is not None and not self.page.is_closed():
            return PlaywrightPageChannel(self.page)
        return None

    async def run_command(self, line: str) -> bool:
        """Returns False when the operator asked to stop."""
        parts = line.strip().split(maxsplit=1)
        if not parts:
            return True
        cmd, arg = parts[0].lower(), (parts[1].strip() if len(parts) > 1 else "")

        if cmd in ("stop", "quit", "exit"):
            return False
        if cmd == "on":
            await self.coordinator.enable_capture(self._active_channel())
            print("✓ Capture mode enabled")
        elif cmd == "off":
            await self.coordinator.disable_capture(self._active_channel())
            print("✓ Capture mode disabled")
        elif cmd == "status":
            print(json.dumps(self.coordinator.status(), indent=2))
        elif cmd == "export":
            result = prepare_export(self.store, self.registry)
            path = write_export(result, Path(arg) if arg else self.config.export_dir)
            print(f"✓ Exported to {path}")
            if not result.is_valid:
                print(f"⚠ Export has {len(result.errors)} validation error(s):")
                for err in result.errors[:20]:
                    print(f"  - {err}")
        elif cmd == "reset":
            await self.coordinator.reset(channel=self._active_channel())
            print("✓ All data has been reset for the current platform")
        elif cmd == "platform":
            if not arg:
                print(f"Current platform: {self.registry.get_platform_key()}")
            else:
                res = self.coordinator.set_platform_key(arg)
                print(f"✓ Platform switched to: {res.get('platformKey', arg)}")
        else:
            print(CONSOLE_HELP)
        return True


async def record(config: CaptureConfig, start_url: Optional[str], platform: Optional[str]) -> int:
    recorder = JourneyRecorder(config, platform=platform)

    print("\n" + "=" * 60)
    print("DOM JOURNEY CAPTURE")
    print("=" * 60)
    print(f"State file: {config.state_path}")
    print(f"Platform:   {recorder.registry.get_platform_key()}")
    print(CONSOLE_HELP)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def read_commands():
        while not stop_event.is_set():
            try:
                line = input()
            except EOFError:
                loop.call_soon_threadsafe(stop_event.set)
                break
            fut = asyncio.run_coroutine_threadsafe(recorder.run_command(line), loop)
            try:
                keep_going = fut.result()
            except Exception as e:
                print(f"❌ Command failed: {e}")
                continue
            if not keep_going:
                loop.call_soon_threadsafe(stop_event.set)
                break

    try:
        await recorder.start(start_url=start_url)
        threading.Thread(target=read_commands, daemon=True).start()
        await stop_event.wait()
    except KeyboardInterrupt:
        print("\n\n⚠ Interrupted by Ctrl+C")
    finally:
        await recorder.stop()
        print(f"\n✓ State saved to: {config.state_path}")
        print(f"  - Events: {config.events_path}")
    return 0


# -----------------------------
# CLI
# -----------------------------
def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Capture a multi-page DOM journey as a page/element graph")
    ap.add_argument("--state", default=None, help="Path to the JSON state file (env: DOM_CAPTURE_STATE_PATH)")
    sub = ap.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("record", help="Launch the browser and capture interactively")
    rec.add_argument("--url", default=None, help="Start URL")
    rec.add_argument("--platform", default=None, help="Platform key to capture under")

    exp = sub.add_parser("export", help="Write the export bundle for a platform")
    exp.add_argument("--out", default=None, help="Output directory (env: DOM_CAPTURE_EXPORT_DIR)")
    exp.add_argument("--platform", default=None)

    imp = sub.add_parser("import-registry", help="Replace all ID registries from an export or registry file")
    imp.add_argument("file")

    rst = sub.add_parser("reset", help="Wipe captured data and the ID registry for a platform")
    rst.add_argument("--platform", default=None)

    sub.add_parser("status", help="Show capture state and counts")

    plat = sub.add_parser("platform", help="Switch the current platform key")
    plat.add_argument("key")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    config = CaptureConfig.from_env()
    if args.state:
        config.state_path = Path(args.state)

    if args.command == "record":
        return asyncio.run(record(config, args.url, args.platform))

    store = CaptureStore(config.state_path)
    registry = IdRegistry(store)
    coordinator = NavigationCoordinator(store, registry, config)

    try:
        store.initialize(config.default_platform)
        if args.command == "export":
            result = prepare_export(store, registry, args.platform)
            path = write_export(result, Path(args.out) if args.out else config.export_dir)
            print(f"✓ Exported to {path}")
            for err in result.errors:
                print(f"  - {err}")
            return 0 if result.is_valid else 2
        if args.command == "import-registry":
            res = coordinator.import_id_registry(load_registries(Path(args.file)))
            print("✓ Registries imported" if res["success"] else f"❌ {res['error']}")
            return 0 if res["success"] else 1
        if args.command == "reset":
            res = asyncio.run(coordinator.reset(platform=args.platform))
            print("✓ Reset" if res["success"] else f"❌ {res['error']}")
            return 0 if res["success"] else 1
        if args.command == "status":
            print(json.dumps(coordinator.status(), indent=2))
            return 0
        if args.command == "platform":
            res = coordinator.set_platform_key(args.key)
            print(f"✓ Platform switched to: {res.get('platformKey', args.key)}")
            return 0
    except StoreUnavailableError as e:
        print(f"❌ State file unavailable: {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"❌ {e}")
        return 1
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
