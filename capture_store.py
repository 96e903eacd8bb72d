"""
capture_store.py

Durable key-value state for the capture session, kept in a single JSON file.

Every mutation goes through update(), which holds the process lock for the whole
read-modify-write and replaces the file atomically (temp + fsync + os.replace).
That makes this object the single writer for the ID registry and the capture
records inside one recorder process. Two processes pointed at the same file are
NOT coordinated.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from capture_config import setup_logger
from capture_models import COUNTER_SEED, DEFAULT_PLATFORM, StoreUnavailableError

logger = setup_logger("CaptureStore")

T = TypeVar("T")

CAPTURE_MODE = "captureMode"
PENDING_NAVIGATION = "pendingNavigation"
LAST_NAVIGATION_ELEMENT_ID = "lastNavigationElementId"
PLATFORM_KEY = "platformKey"
ID_REGISTRY = "idRegistry"
CAPTURES = "captures"

PAGE_DATA = "pageData"
ELEMENT_DATA = "elementData"
LAST_ELEMENT_ID = "lastElementId"


def empty_registry() -> Dict[str, Any]:
    return {"pages": {}, "elements": {}, "counters": {"page": COUNTER_SEED, "element": COUNTER_SEED}}


def empty_captures() -> Dict[str, Any]:
    return {PAGE_DATA: [], ELEMENT_DATA: [], LAST_ELEMENT_ID: None}


def platform_captures(state: Dict[str, Any], platform: str) -> Dict[str, Any]:
    """Return (creating if needed) the mutable capture namespace for a platform."""
    captures = state.setdefault(CAPTURES, {})
    bucket = captures.get(platform)
    if not isinstance(bucket, dict):
        bucket = empty_captures()
        captures[platform] = bucket
    for key, default in empty_captures().items():
        bucket.setdefault(key, copy.deepcopy(default))
    return bucket


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            try:
                os.fsync(handle.fileno())
            except OSError:
                pass
        os.replace(str(tmp_path), str(path))
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class CaptureStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Raw access
    # -------------------------------------------------------------------------
    def read(self) -> Dict[str, Any]:
        with self._lock:
            if not self.path.exists():
                return {}
            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as e:
                raise StoreUnavailableError(f"cannot read {self.path}: {e}") from e
            if not raw.strip():
                return {}
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StoreUnavailableError(f"corrupt state file {self.path}: {e}") from e
            if not isinstance(data, dict):
                raise StoreUnavailableError(f"state file {self.path} is not a JSON object")
            return data

    def _write(self, state: Dict[str, Any]) -> None:
        try:
            _atomic_write_text(self.path, json.dumps(state, indent=2))
        except OSError as e:
            raise StoreUnavailableError(f"cannot write {self.path}: {e}") from e
        logger.debug("state written: %s", self.path)

    def update(self, fn: Callable[[Dict[str, Any]], T]) -> T:
        """Read the whole state, let fn mutate it in place, write it back. Returns fn's result."""
        # Called from the event loop thread; the fsync blocks it. Fine at operator pace,
        # move to asyncio.to_thread if writes ever become frequent.
        with self._lock:
            state = self.read()
            result = fn(state)
            self._write(state)
            return result

    # -------------------------------------------------------------------------
    # chrome.storage-style helpers
    # -------------------------------------------------------------------------
    def get(self, *keys: str) -> Dict[str, Any]:
        state = self.read()
        return {k: copy.deepcopy(state.get(k)) for k in keys}

    def set(self, values: Dict[str, Any]) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            state.update(copy.deepcopy(values))

        self.update(_apply)

    def initialize(self, default_platform: str = DEFAULT_PLATFORM) -> None:
        """Seed missing keys; existing values (including registries) are kept."""

        def _apply(state: Dict[str, Any]) -> None:
            state.setdefault(CAPTURE_MODE, False)
            state.setdefault(PENDING_NAVIGATION, False)
            state.setdefault(LAST_NAVIGATION_ELEMENT_ID, None)
            state.setdefault(PLATFORM_KEY, default_platform)
            if not isinstance(state.get(ID_REGISTRY), dict) or not state.get(ID_REGISTRY):
                state[ID_REGISTRY] = {default_platform: empty_registry()}
            platform_captures(state, state[PLATFORM_KEY])

        self.update(_apply)

    # -------------------------------------------------------------------------
    # Per-platform capture data
    # -------------------------------------------------------------------------
    def captures(self, platform: str) -> Dict[str, Any]:
        state = self.read()
        bucket = (state.get(CAPTURES) or {}).get(platform)
        if not isinstance(bucket, dict):
            return empty_captures()
        out = empty_captures()
        out.update(copy.deepcopy(bucket))
        return out

    def last_element_id(self, platform: str) -> Optional[str]:
        return self.captures(platform).get(LAST_ELEMENT_ID) or None

    def clear_captures(self, platform: str) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            state.setdefault(CAPTURES, {})[platform] = empty_captures()

        self.update(_apply)
