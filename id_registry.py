"""
id_registry.py

Stable, readable IDs for pages and elements, partitioned by platform key.

A fingerprint (url pattern for pages, "<page_id>|<selector>" for elements) maps
to exactly one ID forever; the registry only ever appends. Counters start at
1000 and the first ID issued carries the seed value, so after N creations the
counter reads 1000 + N.

If the state file cannot be read, IDs fall back to an epoch-ms suffix with no
registry entry: uniqueness is traded for being able to keep capturing.
"""

from __future__ import annotations

import copy
import re
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from capture_config import setup_logger
from capture_models import DEFAULT_PLATFORM, ElementSnapshot, PlatformRegistry, StoreUnavailableError
from capture_store import ID_REGISTRY, PLATFORM_KEY, CaptureStore, empty_registry
from selector_generator import element_type

logger = setup_logger("IdRegistry")

PAGE_PREFIX = "page_"
ELEMENT_PREFIX = "elem_"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


def _now_ms() -> int:
    return int(time.time() * 1000)


def page_stem(url_pattern: str) -> str:
    segments = [s for s in (url_pattern or "").split("/") if s]
    last = segments[-1] if segments else "home"
    return _NON_ALNUM_RE.sub("_", last).lower()[:20]


def element_stem(element: Optional[ElementSnapshot]) -> str:
    if element is None:
        return "element_unknown"
    kind = element_type(element)
    name = element.id or "_".join(c for c in element.classes if c)
    if not name:
        name = _WS_RE.sub("_", (element.text or "").strip()[:15])
    return f"{kind}_{name or 'unknown'}"


class IdRegistry:
    def __init__(self, store: CaptureStore):
        self.store = store

    # -------------------------------------------------------------------------
    # Platform key
    # -------------------------------------------------------------------------
    def get_platform_key(self) -> str:
        try:
            return self.store.get(PLATFORM_KEY)[PLATFORM_KEY] or DEFAULT_PLATFORM
        except StoreUnavailableError as e:
            logger.warning("platform key unavailable, using %r: %s", DEFAULT_PLATFORM, e)
            return DEFAULT_PLATFORM

    def set_platform_key(self, platform: str) -> str:
        platform = (platform or "").strip() or DEFAULT_PLATFORM
        self.store.set({PLATFORM_KEY: platform})
        logger.info("platform key set: %s", platform)
        return platform

    # -------------------------------------------------------------------------
    # Registry access
    # -------------------------------------------------------------------------
    @staticmethod
    def _platform_entry(state: Dict[str, Any], platform: str) -> Dict[str, Any]:
        registries = state.get(ID_REGISTRY)
        if not isinstance(registries, dict):
            registries = {}
            state[ID_REGISTRY] = registries
        entry = registries.get(platform)
        if not isinstance(entry, dict):
            entry = empty_registry()
            registries[platform] = entry
        # Normalise partial entries (e.g. hand-edited imports)
        try:
            return PlatformRegistry.model_validate(entry).model_dump()
        except ValidationError as e:
            raise StoreUnavailableError(f"malformed registry for platform {platform!r}: {e}") from e

    def get_registry(self, platform: str) -> PlatformRegistry:
        try:
            entry = (self.store.read().get(ID_REGISTRY) or {}).get(platform)
        except StoreUnavailableError as e:
            logger.warning("registry unreadable for %s: %s", platform, e)
            entry = None
        if not isinstance(entry, dict):
            return PlatformRegistry()
        try:
            return PlatformRegistry.model_validate(entry)
        except ValidationError as e:
            logger.warning("malformed registry for %s, treating as empty: %s", platform, e)
            return PlatformRegistry()

    def _ensure(self, platform: str, table: str, counter_key: str, fingerprint: str, stem: str, prefix: str) -> str:
        def _apply(state: Dict[str, Any]) -> str:
            entry = self._platform_entry(state, platform)
            existing = entry[table].get(fingerprint)
            if existing:
                return existing

            counter = int(entry["counters"][counter_key])
            entry["counters"][counter_key] = counter + 1
            new_id = f"{prefix}{stem}_{counter}".lower()
            entry[table][fingerprint] = new_id
            state[ID_REGISTRY][platform] = entry
            logger.debug("registered %s %r -> %s", table, fingerprint, new_id)
            return new_id

        return self.store.update(_apply)

    def ensure_page_id(self, platform: str, url_pattern: str) -> str:
        try:
            return self._ensure(platform, "pages", "page", url_pattern, page_stem(url_pattern), PAGE_PREFIX)
        except StoreUnavailableError as e:
            fallback = f"{PAGE_PREFIX}{_NON_ALNUM_RE.sub('_', url_pattern or '').lower()}_{_now_ms()}"
            logger.warning("registry unavailable, issuing unregistered page id %s: %s", fallback, e)
            return fallback

    def ensure_element_id(
        self,
        platform: str,
        page_id: str,
        selector: str,
        element: Optional[ElementSnapshot] = None,
    ) -> str:
        fingerprint = f"{page_id}|{selector}"
        try:
            return self._ensure(platform, "elements", "element", fingerprint, element_stem(element), ELEMENT_PREFIX)
        except StoreUnavailableError as e:
            kind = element_type(element) if element is not None else "element"
            fallback = f"{ELEMENT_PREFIX}{kind}_{_now_ms()}"
            logger.warning("registry unavailable, issuing unregistered element id %s: %s", fallback, e)
            return fallback

    # -------------------------------------------------------------------------
    # Reset / export / import
    # -------------------------------------------------------------------------
    def reset_registry(self, platform: str) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            registries = state.get(ID_REGISTRY)
            if not isinstance(registries, dict):
                registries = {}
                state[ID_REGISTRY] = registries
            registries[platform] = empty_registry()

        self.store.update(_apply)
        logger.info("registry reset for platform %s", platform)

    def export_all(self) -> Dict[str, Any]:
        registries = self.store.read().get(ID_REGISTRY)
        if not isinstance(registries, dict):
            return {}
        return copy.deepcopy(registries)

    def import_all(self, data: Dict[str, Any]) -> None:
        """Overwrite every platform registry with `data`. No merge, no collision checks."""
        if not isinstance(data, dict):
            raise ValueError("registry import must be a mapping of platform -> registry")

        payload = copy.deepcopy(data)

        def _apply(state: Dict[str, Any]) -> None:
            state[ID_REGISTRY] = payload

        self.store.update(_apply)
        logger.info("imported registries for %d platform(s)", len(payload))
