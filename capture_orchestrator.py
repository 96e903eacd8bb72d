"""
capture_orchestrator.py

Turns "capture this page / element" requests into registry IDs and stored
records. Built fresh for every page load; all working state (the continuity
anchor, known pages) is read back from the store.

When the state file is unreadable a capture still succeeds: the record carries
the registry's timestamp fallback ID and is returned without being persisted.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from capture_config import setup_logger
from capture_models import (
    CaptureValidationError,
    ElementRecord,
    ElementSnapshot,
    FromEdge,
    PageRecord,
    StoreUnavailableError,
)
from capture_store import ELEMENT_DATA, LAST_ELEMENT_ID, PAGE_DATA, CaptureStore, platform_captures
from id_registry import IdRegistry
from selector_generator import element_type, generate_robust_selector

logger = setup_logger("CaptureOrchestrator")


def url_pattern(url: str) -> str:
    """Path component of a URL; query string and fragment are dropped."""
    try:
        path = urlsplit(url or "").path
    except ValueError:
        return url
    return path or "/"


class CaptureOrchestrator:
    def __init__(self, store: CaptureStore, registry: IdRegistry):
        self.store = store
        self.registry = registry

    def find_page(self, platform: str, pattern: str) -> Optional[PageRecord]:
        for page in self.store.captures(platform)[PAGE_DATA]:
            if page.get("url_pattern") == pattern:
                return PageRecord.model_validate(page)
        return None

    def capture_page(
        self,
        platform: str,
        url: str,
        title: str,
        framework_hint: Optional[str] = None,
    ) -> Tuple[PageRecord, bool]:
        """Returns (record, created). A url pattern already captured is left untouched."""
        pattern = url_pattern(url)
        try:
            existing = self.find_page(platform, pattern)
        except StoreUnavailableError as e:
            logger.warning("page lookup failed, %s will not be de-duplicated: %s", pattern, e)
            existing = None
        if existing is not None:
            return existing, False

        page_id = self.registry.ensure_page_id(platform, pattern)
        record = PageRecord(
            page_id=page_id,
            url_pattern=pattern,
            framework=framework_hint or "Unknown",
            description=(title or "").strip() or "Untitled Page",
        )

        def _append(state: Dict[str, Any]) -> Tuple[PageRecord, bool]:
            bucket = platform_captures(state, platform)
            # Another tab may have captured the same pattern since find_page()
            for page in bucket[PAGE_DATA]:
                if page.get("url_pattern") == pattern:
                    return PageRecord.model_validate(page), False
            bucket[PAGE_DATA].append(record.model_dump())
            return record, True

        try:
            record, created = self.store.update(_append)
        except StoreUnavailableError as e:
            logger.warning("page %s captured but NOT persisted: %s", record.page_id, e)
            return record, True
        if created:
            logger.info("page captured: %s (%s)", record.page_id, pattern)
        return record, created

    def capture_element(
        self,
        platform: str,
        page_id: str,
        element: ElementSnapshot,
        description: str,
        kpi: Optional[str] = None,
        fallback_anchor: Optional[str] = None,
    ) -> ElementRecord:
        """fallback_anchor is the page's own idea of the previous element, used only
        when the stored anchor cannot be read."""
        description = (description or "").strip()
        if not description:
            raise CaptureValidationError("Description is required")

        selector = generate_robust_selector(element)
        element_id = self.registry.ensure_element_id(platform, page_id, selector, element)

        def _build(anchor: Optional[str]) -> ElementRecord:
            return ElementRecord(
                element_id=element_id,
                page_id=page_id,
                type=element_type(element),
                dom_selector=selector,
                description=description,
                KPI=(kpi or "").strip() or None,
                from_=[FromEdge(node=anchor)] if anchor else None,
            )

        def _append(state: Dict[str, Any]) -> ElementRecord:
            bucket = platform_captures(state, platform)
            record = _build(bucket.get(LAST_ELEMENT_ID))
            bucket[ELEMENT_DATA].append(record.to_store())
            bucket[LAST_ELEMENT_ID] = element_id
            return record

        try:
            record = self.store.update(_append)
        except StoreUnavailableError as e:
            record = _build(fallback_anchor)
            logger.warning("element %s captured but NOT persisted: %s", record.element_id, e)
            return record
        logger.info("element captured: %s on %s via %s", record.element_id, page_id, selector)
        return record
