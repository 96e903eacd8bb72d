import re

import pytest

from capture_models import COUNTER_SEED, CaptureValidationError, ElementSnapshot
from capture_orchestrator import url_pattern
from capture_store import ELEMENT_DATA, LAST_ELEMENT_ID, PAGE_DATA


def test_url_pattern_drops_query_and_fragment():
    assert url_pattern("https://app.test/dashboard?tab=2#top") == "/dashboard"
    assert url_pattern("https://app.test") == "/"
    assert url_pattern("file:///tmp/index.html") == "/tmp/index.html"


def test_dashboard_journey(orchestrator, store):
    page, created = orchestrator.capture_page("default", "https://app.test/dashboard?x=1", "Dashboard", "React")
    assert created
    assert page.page_id == "page_dashboard_1000"
    assert page.framework == "React"
    assert page.description == "Dashboard"

    settings = orchestrator.capture_element(
        "default", page.page_id, ElementSnapshot(tag="button", id="settings-button"), "Open settings"
    )
    assert settings.element_id == "elem_button_settings-button_1000"
    assert settings.dom_selector == "#settings-button"
    assert settings.type == "button"
    assert settings.from_ is None

    add = orchestrator.capture_element(
        "default", page.page_id, ElementSnapshot(tag="button", id="add-button"), "Add widget", kpi="widgets_added"
    )
    assert add.element_id == "elem_button_add-button_1001"
    assert [e.model_dump() for e in add.from_] == [{"node": settings.element_id, "action": "click"}]
    assert add.KPI == "widgets_added"

    captures = store.captures("default")
    assert [p["page_id"] for p in captures[PAGE_DATA]] == ["page_dashboard_1000"]
    assert [e["element_id"] for e in captures[ELEMENT_DATA]] == [settings.element_id, add.element_id]
    assert captures[ELEMENT_DATA][0]["from"] is None
    assert captures[ELEMENT_DATA][1]["from"] == [{"node": settings.element_id, "action": "click"}]
    assert captures[LAST_ELEMENT_ID] == add.element_id


def test_same_page_captured_once(orchestrator, store, registry):
    first, created = orchestrator.capture_page("default", "https://app.test/dashboard", "Dashboard")
    second, created_again = orchestrator.capture_page("default", "https://app.test/dashboard?tab=2", "Other title")

    assert created and not created_again
    assert second.page_id == first.page_id
    assert second.description == "Dashboard"
    assert len(store.captures("default")[PAGE_DATA]) == 1
    assert registry.get_registry("default").counters.page == COUNTER_SEED + 1


def test_untitled_page_defaults(orchestrator):
    page, _ = orchestrator.capture_page("default", "https://app.test/", "   ")
    assert page.page_id == "page_home_1000"
    assert page.description == "Untitled Page"
    assert page.framework == "Unknown"
    assert page.KPI is None


@pytest.mark.parametrize("description", ["", "   ", None])
def test_blank_description_rejected_without_side_effects(orchestrator, store, registry, description):
    page, _ = orchestrator.capture_page("default", "https://app.test/dashboard", "Dashboard")

    with pytest.raises(CaptureValidationError, match="Description is required"):
        orchestrator.capture_element("default", page.page_id, ElementSnapshot(tag="button", id="x"), description)

    captures = store.captures("default")
    assert captures[ELEMENT_DATA] == []
    assert captures[LAST_ELEMENT_ID] is None
    assert registry.get_registry("default").counters.element == COUNTER_SEED


def test_recapturing_an_element_reuses_its_id(orchestrator, store):
    page, _ = orchestrator.capture_page("default", "https://app.test/list", "List")
    el = ElementSnapshot(tag="a", classes=["row-link"])

    first = orchestrator.capture_element("default", page.page_id, el, "Open row")
    second = orchestrator.capture_element("default", page.page_id, el, "Open row again")

    assert first.element_id == second.element_id == "elem_link_row-link_1000"
    assert second.from_[0].node == first.element_id
    assert len(store.captures("default")[ELEMENT_DATA]) == 2


def test_blank_kpi_stored_as_null(orchestrator):
    page, _ = orchestrator.capture_page("default", "https://app.test/list", "List")
    rec = orchestrator.capture_element("default", page.page_id, ElementSnapshot(tag="button", id="b"), "B", kpi="  ")
    assert rec.KPI is None


def test_platforms_keep_separate_chains(orchestrator, store):
    crm_page, _ = orchestrator.capture_page("crm", "https://crm.test/home", "CRM")
    erp_page, _ = orchestrator.capture_page("erp", "https://erp.test/home", "ERP")

    crm_el = orchestrator.capture_element("crm", crm_page.page_id, ElementSnapshot(tag="button", id="a"), "A")
    erp_el = orchestrator.capture_element("erp", erp_page.page_id, ElementSnapshot(tag="button", id="b"), "B")

    assert erp_el.from_ is None
    assert store.last_element_id("crm") == crm_el.element_id
    assert store.last_element_id("erp") == erp_el.element_id


def test_unreadable_store_still_yields_records(store, registry, orchestrator):
    store.path.write_text("{not json", encoding="utf-8")

    page, created = orchestrator.capture_page("default", "https://app.test/dashboard", "Dashboard")
    assert created
    assert re.fullmatch(r"page__dashboard_\d{13}", page.page_id)

    first = orchestrator.capture_element("default", page.page_id, ElementSnapshot(tag="button", id="go"), "Go")
    assert re.fullmatch(r"elem_button_\d{13}", first.element_id)
    assert first.dom_selector == "#go"
    assert first.from_ is None

    second = orchestrator.capture_element(
        "default", page.page_id, ElementSnapshot(tag="a", id="next"), "Next", fallback_anchor=first.element_id
    )
    assert [e.node for e in second.from_] == [first.element_id]
    assert store.path.read_text(encoding="utf-8") == "{not json"
