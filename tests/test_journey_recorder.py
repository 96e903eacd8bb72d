import json
import re

import pytest

from capture_store import CAPTURE_MODE, ELEMENT_DATA, PAGE_DATA
from journey_recorder import EventJournal, PageContext, main
from navigation_coordinator import CaptureState


class FakePage:
    def __init__(self, url):
        self.url = url

    def is_closed(self):
        return False


@pytest.fixture
def page_context(store, registry, make_coordinator):
    coordinator = make_coordinator()
    return PageContext(FakePage("https://app.test/dashboard"), store, registry, coordinator)


def _capture_payload(**overrides):
    payload = {
        "action": "captureElement",
        "url": "https://app.test/dashboard",
        "element": {"tag": "BUTTON", "id": "settings-button", "attributes": {"id": "settings-button"}},
        "description": "Open settings",
        "kpi": None,
        "isNavigationTrigger": False,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_page_ready_records_page_and_returns_anchor(page_context, store):
    res = await page_context.handle({"action": "pageReady", "url": "https://app.test/dashboard?x=1", "title": "Dash"})
    assert res == {"success": True, "page_id": "page_dashboard_1000", "lastElementId": None}

    again = await page_context.handle({"action": "pageReady", "url": "https://app.test/dashboard", "title": "Dash"})
    assert again["page_id"] == "page_dashboard_1000"
    assert len(store.captures("default")[PAGE_DATA]) == 1


@pytest.mark.asyncio
async def test_capture_element_through_page_context(page_context, store):
    await page_context.coordinator.enable_capture()

    res = await page_context.handle(_capture_payload())

    assert res == {
        "success": True,
        "element_id": "elem_button_settings-button_1000",
        "page_id": "page_dashboard_1000",
    }
    assert store.last_element_id("default") == "elem_button_settings-button_1000"


@pytest.mark.asyncio
async def test_capture_element_on_spa_route_creates_page(page_context, store):
    res = await page_context.handle(_capture_payload(url="https://app.test/settings/profile"))
    assert res["page_id"] == "page_profile_1000"
    assert [p["url_pattern"] for p in store.captures("default")[PAGE_DATA]] == ["/settings/profile"]


@pytest.mark.asyncio
async def test_blank_description_reported_to_page(page_context, store):
    res = await page_context.handle(_capture_payload(description="  "))
    assert res == {"success": False, "error": "Description is required"}
    assert store.captures("default")[ELEMENT_DATA] == []


@pytest.mark.asyncio
async def test_bad_snapshot_rejected(page_context):
    res = await page_context.handle(_capture_payload(element={"tag": "div", "classes": "not-a-list"}))
    assert res["success"] is False
    assert res["error"].startswith("bad element snapshot")


@pytest.mark.asyncio
async def test_navigation_messages_reach_coordinator(page_context):
    coordinator = page_context.coordinator
    await coordinator.enable_capture()

    await page_context.handle(_capture_payload(isNavigationTrigger=True))
    res = await page_context.handle(
        {"action": "temporaryDisableForNavigation", "lastElementId": "elem_button_settings-button_1000"}
    )

    assert res == {"success": True}
    assert coordinator.state is CaptureState.SUSPENDED_FOR_NAVIGATION
    assert coordinator.session.last_navigation_element_id == "elem_button_settings-button_1000"
    coordinator._cancel_banner()


@pytest.mark.asyncio
async def test_corrupt_state_still_captures_with_fallback_ids(page_context, config):
    config.state_path.write_text("{broken", encoding="utf-8")

    ready = await page_context.handle({"action": "pageReady", "url": "https://app.test/dashboard"})
    assert ready["success"] is True
    assert re.fullmatch(r"page__dashboard_\d{13}", ready["page_id"])
    assert ready["lastElementId"] is None

    res = await page_context.handle(_capture_payload(lastElementId="elem_link_home_1004"))
    assert res["success"] is True
    assert re.fullmatch(r"elem_button_\d{13}", res["element_id"])
    # nothing was written over the unreadable file
    assert config.state_path.read_text(encoding="utf-8") == "{broken"


@pytest.mark.asyncio
async def test_platform_switch_applies_to_open_page(page_context, store):
    await page_context.handle({"action": "pageReady", "url": "https://app.test/dashboard", "title": "Dash"})
    await page_context.handle({"action": "setPlatformKey", "platformKey": "crm"})

    res = await page_context.handle(_capture_payload())

    assert res["success"] is True
    assert page_context.platform == "crm"
    assert [e["element_id"] for e in store.captures("crm")[ELEMENT_DATA]] == [res["element_id"]]
    assert store.captures("default")[ELEMENT_DATA] == []
    assert [p["url_pattern"] for p in store.captures("crm")[PAGE_DATA]] == ["/dashboard"]


def test_event_journal_writes_jsonl(tmp_path):
    journal = EventJournal(tmp_path / "events" / "events.jsonl")
    journal.start()
    journal.log_event("capture_mode", {"enabled": True})
    journal.log_event("element_captured", {"element_id": "elem_a_1000"})
    journal.stop()

    lines = [json.loads(line) for line in journal.path.read_text(encoding="utf-8").splitlines()]
    assert [e["event_type"] for e in lines] == ["capture_mode", "element_captured"]
    assert lines[1]["element_id"] == "elem_a_1000"
    assert lines[0]["event_id"] != lines[1]["event_id"]


def test_cli_status_platform_and_export(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("DOM_CAPTURE_EXPORT_DIR", str(tmp_path / "exports"))
    state = tmp_path / "state.json"

    assert main(["--state", str(state), "platform", "crm"]) == 0
    assert main(["--state", str(state), "status"]) == 0
    out = capsys.readouterr().out
    status = json.loads(out[out.index("{"):])
    assert status["platform"] == "crm"
    assert status["state"] == "idle"

    assert main(["--state", str(state), "export"]) == 0
    exports = list((tmp_path / "exports").glob("dom-capture-export-crm-*.json"))
    assert len(exports) == 1


def test_cli_import_registry(tmp_path):
    state = tmp_path / "state.json"
    reg_file = tmp_path / "registries.json"
    reg_file.write_text(json.dumps({"crm": {"pages": {"/home": "page_home_1000"}, "elements": {},
                                            "counters": {"page": 1001, "element": 1000}}}), encoding="utf-8")

    assert main(["--state", str(state), "import-registry", str(reg_file)]) == 0
    saved = json.loads(state.read_text(encoding="utf-8"))
    assert saved["idRegistry"]["crm"]["pages"] == {"/home": "page_home_1000"}
    assert saved[CAPTURE_MODE] is False


def test_cli_reports_unreadable_state(tmp_path, capsys):
    state = tmp_path / "state.json"
    state.write_text("[]", encoding="utf-8")
    assert main(["--state", str(state), "status"]) == 1
    assert "State file unavailable" in capsys.readouterr().out
