import json
from datetime import datetime, timezone

import pytest

from capture_models import ElementSnapshot
from capture_store import ELEMENT_DATA, platform_captures
from export_data import export_filename, load_registries, prepare_export, validate_export, write_export


def _capture_journey(orchestrator):
    page, _ = orchestrator.capture_page("default", "https://app.test/dashboard", "Dashboard")
    orchestrator.capture_element("default", page.page_id, ElementSnapshot(tag="button", id="settings-button"), "Settings")
    orchestrator.capture_element("default", page.page_id, ElementSnapshot(tag="a", id="reports"), "Reports")


def test_export_filename():
    when = datetime(2026, 3, 7, 23, 59, tzinfo=timezone.utc)
    assert export_filename("crm", when) == "dom-capture-export-crm-2026-03-07.json"


def test_prepare_export_bundles_current_platform(orchestrator, store, registry):
    _capture_journey(orchestrator)

    result = prepare_export(store, registry)

    assert result.is_valid, result.errors
    data = result.data
    assert data["platform"] == "default"
    assert [p["page_id"] for p in data["pages"]] == ["page_dashboard_1000"]
    assert [e["element_id"] for e in data["elements"]] == [
        "elem_button_settings-button_1000",
        "elem_link_reports_1001",
    ]
    assert data["elements"][1]["from"] == [{"node": "elem_button_settings-button_1000", "action": "click"}]
    assert data["registries"]["default"]["counters"] == {"page": 1001, "element": 1002}
    assert data["exportedAt"].endswith("Z")


def test_export_of_other_platform_is_empty(orchestrator, store, registry):
    _capture_journey(orchestrator)
    result = prepare_export(store, registry, platform="crm")
    assert result.is_valid
    assert result.data["pages"] == [] and result.data["elements"] == []
    assert "default" in result.data["registries"]


def test_invalid_record_is_reported_but_still_written(orchestrator, store, registry, tmp_path):
    _capture_journey(orchestrator)

    def _corrupt(state):
        platform_captures(state, "default")[ELEMENT_DATA][0]["status"] = "bogus"

    store.update(_corrupt)

    result = prepare_export(store, registry)
    assert not result.is_valid
    assert any(err.startswith("elements.0.status") for err in result.errors)

    path = write_export(result, tmp_path / "out")
    assert path.exists()
    assert result.path == path
    written = json.loads(path.read_text(encoding="utf-8"))
    assert written["elements"][0]["status"] == "bogus"


def test_validate_export_requires_arrays():
    errors = validate_export({"pages": None, "elements": {}})
    assert errors == ["Export data must contain a pages array", "Export data must contain an elements array"]


def test_load_registries_accepts_bundle_or_mapping(orchestrator, store, registry, tmp_path):
    _capture_journey(orchestrator)
    result = prepare_export(store, registry)
    bundle_path = write_export(result, tmp_path)

    from_bundle = load_registries(bundle_path)
    assert from_bundle == result.data["registries"]

    raw_path = tmp_path / "registries.json"
    raw_path.write_text(json.dumps(from_bundle), encoding="utf-8")
    assert load_registries(raw_path) == from_bundle

    bad_path = tmp_path / "bad.json"
    bad_path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_registries(bad_path)
