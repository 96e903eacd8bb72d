from __future__ import annotations

from typing import Any, Dict, List

import pytest

from capture_config import CaptureConfig
from capture_models import ElementSnapshot, MessageDeliveryError
from capture_orchestrator import CaptureOrchestrator
from capture_store import CaptureStore
from id_registry import IdRegistry
from navigation_coordinator import NavigationCoordinator


class FakeChannel:
    """Stands in for a Playwright page; fails the first `fail_times` sends."""

    def __init__(self, name: str = "https://app.test/next", fail_times: int = 0):
        self.name = name
        self.fail_times = fail_times
        self.sent: List[Dict[str, Any]] = []

    async def send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append(message)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise MessageDeliveryError("capture script not attached")
        return {"success": True}

    def actions(self) -> List[str]:
        return [m.get("action") for m in self.sent]


@pytest.fixture
def config(tmp_path) -> CaptureConfig:
    return CaptureConfig(
        state_path=tmp_path / "state.json",
        export_dir=tmp_path / "exports",
        events_path=tmp_path / "events.jsonl",
        resume_retry_delay_s=0.01,
        delivery_timeout_s=0.5,
        pending_banner_timeout_s=0.05,
    )


@pytest.fixture
def store(config) -> CaptureStore:
    s = CaptureStore(config.state_path)
    s.initialize()
    return s


@pytest.fixture
def registry(store) -> IdRegistry:
    return IdRegistry(store)


@pytest.fixture
def orchestrator(store, registry) -> CaptureOrchestrator:
    return CaptureOrchestrator(store, registry)


@pytest.fixture
def make_coordinator(store, registry, config):
    def _make(**kwargs) -> NavigationCoordinator:
        return NavigationCoordinator(store, registry, config, **kwargs)

    return _make


def button(element_id: str = "", **kwargs) -> ElementSnapshot:
    return ElementSnapshot(tag="button", id=element_id, input_type="submit", **kwargs)
