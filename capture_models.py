"""
capture_models.py

Pydantic models and error types for captured pages, elements, ID registries and
the DOM snapshots sent up by the injected capture script.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# =============================================================================
# Constants / Literals
# =============================================================================

COUNTER_SEED = 1000
DEFAULT_PLATFORM = "default"
RECORD_VERSION = "1.0"

ElementStatus = Literal["active", "inactive", "deprecated"]
EdgeAction = Literal["click"]


def utc_timestamp() -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


# =============================================================================
# Errors
# =============================================================================

class CaptureValidationError(ValueError):
    """Operator input rejected before anything is persisted."""


class StoreUnavailableError(RuntimeError):
    """The state file exists but cannot be read or parsed."""


class MessageDeliveryError(RuntimeError):
    """A page context did not accept a message (not attached yet, navigated away, ...)."""


class InvalidTransitionError(RuntimeError):
    def __init__(self, state: str, event: str):
        super().__init__(f"no transition from {state!r} on {event!r}")
        self.state = state
        self.event = event


# =============================================================================
# Registry
# =============================================================================

class RegistryCounters(BaseModel):
    page: int = COUNTER_SEED
    element: int = COUNTER_SEED


class PlatformRegistry(BaseModel):
    pages: Dict[str, str] = Field(default_factory=dict)
    elements: Dict[str, str] = Field(default_factory=dict)
    counters: RegistryCounters = Field(default_factory=RegistryCounters)


# =============================================================================
# DOM snapshots
# =============================================================================

class NodeSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tag: str = ""
    id: str = ""
    attributes: Dict[str, str] = Field(default_factory=dict)
    classes: List[str] = Field(default_factory=list)
    text: str = ""
    same_tag_index: int = 1
    same_tag_count: int = 1

    @field_validator("tag")
    @classmethod
    def _lower_tag(cls, v: str) -> str:
        return (v or "").strip().lower()

    def attr(self, name: str) -> Optional[str]:
        v = self.attributes.get(name)
        if v is None:
            return None
        return str(v)


class ElementSnapshot(NodeSnapshot):
    # DOM `type` property for form controls (an <input> without the attribute reports "text")
    input_type: str = ""
    # Nearest parent first; the capture script sends at most two.
    ancestors: List[NodeSnapshot] = Field(default_factory=list)


# =============================================================================
# Records
# =============================================================================

class FromEdge(BaseModel):
    node: str
    action: EdgeAction = "click"


class PageRecord(BaseModel):
    page_id: str
    url_pattern: str
    framework: str = "Unknown"
    ui_version: str = RECORD_VERSION
    description: str = "Untitled Page"
    KPI: Optional[str] = None
    updated_at: str = Field(default_factory=utc_timestamp)


class ElementRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    element_id: str
    page_id: str
    type: str
    dom_selector: str
    description: str
    version: str = RECORD_VERSION
    KPI: Optional[str] = None
    updated_at: str = Field(default_factory=utc_timestamp)
    status: ElementStatus = "active"
    from_: Optional[List[FromEdge]] = Field(default=None, alias="from")

    @field_validator("description")
    @classmethod
    def _description_required(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("description must be non-empty")
        return v

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ExportBundle(BaseModel):
    pages: List[PageRecord] = Field(default_factory=list)
    elements: List[ElementRecord] = Field(default_factory=list)
    platform: str = DEFAULT_PLATFORM
    registries: Dict[str, PlatformRegistry] = Field(default_factory=dict)
    exportedAt: str


def format_validation_errors(exc: ValidationError) -> List[str]:
    errors: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        errors.append(f"{loc}: {err.get('msg', 'invalid')}")
    return errors
