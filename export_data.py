"""
export_data.py

Compile captured pages/elements plus every platform registry into the export
bundle, validate it, and write it to disk.

Validation problems are collected, not raised: the bundle is still written and
the result is flagged invalid so the operator can decide what to do with it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from capture_config import setup_logger
from capture_models import ExportBundle, format_validation_errors, utc_timestamp
from capture_store import ELEMENT_DATA, PAGE_DATA, CaptureStore
from id_registry import IdRegistry

logger = setup_logger("ExportData")


@dataclass
class ExportResult:
    data: Dict[str, Any]
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    path: Optional[Path] = None


def validate_export(data: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    if not isinstance(data.get("pages"), list):
        errors.append("Export data must contain a pages array")
    if not isinstance(data.get("elements"), list):
        errors.append("Export data must contain an elements array")
    if errors:
        return errors
    try:
        ExportBundle.model_validate(data)
    except ValidationError as e:
        errors.extend(format_validation_errors(e))
    return errors


def prepare_export(store: CaptureStore, registry: IdRegistry, platform: Optional[str] = None) -> ExportResult:
    platform = platform or registry.get_platform_key()
    captures = store.captures(platform)
    data = {
        "pages": captures[PAGE_DATA],
        "elements": captures[ELEMENT_DATA],
        "platform": platform,
        "registries": registry.export_all(),
        "exportedAt": utc_timestamp(),
    }
    errors = validate_export(data)
    if errors:
        logger.warning("export for %s has %d validation error(s)", platform, len(errors))
    return ExportResult(data=data, is_valid=not errors, errors=errors)


def export_filename(platform: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"dom-capture-export-{platform}-{when.strftime('%Y-%m-%d')}.json"


def write_export(result: ExportResult, out_dir: Path) -> Path:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / export_filename(result.data.get("platform") or "default")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.data, f, indent=2, ensure_ascii=False)
    result.path = path
    logger.info("exported %d page(s), %d element(s) to %s",
                len(result.data.get("pages") or []), len(result.data.get("elements") or []), path)
    return path


def load_registries(path: Path) -> Dict[str, Any]:
    """Registries from an export bundle, or a bare platform -> registry mapping."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("registries"), dict) and "exportedAt" in data:
        return data["registries"]
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a registry mapping")
    return data
