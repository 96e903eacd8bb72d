from __future__ import annotations

"""
capture_config.py

Env-driven settings and logger setup shared by the capture modules.

Logging policy:
- INFO: captures, toggles, navigation suspend/resume
- DEBUG: message payloads and store writes (enable via DOM_CAPTURE_LOG_LEVEL=DEBUG)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# -----------------------------------------------------------------------------
# Env helpers
# -----------------------------------------------------------------------------
def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except Exception:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip()


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
def _parse_log_level(s: str, default: int = logging.INFO) -> int:
    if not s:
        return default
    s = s.strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(s, default)


def setup_logger(name: str) -> logging.Logger:
    level = _parse_log_level(_env_str("DOM_CAPTURE_LOG_LEVEL", "INFO"), default=logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    ch = logging.StreamHandler()
    ch.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
@dataclass
class CaptureConfig:
    state_path: Path = Path("./capture_state/state.json")
    export_dir: Path = Path("./exports")
    events_path: Path = Path("./capture_state/events.jsonl")

    browser_channel: str = "chrome"
    headless: bool = False
    viewport_width: int = 1280
    viewport_height: int = 720

    # Resume delivery: one retry after this delay, each attempt bounded by the timeout
    resume_retry_delay_s: float = 1.0
    delivery_timeout_s: float = 3.0

    # Soft clear of the persisted pendingNavigation flag (operator banner only)
    pending_banner_timeout_s: float = 5.0

    default_platform: str = "default"

    @classmethod
    def from_env(cls) -> "CaptureConfig":
        return cls(
            state_path=Path(_env_str("DOM_CAPTURE_STATE_PATH", "./capture_state/state.json")),
            export_dir=Path(_env_str("DOM_CAPTURE_EXPORT_DIR", "./exports")),
            events_path=Path(_env_str("DOM_CAPTURE_EVENTS_PATH", "./capture_state/events.jsonl")),
            browser_channel=_env_str("DOM_CAPTURE_BROWSER_CHANNEL", "chrome"),
            headless=_env_bool("DOM_CAPTURE_HEADLESS", False),
            viewport_width=_env_int("DOM_CAPTURE_VIEWPORT_WIDTH", 1280),
            viewport_height=_env_int("DOM_CAPTURE_VIEWPORT_HEIGHT", 720),
            resume_retry_delay_s=_env_float("DOM_CAPTURE_RESUME_RETRY_DELAY_MS", 1000.0) / 1000.0,
            delivery_timeout_s=_env_float("DOM_CAPTURE_DELIVERY_TIMEOUT_MS", 3000.0) / 1000.0,
            pending_banner_timeout_s=_env_float("DOM_CAPTURE_BANNER_TIMEOUT_MS", 5000.0) / 1000.0,
            default_platform=_env_str("DOM_CAPTURE_PLATFORM", "default") or "default",
        )
