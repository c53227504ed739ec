"""Application configuration helpers for SalesBook sync."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping

from core import app_paths


logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.data_path("sync_settings.json"))

DEFAULT_API_BASE_URL = "http://localhost:3000/api"
DEFAULT_REQUEST_TIMEOUT = 15
DEFAULT_STALENESS_SECONDS = 60
DEFAULT_SYNC_INTERVAL = 60


@dataclass
class SyncSettings:
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT
    staleness_seconds: int = DEFAULT_STALENESS_SECONDS
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL

    def to_json(self) -> Dict[str, object]:
        return {
            "api_base_url": self.api_base_url,
            "request_timeout_seconds": self.request_timeout_seconds,
            "staleness_seconds": self.staleness_seconds,
            "sync_interval_seconds": self.sync_interval_seconds,
        }


def _default_settings() -> Dict[str, object]:
    return SyncSettings().to_json()


def _clamp(value: object, default: int, *, minimum: int, maximum: int | None = None) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


def _ensure_sync_settings(path: str = SYNC_SETTINGS_PATH) -> Dict[str, object]:
    default_settings = _default_settings()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(default_settings, handle, indent=2)
        return dict(default_settings)

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError:
        logger.warning("Sync settings at %s are not valid JSON; using defaults", path)
        return dict(default_settings)

    merged: Dict[str, object] = dict(default_settings)
    if not isinstance(data, Mapping):
        return merged
    for key, value in data.items():
        if key == "api_base_url" and isinstance(value, str) and value.strip():
            merged[key] = value.strip()
        elif key == "request_timeout_seconds":
            merged[key] = _clamp(value, DEFAULT_REQUEST_TIMEOUT, minimum=1, maximum=120)
        elif key == "staleness_seconds":
            merged[key] = _clamp(value, DEFAULT_STALENESS_SECONDS, minimum=1)
        elif key == "sync_interval_seconds":
            merged[key] = _clamp(value, DEFAULT_SYNC_INTERVAL, minimum=15, maximum=3600)
    return merged


def load_sync_settings(path: str = SYNC_SETTINGS_PATH) -> SyncSettings:
    data = _ensure_sync_settings(path)
    api_base_url = os.getenv("SALESBOOK_API_URL") or str(data["api_base_url"])
    return SyncSettings(
        api_base_url=api_base_url.rstrip("/"),
        request_timeout_seconds=int(data["request_timeout_seconds"]),  # type: ignore[arg-type]
        staleness_seconds=int(data["staleness_seconds"]),  # type: ignore[arg-type]
        sync_interval_seconds=int(data["sync_interval_seconds"]),  # type: ignore[arg-type]
    )


def save_sync_settings(settings: SyncSettings, path: str = SYNC_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_API_BASE_URL",
    "DEFAULT_REQUEST_TIMEOUT",
    "DEFAULT_STALENESS_SECONDS",
    "DEFAULT_SYNC_INTERVAL",
    "SYNC_SETTINGS_PATH",
    "SyncSettings",
    "load_sync_settings",
    "save_sync_settings",
]
