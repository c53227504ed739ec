"""Stable per-device identifier sent with every push."""
from __future__ import annotations

import logging
import os
import secrets
import string
import threading
import time
from pathlib import Path
from typing import Optional, Protocol

from core import app_paths

logger = logging.getLogger(__name__)

DEVICE_ID_FILENAME = "device_id"
_ALPHABET = string.digits + string.ascii_lowercase


class DeviceIdentityProvider(Protocol):
    def get_device_id(self) -> str:
        ...


def generate_device_id() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"device_{int(time.time() * 1000)}_{suffix}"


class StaticDeviceIdentityProvider:
    """Return a fixed identifier."""

    def __init__(self, device_id: str) -> None:
        if not device_id:
            raise ValueError("device_id must not be empty")
        self._device_id = device_id

    def get_device_id(self) -> str:
        return self._device_id


class FileDeviceIdentityProvider:
    """Generate the identifier once and keep it in an owner-only file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else app_paths.credentials_path(DEVICE_ID_FILENAME)
        self._lock = threading.Lock()
        self._cached: Optional[str] = None

    @property
    def path(self) -> Path:
        return self._path

    def get_device_id(self) -> str:
        with self._lock:
            if self._cached:
                return self._cached
            device_id = self._read()
            if not device_id:
                device_id = generate_device_id()
                self._write(device_id)
                logger.info("Generated new device identifier")
            self._cached = device_id
            return device_id

    def _read(self) -> Optional[str]:
        try:
            value = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def _write(self, device_id: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(device_id)
        try:
            os.chmod(self._path, 0o600)
        except OSError:  # pragma: no cover - depends on filesystem permissions
            logger.debug("Could not restrict permissions on %s", self._path, exc_info=True)


__all__ = [
    "DeviceIdentityProvider",
    "FileDeviceIdentityProvider",
    "StaticDeviceIdentityProvider",
    "generate_device_id",
]
