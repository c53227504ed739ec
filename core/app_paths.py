"""Centralised helpers for managing SalesBook application directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("SALESBOOK_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "SalesBook"
    return Path.home().resolve() / ".salesbook"


APP_DIR: Path = _detect_base_directory()
CREDENTIALS_DIR: Path = APP_DIR / "credentials"
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, CREDENTIALS_DIR, LOG_DIR):
        ensure_directory(directory)


def _rooted(base: Path, parts: Iterable[str]) -> Path:
    ensure_app_structure()
    target = base.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    return _rooted(APP_DIR, parts)


def credentials_path(*parts: str) -> Path:
    """Return a path inside the credentials directory."""

    path = _rooted(CREDENTIALS_DIR, parts)
    try:
        os.chmod(CREDENTIALS_DIR, 0o700)
    except OSError:  # pragma: no cover - depends on filesystem permissions
        logger.debug("Could not restrict permissions on %s", CREDENTIALS_DIR, exc_info=True)
    return path


def logs_path(*parts: str) -> Path:
    """Return a path inside the log directory."""

    return _rooted(LOG_DIR, parts)


__all__ = [
    "APP_DIR",
    "CREDENTIALS_DIR",
    "LOG_DIR",
    "credentials_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
]
