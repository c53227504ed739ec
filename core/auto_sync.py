"""Background controller that keeps the local database in sync automatically."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from core.errors import ConnectivityError, SyncError, SyncInProgressError
from core.sync_service import SyncService

logger = logging.getLogger(__name__)


StatusPayload = Dict[str, object]
StatusCallback = Callable[[str, StatusPayload], None]


class AutoSyncController:
    """Run full sync sessions on a daemon thread at a fixed interval."""

    def __init__(
        self,
        service: SyncService,
        *,
        interval_seconds: int = 60,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self._service = service
        self._interval = max(10, interval_seconds)
        self._status_callback = status_callback
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="salesbook-autosync", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None

    def sync_now(self) -> None:
        """Wake the worker so it runs a session without waiting for the interval."""

        self._wake_event.set()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:  # pragma: no cover - keeps the worker alive
                logger.exception("Auto sync tick failed")
                self._notify_status("error", {"message": "unexpected failure"})
            self._wake_event.wait(self._interval)
            self._wake_event.clear()

    def tick(self) -> str:
        """Run one session and report its outcome, returning the status name."""

        if not self._service.check_connectivity():
            return self._notify_status("offline", {})
        try:
            result = self._service.full_sync()
        except SyncInProgressError:
            return self._notify_status("busy", {})
        except ConnectivityError as exc:
            return self._notify_status("offline", {"message": str(exc)})
        except SyncError as exc:
            logger.error("Automatic sync failed: %s", exc)
            return self._notify_status("error", {"message": str(exc)})
        return self._notify_status("synced", result.to_dict())

    def _notify_status(self, status: str, payload: StatusPayload) -> str:
        if self._status_callback:
            try:
                self._status_callback(status, payload)
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Auto sync status callback failed", exc_info=True)
        return status


__all__ = ["AutoSyncController"]
