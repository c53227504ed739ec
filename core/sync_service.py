"""Business logic for synchronising the local database with the sync server."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from core.api_client import SyncApiClient, SyncRemote
from core.device_identity import DeviceIdentityProvider, FileDeviceIdentityProvider
from core.errors import SyncInProgressError
from core.pull import PullReconciler, PullResult
from core.push import PushReconciler, PushResult
from settings import DEFAULT_STALENESS_SECONDS, SyncSettings, load_sync_settings

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


@dataclass
class SyncResult:
    pulled: int = 0
    pushed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"pulled": self.pulled, "pushed": self.pushed}


class SyncService:
    """Coordinate pull, push, and full sync sessions.

    Sessions never overlap: a second request made while one is running fails
    with :class:`SyncInProgressError` instead of waiting.
    """

    def __init__(
        self,
        remote: SyncRemote,
        device_identity: DeviceIdentityProvider,
        *,
        staleness_seconds: int = DEFAULT_STALENESS_SECONDS,
        puller: Optional[PullReconciler] = None,
        pusher: Optional[PushReconciler] = None,
        log_callback: Optional[LogCallback] = None,
    ) -> None:
        self._remote = remote
        self._puller = puller or PullReconciler(remote)
        self._pusher = pusher or PushReconciler(
            remote, device_identity, staleness_seconds=staleness_seconds
        )
        self._log_callback = log_callback
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[SyncSettings] = None,
        *,
        log_callback: Optional[LogCallback] = None,
    ) -> "SyncService":
        settings = settings or load_sync_settings()
        client = SyncApiClient(settings.api_base_url, timeout=settings.request_timeout_seconds)
        return cls(
            client,
            FileDeviceIdentityProvider(),
            staleness_seconds=settings.staleness_seconds,
            log_callback=log_callback,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def pull(self) -> PullResult:
        """Synchronise data from the server into SQLite."""

        with self._session("pull"):
            return self._pull()

    def push(self) -> PushResult:
        """Synchronise dirty SQLite rows to the server."""

        with self._session("push"):
            return self._push()

    def full_sync(self) -> SyncResult:
        """Perform a pull followed by a push.

        Rows written by this session's pull are excluded from the push so a
        freshly pulled row is never echoed back, whatever the staleness window.
        """

        with self._session("full sync"):
            pulled = self._pull()
            pushed = self._push(
                exclude_products=pulled.product_ids,
                exclude_invoices=pulled.invoice_ids,
            )
        result = SyncResult(pulled=pulled.total_applied, pushed=pushed.total_pushed)
        self._log(f"Sync complete: {result.pulled} pulled, {result.pushed} pushed")
        return result

    def check_connectivity(self) -> bool:
        """Probe the server without touching the local database."""

        return self._remote.check_connection()

    def pending_changes(self) -> Dict[str, int]:
        """Count the rows the next push would send."""

        return {
            "products": len(self._pusher.dirty_products()),
            "invoices": len(self._pusher.dirty_invoices()),
        }

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _session(self, name: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError(f"Cannot start {name}: a sync session is already running")
        try:
            yield
        finally:
            self._lock.release()

    def _pull(self) -> PullResult:
        result = self._puller.pull()
        self._log(
            f"Server -> SQLite: {result.products_applied} products, "
            f"{result.invoices_applied} invoices applied"
        )
        if result.items_skipped:
            self._log(f"Server -> SQLite: {result.items_skipped} invoice items skipped")
        return result

    def _push(self, **exclude) -> PushResult:
        result = self._pusher.push(**exclude)
        self._log(
            f"SQLite -> Server: {result.products_pushed} products, "
            f"{result.invoices_pushed} invoices accepted"
        )
        return result

    def _log(self, message: str) -> None:
        logger.info("%s", message)
        if self._log_callback:
            try:
                self._log_callback(message)
            except Exception:  # pragma: no cover - UI callback guard
                logger.exception("Sync log callback failed")


__all__ = ["LogCallback", "SyncResult", "SyncService"]
