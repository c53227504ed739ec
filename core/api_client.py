"""HTTP client for the SalesBook sync endpoints."""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

import requests

from core.dto import InvoiceDTO, ProductDTO, Snapshot
from core.errors import ConnectivityError, PayloadError

logger = logging.getLogger(__name__)

SNAPSHOT_ENDPOINT = "/sync/all"
PUSH_ENDPOINT = "/sync/push"
HEALTH_ENDPOINT = "/health"
USER_AGENT = "SalesBook-Sync"


class SyncRemote(Protocol):
    """Operations the reconcilers need from the server."""

    def fetch_snapshot(self) -> Snapshot:
        ...

    def push_changes(
        self,
        products: Sequence[ProductDTO],
        invoices: Sequence[InvoiceDTO],
        device_id: str,
    ) -> Snapshot:
        ...

    def check_connection(self) -> bool:
        ...


class SyncApiClient:
    """Thin wrapper around :class:`requests.Session` for the sync endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def fetch_snapshot(self) -> Snapshot:
        """Download the full server export of products and invoices."""

        payload = self._request("GET", SNAPSHOT_ENDPOINT)
        return Snapshot.from_payload(payload)

    def push_changes(
        self,
        products: Sequence[ProductDTO],
        invoices: Sequence[InvoiceDTO],
        device_id: str,
    ) -> Snapshot:
        """Send local changes and return the server's canonical copies."""

        body = {
            "products": [product.to_payload() for product in products],
            "invoices": [invoice.to_payload() for invoice in invoices],
            "deviceId": device_id,
        }
        payload = self._request("POST", PUSH_ENDPOINT, json=body)
        return Snapshot.from_payload(payload)

    def check_connection(self) -> bool:
        try:
            self._request("GET", HEALTH_ENDPOINT, expect_json=False)
        except ConnectivityError as exc:
            logger.info("Server health check failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _request(self, method: str, endpoint: str, *, expect_json: bool = True, **kwargs: Any) -> Any:
        url = self._url(endpoint)
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise ConnectivityError(f"Request to {url} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise ConnectivityError(f"Network error: unable to connect to server ({exc})") from exc

        if not 200 <= response.status_code < 300:
            raise ConnectivityError(
                f"API error: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not expect_json:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PayloadError(f"Server returned invalid JSON from {endpoint}") from exc


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason or f"HTTP {response.status_code}"


__all__ = ["SyncApiClient", "SyncRemote", "SNAPSHOT_ENDPOINT", "PUSH_ENDPOINT", "HEALTH_ENDPOINT"]
