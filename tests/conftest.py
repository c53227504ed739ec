from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep settings, logs and the device id out of the real home directory.
os.environ.setdefault("SALESBOOK_HOME", tempfile.mkdtemp(prefix="salesbook-tests-"))

import db  # noqa: E402
from core.dto import InvoiceDTO, ProductDTO, Snapshot  # noqa: E402
from core.errors import ConnectivityError  # noqa: E402

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class FakeRemote:
    """In-memory stand-in for the sync server."""

    def __init__(self, snapshot: Optional[Dict[str, Any]] = None) -> None:
        self.snapshot: Dict[str, Any] = snapshot or {"products": [], "invoices": []}
        self.online = True
        self.pushes: List[Dict[str, Any]] = []
        self.push_response: Optional[Dict[str, Any]] = None
        self._next_id = 1

    def fetch_snapshot(self) -> Snapshot:
        if not self.online:
            raise ConnectivityError("Network error: unable to connect to server")
        return Snapshot.from_payload(self.snapshot)

    def push_changes(
        self,
        products: Sequence[ProductDTO],
        invoices: Sequence[InvoiceDTO],
        device_id: str,
    ) -> Snapshot:
        if not self.online:
            raise ConnectivityError("Network error: unable to connect to server")
        body = {
            "products": [product.to_payload() for product in products],
            "invoices": [invoice.to_payload() for invoice in invoices],
            "deviceId": device_id,
        }
        self.pushes.append(body)
        if self.push_response is not None:
            return Snapshot.from_payload(self.push_response)
        return Snapshot.from_payload(
            {
                "products": [self._accept(entry, "srv_p") for entry in body["products"]],
                "invoices": [self._accept(entry, "srv_i") for entry in body["invoices"]],
            }
        )

    def check_connection(self) -> bool:
        return self.online

    def _accept(self, entry: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        accepted = dict(entry)
        if "_id" not in accepted:
            accepted["_id"] = f"{prefix}_{self._next_id}"
            self._next_id += 1
        return accepted


class StepClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def database(tmp_path):
    db_path = tmp_path / "salesbook.db"
    db.set_database_path(db_path)
    db.initialize_database()
    return db_path


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
