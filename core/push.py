"""Send locally modified rows to the server and record the accepted copies."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, Set

import db
from core.api_client import SyncRemote
from core.device_identity import DeviceIdentityProvider
from core.dto import InvoiceDTO, ItemDTO, ProductDTO
from core.errors import LocalStoreError
from settings import DEFAULT_STALENESS_SECONDS

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass
class PushResult:
    products_pushed: int = 0
    invoices_pushed: int = 0

    @property
    def total_pushed(self) -> int:
        return self.products_pushed + self.invoices_pushed


def is_dirty(row: Mapping[str, Any], threshold: datetime) -> bool:
    """Return ``True`` when ``row`` has never synced or last synced before ``threshold``."""

    synced_at = db.parse_timestamp(row.get("syncedAt"))
    return synced_at is None or synced_at < threshold


class PushReconciler:
    """Collect dirty rows, push them in one request and stamp the results."""

    def __init__(
        self,
        remote: SyncRemote,
        device_identity: DeviceIdentityProvider,
        *,
        staleness_seconds: int = DEFAULT_STALENESS_SECONDS,
        clock: Clock = db.utc_now,
    ) -> None:
        self._remote = remote
        self._device_identity = device_identity
        self._staleness = timedelta(seconds=staleness_seconds)
        self._clock = clock

    def dirty_products(self, exclude: Collection[int] = ()) -> List[ProductDTO]:
        threshold = self._clock() - self._staleness
        rows = db.query("SELECT * FROM products ORDER BY id")
        return [
            ProductDTO.from_row(row)
            for row in rows
            if row["id"] not in exclude and is_dirty(row, threshold)
        ]

    def dirty_invoices(self, exclude: Collection[int] = ()) -> List[InvoiceDTO]:
        threshold = self._clock() - self._staleness
        invoices: List[InvoiceDTO] = []
        with db.transaction() as conn:
            for row in db.query("SELECT * FROM invoices ORDER BY id", conn=conn):
                if row["id"] in exclude or not is_dirty(row, threshold):
                    continue
                invoices.append(
                    InvoiceDTO(
                        total_amount=float(row["totalAmount"] or 0),
                        total_items=int(row["totalItems"] or 0),
                        created_at=row["createdAt"],
                        server_id=row["serverId"],
                        local_id=row["id"],
                        items=self._invoice_items(conn, row["id"]),
                    )
                )
        return invoices

    def push(
        self,
        *,
        exclude_products: Collection[int] = (),
        exclude_invoices: Collection[int] = (),
    ) -> PushResult:
        try:
            products = self.dirty_products(exclude_products)
            invoices = self.dirty_invoices(exclude_invoices)
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Failed to push to server: {exc}") from exc

        if not products and not invoices:
            logger.info("Nothing to push")
            return PushResult()

        logger.info("Pushing %d products and %d invoices", len(products), len(invoices))
        device_id = self._device_identity.get_device_id()
        accepted = self._remote.push_changes(products, invoices, device_id)

        synced_at = db.format_timestamp(self._clock())
        sent_products = {product.local_id for product in products}
        sent_invoices = {invoice.local_id for invoice in invoices}
        result = PushResult()
        try:
            with db.transaction() as conn:
                result.products_pushed = self._stamp(
                    conn, "products", accepted.products, sent_products, synced_at
                )
                result.invoices_pushed = self._stamp(
                    conn, "invoices", accepted.invoices, sent_invoices, synced_at
                )
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Failed to push to server: {exc}") from exc

        logger.info(
            "Push accepted %d products and %d invoices",
            result.products_pushed,
            result.invoices_pushed,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _invoice_items(conn: sqlite3.Connection, invoice_id: int) -> List[ItemDTO]:
        rows = db.query(
            """
            SELECT ii.productId, ii.quantity, ii.price,
                   p.name AS productName, p.serverId AS productServerId
            FROM invoice_items AS ii
            LEFT JOIN products AS p ON p.id = ii.productId
            WHERE ii.invoiceId = ?
            ORDER BY ii.id
            """,
            (invoice_id,),
            conn=conn,
        )
        return [
            ItemDTO(
                product_ref=row["productServerId"] or row["productId"],
                quantity=int(row["quantity"]),
                price=float(row["price"]),
                product_name=row["productName"] or "Unknown",
            )
            for row in rows
        ]

    @staticmethod
    def _stamp(
        conn: sqlite3.Connection,
        table: str,
        accepted: List[Any],
        sent: Set[Optional[int]],
        synced_at: str,
    ) -> int:
        updates: Dict[int, str] = {}
        for record in accepted:
            if record.local_id is None or not record.server_id:
                logger.warning("Server returned a %s record without ids; ignored", table)
                continue
            if record.local_id not in sent:
                logger.warning(
                    "Server returned %s row %s that was not pushed; ignored",
                    table,
                    record.local_id,
                )
                continue
            updates[record.local_id] = record.server_id

        for local_id, server_id in updates.items():
            holders = db.query(
                f"SELECT id FROM {table} WHERE serverId = ? AND id != ?",
                (server_id, local_id),
                conn=conn,
            )
            if holders:
                logger.error(
                    "Server id %r for %s row %s is already held by row(s) %s; "
                    "remove the duplicate or clear its serverId before pushing again",
                    server_id,
                    table,
                    local_id,
                    ", ".join(str(row["id"]) for row in holders),
                )
            db.execute(
                f"UPDATE {table} SET syncedAt = ?, serverId = ? WHERE id = ?",
                (synced_at, server_id, local_id),
                conn=conn,
            )
        return len(updates)


__all__ = ["PushReconciler", "PushResult", "is_dirty"]
