"""Merge a full server snapshot into the local database."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Set

import db
from core.api_client import SyncRemote
from core.dto import InvoiceDTO, ProductDTO
from core.errors import LocalStoreError, NotFound
from core.identity import IdentityResolver

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass
class PullResult:
    products_applied: int = 0
    invoices_applied: int = 0
    items_applied: int = 0
    items_skipped: int = 0
    records_skipped: int = 0
    product_ids: Set[int] = field(default_factory=set)
    invoice_ids: Set[int] = field(default_factory=set)

    @property
    def total_applied(self) -> int:
        return self.products_applied + self.invoices_applied


class PullReconciler:
    """Upsert server products and invoices and replace invoice items.

    The whole snapshot is applied in one transaction. Re-applying the same
    snapshot leaves the database unchanged apart from ``syncedAt``.
    """

    def __init__(
        self,
        remote: SyncRemote,
        *,
        resolver: Optional[IdentityResolver] = None,
        clock: Clock = db.utc_now,
    ) -> None:
        self._remote = remote
        self._resolver = resolver or IdentityResolver()
        self._clock = clock

    def pull(self) -> PullResult:
        snapshot = self._remote.fetch_snapshot()
        logger.info(
            "Pulled snapshot with %d products and %d invoices",
            len(snapshot.products),
            len(snapshot.invoices),
        )
        synced_at = db.format_timestamp(self._clock())
        result = PullResult()

        try:
            with db.transaction() as conn:
                resolver = self._resolver.bind(conn)
                for product in snapshot.products:
                    if not product.server_id:
                        logger.warning("Server product %r has no identifier; skipped", product.name)
                        result.records_skipped += 1
                        continue
                    local_id = self._upsert_product(conn, resolver, product, synced_at)
                    result.product_ids.add(local_id)
                    result.products_applied += 1

                for invoice in snapshot.invoices:
                    if not invoice.server_id:
                        logger.warning("Server invoice without identifier skipped")
                        result.records_skipped += 1
                        continue
                    local_id = self._upsert_invoice(conn, resolver, invoice, synced_at)
                    result.invoice_ids.add(local_id)
                    result.invoices_applied += 1
                    if invoice.items is not None:
                        self._replace_items(conn, resolver, local_id, invoice, result)
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Failed to pull from server: {exc}") from exc

        logger.info(
            "Pull applied %d products, %d invoices, %d items (%d items skipped)",
            result.products_applied,
            result.invoices_applied,
            result.items_applied,
            result.items_skipped,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _upsert_product(
        self,
        conn: sqlite3.Connection,
        resolver: IdentityResolver,
        product: ProductDTO,
        synced_at: str,
    ) -> int:
        values = (
            product.name,
            product.cost_price,
            product.selling_price,
            product.quantity,
            product.low_stock_level,
        )
        try:
            local_id = resolver.match_product(product.server_id, product.local_id)
        except NotFound:
            return db.execute(
                """
                INSERT INTO products
                    (name, costPrice, sellingPrice, quantity, lowStockLevel, createdAt, syncedAt, serverId)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, product.created_at or synced_at, synced_at, product.server_id),
                conn=conn,
            )
        db.execute(
            """
            UPDATE products
            SET name = ?, costPrice = ?, sellingPrice = ?, quantity = ?, lowStockLevel = ?,
                syncedAt = ?, serverId = ?
            WHERE id = ?
            """,
            (*values, synced_at, product.server_id, local_id),
            conn=conn,
        )
        return local_id

    def _upsert_invoice(
        self,
        conn: sqlite3.Connection,
        resolver: IdentityResolver,
        invoice: InvoiceDTO,
        synced_at: str,
    ) -> int:
        try:
            local_id = resolver.match_invoice(invoice.server_id, invoice.local_id)
        except NotFound:
            return db.execute(
                """
                INSERT INTO invoices (totalAmount, totalItems, createdAt, syncedAt, serverId)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    invoice.total_amount,
                    invoice.total_items,
                    invoice.created_at or synced_at,
                    synced_at,
                    invoice.server_id,
                ),
                conn=conn,
            )
        db.execute(
            """
            UPDATE invoices
            SET totalAmount = ?, totalItems = ?, createdAt = COALESCE(?, createdAt),
                syncedAt = ?, serverId = ?
            WHERE id = ?
            """,
            (
                invoice.total_amount,
                invoice.total_items,
                invoice.created_at,
                synced_at,
                invoice.server_id,
                local_id,
            ),
            conn=conn,
        )
        return local_id

    def _replace_items(
        self,
        conn: sqlite3.Connection,
        resolver: IdentityResolver,
        invoice_id: int,
        invoice: InvoiceDTO,
        result: PullResult,
    ) -> None:
        db.execute("DELETE FROM invoice_items WHERE invoiceId = ?", (invoice_id,), conn=conn)
        for item in invoice.items or []:
            if item.quantity <= 0:
                logger.warning(
                    "Invoice %s item for product %r has quantity %d; skipped",
                    invoice.server_id,
                    item.product_ref,
                    item.quantity,
                )
                result.items_skipped += 1
                continue
            try:
                product_id = resolver.resolve_product_reference(item.product_ref, item.product_local_hint)
            except NotFound:
                logger.warning(
                    "Invoice %s references unknown product %r; item skipped",
                    invoice.server_id,
                    item.product_ref,
                )
                result.items_skipped += 1
                continue
            db.execute(
                "INSERT INTO invoice_items (invoiceId, productId, quantity, price) VALUES (?, ?, ?, ?)",
                (invoice_id, product_id, item.quantity, item.price),
                conn=conn,
            )
            result.items_applied += 1


__all__ = ["PullReconciler", "PullResult"]
