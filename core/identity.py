"""Map server identifiers onto local row ids."""
from __future__ import annotations

import logging
import sqlite3
from typing import Optional

import db
from core.errors import NotFound

logger = logging.getLogger(__name__)

_TABLES = frozenset(db.SYNC_TABLES)


class IdentityResolver:
    """Find the local row that corresponds to a server record.

    Lookup order is an exact ``serverId`` match followed by a match on the
    local numeric ``id``. The second step covers first-sync exports that still
    carry the id the row had on this device. The resolver never writes.
    """

    def __init__(self, conn: Optional[sqlite3.Connection] = None) -> None:
        self._conn = conn

    def bind(self, conn: sqlite3.Connection) -> "IdentityResolver":
        return IdentityResolver(conn)

    def match_product(self, server_id: Optional[str], local_hint: Optional[int]) -> int:
        return self._resolve("products", server_id, local_hint, allow_claimed=False)

    def match_invoice(self, server_id: Optional[str], local_hint: Optional[int]) -> int:
        return self._resolve("invoices", server_id, local_hint, allow_claimed=False)

    def resolve_product_reference(self, reference: Optional[str], local_hint: Optional[int]) -> int:
        """Resolve a line item's product reference.

        Unlike :meth:`match_product`, the local id fallback may land on a row
        that already has a server id, since the reference only points at it.
        """

        return self._resolve("products", reference, local_hint, allow_claimed=True)

    def _resolve(
        self,
        table: str,
        server_id: Optional[str],
        local_hint: Optional[int],
        *,
        allow_claimed: bool,
    ) -> int:
        if table not in _TABLES:
            raise ValueError(f"{table} is not a synchronised table")

        if server_id:
            rows = db.query(
                f"SELECT id FROM {table} WHERE serverId = ?",
                (server_id,),
                conn=self._conn,
            )
            if rows:
                return int(rows[0]["id"])

        if local_hint is not None:
            if allow_claimed:
                rows = db.query(f"SELECT id FROM {table} WHERE id = ?", (local_hint,), conn=self._conn)
            else:
                # A row already linked to another server record is not a match.
                rows = db.query(
                    f"SELECT id FROM {table} WHERE id = ? AND (serverId IS NULL OR serverId = ?)",
                    (local_hint, server_id),
                    conn=self._conn,
                )
            if rows:
                return int(rows[0]["id"])

        raise NotFound(f"No local {table} row for serverId={server_id!r} id={local_hint!r}")


__all__ = ["IdentityResolver", "NotFound"]
