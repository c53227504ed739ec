"""SQLite-backed data access layer for SalesBook."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from core import app_paths

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path handling
# ---------------------------------------------------------------------------
_DEFAULT_DB_PATH = Path(
    os.environ.get("SALESBOOK_DB_PATH", str(app_paths.data_path("salesbook.db")))
).resolve()
_DB_PATH = _DEFAULT_DB_PATH
DB_PATH = _DB_PATH

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

# ---------------------------------------------------------------------------
# Schema definitions
# ---------------------------------------------------------------------------
PRODUCT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "name": "TEXT NOT NULL",
    "costPrice": "REAL NOT NULL DEFAULT 0",
    "sellingPrice": "REAL NOT NULL DEFAULT 0",
    "quantity": "INTEGER NOT NULL DEFAULT 0",
    "lowStockLevel": "INTEGER NOT NULL DEFAULT 0",
    "createdAt": "TEXT NOT NULL",
}

INVOICE_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "totalAmount": "REAL NOT NULL DEFAULT 0",
    "totalItems": "INTEGER NOT NULL DEFAULT 0",
    "createdAt": "TEXT NOT NULL",
}

INVOICE_ITEM_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "invoiceId": "INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE",
    "productId": "INTEGER NOT NULL REFERENCES products(id)",
    "quantity": "INTEGER NOT NULL",
    "price": "REAL NOT NULL",
}

# Columns added to existing installations. ALTER TABLE cannot add NOT NULL
# columns without a default, so these stay nullable.
ADDITIVE_COLUMNS: Dict[str, Dict[str, str]] = {
    "products": {"lowStockLevel": "INTEGER", "syncedAt": "TEXT", "serverId": "TEXT"},
    "invoices": {"syncedAt": "TEXT", "serverId": "TEXT"},
}

SYNC_TABLES = ("products", "invoices")


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return format_timestamp(utc_now())


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    candidate = str(value).strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def set_database_path(path: Path) -> None:
    """Override the SQLite file used for storage."""

    global _DB_PATH, DB_PATH, _SCHEMA_READY
    _DB_PATH = Path(path).resolve()
    DB_PATH = _DB_PATH
    _SCHEMA_READY = False


def table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    """Add ``column`` to ``table`` unless it already exists.

    Returns ``True`` when the column was created.
    """

    if column in table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    logger.info("Added column %s.%s", table, column)
    return True


def _create_table(conn: sqlite3.Connection, table: str, definitions: Mapping[str, str]) -> None:
    columns = ",\n        ".join(f"{column} {definition}" for column, definition in definitions.items())
    conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n        {columns}\n    )")


def _backfill_low_stock_levels(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        UPDATE products
        SET lowStockLevel = CASE
            WHEN quantity > 10 THEN 5
            WHEN quantity > 4 THEN 2
            ELSE 0
        END
        WHERE lowStockLevel IS NULL
        """
    )


def _ensure_schema(conn: sqlite3.Connection) -> List[str]:
    _create_table(conn, "products", PRODUCT_COLUMN_DEFINITIONS)
    _create_table(conn, "invoices", INVOICE_COLUMN_DEFINITIONS)
    _create_table(conn, "invoice_items", INVOICE_ITEM_COLUMN_DEFINITIONS)

    added: List[str] = []
    for table, columns in ADDITIVE_COLUMNS.items():
        for column, definition in columns.items():
            if ensure_column(conn, table, column, definition):
                added.append(f"{table}.{column}")

    _backfill_low_stock_levels(conn)

    for table in SYNC_TABLES:
        conn.execute(
            f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_server_id "
            f"ON {table}(serverId) WHERE serverId IS NOT NULL"
        )
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_synced_at ON {table}(syncedAt)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_invoice_items_invoice ON invoice_items(invoiceId)")
    return added


def _ensure_database() -> List[str]:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return []
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return []
        if _DB_PATH.parent:
            _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(_DB_PATH)
        try:
            added = _ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()
        _SCHEMA_READY = True
        return added


def get_connection() -> sqlite3.Connection:
    _ensure_database()
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def _connection() -> Iterator[sqlite3.Connection]:
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Provide a connection wrapped in one explicit transaction.

    Every statement issued through the yielded connection is committed together
    when the block exits normally and rolled back if it raises.
    """

    conn = get_connection()
    try:
        conn.execute("BEGIN")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def query(
    sql: str,
    params: Sequence[Any] = (),
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> List[Dict[str, Any]]:
    if conn is not None:
        return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]
    with _connection() as own:
        return [dict(row) for row in own.execute(sql, tuple(params)).fetchall()]


def execute(
    sql: str,
    params: Sequence[Any] = (),
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    """Run a statement and return the cursor's ``lastrowid``."""

    if conn is not None:
        return conn.execute(sql, tuple(params)).lastrowid or 0
    with _connection() as own:
        return own.execute(sql, tuple(params)).lastrowid or 0


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def initialize_database() -> List[str]:
    """Create or migrate the schema, returning the columns that were added."""

    return _ensure_database()


def insert_product(product: Mapping[str, Any]) -> int:
    name = str(product.get("name") or "").strip()
    if not name:
        raise ValueError("Product name is required")
    values = {
        "name": name,
        "costPrice": float(product.get("costPrice") or 0),
        "sellingPrice": float(product.get("sellingPrice") or 0),
        "quantity": int(product.get("quantity") or 0),
        "lowStockLevel": int(product.get("lowStockLevel") or 0),
        "createdAt": product.get("createdAt") or utc_now_iso(),
    }
    for field in ("costPrice", "sellingPrice", "quantity", "lowStockLevel"):
        if values[field] < 0:
            raise ValueError(f"{field} must not be negative")
    columns = list(values)
    placeholders = ", ".join("?" for _ in columns)
    return execute(
        f"INSERT INTO products ({', '.join(columns)}) VALUES ({placeholders})",
        [values[column] for column in columns],
    )


def fetch_product(product_id: int) -> Optional[Dict[str, Any]]:
    rows = query("SELECT * FROM products WHERE id = ?", (product_id,))
    return rows[0] if rows else None


def fetch_products() -> List[Dict[str, Any]]:
    return query("SELECT * FROM products ORDER BY id")


def fetch_low_stock_products() -> List[Dict[str, Any]]:
    return query("SELECT * FROM products WHERE quantity <= lowStockLevel ORDER BY quantity, name")


def fetch_invoice(invoice_id: int) -> Optional[Dict[str, Any]]:
    rows = query("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
    return rows[0] if rows else None


def fetch_invoices() -> List[Dict[str, Any]]:
    return query("SELECT * FROM invoices ORDER BY id")


def fetch_invoice_items(
    invoice_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> List[Dict[str, Any]]:
    return query(
        "SELECT * FROM invoice_items WHERE invoiceId = ? ORDER BY id",
        (invoice_id,),
        conn=conn,
    )


def record_sale(lines: Sequence[Mapping[str, Any]], *, created_at: Optional[str] = None) -> int:
    """Create an invoice for ``lines`` and take the sold quantities out of stock.

    Each line needs ``productId`` and ``quantity``; ``price`` defaults to the
    product's current selling price and is stored as a snapshot.
    """

    if not lines:
        raise ValueError("A sale needs at least one line")
    with transaction() as conn:
        prepared = []
        for line in lines:
            product_id = int(line["productId"])
            quantity = int(line["quantity"])
            if quantity <= 0:
                raise ValueError("Sale quantity must be positive")
            rows = query("SELECT * FROM products WHERE id = ?", (product_id,), conn=conn)
            if not rows:
                raise ValueError(f"Unknown product {product_id}")
            product = rows[0]
            if product["quantity"] < quantity:
                raise ValueError(f"Insufficient stock for {product['name']}")
            price = line.get("price")
            price = float(product["sellingPrice"] if price is None else price)
            prepared.append((product_id, quantity, price))

        total_amount = round(sum(quantity * price for _, quantity, price in prepared), 2)
        total_items = sum(quantity for _, quantity, _ in prepared)
        invoice_id = execute(
            "INSERT INTO invoices (totalAmount, totalItems, createdAt) VALUES (?, ?, ?)",
            (total_amount, total_items, created_at or utc_now_iso()),
            conn=conn,
        )
        for product_id, quantity, price in prepared:
            execute(
                "INSERT INTO invoice_items (invoiceId, productId, quantity, price) VALUES (?, ?, ?, ?)",
                (invoice_id, product_id, quantity, price),
                conn=conn,
            )
            execute(
                "UPDATE products SET quantity = quantity - ? WHERE id = ?",
                (quantity, product_id),
                conn=conn,
            )
    return invoice_id


def delete_invoice(invoice_id: int) -> bool:
    """Delete an invoice and its items, returning sold quantities to stock."""

    with transaction() as conn:
        if not query("SELECT id FROM invoices WHERE id = ?", (invoice_id,), conn=conn):
            return False
        for item in fetch_invoice_items(invoice_id, conn=conn):
            execute(
                "UPDATE products SET quantity = quantity + ? WHERE id = ?",
                (item["quantity"], item["productId"]),
                conn=conn,
            )
        execute("DELETE FROM invoice_items WHERE invoiceId = ?", (invoice_id,), conn=conn)
        execute("DELETE FROM invoices WHERE id = ?", (invoice_id,), conn=conn)
    return True


# ---------------------------------------------------------------------------
# Module exports
# ---------------------------------------------------------------------------

__all__ = [
    "ADDITIVE_COLUMNS",
    "DB_PATH",
    "SYNC_TABLES",
    "delete_invoice",
    "ensure_column",
    "execute",
    "fetch_invoice",
    "fetch_invoice_items",
    "fetch_invoices",
    "fetch_low_stock_products",
    "fetch_product",
    "fetch_products",
    "format_timestamp",
    "get_connection",
    "initialize_database",
    "insert_product",
    "parse_timestamp",
    "query",
    "record_sale",
    "set_database_path",
    "table_columns",
    "transaction",
    "utc_now",
    "utc_now_iso",
]
