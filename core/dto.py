"""Typed wire payloads exchanged with the sync server.

The server is tolerant about identifiers: a record may name its server id
``_id`` or ``id``, and a record that started life on this device may still
carry the original numeric local id. Everything is normalised here so the
reconcilers only ever see explicit ``server_id`` and ``local_id`` fields.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import PayloadError


def _clean_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _as_local_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    text = str(value).strip()
    if text.isdigit():
        number = int(text)
        return number if number > 0 else None
    return None


def _to_float(raw: Mapping[str, Any], key: str, default: float = 0.0) -> float:
    value = raw.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"Field {key!r} is not numeric: {value!r}") from exc


def _to_int(raw: Mapping[str, Any], key: str, default: int = 0) -> int:
    return int(round(_to_float(raw, key, float(default))))


def _require_mapping(raw: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise PayloadError(f"Expected an object for {kind}, got {type(raw).__name__}")
    return raw


def _identifiers(raw: Mapping[str, Any]) -> tuple[Optional[str], Optional[int]]:
    server_id = _clean_id(raw.get("_id")) or _clean_id(raw.get("id"))
    local_id = _as_local_id(raw.get("localId"))
    if local_id is None:
        local_id = _as_local_id(raw.get("id"))
    return server_id, local_id


@dataclass
class ProductDTO:
    name: str
    cost_price: float = 0.0
    selling_price: float = 0.0
    quantity: int = 0
    low_stock_level: int = 0
    created_at: Optional[str] = None
    server_id: Optional[str] = None
    local_id: Optional[int] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "ProductDTO":
        data = _require_mapping(raw, "product")
        server_id, local_id = _identifiers(data)
        return cls(
            name=str(data.get("name") or "").strip(),
            cost_price=_to_float(data, "costPrice"),
            selling_price=_to_float(data, "sellingPrice"),
            quantity=_to_int(data, "quantity"),
            low_stock_level=_to_int(data, "lowStockLevel"),
            created_at=data.get("createdAt") or None,
            server_id=server_id,
            local_id=local_id,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProductDTO":
        return cls(
            name=row["name"],
            cost_price=float(row["costPrice"] or 0),
            selling_price=float(row["sellingPrice"] or 0),
            quantity=int(row["quantity"] or 0),
            low_stock_level=int(row.get("lowStockLevel") or 0),
            created_at=row.get("createdAt"),
            server_id=row.get("serverId"),
            local_id=row["id"],
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.local_id,
            "localId": self.local_id,
            "name": self.name,
            "costPrice": self.cost_price,
            "sellingPrice": self.selling_price,
            "quantity": self.quantity,
            "lowStockLevel": self.low_stock_level,
            "createdAt": self.created_at,
        }
        if self.server_id:
            payload["_id"] = self.server_id
        return payload


@dataclass
class ItemDTO:
    product_ref: Union[str, int, None]
    quantity: int
    price: float
    product_name: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "ItemDTO":
        data = _require_mapping(raw, "invoice item")
        reference = data.get("productId")
        if reference is None:
            reference = data.get("product")
        if isinstance(reference, Mapping):
            nested = reference
            reference = nested.get("_id") if nested.get("_id") is not None else nested.get("id")
            product_name = data.get("productName") or nested.get("name")
        else:
            product_name = data.get("productName")
        return cls(
            product_ref=_clean_id(reference),
            quantity=_to_int(data, "quantity"),
            price=_to_float(data, "price"),
            product_name=product_name,
        )

    @property
    def product_local_hint(self) -> Optional[int]:
        return _as_local_id(self.product_ref)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "productId": self.product_ref,
            "productName": self.product_name or "Unknown",
            "quantity": self.quantity,
            "price": self.price,
        }


@dataclass
class InvoiceDTO:
    total_amount: float = 0.0
    total_items: int = 0
    created_at: Optional[str] = None
    server_id: Optional[str] = None
    local_id: Optional[int] = None
    # ``None`` means the server did not send items; an empty list clears them.
    items: Optional[List[ItemDTO]] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "InvoiceDTO":
        data = _require_mapping(raw, "invoice")
        server_id, local_id = _identifiers(data)
        raw_items = data.get("items")
        items = None
        if isinstance(raw_items, list):
            items = [ItemDTO.from_payload(item) for item in raw_items]
        return cls(
            total_amount=_to_float(data, "totalAmount"),
            total_items=_to_int(data, "totalItems"),
            created_at=data.get("createdAt") or None,
            server_id=server_id,
            local_id=local_id,
            items=items,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.local_id,
            "localId": self.local_id,
            "totalAmount": self.total_amount,
            "totalItems": self.total_items,
            "createdAt": self.created_at,
            "items": [item.to_payload() for item in self.items or []],
        }
        if self.server_id:
            payload["_id"] = self.server_id
        return payload


@dataclass
class Snapshot:
    products: List[ProductDTO] = field(default_factory=list)
    invoices: List[InvoiceDTO] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "Snapshot":
        data = _require_mapping(raw, "sync payload")
        products = data.get("products") or []
        invoices = data.get("invoices") or []
        if not isinstance(products, list) or not isinstance(invoices, list):
            raise PayloadError("Sync payload 'products' and 'invoices' must be lists")
        return cls(
            products=[ProductDTO.from_payload(item) for item in products],
            invoices=[InvoiceDTO.from_payload(item) for item in invoices],
        )

    def __len__(self) -> int:
        return len(self.products) + len(self.invoices)


__all__ = ["InvoiceDTO", "ItemDTO", "ProductDTO", "Snapshot"]
