import pytest

import db
from core.errors import NotFound
from core.identity import IdentityResolver


def _product(name: str, server_id=None) -> int:
    product_id = db.insert_product({"name": name})
    if server_id:
        db.execute("UPDATE products SET serverId = ? WHERE id = ?", (server_id, product_id))
    return product_id


def test_server_id_match_wins_over_local_id(database) -> None:
    first = _product("Rice")
    second = _product("Beans", server_id="abc")
    resolver = IdentityResolver()

    assert resolver.match_product("abc", first) == second


def test_local_id_fallback_for_unlinked_row(database) -> None:
    product_id = _product("Rice")
    resolver = IdentityResolver()

    assert resolver.match_product("srv_9", product_id) == product_id


def test_local_id_fallback_ignores_rows_linked_elsewhere(database) -> None:
    product_id = _product("Rice", server_id="other")
    resolver = IdentityResolver()

    with pytest.raises(NotFound):
        resolver.match_product("srv_9", product_id)


def test_product_reference_may_point_at_linked_row(database) -> None:
    product_id = _product("Rice", server_id="other")
    resolver = IdentityResolver()

    assert resolver.resolve_product_reference(str(product_id), product_id) == product_id


def test_no_match_raises_not_found(database) -> None:
    resolver = IdentityResolver()

    with pytest.raises(NotFound):
        resolver.match_invoice("missing", None)
    with pytest.raises(NotFound):
        resolver.match_product(None, 42)


def test_bound_resolver_sees_uncommitted_rows(database) -> None:
    with db.transaction() as conn:
        product_id = db.execute(
            "INSERT INTO products (name, createdAt, serverId) VALUES (?, ?, ?)",
            ("Rice", db.utc_now_iso(), "srv_1"),
            conn=conn,
        )
        resolver = IdentityResolver().bind(conn)
        assert resolver.match_product("srv_1", None) == product_id
