"""Tests for CartStore: atomic accumulation, snapshots and both clear operations."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pydantic
import pytest
from sqlalchemy import insert, select

from checkout_service.cart_store import CartStore
from checkout_service.errors import ValidationError
from checkout_service.models import CartLine, CartSnapshot
from checkout_service.tables import applied_clears


def _quantities(snapshot):
    return {line.product_id: line.qty for line in snapshot.items}


def _snapshot(user_id, **lines):
    return CartSnapshot(
        user_id=user_id,
        items=tuple(CartLine(product_id=product_id, qty=qty) for product_id, qty in sorted(lines.items())),
    )


class TestAddItem:
    def test_creates_line_on_first_add(self, cart_store):
        snapshot = cart_store.add_item("u1", "p1", 2)
        assert _quantities(snapshot) == {"p1": 2}

    def test_accumulates_quantities(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        snapshot = cart_store.add_item("u1", "p1", 3)
        assert _quantities(snapshot) == {"p1": 5}

    def test_accumulation_does_not_depend_on_call_order(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u1", "p1", 7)
        cart_store.add_item("u2", "p1", 7)
        cart_store.add_item("u2", "p1", 2)
        assert cart_store.get_cart("u1").items == cart_store.get_cart("u2").items

    def test_lines_are_kept_per_product_and_sorted(self, cart_store):
        cart_store.add_item("u1", "p3", 1)
        snapshot = cart_store.add_item("u1", "p1", 2)
        assert [line.product_id for line in snapshot.items] == ["p1", "p3"]

    def test_carts_are_isolated_per_user(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        assert cart_store.get_cart("u2").is_empty

    @pytest.mark.parametrize("qty", [0, -1, None, True, "2", 1.5])
    def test_rejects_invalid_quantity(self, cart_store, qty):
        with pytest.raises(ValidationError):
            cart_store.add_item("u1", "p1", qty)
        assert cart_store.get_cart("u1").is_empty

    @pytest.mark.parametrize("product_id", [None, ""])
    def test_rejects_missing_product(self, cart_store, product_id):
        with pytest.raises(ValidationError):
            cart_store.add_item("u1", product_id, 1)

    def test_rejects_missing_user(self, cart_store):
        with pytest.raises(ValidationError):
            cart_store.add_item("", "p1", 1)

    def test_concurrent_adds_are_not_lost(self, cart_store):
        callers = 50
        with ThreadPoolExecutor(max_workers=10) as pool:
            list(pool.map(lambda _: cart_store.add_item("u1", "p1", 1), range(callers)))
        assert _quantities(cart_store.get_cart("u1")) == {"p1": callers}


class TestGetCart:
    def test_unknown_user_has_empty_cart(self, cart_store):
        snapshot = cart_store.get_cart("nobody")
        assert snapshot.is_empty
        assert snapshot.total_items == 0

    def test_repeated_reads_return_equal_snapshots(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u1", "p3", 1)
        assert cart_store.get_cart("u1") == cart_store.get_cart("u1")

    def test_snapshot_is_detached_from_live_state(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        snapshot = cart_store.get_cart("u1")
        cart_store.add_item("u1", "p1", 3)
        assert _quantities(snapshot) == {"p1": 2}

    def test_snapshot_is_immutable(self, cart_store):
        snapshot = cart_store.add_item("u1", "p1", 2)
        with pytest.raises(pydantic.ValidationError):
            snapshot.user_id = "u2"

    def test_total_items(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u1", "p3", 1)
        assert cart_store.get_cart("u1").total_items == 3


class TestClearCart:
    def test_removes_all_lines(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u1", "p2", 1)
        cart_store.clear_cart("u1")
        assert cart_store.get_cart("u1").is_empty

    def test_second_clear_is_a_noop(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.clear_cart("u1")
        cart_store.clear_cart("u1")
        assert cart_store.get_cart("u1").is_empty

    def test_leaves_other_users_alone(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u2", "p1", 4)
        cart_store.clear_cart("u1")
        assert _quantities(cart_store.get_cart("u2")) == {"p1": 4}


class TestClearLines:
    def test_removes_lines_with_matching_quantity(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        cart_store.add_item("u1", "p3", 1)
        cart_store.clear_lines("u1", cart_store.get_cart("u1"))
        assert cart_store.get_cart("u1").is_empty

    def test_keeps_quantity_added_after_snapshot(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        snapshot = cart_store.get_cart("u1")
        cart_store.add_item("u1", "p1", 3)
        cart_store.clear_lines("u1", snapshot)
        assert _quantities(cart_store.get_cart("u1")) == {"p1": 3}

    def test_keeps_lines_not_in_snapshot(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        snapshot = cart_store.get_cart("u1")
        cart_store.add_item("u1", "p2", 4)
        cart_store.clear_lines("u1", snapshot)
        assert _quantities(cart_store.get_cart("u1")) == {"p2": 4}

    def test_deletes_line_smaller_than_snapshot(self, cart_store):
        cart_store.add_item("u1", "p1", 1)
        cart_store.clear_lines("u1", _snapshot("u1", p1=3))
        assert cart_store.get_cart("u1").is_empty

    def test_skips_lines_already_gone(self, cart_store):
        cart_store.clear_lines("u1", _snapshot("u1", p1=2))
        assert cart_store.get_cart("u1").is_empty

    def test_same_clear_id_is_applied_once(self, cart_store):
        cart_store.add_item("u1", "p1", 5)
        snapshot = _snapshot("u1", p1=2)
        cart_store.clear_lines("u1", snapshot, clear_id="order-1")
        cart_store.clear_lines("u1", snapshot, clear_id="order-1")
        assert _quantities(cart_store.get_cart("u1")) == {"p1": 3}

    def test_distinct_clear_ids_are_each_applied(self, cart_store):
        cart_store.add_item("u1", "p1", 5)
        snapshot = _snapshot("u1", p1=2)
        cart_store.clear_lines("u1", snapshot, clear_id="order-1")
        cart_store.clear_lines("u1", snapshot, clear_id="order-2")
        assert _quantities(cart_store.get_cart("u1")) == {"p1": 1}

    def test_rejects_snapshot_of_other_user(self, cart_store):
        cart_store.add_item("u1", "p1", 2)
        with pytest.raises(ValidationError):
            cart_store.clear_lines("u1", _snapshot("u2", p1=2))
        assert _quantities(cart_store.get_cart("u1")) == {"p1": 2}


class TestAppliedClearRetention:
    @staticmethod
    def _remember(db, clear_id, age, user_id="u1"):
        with db.transaction() as conn:
            conn.execute(
                insert(applied_clears).values(
                    user_id=user_id,
                    clear_id=clear_id,
                    applied_at=datetime.now(timezone.utc) - age,
                )
            )

    @staticmethod
    def _remembered(db):
        with db.transaction() as conn:
            return set(conn.execute(select(applied_clears.c.clear_id)).scalars())

    def test_prunes_only_expired_ids(self, cart_store, cart_db):
        self._remember(cart_db, "order-1", timedelta(days=31))
        self._remember(cart_db, "order-2", timedelta(days=1))

        assert cart_store.prune_applied_clears() == 1
        assert self._remembered(cart_db) == {"order-2"}

    def test_clear_lines_forgets_expired_ids(self, cart_store, cart_db):
        self._remember(cart_db, "order-1", timedelta(days=31))
        cart_store.add_item("u1", "p1", 5)

        cart_store.clear_lines("u1", _snapshot("u1", p1=2), clear_id="order-7")

        assert self._remembered(cart_db) == {"order-7"}
        assert _quantities(cart_store.get_cart("u1")) == {"p1": 3}

    def test_retention_is_configurable(self, cart_db):
        store = CartStore(cart_db, clear_retention=timedelta(hours=1))
        store.init_schema()
        self._remember(cart_db, "order-1", timedelta(hours=2))
        self._remember(cart_db, "order-2", timedelta(minutes=5))

        assert store.prune_applied_clears() == 1
        assert self._remembered(cart_db) == {"order-2"}
