"""
cart_store.py — Per-user cart lines backed by SQLAlchemy.

The store owns the `cart_items` table exclusively. Quantities only ever grow
through a single upsert statement, so two concurrent adds for the same
(user, product) pair both land. Lines never hold a quantity below one: a line
that would drop to zero is deleted instead.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .database import Database
from .errors import ValidationError
from .logging_config import get_logger
from .models import CartLine, CartSnapshot
from .tables import applied_clears, cart_items

log = get_logger(__name__)

DEFAULT_CLEAR_RETENTION = timedelta(days=30)


def _require_user(user_id):
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("userId required")


class CartStore:
    """
    Cart line storage for all users.

    Implements both `CartReader` and `CartMutator`, so the saga can also run
    in-process against a store without going through HTTP.

    Args:
        db (Database): Cart service database.
        clear_retention (timedelta): How long applied clear ids are remembered.
    """

    def __init__(self, db: Database, clear_retention: timedelta = DEFAULT_CLEAR_RETENTION):
        self.db = db
        self.clear_retention = clear_retention

    def init_schema(self):
        self.db.create_schema()
        log.info("Cart tables initialized")

    def add_item(self, user_id: str, product_id: str, qty: int) -> CartSnapshot:
        """
        Adds `qty` units of a product to the user's cart.

        The line is created if absent, otherwise its quantity is increased in
        the same statement.

        Args:
            user_id (str): Cart owner.
            product_id (str): Product to add.
            qty (int): Units to add; must be a positive integer.

        Returns:
            CartSnapshot: The user's cart after the add.

        Raises:
            ValidationError: If the product id or quantity is missing or invalid.
        """
        _require_user(user_id)
        if not product_id or not isinstance(product_id, str):
            raise ValidationError("Missing productId or qty")
        if qty is None:
            raise ValidationError("Missing productId or qty")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError("qty must be a positive integer")

        stmt = sqlite_insert(cart_items).values(user_id=user_id, product_id=product_id, qty=qty)
        stmt = stmt.on_conflict_do_update(
            index_elements=[cart_items.c.user_id, cart_items.c.product_id],
            set_={"qty": cart_items.c.qty + stmt.excluded.qty},
        )
        with self.db.transaction() as conn:
            conn.execute(stmt)
            snapshot = self._snapshot(conn, user_id)
        log.info(f"[User: {user_id}] Added {qty} x {product_id} to cart.")
        return snapshot

    def get_cart(self, user_id: str) -> CartSnapshot:
        """Current lines of the user; an empty snapshot for unknown users."""
        _require_user(user_id)
        with self.db.transaction() as conn:
            return self._snapshot(conn, user_id)

    def clear_cart(self, user_id: str):
        """Removes every line of the user. Clearing an empty cart is a no-op."""
        _require_user(user_id)
        with self.db.transaction() as conn:
            removed = conn.execute(delete(cart_items).where(cart_items.c.user_id == user_id)).rowcount
        log.info(f"[User: {user_id}] Cart cleared ({removed} lines removed).")

    def clear_lines(self, user_id: str, snapshot: CartSnapshot, clear_id: Optional[str] = None):
        """
        Removes exactly what a snapshot observed, leaving later additions in place.

        For each snapshot line the current quantity is compared with the
        snapshotted one: if it is not larger, the line is deleted, otherwise
        the snapshotted amount is subtracted. Lines missing from the cart are
        skipped.

        When `clear_id` is given, the clear is applied at most once: a repeated
        call with the same id for the same user does nothing. The checkout saga
        and the reconciler always pass one, so retries never subtract twice.
        Ids older than `clear_retention` are forgotten.

        Args:
            user_id (str): Cart owner.
            snapshot (CartSnapshot): Snapshot previously returned by `get_cart`.
            clear_id (Optional[str]): Deduplication token, e.g. "order-42".

        Raises:
            ValidationError: If the snapshot belongs to another user.
        """
        _require_user(user_id)
        if snapshot.user_id != user_id:
            raise ValidationError("Snapshot does not belong to this cart")

        now = datetime.now(timezone.utc)
        with self.db.transaction() as conn:
            if clear_id:
                self._prune_applied_clears(conn, now)
                inserted = conn.execute(
                    sqlite_insert(applied_clears)
                    .values(user_id=user_id, clear_id=clear_id, applied_at=now)
                    .on_conflict_do_nothing()
                ).rowcount
                if not inserted:
                    log.info(f"[User: {user_id}] Clear {clear_id} already applied, skipping.")
                    return
            for line in snapshot.items:
                same_line = and_(cart_items.c.user_id == user_id, cart_items.c.product_id == line.product_id)
                conn.execute(delete(cart_items).where(same_line, cart_items.c.qty <= line.qty))
                conn.execute(
                    update(cart_items)
                    .where(same_line, cart_items.c.qty > line.qty)
                    .values(qty=cart_items.c.qty - line.qty)
                )
        log.info(f"[User: {user_id}] Cleared {len(snapshot.items)} snapshot lines from cart.")

    def prune_applied_clears(self) -> int:
        """Forgets clear ids applied longer ago than `clear_retention`. Returns the number removed."""
        with self.db.transaction() as conn:
            return self._prune_applied_clears(conn, datetime.now(timezone.utc))

    def _prune_applied_clears(self, conn, now: datetime) -> int:
        cutoff = now - self.clear_retention
        return conn.execute(delete(applied_clears).where(applied_clears.c.applied_at < cutoff)).rowcount

    @staticmethod
    def _snapshot(conn, user_id: str) -> CartSnapshot:
        rows = conn.execute(
            select(cart_items.c.product_id, cart_items.c.qty)
            .where(cart_items.c.user_id == user_id)
            .order_by(cart_items.c.product_id)
        ).all()
        lines = tuple(CartLine(product_id=row.product_id, qty=row.qty) for row in rows)
        return CartSnapshot(user_id=user_id, items=lines)
