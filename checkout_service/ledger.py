"""
ledger.py — Append-only order ledger.

Orders are inserted once and never updated or deleted. Identifiers come from
SQLite AUTOINCREMENT, so they strictly increase across all users. Each order
also keeps the cart lines it was built from; the reconciler uses them to
retry a failed cart clear, and a replayed order uses them to clear the cart.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import insert, select

from .database import Database, utc
from .errors import ValidationError
from .logging_config import get_logger
from .models import CartLine, CartSnapshot, Order
from .tables import order_lines, orders

log = get_logger(__name__)


def _to_order(row, replayed: bool = False) -> Order:
    return Order(
        order_id=row.id,
        user_id=row.user_id,
        total_items=row.total_items,
        created_at=utc(row.created_at),
        idempotency_key=row.idempotency_key,
        replayed=replayed,
    )


class OrderLedger:
    """Committed orders of all users, stored in the order service database."""

    def __init__(self, db: Database):
        self.db = db

    def init_schema(self):
        self.db.create_schema()
        log.info("Order tables initialized")

    def append(
            self,
            user_id: str,
            total_items: int,
            snapshot: Optional[CartSnapshot] = None,
            idempotency_key: Optional[str] = None,
    ) -> Order:
        """
        Records a new order.

        Identical content is never rejected; a user may place any number of
        orders. Only a repeated `idempotency_key` for the same user returns
        the order created under that key instead of inserting another one.
        Such an order comes back with `replayed=True`, and its recorded lines
        (see `lines_for`) are what the earlier attempt committed.

        Args:
            user_id (str): Buyer.
            total_items (int): Sum of quantities of the ordered lines.
            snapshot (Optional[CartSnapshot]): Lines the order was built from.
            idempotency_key (Optional[str]): Caller-supplied deduplication key.

        Returns:
            Order: The stored order.

        Raises:
            ValidationError: If user or total is invalid.
            UpstreamUnavailable: If the ledger database fails.
        """
        if not user_id:
            raise ValidationError("userId required")
        if isinstance(total_items, bool) or not isinstance(total_items, int) or total_items < 1:
            raise ValidationError("total_items must be a positive integer")

        with self.db.transaction() as conn:
            if idempotency_key:
                row = conn.execute(
                    select(orders).where(orders.c.user_id == user_id, orders.c.idempotency_key == idempotency_key)
                ).first()
                if row is not None:
                    log.info(f"[Order: {row.id}] Replayed for idempotency key {idempotency_key}.")
                    return _to_order(row, replayed=True)

            created_at = datetime.now(timezone.utc)
            result = conn.execute(
                insert(orders).values(
                    user_id=user_id,
                    total_items=total_items,
                    created_at=created_at,
                    idempotency_key=idempotency_key,
                )
            )
            order_id = result.inserted_primary_key[0]
            if snapshot is not None and snapshot.items:
                conn.execute(
                    insert(order_lines),
                    [{"order_id": order_id, "product_id": line.product_id, "qty": line.qty} for line in snapshot.items],
                )

        log.info(f"[Order: {order_id}] Recorded for user {user_id} ({total_items} items).")
        return Order(
            order_id=order_id,
            user_id=user_id,
            total_items=total_items,
            created_at=created_at,
            idempotency_key=idempotency_key,
        )

    def list_by_user(self, user_id: str) -> List[Order]:
        """Orders of the user, most recent first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                select(orders).where(orders.c.user_id == user_id).order_by(orders.c.id.desc())
            ).all()
        return [_to_order(row) for row in rows]

    def get(self, order_id: int) -> Optional[Order]:
        with self.db.transaction() as conn:
            row = conn.execute(select(orders).where(orders.c.id == order_id)).first()
        return _to_order(row) if row is not None else None

    def lines_for(self, order_id: int) -> CartSnapshot:
        """
        Rebuilds the cart snapshot an order was created from.

        Raises:
            ValidationError: If the order does not exist.
        """
        with self.db.transaction() as conn:
            user_id = conn.execute(select(orders.c.user_id).where(orders.c.id == order_id)).scalar()
            if user_id is None:
                raise ValidationError(f"Unknown order {order_id}")
            rows = conn.execute(
                select(order_lines.c.product_id, order_lines.c.qty)
                .where(order_lines.c.order_id == order_id)
                .order_by(order_lines.c.product_id)
            ).all()
        lines = tuple(CartLine(product_id=row.product_id, qty=row.qty) for row in rows)
        return CartSnapshot(user_id=user_id, items=lines)
