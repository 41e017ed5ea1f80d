"""
ports.py — Narrow capabilities the checkout saga depends on.

The orchestrator only ever sees these protocols. `CartStore` and
`CartServiceClient` both satisfy the cart side; `OrderLedger` satisfies
`OrderAppender`. Tests plug in in-memory fakes.
"""

from typing import Optional, Protocol

from .models import CartSnapshot, Order


class CartReader(Protocol):
    def get_cart(self, user_id: str) -> CartSnapshot:
        ...


class CartMutator(Protocol):
    def clear_lines(self, user_id: str, snapshot: CartSnapshot, clear_id: Optional[str] = None) -> None:
        ...


class OrderAppender(Protocol):
    def append(
            self,
            user_id: str,
            total_items: int,
            snapshot: Optional[CartSnapshot] = None,
            idempotency_key: Optional[str] = None,
    ) -> Order:
        ...

    def lines_for(self, order_id: int) -> CartSnapshot:
        ...
