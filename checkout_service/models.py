"""
models.py — Data Models for Carts and Orders

This module defines the data structures exchanged between the cart service, the
order ledger and the checkout saga, plus the request/response bodies of both
HTTP APIs. It uses Pydantic models for validation and (de)serialization.

Models:
    - CartLine: One product line of a cart.
    - CartSnapshot: Immutable point-in-time copy of a user's cart.
    - Order: A committed, immutable order record.
    - AddItemRequest / ClearLinesRequest / CartResponse: Cart API bodies.
    - PlaceOrderRequest / PlaceOrderResponse / OrderView: Order API bodies.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CartLine(BaseModel):
    """
    Represents a single product line in a cart.

    Attributes:
        product_id (str): Product identifier, serialized as `productId`.
        qty (int): Quantity of the product. Always greater than zero.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    qty: int = Field(..., gt=0)


class CartSnapshot(BaseModel):
    """
    Immutable, point-in-time copy of a user's cart lines.

    The snapshot holds no reference to live cart state; it is owned by the
    caller that requested it.

    Attributes:
        user_id (str): Owner of the cart.
        items (Tuple[CartLine, ...]): Lines ordered by product id.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    items: Tuple[CartLine, ...] = ()

    @property
    def total_items(self) -> int:
        return sum(line.qty for line in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_wire(self) -> dict:
        """Cart body as the cart API renders it: `{"items": [{"productId", "qty"}]}`."""
        return {"items": [line.model_dump(by_alias=True) for line in self.items]}

    @classmethod
    def from_wire(cls, user_id: str, payload: dict) -> "CartSnapshot":
        items = payload.get("items") or []
        lines = sorted((CartLine.model_validate(item) for item in items), key=lambda line: line.product_id)
        return cls(user_id=user_id, items=tuple(lines))


class Order(BaseModel):
    """
    A committed order. Immutable once created.

    Attributes:
        order_id (int): Strictly increasing identifier assigned by the ledger.
        user_id (str): Buyer.
        total_items (int): Sum of quantities in the snapshot the order was built from.
        created_at (datetime): UTC creation time.
        idempotency_key (Optional[str]): Key supplied by the caller, if any.
        replayed (bool): True when an earlier order was returned for a repeated key.
    """
    model_config = ConfigDict(frozen=True)

    order_id: int
    user_id: str
    total_items: int
    created_at: datetime
    idempotency_key: Optional[str] = None
    replayed: bool = False


# --- Cart API bodies ---

class AddItemRequest(BaseModel):
    # Both optional so a missing field is reported by the cart store as a 400.
    productId: Optional[str] = None
    qty: Optional[int] = None


class ClearLinesRequest(BaseModel):
    items: List[CartLine] = []
    clearId: Optional[str] = None


class CartResponse(BaseModel):
    items: List[CartLine]


# --- Order API bodies ---

class PlaceOrderRequest(BaseModel):
    userId: Optional[str] = None


class PlaceOrderResponse(BaseModel):
    id: int
    message: str = "Order created"


class OrderView(BaseModel):
    """Order as rendered by `GET /orders/{user_id}`."""
    id: int
    user_id: str
    total_items: int
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderView":
        return cls(
            id=order.order_id,
            user_id=order.user_id,
            total_items=order.total_items,
            created_at=order.created_at,
        )
