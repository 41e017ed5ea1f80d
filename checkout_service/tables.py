"""
tables.py — SQLAlchemy table definitions of both services.

The cart service and the order service each own a separate database, so each
has its own MetaData. Nothing in one schema references the other.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

# --- Cart service ---

cart_metadata = MetaData()

cart_items = Table(
    "cart_items",
    cart_metadata,
    Column("user_id", String(50), primary_key=True),
    Column("product_id", String(50), primary_key=True),
    Column("qty", Integer, nullable=False),
    CheckConstraint("qty >= 1", name="ck_cart_items_qty_positive"),
)

# Clears already applied per user, keyed by the order that requested them.
applied_clears = Table(
    "applied_clears",
    cart_metadata,
    Column("user_id", String(50), primary_key=True),
    Column("clear_id", String(64), primary_key=True),
    Column("applied_at", DateTime, nullable=False, index=True),
)

# --- Order service ---

order_metadata = MetaData()

orders = Table(
    "orders",
    order_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(50), nullable=False),
    Column("total_items", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("idempotency_key", String(128)),
    CheckConstraint("total_items >= 1", name="ck_orders_total_positive"),
    UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_key"),
    Index("idx_orders_user", "user_id", "id"),
    sqlite_autoincrement=True,
)

order_lines = Table(
    "order_lines",
    order_metadata,
    Column("order_id", Integer, ForeignKey("orders.id"), primary_key=True),
    Column("product_id", String(50), primary_key=True),
    Column("qty", Integer, nullable=False),
)

pending_clears = Table(
    "pending_clears",
    order_metadata,
    Column("order_id", Integer, ForeignKey("orders.id"), primary_key=True),
    Column("user_id", String(50), nullable=False),
    Column("attempts", Integer, nullable=False, default=1),
    Column("last_error", String),
    Column("enqueued_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)
