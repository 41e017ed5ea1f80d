"""
workflow.py — Core Orchestration Logic for Order Placement

This module contains the checkout saga that turns a user's cart into a
committed order. It coordinates the cart (read, then clear) and the order
ledger (append) in a fixed sequence, without any shared transaction.

Workflow Overview:
1. Fetch a snapshot of the cart
2. Reject empty carts
3. Append the order to the ledger (commit point)
4. Remove exactly the snapshotted lines from the cart (best effort, reconciled on failure).
   A replayed order removes the lines recorded with it, not the current snapshot.

Compensation (Saga Pattern):
    - Failures before step 3 leave nothing behind and are reported to the caller.
    - Failures after step 3 are never reported as order failures; the clear is
      handed to the reconciler and retried until it succeeds.
"""

import enum
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import (
    ClearFailed,
    CommitUnknown,
    EmptyCartError,
    UpstreamUnavailable,
    ValidationError,
)
from .logging_config import get_logger
from .models import CartSnapshot, Order
from .ports import CartMutator, CartReader, OrderAppender

log = get_logger(__name__)


def clear_id_for(order_id: int) -> str:
    """Deduplication token under which the cart clear of an order is applied."""
    return f"order-{order_id}"


class SagaState(str, enum.Enum):
    START = "start"
    SNAPSHOT_FETCHED = "snapshot_fetched"
    VALIDATED = "validated"
    REJECTED_EMPTY = "rejected_empty"
    LEDGER_COMMITTED = "ledger_committed"
    CLEAR_ATTEMPTED = "clear_attempted"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PlaceOrderResult:
    """
    Outcome of a successful order placement.

    Attributes:
        order_id (int): Identifier of the committed order.
        total_items (int): Units ordered.
        cart_cleared (bool): False when the cart clear was deferred to the reconciler.
        state (SagaState): Final state reached, always DONE.
    """
    order_id: int
    total_items: int
    cart_cleared: bool
    state: SagaState = SagaState.DONE


class OrderOrchestrator:
    """
    Drives fetch → validate → commit → clear for one user at a time.

    No lock is held across the steps. Concurrent additions to the cart survive
    because the final step removes only what the snapshot observed.

    Args:
        cart_reader (CartReader): Source of cart snapshots.
        cart_mutator (CartMutator): Target of the snapshot-exact clear.
        order_appender (OrderAppender): The order ledger.
        on_clear_failed (Optional[Callable[[ClearFailed], None]]): Receives
            post-commit clear failures, normally `ClearReconciler.enqueue_failure`.
    """

    def __init__(
            self,
            cart_reader: CartReader,
            cart_mutator: CartMutator,
            order_appender: OrderAppender,
            on_clear_failed: Optional[Callable[[ClearFailed], None]] = None,
    ):
        self.cart_reader = cart_reader
        self.cart_mutator = cart_mutator
        self.order_appender = order_appender
        self.on_clear_failed = on_clear_failed

    def place_order(self, user_id: str, idempotency_key: Optional[str] = None) -> PlaceOrderResult:
        """
        Executes the checkout saga for a single user.

        Args:
            user_id (str): Buyer whose cart is converted.
            idempotency_key (Optional[str]): Passed to the ledger so a repeated
                request returns the existing order instead of creating another.

        Returns:
            PlaceOrderResult: The committed order. If this returns, the order exists.

        Raises:
            ValidationError: If `user_id` is missing.
            EmptyCartError: If the cart has no lines. No order is created.
            UpstreamUnavailable: If the cart or the ledger fails before the commit point.
            CommitUnknown: If the ledger append timed out. Do not retry blindly.
        """
        if not user_id:
            raise ValidationError("userId required")

        log_prefix = f"[User: {user_id}]"
        state = SagaState.START
        log.info(f"{log_prefix} Starting order placement.")

        # --- 1. Snapshot ---
        try:
            snapshot = self.cart_reader.get_cart(user_id)
        except UpstreamUnavailable as e:
            state = SagaState.FAILED
            log.error(f"{log_prefix} Saga {state.value}: cart unreachable ({e}). No order created.")
            raise
        state = SagaState.SNAPSHOT_FETCHED

        # --- 2. Validation ---
        if snapshot.is_empty:
            state = SagaState.REJECTED_EMPTY
            log.info(f"{log_prefix} Rejected ({state.value}): cart is empty.")
            raise EmptyCartError()
        state = SagaState.VALIDATED
        total_items = snapshot.total_items

        # --- 3. Ledger append (commit point) ---
        try:
            order = self.order_appender.append(
                user_id,
                total_items,
                snapshot=snapshot,
                idempotency_key=idempotency_key,
            )
        except TimeoutError as e:
            log.critical(f"{log_prefix} Ledger append timed out; commit state unknown. Cart left untouched.")
            raise CommitUnknown("Order ledger did not answer in time") from e
        except CommitUnknown:
            log.critical(f"{log_prefix} Ledger append outcome unknown. Cart left untouched.")
            raise
        except UpstreamUnavailable as e:
            state = SagaState.FAILED
            log.error(f"{log_prefix} Saga {state.value} at ledger ({e}). Cart left untouched.")
            raise
        state = SagaState.LEDGER_COMMITTED
        log_prefix = f"[Order: {order.order_id}]"
        log.info(f"{log_prefix} Committed for user {user_id} ({total_items} items).")

        # --- 4. Snapshot-exact cart clear (best effort) ---
        cart_cleared = self._clear_cart(order, user_id, snapshot)
        state = SagaState.CLEAR_ATTEMPTED
        log.debug(f"{log_prefix} Reached {state.value} (cart cleared: {cart_cleared}).")

        state = SagaState.DONE
        log.info(f"{log_prefix} Order placement {state.value}.")
        return PlaceOrderResult(
            order_id=order.order_id,
            total_items=order.total_items,
            cart_cleared=cart_cleared,
            state=state,
        )

    def _clear_cart(self, order: Order, user_id: str, snapshot: CartSnapshot) -> bool:
        order_id = order.order_id
        log_prefix = f"[Order: {order_id}]"
        try:
            if order.replayed:
                # Only what the original attempt committed may leave the cart.
                snapshot = self.order_appender.lines_for(order_id)
                log.info(f"{log_prefix} Replayed order; clearing its recorded lines.")
            self.cart_mutator.clear_lines(user_id, snapshot, clear_id=clear_id_for(order_id))
            return True
        except Exception as e:
            # The order is committed; from here on nothing may fail the request.
            failure = ClearFailed(order_id, user_id, cause=e)
            log.error(f"{log_prefix} Cart clear failed after commit: {e}. Scheduled for reconciliation.")

        if self.on_clear_failed is None:
            log.critical(f"{log_prefix} No reconciler configured. Cart of {user_id} needs manual clearing!")
            return False
        try:
            self.on_clear_failed(failure)
        except Exception as e:
            log.critical(
                f"{log_prefix} Could not schedule cart clear for {user_id}: {e}. NEEDS MANUAL ACTION!",
                exc_info=True,
            )
        return False


