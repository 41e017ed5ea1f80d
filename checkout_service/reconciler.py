"""
reconciler.py — Background retry of cart clears that failed after an order was committed.

A failed clear is recorded durably in the `pending_clears` table of the order
service database. The reconciler loads the order's recorded lines from the
ledger and retries the snapshot-exact clear until the cart service accepts it.
Because the clear is idempotent, retrying it indefinitely is safe.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .database import Database, utc
from .errors import CheckoutError, ClearFailed
from .ledger import OrderLedger
from .logging_config import get_logger
from .ports import CartMutator
from .tables import pending_clears
from .workflow import clear_id_for

log = get_logger(__name__)


@dataclass(frozen=True)
class PendingClear:
    order_id: int
    user_id: str
    attempts: int
    last_error: Optional[str]
    enqueued_at: datetime
    updated_at: datetime


class ClearReconciler:
    """
    Retries deferred cart clears on a daemon thread.

    Args:
        db (Database): Order service database; holds the pending queue.
        ledger (OrderLedger): Source of the lines each order was built from.
        cart_mutator (CartMutator): Cart the clears are sent to.
        interval (float): Seconds between passes of the background worker.
    """

    def __init__(self, db: Database, ledger: OrderLedger, cart_mutator: CartMutator, interval: float = 30.0):
        self.db = db
        self.ledger = ledger
        self.cart_mutator = cart_mutator
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def init_schema(self):
        self.db.create_schema()

    def enqueue(self, order_id: int, user_id: str, error: Optional[str] = None):
        """
        Records that the cart of `user_id` still holds the lines of `order_id`.

        Enqueuing the same order again only bumps its attempt counter.
        """
        now = datetime.now(timezone.utc)
        stmt = sqlite_insert(pending_clears).values(
            order_id=order_id,
            user_id=user_id,
            attempts=1,
            last_error=error,
            enqueued_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[pending_clears.c.order_id],
            set_={
                "attempts": pending_clears.c.attempts + 1,
                "last_error": stmt.excluded.last_error,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.db.transaction() as conn:
            conn.execute(stmt)
        log.warning(f"[Order: {order_id}] Cart clear for {user_id} queued for retry.")

    def enqueue_failure(self, failure: ClearFailed):
        """Adapter for `OrderOrchestrator.on_clear_failed`."""
        self.enqueue(failure.order_id, failure.user_id, error=str(failure.cause))

    def pending(self) -> List[PendingClear]:
        with self.db.transaction() as conn:
            rows = conn.execute(select(pending_clears).order_by(pending_clears.c.order_id)).all()
        return [
            PendingClear(
                order_id=row.order_id,
                user_id=row.user_id,
                attempts=row.attempts,
                last_error=row.last_error,
                enqueued_at=utc(row.enqueued_at),
                updated_at=utc(row.updated_at),
            )
            for row in rows
        ]

    def run_once(self) -> int:
        """
        Makes one retry pass over all pending clears.

        Returns:
            int: Number of clears that succeeded and were removed from the queue.
        """
        completed = 0
        for item in self.pending():
            log_prefix = f"[Order: {item.order_id}]"
            try:
                snapshot = self.ledger.lines_for(item.order_id)
                self.cart_mutator.clear_lines(item.user_id, snapshot, clear_id=clear_id_for(item.order_id))
            except CheckoutError as e:
                self.enqueue(item.order_id, item.user_id, error=str(e))
                log.warning(f"{log_prefix} Retry {item.attempts} of cart clear failed: {e}")
                continue

            with self.db.transaction() as conn:
                conn.execute(delete(pending_clears).where(pending_clears.c.order_id == item.order_id))
            completed += 1
            log.info(f"{log_prefix} Deferred cart clear for {item.user_id} completed.")
        return completed

    def start(self):
        """Starts the background worker thread; a no-op if already running."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clear-reconciler", daemon=True)
        self._thread.start()
        log.info("Clear reconciler thread started.")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            log.info("Clear reconciler thread stopped.")

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception as e:
                log.error(f"Clear reconciler: pass failed. {e}. Next attempt in {self.interval}s.", exc_info=True)
