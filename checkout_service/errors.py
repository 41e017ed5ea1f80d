"""
errors.py — Error taxonomy shared by the cart service, the order ledger and the checkout saga.

Every error carries the HTTP status it maps to, so the API layer can translate
it without knowing where it was raised:

    • ValidationError      (400): missing or invalid input
    • EmptyCartError       (400): nothing to order, no side effect
    • UpstreamUnavailable  (502): a collaborator is unreachable or erroring
    • CommitUnknown        (504): the ledger append timed out, outcome indeterminate
    • ClearFailed          (none): post-commit cart clear failed; reconciled, never surfaced
"""

from typing import Optional


class CheckoutError(Exception):
    """Base class of all domain errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    status_code = 400


class EmptyCartError(CheckoutError):
    status_code = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class UpstreamUnavailable(CheckoutError):
    """
    A collaborator (cart store or order ledger) could not serve the request.

    Raised before the commit point it is safe to retry the whole order.
    """
    status_code = 502


class CommitUnknown(CheckoutError):
    """
    The ledger append did not answer in time.

    The order may or may not exist. Callers must not retry without an
    idempotency key, otherwise a duplicate order can be created.
    """
    status_code = 504


class ClearFailed(CheckoutError):
    """
    The cart clear after a committed order failed.

    Never reported to the caller as an order failure. The failure is handed
    to the reconciler, which retries the clear until it succeeds.
    """
    status_code = 500

    def __init__(self, order_id: int, user_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Cart clear failed for order {order_id}: {cause}")
        self.order_id = order_id
        self.user_id = user_id
        self.cause = cause
