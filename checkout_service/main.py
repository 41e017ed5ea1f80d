"""
main.py — FastAPI Entry Point for the Order Service

This module provides the REST API of the order service. It converts a user's
cart (owned by the cart service) into a durable order (owned by the local
order ledger) through the checkout saga.

Responsibilities:
    • Place orders via the checkout saga (snapshot → validate → commit → clear)
    • List a user's orders, newest first
    • Start and stop the background reconciler that retries failed cart clears
    • Provide system health information

Run with:
    uvicorn checkout_service.main:app --port 4002
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request

from .clients import CartServiceClient
from .config import Settings
from .errors import ValidationError
from .http_errors import register_error_handlers
from .logging_config import get_logger, setup_logging
from .models import OrderView, PlaceOrderRequest, PlaceOrderResponse
from .resources import OrderResources

log = get_logger(__name__)


def get_resources(request: Request) -> OrderResources:
    return request.app.state.resources


def create_app(settings: Optional[Settings] = None, cart_client: Optional[CartServiceClient] = None) -> FastAPI:
    """
    Builds the order service application.

    Args:
        settings (Optional[Settings]): Settings to use; read from the environment when omitted.
        cart_client (Optional[CartServiceClient]): Cart client to use instead of
            one pointing at `settings.cart_service_url`.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    resources = OrderResources(settings, cart_client=cart_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Opens the ledger database and starts the reconciler thread.

        The reconciler runs as a daemon and is stopped before the database is
        closed, so no retry pass can hit a closed connection.
        """
        log.info("Order service starting...")
        resources.startup()
        app.state.resources = resources
        yield
        resources.shutdown()
        log.info("Order service stopped.")

    app = FastAPI(title="Order Service", lifespan=lifespan)
    register_error_handlers(app, internal_message="Failed to create order")

    @app.post("/order", response_model=PlaceOrderResponse)
    def submit_order(
            body: PlaceOrderRequest,
            idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
            res: OrderResources = Depends(get_resources),
    ):
        """
        Converts the user's cart into an order.

        A response carrying an id means the order exists, even if clearing
        the cart had to be deferred.

        Args:
            body (PlaceOrderRequest): `{"userId": ...}`.
            idempotency_key (Optional[str]): Repeating a key returns the same order.

        Returns:
            dict: `{"id": order id, "message": "Order created"}`.

        Raises:
            ValidationError (400): userId missing.
            EmptyCartError (400): cart is empty.
            UpstreamUnavailable (502): cart service or ledger failed; no order was created.
            CommitUnknown (504): ledger outcome unknown; retry only with an Idempotency-Key.
        """
        if not body.userId:
            raise ValidationError("userId required")
        log.info(f"[User: {body.userId}] New order request received.")
        result = res.orchestrator.place_order(body.userId, idempotency_key=idempotency_key)
        return PlaceOrderResponse(id=result.order_id)

    @app.get("/orders/{user_id}", response_model=List[OrderView])
    def list_orders(user_id: str, res: OrderResources = Depends(get_resources)):
        return [OrderView.from_order(order) for order in res.ledger.list_by_user(user_id)]

    @app.get("/health")
    def health_check(res: OrderResources = Depends(get_resources)):
        """Service availability plus the number of cart clears still awaiting a retry."""
        return {"status": "ok", "pendingClears": len(res.reconciler.pending())}

    return app


_settings = Settings.from_env()
setup_logging(_settings.log_level, _settings.log_file)
app = create_app(_settings)
