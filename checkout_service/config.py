"""
config.py — Runtime settings for the cart and order services.

All values come from environment variables so the services can be configured
by Docker/Kubernetes without code changes. Defaults suit a local run where
both services live on the same host.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """
    Process-wide settings, built once at startup and passed to the resources.

    Attributes:
        cart_database_url (str): SQLAlchemy URL of the cart service database.
        order_database_url (str): SQLAlchemy URL of the order service database.
        clear_retention_days (float): How long the cart remembers applied clear ids.
        cart_service_url (str): Base URL the order service uses to reach the cart service.
        http_connect_timeout (float): Connect timeout for cart service calls, in seconds.
        http_read_timeout (float): Read timeout for cart service calls, in seconds.
        client_retry_attempts (int): Attempts for idempotent cart calls on transport errors.
        reconcile_interval_seconds (float): Pause between reconciliation passes; 0 disables the worker.
        log_level (str): Root log level.
        log_file (Optional[str]): Optional log file path.
    """
    cart_database_url: str = "sqlite:///cart.db"
    order_database_url: str = "sqlite:///orders.db"
    clear_retention_days: float = 30.0
    cart_service_url: str = "http://cart-service:4001"
    http_connect_timeout: float = 5.0
    http_read_timeout: float = 8.0
    client_retry_attempts: int = 3
    reconcile_interval_seconds: float = 30.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            cart_database_url=env.get("CART_DATABASE_URL", cls.cart_database_url),
            order_database_url=env.get("ORDER_DATABASE_URL", cls.order_database_url),
            clear_retention_days=float(env.get("CLEAR_RETENTION_DAYS", cls.clear_retention_days)),
            cart_service_url=env.get("CART_SERVICE_URL", cls.cart_service_url),
            http_connect_timeout=float(env.get("HTTP_CONNECT_TIMEOUT", cls.http_connect_timeout)),
            http_read_timeout=float(env.get("HTTP_READ_TIMEOUT", cls.http_read_timeout)),
            client_retry_attempts=int(env.get("CLIENT_RETRY_ATTEMPTS", cls.client_retry_attempts)),
            reconcile_interval_seconds=float(
                env.get("RECONCILE_INTERVAL_SECONDS", cls.reconcile_interval_seconds)
            ),
            log_level=env.get("LOG_LEVEL", cls.log_level),
            log_file=env.get("LOG_FILE") or None,
        )
