"""
This module provides the communication client the order service uses to reach
the cart service over REST.

The client implements the `CartReader` and `CartMutator` capabilities, so the
checkout saga cannot tell it apart from an in-process `CartStore`. Transport
and status errors are translated into the shared error taxonomy here; callers
never see httpx exceptions.
"""

from typing import Optional
from urllib.parse import quote

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import UpstreamUnavailable, ValidationError
from .logging_config import get_logger
from .models import CartSnapshot

log = get_logger(__name__)


class CartServiceClient:
    """
    Client for the Cart Service (REST API).

    Both operations are idempotent, so transient transport errors (connect
    failures, timeouts) are retried with exponential backoff before giving up.

    Args:
        base_url (str): Root URL of the cart service.
        timeout (Optional[httpx.Timeout]): Per-request timeouts.
        retry_attempts (int): Total attempts per call on transport errors.
        client (Optional[httpx.Client]): Pre-built client, e.g. a FastAPI TestClient.
    """

    def __init__(
            self,
            base_url: str = "http://cart-service:4001",
            timeout: Optional[httpx.Timeout] = None,
            retry_attempts: int = 3,
            client: Optional[httpx.Client] = None,
    ):
        self.retry_attempts = max(1, retry_attempts)
        self._owns_client = client is None
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout or httpx.Timeout(5.0, read=8.0),
        )

    def close(self):
        """Closes the HTTP client session if this instance created it."""
        if self._owns_client:
            self.client.close()

    def get_cart(self, user_id: str) -> CartSnapshot:
        """
        Fetches the current cart of a user.

        Returns:
            CartSnapshot: Lines as the cart service reported them.

        Raises:
            UpstreamUnavailable: If the cart service is unreachable, times out or errors.
        """
        response = self._request("GET", f"/cart/{quote(user_id, safe='')}", user_id)
        return CartSnapshot.from_wire(user_id, response.json())

    def clear_lines(self, user_id: str, snapshot: CartSnapshot, clear_id: Optional[str] = None):
        """
        Asks the cart service to remove exactly the lines of `snapshot`.

        Safe to retry when `clear_id` is set: the cart service applies each id once.

        Raises:
            UpstreamUnavailable: If the cart service is unreachable, times out or errors.
            ValidationError: If the cart service rejects the request body.
        """
        self._request(
            "POST",
            f"/cart/{quote(user_id, safe='')}/clear-lines",
            user_id,
            json={**snapshot.to_wire(), "clearId": clear_id},
        )

    def _request(self, method: str, url: str, user_id: str, **kwargs) -> httpx.Response:
        log_prefix = f"[User: {user_id}]"
        retrying = Retrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential_jitter(initial=0.1, max=2.0, jitter=0.1),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    response = self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            log.error(f"{log_prefix} Cart Service timeout on {method} {url}: {e}")
            raise UpstreamUnavailable("Cart service timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if 400 <= status < 500:
                log.warning(f"{log_prefix} Cart Service rejected {method} {url} (HTTP {status}).")
                raise ValidationError(_error_message(e.response)) from e
            log.error(f"{log_prefix} HTTP error from Cart Service on {method} {url}: {e}")
            raise UpstreamUnavailable(f"Cart service returned HTTP {status}") from e
        except httpx.TransportError as e:
            log.error(f"{log_prefix} Cart Service unreachable on {method} {url}: {e}")
            raise UpstreamUnavailable("Cart service unreachable") from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"
