"""Integration tests for the cart service endpoints via TestClient."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from checkout_service.cart_main import create_app, get_store


@pytest.fixture()
def client(settings):
    with TestClient(create_app(settings)) as client:
        yield client


def _add(client, user_id="u1", product_id="p1", qty=1):
    response = client.post(f"/cart/{user_id}/add", json={"productId": product_id, "qty": qty})
    assert response.status_code == 200
    return response.json()


class TestGetCartEndpoint:
    def test_unknown_user_has_empty_cart(self, client):
        response = client.get("/cart/u1")
        assert response.status_code == 200
        assert response.json() == {"items": []}

    def test_returns_lines(self, client):
        _add(client, product_id="p1", qty=2)
        _add(client, product_id="p3", qty=1)
        assert client.get("/cart/u1").json() == {
            "items": [{"productId": "p1", "qty": 2}, {"productId": "p3", "qty": 1}]
        }


class TestAddItemEndpoint:
    def test_returns_updated_cart(self, client):
        assert _add(client, qty=2) == {"items": [{"productId": "p1", "qty": 2}]}

    def test_accumulates(self, client):
        _add(client, qty=2)
        assert _add(client, qty=3) == {"items": [{"productId": "p1", "qty": 5}]}

    @pytest.mark.parametrize(
        "body",
        [
            {"qty": 1},
            {"productId": "p1"},
            {"productId": "", "qty": 1},
            {"productId": "p1", "qty": 0},
            {"productId": "p1", "qty": -3},
            {"productId": "p1", "qty": "many"},
            {},
        ],
    )
    def test_invalid_body_is_rejected(self, client, body):
        response = client.post("/cart/u1/add", json=body)
        assert response.status_code == 400
        assert "error" in response.json()
        assert client.get("/cart/u1").json() == {"items": []}

    def test_missing_fields_message(self, client):
        response = client.post("/cart/u1/add", json={"qty": 1})
        assert response.json() == {"error": "Missing productId or qty"}


class TestClearEndpoints:
    def test_clear_removes_everything(self, client):
        _add(client, product_id="p1", qty=2)
        _add(client, product_id="p2", qty=1)
        response = client.post("/cart/u1/clear")
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert client.get("/cart/u1").json() == {"items": []}

    def test_clear_twice_succeeds(self, client):
        assert client.post("/cart/u1/clear").json() == {"ok": True}
        assert client.post("/cart/u1/clear").json() == {"ok": True}

    def test_clear_lines_keeps_later_additions(self, client):
        _add(client, qty=2)
        snapshot = client.get("/cart/u1").json()
        _add(client, qty=3)

        response = client.post("/cart/u1/clear-lines", json={**snapshot, "clearId": "order-1"})

        assert response.json() == {"ok": True}
        assert client.get("/cart/u1").json() == {"items": [{"productId": "p1", "qty": 3}]}

    def test_clear_lines_applies_clear_id_once(self, client):
        _add(client, qty=5)
        body = {"items": [{"productId": "p1", "qty": 2}], "clearId": "order-1"}
        client.post("/cart/u1/clear-lines", json=body)
        client.post("/cart/u1/clear-lines", json=body)
        assert client.get("/cart/u1").json() == {"items": [{"productId": "p1", "qty": 3}]}

    def test_clear_lines_rejects_invalid_lines(self, client):
        response = client.post("/cart/u1/clear-lines", json={"items": [{"productId": "p1", "qty": 0}]})
        assert response.status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_unexpected_error_is_json_500(settings):
    broken = MagicMock()
    broken.get_cart.side_effect = RuntimeError("disk on fire")
    app = create_app(settings)
    app.dependency_overrides[get_store] = lambda: broken

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/cart/u1")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
