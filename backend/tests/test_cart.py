"""Tests for the cart store and cart routes.

Covers per-variant lines, quantity clamping, totals, persistence through the
state store and the HTTP surface.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront.core.sanitize import sanitize_text
from storefront.services.cart_service import CartService, clamp_quantity
from storefront.services.state_store import StorageKey


API = "/api/v1"

TITO = {"title": "Tito's Vodka", "price": "24.99", "image": "/tito.png"}


class TestCartService:
    """Tests for CartService."""

    def test_add_new_line(self, state_store):
        """Test adding a product creates one line with its metadata."""
        cart = CartService(state_store)
        line = cart.add_or_update_quantity("tito", None, 2, TITO)
        assert line.quantity == 2
        assert line.price == Decimal("24.99")
        assert cart.get_total_items() == 2

    def test_same_product_and_variant_merges(self, state_store):
        """Test adding the same (id, variant) increments the existing line."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", "750ml", 1, TITO)
        cart.add_or_update_quantity("tito", "750ml", 2)
        assert len(cart.items()) == 1
        assert cart.get_item_quantity("tito", "750ml") == 3

    def test_variants_are_separate_lines(self, state_store):
        """Test different variants of a product are separate lines."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", "750ml", 1, TITO)
        cart.add_or_update_quantity("tito", "1.75L", 1, {"title": "Tito's", "price": "39.99"})
        assert len(cart.items()) == 2
        assert cart.get_item_quantity("tito", "750ml") == 1
        assert cart.get_item_quantity("tito", "1.75L") == 1

    def test_no_variant_and_default_are_same_line(self, state_store):
        """Test a missing variant and the default variant address the same line."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", None, 1, TITO)
        cart.add_or_update_quantity("tito", "default", 1)
        assert len(cart.items()) == 1
        assert cart.get_item_quantity("tito") == 2

    def test_decrement_to_zero_removes_line(self, state_store):
        """Test a negative delta that reaches zero removes the line."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", None, 2, TITO)
        assert cart.add_or_update_quantity("tito", None, -5) is None
        assert cart.is_empty()

    def test_new_line_requires_price(self, state_store):
        """Test a product not yet in the cart needs its price."""
        cart = CartService(state_store)
        with pytest.raises(ValueError):
            cart.add_or_update_quantity("tito", None, 1, {"title": "Tito's"})

    def test_new_line_with_zero_quantity_is_ignored(self, state_store):
        """Test adding zero units of an unknown product does nothing."""
        cart = CartService(state_store)
        assert cart.add_or_update_quantity("tito", None, 0, TITO) is None
        assert cart.is_empty()

    def test_set_quantity(self, state_store):
        """Test setting an absolute quantity and zero removing the line."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", None, 1, TITO)
        cart.set_quantity("tito", None, 4)
        assert cart.get_item_quantity("tito") == 4
        cart.set_quantity("tito", None, 0)
        assert cart.is_empty()

    def test_set_quantity_missing_line(self, state_store):
        """Test setting the quantity of a missing line raises."""
        with pytest.raises(ValueError):
            CartService(state_store).set_quantity("nope", None, 1)

    def test_total_price_is_exact(self, state_store):
        """Test the total is the unrounded sum of price × quantity."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("a", None, 3, {"title": "A", "price": "0.10"})
        cart.add_or_update_quantity("b", None, 1, {"title": "B", "price": "0.20"})
        assert cart.get_total_price() == Decimal("0.50")

    def test_cart_persists_in_store(self, state_store):
        """Test a new service over the same store sees the same lines."""
        CartService(state_store).add_or_update_quantity("tito", None, 2, TITO)
        stored = state_store.get(StorageKey.CART)
        assert stored[0]["price"] == "24.99"
        assert CartService(state_store).get_item_quantity("tito") == 2

    def test_empty(self, state_store):
        """Test emptying the cart."""
        cart = CartService(state_store)
        cart.add_or_update_quantity("tito", None, 2, TITO)
        cart.empty()
        assert cart.get_total_items() == 0
        assert state_store.get(StorageKey.CART) == []

    @pytest.mark.parametrize("raw,expected", [(2.7, 2), (-3, 0), (0, 0), (5, 5)])
    def test_clamp_quantity(self, raw, expected):
        """Test quantities are floored and never negative."""
        assert clamp_quantity(raw) == expected


class TestCartRoutes:
    """Tests for the cart HTTP endpoints."""

    def test_empty_cart(self, client: TestClient):
        """Test a new session starts with an empty cart."""
        response = client.get(f"{API}/cart")
        assert response.status_code == 200
        assert response.json() == {"items": [], "total_items": 0, "total_price": 0.0}

    def test_add_and_read(self, client: TestClient):
        """Test adding an item is visible on the next read."""
        response = client.post(f"{API}/cart/items", json={"product_id": "tito", "quantity": 2, **TITO})
        assert response.status_code == 200
        data = client.get(f"{API}/cart").json()
        assert data["total_items"] == 2
        assert data["total_price"] == pytest.approx(49.98)
        assert data["items"][0]["line_total"] == pytest.approx(49.98)

    def test_add_without_price_rejected(self, client: TestClient):
        """Test adding an unknown product without a price is a validation error."""
        response = client.post(f"{API}/cart/items", json={"product_id": "tito", "quantity": 1})
        assert response.status_code == 422

    def test_negative_price_rejected(self, client: TestClient):
        """Test a negative price never reaches the cart."""
        response = client.post(
            f"{API}/cart/items", json={"product_id": "tito", "quantity": 1, "title": "x", "price": "-1"}
        )
        assert response.status_code == 422

    def test_update_variant_line(self, client: TestClient):
        """Test updating a specific variant line by query parameter."""
        client.post(f"{API}/cart/items", json={"product_id": "tito", "variant": "750ml", **TITO})
        response = client.put(f"{API}/cart/items/tito?variant=750ml", json={"quantity": 5})
        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 5

    def test_update_missing_line(self, client: TestClient):
        """Test updating a line that is not in the cart returns 404."""
        response = client.put(f"{API}/cart/items/nope", json={"quantity": 1})
        assert response.status_code == 404

    def test_remove_and_clear(self, client: TestClient):
        """Test removing a line and clearing the cart."""
        client.post(f"{API}/cart/items", json={"product_id": "tito", **TITO})
        client.post(f"{API}/cart/items", json={"product_id": "gin", "title": "Gin", "price": "30"})
        assert client.delete(f"{API}/cart/items/tito").status_code == 200
        assert client.get(f"{API}/cart").json()["total_items"] == 1
        assert client.delete(f"{API}/cart").json()["items"] == []

    def test_title_is_sanitized(self, client: TestClient):
        """Test HTML in product titles is escaped."""
        client.post(
            f"{API}/cart/items",
            json={"product_id": "x", "title": "<script>alert(1)</script>", "price": "1"},
        )
        title = client.get(f"{API}/cart").json()["items"][0]["title"]
        assert "<script>" not in title

    def test_control_characters_dropped(self):
        """Test control characters are removed before escaping."""
        assert sanitize_text("  Gin\x00 & Tonic\x07\n") == "Gin &amp; Tonic"

    def test_sessions_are_isolated(self, client: TestClient):
        """Test carts are scoped to the session id."""
        client.post(f"{API}/cart/items", json={"product_id": "tito", **TITO})
        other = client.get(f"{API}/cart", headers={"X-Session-ID": "another-session-01"})
        assert other.json()["total_items"] == 0

    def test_session_cookie_issued(self, client: TestClient):
        """Test a request without a session id gets a session cookie."""
        del client.headers["X-Session-ID"]
        response = client.get(f"{API}/cart")
        assert response.status_code == 200
        assert "storefront_session" in response.cookies
