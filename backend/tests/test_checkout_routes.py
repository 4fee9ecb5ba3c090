"""API tests for checkout, orders, pricing preview and health endpoints."""

from unittest.mock import patch

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from storefront.api.deps import ShopperStore, get_checkout_service
from storefront.core.config import settings
from storefront.core.rate_limit import client_ip
from storefront.db.session import DbSession
from storefront.main import app
from storefront.services.checkout_service import CheckoutService
from storefront.services.distance_service import DistanceService
from storefront.services.order_service import OrderService
from storefront.services.state_store import DatabaseStateStore, StorageKey
from storefront.services.stripe_service import StripePaymentService

from tests.conftest import SESSION_ID, TIME_SLOT
from tests.test_checkout import ADDRESS, CUSTOMER, STALE_REASONS, FakePaymentService, stale_last_order

API = "/api/v1"

ITEM = {"product_id": "tito", "title": "Tito's Vodka", "price": "25.00", "quantity": 2}


@pytest.fixture
def payments():
    return FakePaymentService()


@pytest.fixture
def checkout_client(client: TestClient, calculator, payments):
    """Client whose checkout uses fake payments and standard delivery pricing."""
    def override(db: DbSession, store: ShopperStore) -> CheckoutService:
        return CheckoutService(
            store,
            order_service=OrderService(db),
            calculator=calculator,
            distance_service=DistanceService(api_key=""),
            payment_service=payments,
        )

    app.dependency_overrides[get_checkout_service] = override
    yield client
    app.dependency_overrides.pop(get_checkout_service, None)


def walk_to_payment(client: TestClient, delivery_date):
    client.post(f"{API}/cart/items", json=ITEM)
    assert client.post(f"{API}/checkout/start").status_code == 200
    assert client.post(
        f"{API}/checkout/datetime", json={"date": delivery_date.isoformat(), "time_slot": TIME_SLOT}
    ).status_code == 200
    assert client.post(f"{API}/checkout/address", json=ADDRESS).status_code == 200
    response = client.post(f"{API}/checkout/customer", json=CUSTOMER)
    assert response.status_code == 200
    return response.json()


class TestCheckoutFlow:
    """Tests for the checkout step endpoints."""

    def test_start_with_empty_cart(self, checkout_client: TestClient):
        """Test starting checkout without items is a conflict."""
        response = checkout_client.post(f"{API}/checkout/start")
        assert response.status_code == 409

    def test_steps_reach_payment(self, checkout_client: TestClient, delivery_date):
        """Test confirming every step makes checkout ready for payment."""
        state = walk_to_payment(checkout_client, delivery_date)
        assert state["step"] == "payment"
        assert state["confirmed"] == ["datetime", "address", "customer"]
        assert state["ready_for_payment"] is True
        assert TIME_SLOT in state["time_slots"]

    def test_validation_errors_per_field(self, checkout_client: TestClient):
        """Test invalid contact details return field errors."""
        checkout_client.post(f"{API}/cart/items", json=ITEM)
        response = checkout_client.post(
            f"{API}/checkout/customer", json={**CUSTOMER, "email": "nope", "phone": "12"}
        )
        assert response.status_code == 422
        errors = response.json()["detail"]["errors"]
        assert set(errors) == {"email", "phone"}

    def test_edit_step(self, checkout_client: TestClient, delivery_date):
        """Test editing reopens a step."""
        walk_to_payment(checkout_client, delivery_date)
        response = checkout_client.post(f"{API}/checkout/edit/address")
        assert response.json()["step"] == "address"
        assert checkout_client.post(f"{API}/checkout/edit/payment").status_code == 400

    def test_pricing_and_discount(self, checkout_client: TestClient):
        """Test pricing reflects tips and discount codes."""
        checkout_client.post(f"{API}/cart/items", json=ITEM)
        pricing = checkout_client.get(f"{API}/checkout/pricing").json()
        assert pricing["final_total"] == pytest.approx(79.13)
        assert pricing["total_cents"] == 7913

        applied = checkout_client.post(f"{API}/checkout/discount", json={"code": "premier2025"})
        assert applied.status_code == 200
        assert applied.json()["final_delivery_fee"] == 0
        assert checkout_client.get(f"{API}/checkout/discount").json()["code"] == "PREMIER2025"

        assert checkout_client.post(f"{API}/checkout/discount", json={"code": "FAKE"}).status_code == 400

        tipped = checkout_client.put(f"{API}/checkout/tip", json={"percentage": 15})
        assert tipped.json()["tip"] == pytest.approx(7.5)

        checkout_client.delete(f"{API}/checkout/discount")
        assert checkout_client.get(f"{API}/checkout/discount").status_code == 404


class TestPaymentFlow:
    """Tests for payment endpoints."""

    def test_pay_creates_order(self, checkout_client: TestClient, delivery_date):
        """Test a confirmed payment returns the order and the last order becomes available."""
        walk_to_payment(checkout_client, delivery_date)
        response = checkout_client.post(
            f"{API}/checkout/pay", json={"payment_method_id": "pm_card_visa", "expected_total": "79.13"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "succeeded"
        assert data["requires_action"] is False
        assert data["order"]["total"] == pytest.approx(79.13)

        assert checkout_client.get(f"{API}/cart").json()["total_items"] == 0
        last = checkout_client.get(f"{API}/orders/last")
        assert last.status_code == 200
        assert last.json()["order_number"] == data["order"]["order_number"]

    def test_amount_mismatch(self, checkout_client: TestClient, delivery_date, payments):
        """Test a stale displayed total is rejected before payment."""
        walk_to_payment(checkout_client, delivery_date)
        response = checkout_client.post(f"{API}/checkout/payment-intent", json={"expected_total": "60.00"})
        assert response.status_code == 400
        assert payments.requests == []

    def test_requires_action(self, checkout_client: TestClient, delivery_date, payments):
        """Test 3-D Secure returns the client secret."""
        payments.status = "requires_action"
        walk_to_payment(checkout_client, delivery_date)
        data = checkout_client.post(
            f"{API}/checkout/pay", json={"payment_method_id": "pm_card_3ds", "expected_total": "79.13"}
        ).json()
        assert data["requires_action"] is True
        assert data["client_secret"]

    def test_declined(self, checkout_client: TestClient, delivery_date, payments):
        """Test a failed payment returns 402."""
        payments.status = "requires_payment_method"
        walk_to_payment(checkout_client, delivery_date)
        response = checkout_client.post(
            f"{API}/checkout/pay", json={"payment_method_id": "pm_card_declined", "expected_total": "79.13"}
        )
        assert response.status_code == 402

    def test_intent_then_complete(self, checkout_client: TestClient, delivery_date):
        """Test client-side confirmation followed by order completion."""
        walk_to_payment(checkout_client, delivery_date)
        intent = checkout_client.post(f"{API}/checkout/payment-intent", json={"expected_total": "79.13"}).json()
        assert intent["amount"] == 7913
        response = checkout_client.post(
            f"{API}/checkout/complete", json={"payment_intent_id": intent["payment_intent_id"]}
        )
        assert response.status_code == 200
        assert response.json()["payment_status"] == "paid"

    def test_repeat_complete_mirrors_once(self, checkout_client: TestClient, delivery_date):
        """Test repeating completion returns the same order and copies it to Shopify once."""
        walk_to_payment(checkout_client, delivery_date)
        intent = checkout_client.post(f"{API}/checkout/payment-intent", json={"expected_total": "79.13"}).json()
        body = {"payment_intent_id": intent["payment_intent_id"]}
        with patch("storefront.api.routes.checkout.mirror_order_to_shopify") as mirror:
            responses = [checkout_client.post(f"{API}/checkout/complete", json=body) for _ in range(3)]
        assert [r.status_code for r in responses] == [200, 200, 200]
        assert len({r.json()["order_number"] for r in responses}) == 1
        assert mirror.call_count == 1

    def test_complete_from_other_session(self, checkout_client: TestClient, delivery_date):
        """Test an order cannot be fetched by intent id from another session."""
        walk_to_payment(checkout_client, delivery_date)
        intent = checkout_client.post(f"{API}/checkout/payment-intent", json={"expected_total": "79.13"}).json()
        body = {"payment_intent_id": intent["payment_intent_id"]}
        assert checkout_client.post(f"{API}/checkout/complete", json=body).status_code == 200

        response = checkout_client.post(
            f"{API}/checkout/complete", json=body, headers={"X-Session-ID": "another-shopper-session"}
        )
        assert response.status_code == 404
        assert "ana@example.com" not in response.text

    def test_stripe_not_configured(self, client: TestClient, delivery_date):
        """Test payments report unavailable when Stripe has no key."""
        def override(db: DbSession, store: ShopperStore) -> CheckoutService:
            return CheckoutService(
                store,
                order_service=OrderService(db),
                distance_service=DistanceService(api_key=""),
                payment_service=StripePaymentService(api_key=""),
            )

        app.dependency_overrides[get_checkout_service] = override
        try:
            client.post(f"{API}/cart/items", json=ITEM)
            client.post(f"{API}/checkout/start")
            client.post(f"{API}/checkout/datetime", json={"date": delivery_date.isoformat(), "time_slot": TIME_SLOT})
            client.post(f"{API}/checkout/address", json=ADDRESS)
            client.post(f"{API}/checkout/customer", json=CUSTOMER)
            total = client.get(f"{API}/checkout/pricing").json()["final_total"]
            response = client.post(f"{API}/checkout/payment-intent", json={"expected_total": str(total)})
        finally:
            app.dependency_overrides.pop(get_checkout_service, None)
        assert response.status_code == 503


class TestPreviousOrder:
    """Tests for the last-order endpoints."""

    def test_no_last_order(self, checkout_client: TestClient):
        assert checkout_client.get(f"{API}/orders/last").status_code == 404
        assert checkout_client.post(f"{API}/orders/last/add-to-order").status_code == 404

    @pytest.mark.parametrize("reason", STALE_REASONS)
    def test_stale_last_order_not_offered(self, checkout_client: TestClient, db_session, placed_order, reason):
        """Test a last order past its window or expiry reads as absent."""
        DatabaseStateStore(db_session, SESSION_ID).set(StorageKey.LAST_ORDER, stale_last_order(placed_order, reason))
        assert checkout_client.get(f"{API}/orders/last").status_code == 404
        assert checkout_client.post(f"{API}/orders/last/add-to-order").status_code == 404

    def test_add_to_order_ships_free(self, checkout_client: TestClient, delivery_date):
        """Test adding to the last order with the same details ships free."""
        walk_to_payment(checkout_client, delivery_date)
        checkout_client.post(
            f"{API}/checkout/pay", json={"payment_method_id": "pm_card_visa", "expected_total": "79.13"}
        )

        assert checkout_client.post(f"{API}/orders/last/add-to-order").status_code == 200
        checkout_client.post(f"{API}/cart/items", json={**ITEM, "quantity": 1})
        state = checkout_client.post(f"{API}/checkout/start").json()
        assert state["is_adding_to_order"] is True
        pricing = checkout_client.get(f"{API}/checkout/pricing").json()
        assert pricing["final_delivery_fee"] == 0
        assert pricing["applied_discount"]["code"] == "SAME-ORDER-FREE-SHIPPING"

        assert checkout_client.post(f"{API}/orders/last/new-order").status_code == 204
        assert checkout_client.get(f"{API}/checkout/pricing").json()["final_delivery_fee"] == 20


class TestMiscEndpoints:
    """Tests for pricing preview and health checks."""

    def test_quote_without_maps_key(self, client: TestClient, monkeypatch):
        """Test the quote preview falls back to the standard fee."""
        monkeypatch.setattr(settings, "google_maps_api_key", "")
        response = client.get(f"{API}/pricing/quote", params={"address": "Austin, TX 78701", "subtotal": "50"})
        assert response.status_code == 200
        assert response.json()["delivery_fee"] == 20

    def test_health(self, client: TestClient):
        assert client.get("/health").json()["status"] == "healthy"

    def test_readiness(self, client: TestClient):
        """Test the readiness probe reports integrations."""
        data = client.get("/health/ready").json()
        assert data["checks"]["database"] == "healthy"
        assert "stripe" in data["checks"]

    def test_security_headers(self, client: TestClient):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "js.stripe.com" in response.headers["Content-Security-Policy"]

    @pytest.mark.parametrize("trusted, expected", [(True, "203.0.113.7"), (False, "10.0.0.1")])
    def test_client_ip(self, monkeypatch, trusted, expected):
        """Test the forwarded client address is used only behind a trusted proxy."""
        monkeypatch.setattr(settings, "trust_forwarded_for", trusted)
        request = Request({
            "type": "http",
            "headers": [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")],
            "client": ("10.0.0.1", 51234),
        })
        assert client_ip(request) == expected
