"""Tests for shared group orders."""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront.services.group_order_service import (
    GroupOrderNotFoundError,
    GroupOrderService,
    is_valid_share_token,
)
from storefront.services.pricing_service import GROUP_ORDER_DISCOUNT
from storefront.services.state_store import StorageKey

from tests.conftest import TIME_SLOT

API = "/api/v1"


class TestGroupOrderService:
    """Tests for resolving, joining and declining group orders."""

    def test_resolve(self, db_session, state_store, placed_order):
        """Test a valid token resolves to the order's delivery details."""
        details = GroupOrderService(db_session, state_store).resolve(placed_order.share_token)
        assert details.order_number == placed_order.order_number
        assert details.delivery_time == TIME_SLOT
        assert details.delivery_address == "100 Congress Ave, Austin, TX 78701"
        assert details.participant_count == 1

    def test_malformed_token(self, db_session, state_store):
        """Test a token that is not a UUID is rejected without a lookup."""
        assert not is_valid_share_token("not-a-token")
        with pytest.raises(GroupOrderNotFoundError):
            GroupOrderService(db_session, state_store).resolve("not-a-token")

    def test_unknown_token(self, db_session, state_store):
        """Test an unknown token is not found."""
        with pytest.raises(GroupOrderNotFoundError):
            GroupOrderService(db_session, state_store).resolve(str(uuid.uuid4()))

    def test_expired_order(self, db_session, state_store, placed_order, delivery_date):
        """Test an order whose delivery window has started cannot be joined."""
        later = datetime.combine(delivery_date, datetime.min.time()) + timedelta(days=1)
        with pytest.raises(GroupOrderNotFoundError) as exc:
            GroupOrderService(db_session, state_store).resolve(placed_order.share_token, now=later)
        assert exc.value.reason == "has expired"

    def test_cancelled_order(self, db_session, state_store, placed_order):
        """Test a cancelled order is not joinable."""
        placed_order.status = "cancelled"
        db_session.commit()
        with pytest.raises(GroupOrderNotFoundError):
            GroupOrderService(db_session, state_store).resolve(placed_order.share_token)

    def test_join_copies_delivery_details(self, db_session, state_store, placed_order):
        """Test joining stores the group's delivery details and the free shipping discount."""
        GroupOrderService(db_session, state_store).join(placed_order.share_token, "ben@example.com", "Ben")

        assert state_store.get(StorageKey.GROUP_ORDER_TOKEN) == placed_order.share_token
        assert state_store.get(StorageKey.ADD_TO_ORDER) is True
        assert state_store.get(StorageKey.GROUP_ORDER_JOIN_DECISION) == "yes"
        assert state_store.get(StorageKey.APPLIED_DISCOUNT)["code"] == GROUP_ORDER_DISCOUNT.code
        delivery = state_store.get(StorageKey.DELIVERY_INFO)
        assert delivery["time_slot"] == TIME_SLOT
        assert delivery["address"] == "100 Congress Ave, Austin, TX 78701"
        assert state_store.get(StorageKey.ADDRESS)["zip_code"] == "78701"

        db_session.refresh(placed_order)
        assert placed_order.is_group_order
        assert len(placed_order.participants) == 2

    def test_rejoin_does_not_duplicate(self, db_session, state_store, placed_order):
        """Test joining twice with the same email keeps one participant entry."""
        service = GroupOrderService(db_session, state_store)
        service.join(placed_order.share_token, "ben@example.com", "Ben")
        details = service.join(placed_order.share_token, "BEN@example.com", "Ben")
        assert details.participant_count == 2

    def test_decline_clears_group_state(self, db_session, state_store, placed_order):
        """Test declining clears the group flags and the group discount."""
        service = GroupOrderService(db_session, state_store)
        service.join(placed_order.share_token, "ben@example.com", "Ben")
        service.decline()

        assert state_store.get(StorageKey.GROUP_ORDER_TOKEN) is None
        assert state_store.get(StorageKey.ADD_TO_ORDER) is None
        assert state_store.get(StorageKey.APPLIED_DISCOUNT) is None
        assert state_store.get(StorageKey.GROUP_ORDER_JOIN_DECISION) == "no"

    def test_decline_keeps_shopper_code(self, db_session, state_store):
        """Test a code the shopper entered survives declining."""
        state_store.set(StorageKey.APPLIED_DISCOUNT, {"code": "PARTYON10", "type": "percentage", "value": "10"})
        GroupOrderService(db_session, state_store).decline()
        assert state_store.get(StorageKey.APPLIED_DISCOUNT)["code"] == "PARTYON10"


class TestGroupOrderRoutes:
    """Tests for the group order endpoints."""

    def test_get_group_order(self, client: TestClient, placed_order):
        """Test the public details of a shared order."""
        response = client.get(f"{API}/group-orders/{placed_order.share_token}")
        assert response.status_code == 200
        data = response.json()
        assert data["customer_name"] == "Ana Lopez"
        assert data["participants"][0]["name"] == "Ana Lopez"
        assert "email" not in data["participants"][0]

    def test_unknown_link_is_graceful(self, client: TestClient):
        """Test an inactive link returns 404 with a message the shopper can act on."""
        response = client.get(f"{API}/group-orders/{uuid.uuid4()}")
        assert response.status_code == 404
        assert "place your own order" in response.json()["detail"]

    def test_join(self, client: TestClient, placed_order):
        """Test joining through the API."""
        response = client.post(
            f"{API}/group-orders/{placed_order.share_token}/join",
            json={"email": "ben@example.com", "name": "Ben"},
        )
        assert response.status_code == 200
        assert response.json()["participant_count"] == 2

    def test_join_invalid_email(self, client: TestClient, placed_order):
        """Test joining requires an email address."""
        response = client.post(
            f"{API}/group-orders/{placed_order.share_token}/join",
            json={"email": "ben", "name": "Ben"},
        )
        assert response.status_code == 422

    def test_decline(self, client: TestClient):
        """Test declining always succeeds."""
        response = client.post(f"{API}/group-orders/decline")
        assert response.status_code == 204


class TestOrderRecord:
    """Tests for the checks applied to stored orders."""

    def test_amounts_stored_to_the_cent(self, placed_order):
        placed_order.tip_amount = "5.005"
        assert placed_order.tip_amount == Decimal("5.01")

    def test_negative_amount_rejected(self, placed_order):
        with pytest.raises(ValueError, match="cannot be negative"):
            placed_order.total = Decimal("-1")

    def test_unknown_payment_status_rejected(self, placed_order):
        """Test webhook statuses are limited to pending, paid and failed."""
        with pytest.raises(ValueError):
            placed_order.payment_status = "refunded"
        placed_order.payment_status = "failed"
        assert placed_order.payment_status == "failed"

    def test_participants_must_be_a_list(self, placed_order):
        with pytest.raises(ValueError):
            placed_order.participants = {"email": "ben@example.com"}
