"""
Group Order Coordinator

A placed order can be shared through its ``share_token``. A second shopper
who opens the link sees the delivery details and either joins (their order
ships with the original one, delivery free) or declines and continues as
an individual. An unknown or past token is a normal decline path, not an
error condition.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.models.order import StorefrontOrder
from storefront.services.delivery_info import delivery_start, format_address
from storefront.services.order_service import OrderService
from storefront.services.pricing_service import GROUP_ORDER_DISCOUNT, AppliedDiscount
from storefront.services.state_store import StateStore, StorageKey

logger = logging.getLogger(__name__)


class GroupOrderNotFoundError(Exception):
    """The share token does not resolve to a joinable order."""

    def __init__(self, share_token: str, reason: str = "not found"):
        self.share_token = share_token
        self.reason = reason
        super().__init__(f"Group order {share_token} {reason}")


@dataclass
class GroupOrderDetails:
    share_token: str
    order_number: str
    customer_name: str
    delivery_date: str
    delivery_time: str
    delivery_address: str
    participant_count: int
    participants: List[Dict[str, Any]] = field(default_factory=list)
    group_order_name: Optional[str] = None

    @classmethod
    def from_order(cls, order: StorefrontOrder) -> "GroupOrderDetails":
        participants = list(order.participants or [])
        return cls(
            share_token=order.share_token,
            order_number=order.order_number,
            customer_name=order.customer_name,
            delivery_date=order.delivery_date.isoformat(),
            delivery_time=order.delivery_time,
            delivery_address=format_address(order.delivery_address),
            participant_count=len(participants),
            participants=[{"name": p.get("name", ""), "joined_at": p.get("joined_at")} for p in participants],
            group_order_name=order.group_order_name,
        )


def is_valid_share_token(token: str) -> bool:
    try:
        uuid.UUID(str(token))
    except ValueError:
        return False
    return True


class GroupOrderService:
    """Resolve, join and decline shared orders for one shopper session."""

    def __init__(self, db: Session, store: StateStore):
        self.db = db
        self.store = store
        self.orders = OrderService(db)

    def _resolve_order(self, share_token: str, now: Optional[datetime] = None) -> StorefrontOrder:
        if not is_valid_share_token(share_token):
            raise GroupOrderNotFoundError(share_token, "is not a valid share token")

        order = self.orders.get_by_share_token(share_token)
        if order is None or order.status == "cancelled":
            raise GroupOrderNotFoundError(share_token)

        now = now or datetime.now()
        try:
            expired = delivery_start(order.delivery_date, order.delivery_time) < now
        except ValueError:
            expired = True
        if expired:
            raise GroupOrderNotFoundError(share_token, "has expired")
        return order

    def resolve(self, share_token: str, now: Optional[datetime] = None) -> GroupOrderDetails:
        return GroupOrderDetails.from_order(self._resolve_order(share_token, now))

    def join(self, share_token: str, email: str, name: str, now: Optional[datetime] = None) -> GroupOrderDetails:
        """Join a group order. Re-joining with the same email does not add a duplicate."""
        order = self._resolve_order(share_token, now)
        added = self.orders.add_participant(order, email, name)
        details = GroupOrderDetails.from_order(order)

        self.store.set(StorageKey.GROUP_ORDER_DELIVERY_INFO, {
            "date": details.delivery_date,
            "timeSlot": details.delivery_time,
            "address": details.delivery_address,
            "priority": "group_order",
        })
        self.store.set(StorageKey.ORIGINAL_GROUP_DATA, {
            "shareToken": details.share_token,
            "orderNumber": details.order_number,
            "customerName": details.customer_name,
            "deliveryDate": details.delivery_date,
            "deliveryTime": details.delivery_time,
            "deliveryAddress": details.delivery_address,
            "addressInfo": dict(order.delivery_address or {}),
        })
        self.store.set(StorageKey.GROUP_ORDER_TOKEN, share_token)
        self.store.set(StorageKey.ADD_TO_ORDER, True)
        self.store.set(StorageKey.GROUP_ORDER_JOIN_DECISION, "yes")
        self.store.set(StorageKey.APPLIED_DISCOUNT, GROUP_ORDER_DISCOUNT.to_dict())

        delivery = self.store.get(StorageKey.DELIVERY_INFO) or {}
        delivery.update({
            "date": details.delivery_date,
            "time_slot": details.delivery_time,
            "address": details.delivery_address,
        })
        self.store.set(StorageKey.DELIVERY_INFO, delivery)
        if order.delivery_address:
            self.store.set(StorageKey.ADDRESS, dict(order.delivery_address))

        logger.info(
            f"{'Joined' if added else 'Re-joined'} group order {order.order_number} "
            f"({details.participant_count} participants)"
        )
        return details

    def decline(self) -> None:
        """Continue individually; joining again requires a new join."""
        discount = AppliedDiscount.from_dict(self.store.get(StorageKey.APPLIED_DISCOUNT))
        keys = [*StorageKey.GROUP_KEYS, StorageKey.ADD_TO_ORDER]
        if discount and discount.code == GROUP_ORDER_DISCOUNT.code:
            keys.append(StorageKey.APPLIED_DISCOUNT)
        self.store.clear(keys)
        self.store.set(StorageKey.GROUP_ORDER_JOIN_DECISION, "no")
        logger.info("Group order declined")
