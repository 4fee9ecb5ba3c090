"""Order creation and lookup for completed checkouts."""

import logging
import secrets
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.db.session import session_scope
from storefront.models.order import StorefrontOrder
from storefront.services.pricing_service import PricingBreakdown, quantize_money
from storefront.services.shopify_service import ShopifyService

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    return f"SO-{datetime.now(timezone.utc):%y%m%d}-{secrets.token_hex(3).upper()}"


class OrderService:
    """Creates storefront orders and maintains group-order participants."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_share_token(self, share_token: str) -> Optional[StorefrontOrder]:
        return self.db.query(StorefrontOrder).filter(
            StorefrontOrder.share_token == share_token
        ).first()

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[StorefrontOrder]:
        return self.db.query(StorefrontOrder).filter(
            StorefrontOrder.payment_intent_id == payment_intent_id
        ).first()

    def _unique_order_number(self) -> str:
        for _ in range(10):
            number = generate_order_number()
            exists = self.db.query(StorefrontOrder.id).filter(
                StorefrontOrder.order_number == number
            ).first()
            if not exists:
                return number
        raise RuntimeError("Could not allocate a unique order number")

    def create_order(
        self,
        line_items: List[Dict[str, Any]],
        customer: Dict[str, Any],
        address: Dict[str, Any],
        delivery_date: date,
        delivery_time: str,
        pricing: PricingBreakdown,
        payment_intent_id: Optional[str] = None,
        group_order_token: Optional[str] = None,
        is_group_order: bool = False,
        group_order_name: Optional[str] = None,
    ) -> StorefrontOrder:
        """Store a paid order. Joining a group also records the buyer on the group order."""
        customer_name = f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip()
        discount = pricing.applied_discount

        order = StorefrontOrder(
            order_number=self._unique_order_number(),
            share_token=str(uuid.uuid4()),
            payment_intent_id=payment_intent_id,
            payment_status="paid",
            customer_name=customer_name,
            customer_email=customer["email"],
            customer_phone=customer.get("phone"),
            delivery_address=dict(address),
            delivery_date=delivery_date,
            delivery_time=delivery_time,
            delivery_instructions=address.get("instructions") or None,
            line_items=line_items,
            subtotal=quantize_money(pricing.subtotal),
            delivery_fee=quantize_money(pricing.final_delivery_fee),
            sales_tax=quantize_money(pricing.sales_tax),
            tip_amount=quantize_money(pricing.tip),
            discount_amount=quantize_money(pricing.discount_amount),
            total=quantize_money(pricing.final_total),
            discount_code=discount.code if discount else None,
            discount_type=discount.type.value if discount else None,
            discount_value=discount.value if discount else None,
            is_group_order=is_group_order,
            group_order_name=group_order_name,
            group_order_token=group_order_token,
            participants=[{
                "email": customer["email"],
                "name": customer_name,
                "joined_at": datetime.now(timezone.utc).isoformat(),
            }],
        )
        self.db.add(order)

        if group_order_token:
            group = self.get_by_share_token(group_order_token)
            if group is not None:
                self.add_participant(group, customer["email"], customer_name, commit=False)
            else:
                logger.warning(f"Group order {group_order_token} vanished before order creation")

        self.db.commit()
        self.db.refresh(order)
        logger.info(
            f"Order {order.order_number} created: total={order.total} "
            f"payment_intent={payment_intent_id} group={group_order_token}"
        )
        return order

    def add_participant(self, order: StorefrontOrder, email: str, name: str, commit: bool = True) -> bool:
        """Append a participant unless the email already joined. Returns True if added."""
        participants = list(order.participants or [])
        normalized = email.strip().lower()
        if any(p.get("email", "").lower() == normalized for p in participants):
            return False

        participants.append({
            "email": email.strip(),
            "name": name,
            "joined_at": datetime.now(timezone.utc).isoformat(),
        })
        order.participants = participants
        order.is_group_order = True
        if commit:
            self.db.commit()
        return True

    def mark_payment_status(self, payment_intent_id: str, status: str) -> Optional[StorefrontOrder]:
        order = self.get_by_payment_intent(payment_intent_id)
        if order is None:
            return None
        order.payment_status = status
        self.db.commit()
        logger.info(f"Order {order.order_number} payment status -> {status}")
        return order


async def mirror_order_to_shopify(order_id: int, shopify_service=None) -> Optional[str]:
    """Background task: copy a paid order into Shopify and remember its id."""
    shopify = shopify_service or ShopifyService()
    if not shopify.is_configured:
        return None

    with session_scope() as db:
        order = db.query(StorefrontOrder).filter(StorefrontOrder.id == order_id).first()
        if order is None:
            return None
        shopify_order_id = await shopify.create_order(order)
        if shopify_order_id:
            order.shopify_order_id = shopify_order_id
            db.commit()
        return shopify_order_id
