"""Storefront orders, including shareable group orders."""

from decimal import Decimal

from sqlalchemy import Boolean, Column, Date, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import validates

from storefront.db.base import Base, TimestampMixin
from storefront.models.validators import (
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    json_array,
    json_object,
    money,
    one_of,
)


class StorefrontOrder(TimestampMixin, Base):
    """A paid delivery order.

    Every order carries a ``share_token`` so it can be opened as a group
    order; ``participants`` holds the customers who joined it.
    """
    __tablename__ = "storefront_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    share_token = Column(String(36), unique=True, nullable=False, index=True)

    status = Column(String(20), default="confirmed")  # confirmed, cancelled, delivered
    payment_status = Column(String(20), default="paid")  # pending, paid, failed
    payment_intent_id = Column(String(255), nullable=True, index=True)

    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=True)

    delivery_address = Column(JSON, nullable=False)  # {street, city, state, zipCode, instructions}
    delivery_date = Column(Date, nullable=False)
    delivery_time = Column(String(40), nullable=False)
    delivery_instructions = Column(Text, nullable=True)

    line_items = Column(JSON, nullable=False)

    subtotal = Column(Numeric(10, 2), default=Decimal("0"))
    delivery_fee = Column(Numeric(10, 2), default=Decimal("0"))
    sales_tax = Column(Numeric(10, 2), default=Decimal("0"))
    tip_amount = Column(Numeric(10, 2), default=Decimal("0"))
    discount_amount = Column(Numeric(10, 2), default=Decimal("0"))
    total = Column(Numeric(10, 2), default=Decimal("0"))

    discount_code = Column(String(50), nullable=True)
    discount_type = Column(String(20), nullable=True)
    discount_value = Column(Numeric(10, 2), nullable=True)

    is_group_order = Column(Boolean, default=False)
    group_order_name = Column(String(200), nullable=True)
    group_order_token = Column(String(36), nullable=True, index=True)  # token of the group this order joined
    participants = Column(JSON, default=list)

    shopify_order_id = Column(String(64), nullable=True)

    @validates('subtotal', 'delivery_fee', 'sales_tax', 'tip_amount', 'discount_amount', 'total', 'discount_value')
    def _validate_amounts(self, key, value):
        return money(key, value)

    @validates('status')
    def _validate_status(self, key, value):
        return one_of(key, value, ORDER_STATUSES)

    @validates('payment_status')
    def _validate_payment_status(self, key, value):
        return one_of(key, value, PAYMENT_STATUSES)

    @validates('delivery_address')
    def _validate_address(self, key, value):
        return json_object(key, value)

    @validates('line_items', 'participants')
    def _validate_lists(self, key, value):
        return json_array(key, value)
