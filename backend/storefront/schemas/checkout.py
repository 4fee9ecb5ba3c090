"""Checkout, pricing and order schemas."""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from storefront.core.sanitize import sanitize_text
from storefront.services.pricing_service import PricingBreakdown, quantize_money


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(quantize_money(value)) if value is not None else None


# ==================== CHECKOUT STEPS ====================

class DateTimeSelection(BaseModel):
    date: date
    time_slot: str


class AddressInput(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    instructions: Optional[str] = ""

    @field_validator("street", "city", "state", "zip_code", "instructions", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class CustomerInput(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class CheckoutStateResponse(BaseModel):
    step: str
    confirmed: List[str]
    ready_for_payment: bool
    delivery_info: Dict[str, Any] = Field(default_factory=dict)
    customer: Dict[str, Any] = Field(default_factory=dict)
    address: Dict[str, Any] = Field(default_factory=dict)
    is_adding_to_order: bool = False
    has_changes: bool = False
    changed_fields: List[str] = Field(default_factory=list)
    time_slots: List[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view) -> "CheckoutStateResponse":
        state = view.state.to_dict()
        return cls(
            step=state["step"],
            confirmed=state["confirmed"],
            ready_for_payment=view.state.ready_for_payment,
            delivery_info=view.delivery_info,
            customer=view.customer,
            address=view.address,
            is_adding_to_order=view.is_adding_to_order,
            has_changes=view.changes.has_changes,
            changed_fields=view.changes.changed_fields,
            time_slots=list(view.time_slots),
        )


# ==================== PRICING ====================

class DiscountApply(BaseModel):
    code: str


class DiscountResponse(BaseModel):
    code: str
    type: str
    value: float


class TipUpdate(BaseModel):
    """Either a fixed ``amount`` or a ``percentage`` of the subtotal; neither resets to the default."""
    amount: Optional[Decimal] = None
    percentage: Optional[int] = None


class PricingResponse(BaseModel):
    subtotal: float
    delivery_fee: float
    final_delivery_fee: float
    sales_tax: float
    discount_amount: float
    discounted_subtotal: float
    tip: float
    final_total: float
    total_cents: int
    minimum_order: float
    meets_minimum_order: bool
    is_free_shipping: bool
    is_distance_based: bool
    distance_miles: Optional[float] = None
    applied_discount: Optional[DiscountResponse] = None

    @classmethod
    def from_breakdown(cls, pricing: PricingBreakdown) -> "PricingResponse":
        discount = pricing.applied_discount
        return cls(
            subtotal=_money(pricing.subtotal),
            delivery_fee=_money(pricing.delivery_fee),
            final_delivery_fee=_money(pricing.final_delivery_fee),
            sales_tax=_money(pricing.sales_tax),
            discount_amount=_money(pricing.discount_amount),
            discounted_subtotal=_money(pricing.discounted_subtotal),
            tip=_money(pricing.tip),
            final_total=_money(pricing.final_total),
            total_cents=pricing.total_cents,
            minimum_order=_money(pricing.minimum_order),
            meets_minimum_order=pricing.meets_minimum_order,
            is_free_shipping=pricing.is_free_shipping,
            is_distance_based=pricing.is_distance_based,
            distance_miles=float(pricing.distance_miles) if pricing.distance_miles is not None else None,
            applied_discount=DiscountResponse(
                code=discount.code, type=discount.type.value, value=float(discount.value),
            ) if discount else None,
        )


# ==================== PAYMENT ====================

class PaymentIntentCreate(BaseModel):
    """``expected_total`` is the total the shopper was shown, in dollars."""
    expected_total: Decimal


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str
    amount: int
    currency: str


class PaymentSubmit(BaseModel):
    payment_method_id: str
    expected_total: Decimal


class OrderComplete(BaseModel):
    payment_intent_id: str


class OrderResponse(BaseModel):
    order_number: str
    share_token: str
    status: str
    payment_status: str
    customer_name: str
    customer_email: str
    delivery_date: date
    delivery_time: str
    delivery_address: Dict[str, Any]
    line_items: List[Dict[str, Any]]
    subtotal: float
    delivery_fee: float
    sales_tax: float
    tip_amount: float
    discount_amount: float
    total: float
    discount_code: Optional[str] = None
    is_group_order: bool = False

    model_config = {"from_attributes": True}


class CheckoutResultResponse(BaseModel):
    status: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    requires_action: bool = False
    order: Optional[OrderResponse] = None


class LastOrderResponse(BaseModel):
    order_number: str
    total: str
    delivery_date: str
    delivery_time: str
    address: str
    instructions: Optional[str] = None
    share_token: Optional[str] = None
