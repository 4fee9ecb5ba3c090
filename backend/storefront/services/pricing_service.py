"""
Delivery Pricing Service

Derives the delivery fee, sales tax, discount, tip and final total for a
cart. The distance lookup that feeds the delivery quote lives in
``distance_service``; everything in this module is pure arithmetic on
Decimals, rounded only when converted to cents for payment.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from storefront.core.config import settings

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

TIP_PERCENTAGES = (5, 10, 15)
DEFAULT_TIP_PERCENTAGE = 10

# (max distance in miles, minimum fee, minimum order); beyond the last tier
# the final entry applies.
DISTANCE_TIERS = (
    (Decimal("20"), Decimal("40"), Decimal("40")),
    (None, Decimal("60"), Decimal("60")),
)
LOCAL_RADIUS_MILES = Decimal("10")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FREE_SHIPPING = "free_shipping"


class InvalidDiscountCodeError(Exception):
    """Raised for any code that is not a known promotion."""

    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid discount code")


@dataclass(frozen=True)
class AppliedDiscount:
    code: str
    type: DiscountType
    value: Decimal = ZERO

    @property
    def is_free_shipping(self) -> bool:
        return self.type == DiscountType.FREE_SHIPPING

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "type": self.type.value, "value": str(self.value)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AppliedDiscount"]:
        if not data:
            return None
        return cls(
            code=data["code"],
            type=DiscountType(data["type"]),
            value=Decimal(str(data.get("value", "0"))),
        )


DISCOUNT_CODES = {
    "PREMIER2025": AppliedDiscount("PREMIER2025", DiscountType.FREE_SHIPPING, ZERO),
    "PARTYON10": AppliedDiscount("PARTYON10", DiscountType.PERCENTAGE, Decimal("10")),
}

SAME_ORDER_DISCOUNT = AppliedDiscount("SAME-ORDER-FREE-SHIPPING", DiscountType.FREE_SHIPPING, ZERO)
GROUP_ORDER_DISCOUNT = AppliedDiscount("GROUP-SHIPPING-FREE", DiscountType.FREE_SHIPPING, ZERO)
SYNTHETIC_DISCOUNT_CODES = {SAME_ORDER_DISCOUNT.code, GROUP_ORDER_DISCOUNT.code}


def validate_discount_code(code: str) -> AppliedDiscount:
    """Look up a promotion code (case-insensitive)."""
    normalized = (code or "").strip().upper()
    discount = DISCOUNT_CODES.get(normalized)
    if discount is None:
        logger.info(f"Rejected discount code {normalized!r}")
        raise InvalidDiscountCodeError(normalized)
    return discount


def to_cents(amount: Decimal) -> int:
    """Round a dollar amount half-up to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quantize_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class DeliveryQuote:
    """Base delivery pricing for an address before subtotal rules apply."""
    fee: Decimal
    minimum_order: Decimal = ZERO
    is_distance_based: bool = False
    distance_miles: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee": str(self.fee),
            "minimum_order": str(self.minimum_order),
            "is_distance_based": self.is_distance_based,
            "distance_miles": str(self.distance_miles) if self.distance_miles is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeliveryQuote":
        distance = data.get("distance_miles")
        return cls(
            fee=Decimal(str(data["fee"])),
            minimum_order=Decimal(str(data.get("minimum_order", "0"))),
            is_distance_based=bool(data.get("is_distance_based")),
            distance_miles=Decimal(str(distance)) if distance is not None else None,
        )


@dataclass
class PricingBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    final_delivery_fee: Decimal
    sales_tax: Decimal
    discount_amount: Decimal
    discounted_subtotal: Decimal
    tip: Decimal
    final_total: Decimal
    minimum_order: Decimal = ZERO
    applied_discount: Optional[AppliedDiscount] = None
    is_free_shipping: bool = False
    is_distance_based: bool = False
    distance_miles: Optional[Decimal] = None

    @property
    def total_cents(self) -> int:
        return to_cents(self.final_total)

    @property
    def meets_minimum_order(self) -> bool:
        return self.subtotal >= self.minimum_order


class PricingCalculator:
    """Applies the storefront's pricing rules.

    Rates and the flat fee default to settings and can be overridden per
    instance (tests, alternative storefronts).
    """

    def __init__(
        self,
        sales_tax_rate: Optional[Decimal] = None,
        standard_fee: Optional[Decimal] = None,
        free_delivery_threshold: Optional[Decimal] = None,
        percentage_rate: Optional[Decimal] = None,
    ):
        self.sales_tax_rate = Decimal(str(sales_tax_rate if sales_tax_rate is not None else settings.sales_tax_rate))
        self.standard_fee = Decimal(str(standard_fee if standard_fee is not None else settings.standard_delivery_fee))
        self.threshold = Decimal(str(
            free_delivery_threshold if free_delivery_threshold is not None else settings.free_delivery_threshold
        ))
        self.percentage_rate = Decimal(str(
            percentage_rate if percentage_rate is not None else settings.delivery_percentage_rate
        ))

    # ==================== DELIVERY QUOTES ====================

    def standard_quote(self) -> DeliveryQuote:
        return DeliveryQuote(fee=self.standard_fee)

    def distance_quote(self, distance_miles: Decimal, subtotal: Decimal) -> DeliveryQuote:
        """Tiered pricing by driving distance from the store."""
        distance_miles = Decimal(str(distance_miles))
        if distance_miles <= LOCAL_RADIUS_MILES:
            quote = self.standard_quote()
            quote.distance_miles = distance_miles
            return quote

        percentage_fee = subtotal * self.percentage_rate
        minimum_fee, minimum_order = next(
            (fee, order) for max_miles, fee, order in DISTANCE_TIERS
            if max_miles is None or distance_miles <= max_miles
        )
        return DeliveryQuote(
            fee=max(percentage_fee, minimum_fee),
            minimum_order=minimum_order,
            is_distance_based=True,
            distance_miles=distance_miles,
        )

    def base_delivery_fee(self, subtotal: Decimal, quote: DeliveryQuote) -> Decimal:
        """Quote fee, replaced by the percentage fee at or above the threshold."""
        if subtotal >= self.threshold:
            return subtotal * self.percentage_rate
        return quote.fee

    # ==================== TOTALS ====================

    def sales_tax(self, subtotal: Decimal) -> Decimal:
        return subtotal * self.sales_tax_rate

    def tip_for_percentage(self, subtotal: Decimal, percentage: int = DEFAULT_TIP_PERCENTAGE) -> Decimal:
        if percentage < 0:
            raise ValueError("Tip percentage cannot be negative")
        return quantize_money(subtotal * Decimal(percentage) / 100)

    def calculate(
        self,
        subtotal: Decimal,
        quote: Optional[DeliveryQuote] = None,
        is_adding_to_order: bool = False,
        has_changes: bool = False,
        applied_discount: Optional[AppliedDiscount] = None,
        tip: Decimal = ZERO,
    ) -> PricingBreakdown:
        """Compute the full breakdown.

        Tax is charged on the undiscounted subtotal. Free shipping (a code,
        or adding to a previous order without changing date, time or
        address) zeroes the delivery fee ahead of every other fee rule.
        """
        subtotal = Decimal(subtotal)
        tip = Decimal(tip)
        if tip < 0:
            raise ValueError("Tip cannot be negative")
        quote = quote or self.standard_quote()

        if is_adding_to_order and not has_changes:
            applied_discount = SAME_ORDER_DISCOUNT

        delivery_fee = self.base_delivery_fee(subtotal, quote)
        sales_tax = self.sales_tax(subtotal)

        discounted_subtotal = subtotal
        if applied_discount and applied_discount.type == DiscountType.PERCENTAGE:
            discounted_subtotal = subtotal * (1 - applied_discount.value / 100)

        is_free_shipping = bool(applied_discount and applied_discount.is_free_shipping)
        final_delivery_fee = ZERO if is_free_shipping else delivery_fee

        final_total = discounted_subtotal + final_delivery_fee + sales_tax + tip

        return PricingBreakdown(
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            final_delivery_fee=final_delivery_fee,
            sales_tax=sales_tax,
            discount_amount=subtotal - discounted_subtotal,
            discounted_subtotal=discounted_subtotal,
            tip=tip,
            final_total=final_total,
            minimum_order=quote.minimum_order,
            applied_discount=applied_discount,
            is_free_shipping=is_free_shipping,
            is_distance_based=quote.is_distance_based,
            distance_miles=quote.distance_miles,
        )
