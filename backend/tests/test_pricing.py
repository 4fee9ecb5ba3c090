"""Tests for the pricing calculator.

Covers the published pricing examples: standard fee, percentage fee at the
free-delivery threshold, discount codes, same-order free shipping, distance
tiers and tip handling.
"""

from decimal import Decimal

import pytest

from storefront.services.pricing_service import (
    DISCOUNT_CODES,
    GROUP_ORDER_DISCOUNT,
    SAME_ORDER_DISCOUNT,
    AppliedDiscount,
    DeliveryQuote,
    DiscountType,
    InvalidDiscountCodeError,
    to_cents,
    validate_discount_code,
)


class TestDeliveryFee:
    """Tests for delivery fee rules."""

    def test_small_order_pays_standard_fee(self, calculator):
        """Test a $50 order: standard fee, 8.25% tax on the subtotal."""
        pricing = calculator.calculate(Decimal("50"))
        assert pricing.delivery_fee == Decimal("20.00")
        assert pricing.sales_tax == Decimal("4.125")
        assert pricing.final_total == Decimal("74.125")
        assert pricing.total_cents == 7413

    def test_configured_fee_is_used(self):
        """Test the flat fee comes from the calculator configuration."""
        from storefront.services.pricing_service import PricingCalculator
        calc = PricingCalculator(standard_fee=Decimal("9.99"), sales_tax_rate=Decimal("0.0825"))
        pricing = calc.calculate(Decimal("50"))
        assert pricing.final_total == Decimal("50") + Decimal("9.99") + Decimal("4.125")
        assert pricing.total_cents == 6412

    def test_threshold_switches_to_percentage(self, calculator):
        """Test a $250 order pays 10% of the subtotal."""
        pricing = calculator.calculate(Decimal("250"))
        assert pricing.delivery_fee == Decimal("25.00")
        assert pricing.final_delivery_fee == Decimal("25.00")

    def test_exactly_at_threshold(self, calculator):
        """Test the percentage fee applies at exactly $200."""
        assert calculator.calculate(Decimal("200")).delivery_fee == Decimal("20.0")

    def test_free_shipping_beats_percentage(self, calculator):
        """Test a free shipping code zeroes the fee above the threshold too."""
        pricing = calculator.calculate(Decimal("300"), applied_discount=DISCOUNT_CODES["PREMIER2025"])
        assert pricing.delivery_fee == Decimal("30.0")
        assert pricing.final_delivery_fee == Decimal("0")
        assert pricing.is_free_shipping


class TestDiscounts:
    """Tests for discount codes and synthetic discounts."""

    def test_percentage_code(self, calculator):
        """Test PARTYON10 takes 10% off the subtotal; tax stays on the full subtotal."""
        pricing = calculator.calculate(Decimal("100"), applied_discount=validate_discount_code("PARTYON10"))
        assert pricing.discount_amount == Decimal("10")
        assert pricing.discounted_subtotal == Decimal("90")
        assert pricing.sales_tax == Decimal("8.25")
        assert pricing.final_total == Decimal("90") + Decimal("20.00") + Decimal("8.25")

    def test_codes_are_case_insensitive(self):
        """Test codes are normalized before lookup."""
        discount = validate_discount_code("  premier2025 ")
        assert discount.code == "PREMIER2025"
        assert discount.type == DiscountType.FREE_SHIPPING

    @pytest.mark.parametrize("code", ["", "BOGUS", "SAME-ORDER-FREE-SHIPPING", "GROUP-SHIPPING-FREE"])
    def test_invalid_codes(self, code):
        """Test unknown and synthetic codes cannot be entered by shoppers."""
        with pytest.raises(InvalidDiscountCodeError):
            validate_discount_code(code)

    def test_same_order_free_shipping(self, calculator):
        """Test adding to an order without changes ships free."""
        pricing = calculator.calculate(Decimal("50"), is_adding_to_order=True, has_changes=False)
        assert pricing.final_delivery_fee == Decimal("0")
        assert pricing.applied_discount == SAME_ORDER_DISCOUNT

    def test_changed_order_pays_fee(self, calculator):
        """Test adding to an order with changed details pays the normal fee."""
        pricing = calculator.calculate(Decimal("50"), is_adding_to_order=True, has_changes=True)
        assert pricing.final_delivery_fee == Decimal("20.00")
        assert pricing.applied_discount is None

    def test_group_discount_is_free_shipping(self, calculator):
        """Test the group order discount zeroes the fee."""
        pricing = calculator.calculate(Decimal("50"), applied_discount=GROUP_ORDER_DISCOUNT)
        assert pricing.final_delivery_fee == Decimal("0")

    def test_discount_round_trips_through_storage(self):
        """Test a stored discount dict rebuilds the same discount."""
        discount = DISCOUNT_CODES["PARTYON10"]
        assert AppliedDiscount.from_dict(discount.to_dict()) == discount
        assert AppliedDiscount.from_dict(None) is None


class TestDistanceTiers:
    """Tests for distance-based delivery quotes."""

    def test_local_radius_uses_standard_fee(self, calculator):
        """Test deliveries within 10 miles use the standard fee."""
        quote = calculator.distance_quote(Decimal("8.5"), Decimal("50"))
        assert quote.fee == Decimal("20.00")
        assert not quote.is_distance_based
        assert quote.minimum_order == Decimal("0")

    def test_mid_tier(self, calculator):
        """Test 10–20 miles: at least $40 fee and $40 minimum order."""
        quote = calculator.distance_quote(Decimal("15"), Decimal("100"))
        assert quote.fee == Decimal("40")
        assert quote.minimum_order == Decimal("40")
        assert quote.is_distance_based

    def test_mid_tier_percentage_when_higher(self, calculator):
        """Test the 10% fee wins when it exceeds the tier minimum."""
        quote = calculator.distance_quote(Decimal("15"), Decimal("500"))
        assert quote.fee == Decimal("50.0")

    def test_far_tier(self, calculator):
        """Test beyond 20 miles: at least $60 fee and $60 minimum order."""
        quote = calculator.distance_quote(Decimal("32"), Decimal("100"))
        assert quote.fee == Decimal("60")
        assert quote.minimum_order == Decimal("60")

    def test_minimum_order_flag(self, calculator):
        """Test the breakdown reports when the minimum order is not met."""
        quote = DeliveryQuote(fee=Decimal("60"), minimum_order=Decimal("60"), is_distance_based=True)
        assert not calculator.calculate(Decimal("59.99"), quote).meets_minimum_order
        assert calculator.calculate(Decimal("60"), quote).meets_minimum_order

    def test_quote_round_trips_through_storage(self):
        """Test a stored quote dict rebuilds the same quote."""
        quote = DeliveryQuote(Decimal("40"), Decimal("40"), True, Decimal("12.3"))
        assert DeliveryQuote.from_dict(quote.to_dict()) == quote


class TestTipAndRounding:
    """Tests for tips and cent rounding."""

    def test_tip_is_added(self, calculator):
        """Test the tip is part of the final total."""
        pricing = calculator.calculate(Decimal("50"), tip=Decimal("5.00"))
        assert pricing.final_total == Decimal("79.125")

    def test_negative_tip_rejected(self, calculator):
        """Test a negative tip is refused."""
        with pytest.raises(ValueError):
            calculator.calculate(Decimal("50"), tip=Decimal("-1"))

    def test_tip_percentage(self, calculator):
        """Test percentage tips are rounded to the cent."""
        assert calculator.tip_for_percentage(Decimal("33.33"), 15) == Decimal("5.00")

    @pytest.mark.parametrize("amount,cents", [
        (Decimal("74.125"), 7413),
        (Decimal("0.005"), 1),
        (Decimal("10"), 1000),
    ])
    def test_to_cents_rounds_half_up(self, amount, cents):
        """Test cents are rounded half up."""
        assert to_cents(amount) == cents
