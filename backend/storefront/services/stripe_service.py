"""
Stripe Payment Service
Creates, confirms and verifies payment intents for storefront checkouts.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import stripe

from storefront.core.config import settings
from storefront.services.pricing_service import PricingBreakdown, quantize_money, to_cents

logger = logging.getLogger(__name__)

MIN_AMOUNT_CENTS = 50
MAX_AMOUNT_CENTS = 1_000_000
AMOUNT_TOLERANCE_CENTS = 1
METADATA_VALUE_LIMIT = 500
CART_SUMMARY_LIMIT = 300


class PaymentStatus(str, Enum):
    """Payment intent status values."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"


class PaymentError(Exception):
    """A payment could not be created or completed."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class PaymentAmountMismatchError(Exception):
    """The amount shown to the shopper disagrees with the computed total."""

    def __init__(self, submitted_cents: int, expected_cents: int):
        self.submitted_cents = submitted_cents
        self.expected_cents = expected_cents
        super().__init__(
            f"Payment amount mismatch: submitted {submitted_cents} cents, computed {expected_cents} cents"
        )


@dataclass
class PaymentIntentResult:
    payment_intent_id: str
    client_secret: Optional[str]
    status: str
    amount: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED.value

    @property
    def requires_action(self) -> bool:
        return self.status == PaymentStatus.REQUIRES_ACTION.value


@dataclass
class PaymentRequest:
    """A validated payment intent ready to send to Stripe."""
    amount_cents: int
    currency: str
    receipt_email: str
    description: str
    metadata: Dict[str, str]


def payment_intent_id_from_secret(client_secret: str) -> str:
    """``pi_123_secret_abc`` → ``pi_123``."""
    return client_secret.split("_secret_")[0]


def _truncate(value: Any, limit: int = METADATA_VALUE_LIMIT) -> str:
    if value is None:
        return ""
    return str(value)[:limit]


def build_cart_summary(line_items: List[Dict[str, Any]]) -> str:
    summary = ", ".join(
        f"{item['quantity']}x {str(item.get('title', ''))[:25]}" for item in line_items
    )
    return summary[:CART_SUMMARY_LIMIT]


def build_payment_request(
    amount_cents: int,
    pricing: PricingBreakdown,
    line_items: List[Dict[str, Any]],
    customer: Dict[str, Any],
    delivery: Dict[str, Any],
    group_order_token: Optional[str] = None,
    currency: Optional[str] = None,
) -> PaymentRequest:
    """Validate a checkout and build the payment intent parameters.

    Raises ValueError for incomplete checkouts and
    PaymentAmountMismatchError when the submitted amount is more than one
    cent away from (discounted) subtotal + delivery fee + tax + tip.
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValueError("Amount must be a positive number of cents")
    if not line_items:
        raise ValueError("Cart items are required")
    if not customer.get("email"):
        raise ValueError("Customer email is required")
    if not delivery.get("address"):
        raise ValueError("Delivery address is required")

    expected_cents = to_cents(
        pricing.discounted_subtotal + pricing.final_delivery_fee + pricing.sales_tax + pricing.tip
    )
    if abs(amount_cents - expected_cents) > AMOUNT_TOLERANCE_CENTS:
        raise PaymentAmountMismatchError(amount_cents, expected_cents)

    if amount_cents < MIN_AMOUNT_CENTS or amount_cents > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount must be between {MIN_AMOUNT_CENTS} and {MAX_AMOUNT_CENTS} cents")

    discount = pricing.applied_discount
    customer_name = f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip()
    metadata = {
        "customer_name": _truncate(customer_name),
        "customer_email": _truncate(customer.get("email")),
        "customer_phone": _truncate(customer.get("phone")),
        "delivery_date": _truncate(delivery.get("date")),
        "delivery_time": _truncate(delivery.get("time_slot")),
        "delivery_address": _truncate(delivery.get("address")),
        "delivery_instructions": _truncate(delivery.get("instructions")),
        "cart_summary": build_cart_summary(line_items),
        "item_count": str(sum(int(item["quantity"]) for item in line_items)),
        "subtotal": _money(pricing.subtotal),
        "shipping_fee": _money(pricing.final_delivery_fee),
        "sales_tax": _money(pricing.sales_tax),
        "tip_amount": _money(pricing.tip),
        "total_amount": _money(Decimal(amount_cents) / 100),
        "discount_code": _truncate(discount.code if discount else None),
        "discount_type": _truncate(discount.type.value if discount else None),
        "discount_value": _truncate(discount.value if discount else None),
        "discount_amount": _money(pricing.discount_amount),
        "group_order_token": _truncate(group_order_token),
    }

    return PaymentRequest(
        amount_cents=amount_cents,
        currency=(currency or settings.stripe_currency).lower(),
        receipt_email=customer["email"],
        description=f"Delivery order for {customer_name or customer['email']}",
        metadata=metadata,
    )


def _money(amount: Decimal) -> str:
    return str(quantize_money(amount))


class StripePaymentService:
    """
    Stripe payment intents for checkout.

    Features:
    - Intent creation (client-side confirmation via Elements)
    - Server-side confirmation with a payment method
    - Intent retrieval for order completion
    - Webhook signature verification
    """

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        if self.api_key:
            stripe.api_key = self.api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise PaymentError("Stripe is not configured", code="not_configured")

    @staticmethod
    def _to_result(intent) -> PaymentIntentResult:
        return PaymentIntentResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            metadata=dict(intent.metadata or {}),
        )

    def create_payment_intent(
        self,
        request: PaymentRequest,
        payment_method_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        """Create a payment intent, confirming it immediately when a payment method is given."""
        self._require_configured()
        params: Dict[str, Any] = {
            "amount": request.amount_cents,
            "currency": request.currency,
            "receipt_email": request.receipt_email,
            "description": request.description,
            "metadata": request.metadata,
        }
        if payment_method_id:
            params.update({
                "payment_method": payment_method_id,
                "confirm": True,
                "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            })
        else:
            params["automatic_payment_methods"] = {"enabled": True}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.CardError as e:
            logger.warning(f"Card declined: {e.user_message or e}")
            raise PaymentError(e.user_message or "Your card was declined", code=e.code) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating payment intent: {str(e)}")
            raise PaymentError("Payment could not be processed. Please try again.", code=e.code) from e

        logger.info(f"Created payment intent {intent.id} for {request.amount_cents} {request.currency}")
        return self._to_result(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        self._require_configured()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error retrieving payment intent {payment_intent_id}: {str(e)}")
            raise PaymentError("Payment could not be verified", code=e.code) from e
        return self._to_result(intent)

    def construct_webhook_event(self, payload: bytes, signature: str):
        """Verify a webhook signature and return the event."""
        if not self.webhook_secret:
            raise PaymentError("Webhook secret not configured", code="not_configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise PaymentError("Invalid webhook payload", code="invalid_payload") from e
        except stripe.SignatureVerificationError as e:
            raise PaymentError("Invalid webhook signature", code="invalid_signature") from e


_stripe_service: Optional[StripePaymentService] = None


def get_stripe_service() -> StripePaymentService:
    """Get the configured Stripe service singleton."""
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripePaymentService()
    return _stripe_service
