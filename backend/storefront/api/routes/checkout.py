"""
Checkout routes.

The flow is date/time → address → contact → payment. Every step endpoint
returns the refreshed checkout state; pricing is recomputed from the cart
on each read. Payment endpoints are sync (Stripe SDK) and run in the
threadpool.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from storefront.api.deps import Checkout
from storefront.api.errors import CHECKOUT_ERRORS, checkout_http_error
from storefront.core.rate_limit import limiter
from storefront.schemas.checkout import (
    AddressInput,
    CheckoutResultResponse,
    CheckoutStateResponse,
    CustomerInput,
    DateTimeSelection,
    DiscountApply,
    DiscountResponse,
    OrderComplete,
    OrderResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentSubmit,
    PricingResponse,
    TipUpdate,
)
from storefront.services.checkout_service import CheckoutStep
from storefront.services.order_service import mirror_order_to_shopify

logger = logging.getLogger(__name__)

router = APIRouter()


def _state(checkout) -> CheckoutStateResponse:
    return CheckoutStateResponse.from_view(checkout.view())


# ==================== STEPS ====================

@router.get("", response_model=CheckoutStateResponse)
def get_checkout(checkout: Checkout):
    return _state(checkout)


@router.post("/start", response_model=CheckoutStateResponse)
@limiter.limit("30/minute")
def start_checkout(request: Request, checkout: Checkout):
    try:
        return CheckoutStateResponse.from_view(checkout.start())
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)


@router.post("/datetime", response_model=CheckoutStateResponse)
@limiter.limit("30/minute")
def confirm_datetime(request: Request, checkout: Checkout, body: DateTimeSelection):
    try:
        checkout.confirm_datetime(body.date, body.time_slot)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return _state(checkout)


@router.post("/address", response_model=CheckoutStateResponse)
@limiter.limit("30/minute")
async def confirm_address(request: Request, checkout: Checkout, body: AddressInput):
    try:
        await checkout.confirm_address(body.model_dump())
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return _state(checkout)


@router.post("/customer", response_model=CheckoutStateResponse)
@limiter.limit("30/minute")
def confirm_customer(request: Request, checkout: Checkout, body: CustomerInput):
    try:
        checkout.confirm_customer(body.model_dump())
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return _state(checkout)


@router.post("/edit/{step}", response_model=CheckoutStateResponse)
@limiter.limit("30/minute")
def edit_step(request: Request, checkout: Checkout, step: str):
    try:
        checkout.edit_step(CheckoutStep(step))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Step '{step}' cannot be edited")
    return _state(checkout)


# ==================== PRICING ====================

@router.get("/pricing", response_model=PricingResponse)
def get_pricing(checkout: Checkout):
    return PricingResponse.from_breakdown(checkout.get_pricing())


@router.post("/discount", response_model=PricingResponse)
@limiter.limit("10/minute")
def apply_discount(request: Request, checkout: Checkout, body: DiscountApply):
    try:
        checkout.apply_discount(body.code)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return PricingResponse.from_breakdown(checkout.get_pricing())


@router.delete("/discount", response_model=PricingResponse)
@limiter.limit("30/minute")
def remove_discount(request: Request, checkout: Checkout):
    checkout.remove_discount()
    return PricingResponse.from_breakdown(checkout.get_pricing())


@router.get("/discount", response_model=DiscountResponse)
def get_discount(checkout: Checkout):
    discount = checkout.applied_discount()
    if discount is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No discount applied")
    return DiscountResponse(code=discount.code, type=discount.type.value, value=float(discount.value))


@router.put("/tip", response_model=PricingResponse)
@limiter.limit("30/minute")
def set_tip(request: Request, checkout: Checkout, body: TipUpdate):
    try:
        checkout.set_tip(amount=body.amount, percentage=body.percentage)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return PricingResponse.from_breakdown(checkout.get_pricing())


# ==================== PAYMENT ====================

@router.post("/payment-intent", response_model=PaymentIntentResponse)
@limiter.limit("10/minute")
def create_payment_intent(request: Request, checkout: Checkout, body: PaymentIntentCreate):
    """Create an intent for client-side confirmation with Stripe.js.

    The shopper's displayed total must match the server total to the cent
    (one cent of rounding tolerance).
    """
    try:
        intent = checkout.create_payment_intent(body.expected_total)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return PaymentIntentResponse(
        payment_intent_id=intent.payment_intent_id,
        client_secret=intent.client_secret,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
    )


@router.post("/pay", response_model=CheckoutResultResponse)
@limiter.limit("10/minute")
def submit_payment(request: Request, checkout: Checkout, body: PaymentSubmit, background_tasks: BackgroundTasks):
    """Confirm a payment server-side. 3-D Secure returns ``requires_action``."""
    try:
        result = checkout.submit_payment(body.payment_method_id, body.expected_total)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)

    order = None
    if result.order is not None:
        background_tasks.add_task(mirror_order_to_shopify, result.order.id)
        order = OrderResponse.model_validate(result.order)
    return CheckoutResultResponse(
        status=result.status,
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
        requires_action=result.client_secret is not None and result.order is None,
        order=order,
    )


@router.post("/complete", response_model=OrderResponse)
@limiter.limit("10/minute")
def complete_order(request: Request, checkout: Checkout, body: OrderComplete, background_tasks: BackgroundTasks):
    """Create the order for an intent the client already confirmed. Repeat calls return the same order."""
    try:
        result = checkout.complete_order(body.payment_intent_id)
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    if result.created:
        background_tasks.add_task(mirror_order_to_shopify, result.order.id)
    return result.order
