"""
Stripe payment routes: publishable configuration and webhook handling.

Payment intents themselves are created through the checkout routes so the
server-side pricing guard always runs first.
"""

import logging

from fastapi import APIRouter, Header, HTTPException, Request

from storefront.core.config import settings
from storefront.core.rate_limit import limiter
from storefront.db.session import DbSession
from storefront.services.order_service import OrderService
from storefront.services.stripe_service import PaymentError, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter()

PAYMENT_STATUS_BY_EVENT = {
    "payment_intent.succeeded": "paid",
    "payment_intent.payment_failed": "failed",
}


@router.get("/config")
def get_payment_config():
    """Publishable key for Stripe.js. Never exposes the secret key."""
    return {
        "publishable_key": settings.stripe_publishable_key,
        "currency": settings.stripe_currency,
        "configured": settings.stripe_configured,
    }


@router.post("/webhook")
@limiter.limit("60/minute")
async def stripe_webhook(
    request: Request,
    db: DbSession,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
):
    """Handle Stripe webhook events.

    This endpoint does NOT require authentication. Stripe signs the
    payload and we verify using ``STRIPE_WEBHOOK_SECRET``.
    """
    payload = await request.body()

    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    try:
        event = get_stripe_service().construct_webhook_event(payload, stripe_signature)
    except PaymentError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    event_type = event["type"]
    new_status = PAYMENT_STATUS_BY_EVENT.get(event_type)
    if new_status is None:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return {"received": True, "handled": False}

    intent = event["data"]["object"]
    order = OrderService(db).mark_payment_status(intent["id"], new_status)
    if order is None:
        logger.info(f"Stripe event {event_type} for unknown payment intent {intent['id']}")
    return {"received": True, "handled": order is not None}
