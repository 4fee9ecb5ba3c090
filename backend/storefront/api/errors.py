"""Translate service errors into HTTP errors."""

import logging

from fastapi import HTTPException, status

from storefront.services.checkout_service import (
    CheckoutValidationError,
    EmptyCartError,
    NoPreviousOrderError,
    OrderNotFoundError,
    PaymentInProgressError,
)
from storefront.services.pricing_service import InvalidDiscountCodeError
from storefront.services.stripe_service import PaymentAmountMismatchError, PaymentError

logger = logging.getLogger(__name__)

AMOUNT_MISMATCH_DETAIL = "Payment amount does not match your order total. Please refresh and try again."


def checkout_http_error(exc: Exception) -> HTTPException:
    """HTTPException for a checkout failure. Unknown errors are re-raised by the caller."""
    if isinstance(exc, CheckoutValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Please fix the highlighted fields", "errors": exc.errors},
        )
    if isinstance(exc, EmptyCartError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Your cart is empty")
    if isinstance(exc, PaymentInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A payment is already being processed")
    if isinstance(exc, NoPreviousOrderError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No previous order to add to")
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if isinstance(exc, InvalidDiscountCodeError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid discount code")
    if isinstance(exc, PaymentAmountMismatchError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=AMOUNT_MISMATCH_DETAIL)
    if isinstance(exc, PaymentError):
        if exc.code == "not_configured":
            return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are not available")
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": str(exc), "code": exc.code},
        )
    raise exc


CHECKOUT_ERRORS = (
    CheckoutValidationError,
    EmptyCartError,
    PaymentInProgressError,
    NoPreviousOrderError,
    OrderNotFoundError,
    InvalidDiscountCodeError,
    PaymentAmountMismatchError,
    PaymentError,
)
