"""ORM-level checks for storefront records.

Attached with ``@validates`` so checkout, group joins, the admin console
and Stripe webhooks all go through them.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

ORDER_STATUSES = ("confirmed", "cancelled", "delivered")
PAYMENT_STATUSES = ("pending", "paid", "failed")


def money(key: str, value):
    """Coerce to a cent-precision Decimal, rejecting negatives."""
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} is not a number: {value!r}")
    if amount < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def one_of(key: str, value, allowed):
    if value is not None and value not in allowed:
        raise ValueError(f"{key} must be one of {', '.join(allowed)}, got {value!r}")
    return value


def json_object(key: str, value):
    if value is not None and not isinstance(value, dict):
        raise ValueError(f"{key} must be an object, got {type(value).__name__}")
    return value


def json_array(key: str, value):
    if value is not None and not isinstance(value, list):
        raise ValueError(f"{key} must be an array, got {type(value).__name__}")
    return value
