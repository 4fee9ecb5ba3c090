"""Previous-order continuation: add to the last order or start a new one."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from storefront.api.deps import Checkout
from storefront.api.errors import CHECKOUT_ERRORS, checkout_http_error
from storefront.core.rate_limit import limiter
from storefront.schemas.checkout import LastOrderResponse
from storefront.services.delivery_info import LastOrderInfo

logger = logging.getLogger(__name__)

router = APIRouter()


def _last_order_response(info: LastOrderInfo) -> LastOrderResponse:
    return LastOrderResponse(
        order_number=info.order_number,
        total=info.total,
        delivery_date=info.delivery_date,
        delivery_time=info.delivery_time,
        address=info.address,
        instructions=info.instructions,
        share_token=info.share_token,
    )


@router.get("/last", response_model=LastOrderResponse)
def get_last_order(checkout: Checkout):
    """The shopper's previous order while it can still be added to."""
    info = checkout.last_order()
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No recent order")
    return _last_order_response(info)


@router.post("/last/add-to-order", response_model=LastOrderResponse)
@limiter.limit("30/minute")
def add_to_last_order(request: Request, checkout: Checkout):
    try:
        info = checkout.continue_previous_order()
    except CHECKOUT_ERRORS as e:
        raise checkout_http_error(e)
    return _last_order_response(info)


@router.post("/last/new-order", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def start_new_order(request: Request, checkout: Checkout):
    checkout.start_new_order()
