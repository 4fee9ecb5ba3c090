"""Delivery quote preview for an address before checkout."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Query, Request

from storefront.core.rate_limit import limiter
from storefront.schemas.checkout import PricingResponse
from storefront.services.distance_service import DistanceService
from storefront.services.pricing_service import PricingCalculator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/quote", response_model=PricingResponse)
@limiter.limit("20/minute")
async def get_delivery_quote(
    request: Request,
    address: str = Query(..., min_length=5, max_length=300),
    subtotal: Decimal = Query(..., ge=0),
):
    """Delivery fee, tax and minimum order for a subtotal shipped to ``address`` (no tip)."""
    calculator = PricingCalculator()
    quote = await DistanceService().quote(address, subtotal, calculator)
    return PricingResponse.from_breakdown(calculator.calculate(subtotal, quote))
