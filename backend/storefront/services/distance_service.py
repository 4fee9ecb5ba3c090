"""Driving distance lookup (Google Distance Matrix) for delivery quotes."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from storefront.core.config import settings
from storefront.services.pricing_service import DeliveryQuote, PricingCalculator

logger = logging.getLogger(__name__)

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
METERS_PER_MILE = Decimal("1609.344")


class DistanceLookupError(Exception):
    """The distance to an address could not be determined."""


class DistanceService:
    """Measures driving distance from the store to a delivery address."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        store_address: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.store_address = store_address or settings.store_address
        self._transport = transport

    async def get_distance_miles(self, destination: str) -> Decimal:
        if not self.api_key:
            raise DistanceLookupError("Google Maps API key not configured")

        params = {
            "units": "imperial",
            "origins": self.store_address,
            "destinations": destination,
            "mode": "driving",
            "key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(DISTANCE_MATRIX_URL, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise DistanceLookupError(f"Distance Matrix request failed: {e}") from e
        except ValueError as e:
            raise DistanceLookupError("Distance Matrix returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise DistanceLookupError("Malformed Distance Matrix response")
        if data.get("status") != "OK":
            raise DistanceLookupError(f"Google Maps API error: {data.get('status')}")

        try:
            element = dict(data["rows"][0]["elements"][0])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise DistanceLookupError("Malformed Distance Matrix response") from e

        if element.get("status") != "OK":
            raise DistanceLookupError(f"Could not calculate distance to this address ({element.get('status')})")

        try:
            meters = Decimal(str(element["distance"]["value"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise DistanceLookupError("Distance Matrix element has no distance") from e
        miles = (meters / METERS_PER_MILE).quantize(Decimal("0.1"))
        logger.info(f"Distance to delivery address: {miles} mi")
        return miles

    async def quote(
        self,
        destination: str,
        subtotal: Decimal,
        calculator: Optional[PricingCalculator] = None,
    ) -> DeliveryQuote:
        """Distance-tiered quote, falling back to the standard fee on any lookup failure."""
        calculator = calculator or PricingCalculator()
        try:
            miles = await self.get_distance_miles(destination)
        except DistanceLookupError as e:
            logger.warning(f"Using standard delivery pricing: {e}")
            return calculator.standard_quote()
        return calculator.distance_quote(miles, subtotal)
