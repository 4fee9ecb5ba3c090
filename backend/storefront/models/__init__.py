"""SQLAlchemy models."""

from storefront.models.session_state import SessionStateEntry
from storefront.models.order import StorefrontOrder
from storefront.models.app_variation import DeliveryAppVariation

__all__ = [
    "SessionStateEntry",
    "StorefrontOrder",
    "DeliveryAppVariation",
]
