"""Cart schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, field_validator

from storefront.core.sanitize import sanitize_text


class CartItemAdd(BaseModel):
    """Add units of a product variant. ``quantity`` may be negative to decrement."""
    product_id: str
    variant: Optional[str] = None
    quantity: int = 1
    title: Optional[str] = None
    price: Optional[Decimal] = None
    image: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def _validate_price(cls, v):
        if v is not None and Decimal(str(v)) < 0:
            raise ValueError("price cannot be negative")
        return v

    @field_validator("title", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    id: str
    title: str
    price: float
    quantity: int
    image: Optional[str] = None
    variant: Optional[str] = None
    line_total: float


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    total_items: int
    total_price: float
