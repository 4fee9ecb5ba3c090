"""Group order and catalog schemas."""

from typing import List, Optional

from pydantic import BaseModel, field_validator

from storefront.core.sanitize import sanitize_text


class GroupOrderParticipant(BaseModel):
    name: str
    joined_at: Optional[str] = None


class GroupOrderResponse(BaseModel):
    share_token: str
    order_number: str
    customer_name: str
    delivery_date: str
    delivery_time: str
    delivery_address: str
    participant_count: int
    participants: List[GroupOrderParticipant] = []
    group_order_name: Optional[str] = None


class GroupOrderJoin(BaseModel):
    email: str
    name: str

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("Please enter a valid email address")
        return v


class CatalogVariantResponse(BaseModel):
    id: str
    title: str
    price: float
    available: bool


class CatalogProductResponse(BaseModel):
    id: str
    title: str
    handle: str
    price: float
    description: str = ""
    image: Optional[str] = None
    variants: List[CatalogVariantResponse] = []
