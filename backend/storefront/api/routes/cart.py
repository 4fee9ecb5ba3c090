"""Shopper cart routes."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from storefront.api.deps import ShopperStore
from storefront.core.rate_limit import limiter
from storefront.schemas.cart import CartItemAdd, CartItemResponse, CartItemUpdate, CartResponse
from storefront.services.cart_service import CartService

logger = logging.getLogger(__name__)

router = APIRouter()


def _cart_response(cart: CartService) -> CartResponse:
    return CartResponse(
        items=[
            CartItemResponse(
                id=line.id,
                title=line.title,
                price=float(line.price),
                quantity=line.quantity,
                image=line.image,
                variant=line.variant,
                line_total=float(line.line_total),
            )
            for line in cart.items()
        ],
        total_items=cart.get_total_items(),
        total_price=float(cart.get_total_price()),
    )


@router.get("", response_model=CartResponse)
def get_cart(store: ShopperStore):
    return _cart_response(CartService(store))


@router.post("/items", response_model=CartResponse)
@limiter.limit("60/minute")
def add_cart_item(request: Request, store: ShopperStore, item: CartItemAdd):
    """Add units of a product; an existing (product, variant) line is incremented."""
    cart = CartService(store)
    metadata = {"title": item.title or "", "image": item.image}
    if item.price is not None:
        metadata["price"] = item.price
    try:
        cart.add_or_update_quantity(item.product_id, item.variant, item.quantity, metadata)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _cart_response(cart)


@router.put("/items/{product_id}", response_model=CartResponse)
@limiter.limit("60/minute")
def update_cart_item(
    request: Request,
    store: ShopperStore,
    product_id: str,
    body: CartItemUpdate,
    variant: Optional[str] = Query(None),
):
    cart = CartService(store)
    try:
        cart.set_quantity(product_id, variant, body.quantity)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not in cart")
    return _cart_response(cart)


@router.delete("/items/{product_id}", response_model=CartResponse)
@limiter.limit("60/minute")
def remove_cart_item(request: Request, store: ShopperStore, product_id: str, variant: Optional[str] = Query(None)):
    cart = CartService(store)
    if not cart.remove(product_id, variant):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not in cart")
    return _cart_response(cart)


@router.delete("", response_model=CartResponse)
@limiter.limit("30/minute")
def empty_cart(request: Request, store: ShopperStore):
    cart = CartService(store)
    cart.empty()
    return _cart_response(cart)
