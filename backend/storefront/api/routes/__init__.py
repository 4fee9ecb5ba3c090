"""API routes."""

from fastapi import APIRouter

from storefront.api.routes import (
    admin, apps, cart, catalog, checkout, group_orders, orders, payments, pricing,
)

api_router = APIRouter()

# Shopper-facing routes (session scoped)
api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(checkout.router, prefix="/checkout", tags=["checkout"])
api_router.include_router(pricing.router, prefix="/pricing", tags=["pricing"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(group_orders.router, prefix="/group-orders", tags=["group-orders"])
api_router.include_router(catalog.router, prefix="/catalog", tags=["catalog"])
api_router.include_router(apps.router, prefix="/apps", tags=["apps"])

# Stripe
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])

# Admin console
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
