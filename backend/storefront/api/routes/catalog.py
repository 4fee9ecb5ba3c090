"""Shopify collection products for the storefront tabs."""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request, status

from storefront.core.rate_limit import limiter
from storefront.schemas.group_order import CatalogProductResponse
from storefront.services.shopify_service import CatalogError, CollectionNotFoundError, ShopifyService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/collections/{handle}/products", response_model=List[CatalogProductResponse])
@limiter.limit("60/minute")
async def get_collection_products(request: Request, handle: str):
    try:
        products = await ShopifyService().fetch_collection_products(handle)
    except CollectionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Collection not found")
    except CatalogError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return [CatalogProductResponse.model_validate(p, from_attributes=True) for p in products]
