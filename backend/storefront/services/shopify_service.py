"""
Shopify Admin API integration.

- Collection catalog via the GraphQL Admin API (cached per handle)
- Order mirroring via the REST Admin API after a successful payment
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from storefront.core.cache import CatalogCache, catalog_cache
from storefront.core.config import settings
from storefront.services.delivery_info import format_address

logger = logging.getLogger(__name__)

COLLECTION_PRODUCTS_QUERY = """
query CollectionProducts($handle: String!, $first: Int!) {
  collectionByHandle(handle: $handle) {
    id
    title
    products(first: $first) {
      edges {
        node {
          id
          title
          handle
          description
          images(first: 1) { edges { node { url } } }
          variants(first: 25) {
            edges {
              node {
                id
                title
                price
                availableForSale
              }
            }
          }
        }
      }
    }
  }
}
"""


class CatalogError(Exception):
    """The catalog could not be loaded from Shopify."""


class CollectionNotFoundError(CatalogError):
    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Collection '{handle}' not found")


@dataclass
class CatalogVariant:
    id: str
    title: str
    price: Decimal
    available: bool = True


@dataclass
class CatalogProduct:
    id: str
    title: str
    handle: str
    price: Decimal
    description: str = ""
    image: Optional[str] = None
    variants: List[CatalogVariant] = field(default_factory=list)


def _edges(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [edge["node"] for edge in (connection or {}).get("edges", [])]


def parse_product(node: Dict[str, Any]) -> CatalogProduct:
    """Map a GraphQL product node; price comes from the first variant."""
    variants = [
        CatalogVariant(
            id=v["id"],
            title=v.get("title", ""),
            price=Decimal(str(v.get("price") or "0")),
            available=bool(v.get("availableForSale", True)),
        )
        for v in _edges(node.get("variants"))
    ]
    images = _edges(node.get("images"))
    return CatalogProduct(
        id=node["id"],
        title=node.get("title", ""),
        handle=node.get("handle", ""),
        description=node.get("description") or "",
        price=variants[0].price if variants else Decimal("0"),
        image=images[0]["url"] if images else None,
        variants=variants,
    )


def split_name(full_name: str) -> tuple:
    parts = (full_name or "").split(" ")
    return parts[0], " ".join(parts[1:])


class ShopifyService:
    """Client for one Shopify store."""

    def __init__(
        self,
        store_domain: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        cache: Optional[CatalogCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_domain = store_domain if store_domain is not None else settings.shopify_store_domain
        self.access_token = access_token if access_token is not None else settings.shopify_access_token
        self.api_version = api_version or settings.shopify_api_version
        self.cache = cache if cache is not None else catalog_cache
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    # ==================== CATALOG ====================

    async def fetch_collection_products(self, handle: str) -> List[CatalogProduct]:
        """Products of a collection, cached for ``catalog_cache_ttl_seconds``."""
        cache_key = f"collection:{self.store_domain}:{handle}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        if not self.is_configured:
            raise CatalogError("Shopify is not configured")

        payload = {
            "query": COLLECTION_PRODUCTS_QUERY,
            "variables": {"handle": handle, "first": settings.shopify_products_per_collection},
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/graphql.json",
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Shopify catalog request failed for collection {handle}: {e}")
            raise CatalogError("Could not load products") from e

        if data.get("errors"):
            logger.error(f"Shopify GraphQL errors for collection {handle}: {data['errors']}")
            raise CatalogError("Could not load products")

        collection = (data.get("data") or {}).get("collectionByHandle")
        if collection is None:
            raise CollectionNotFoundError(handle)

        products = [parse_product(node) for node in _edges(collection.get("products"))]
        self.cache.set(cache_key, products)
        logger.info(f"Loaded {len(products)} products for collection {handle}")
        return products

    # ==================== ORDERS ====================

    def build_order_payload(self, order) -> Dict[str, Any]:
        """REST order body for a paid storefront order."""
        first_name, last_name = split_name(order.customer_name)
        address = order.delivery_address or {}
        postal = {
            "first_name": first_name,
            "last_name": last_name,
            "address1": address.get("street", ""),
            "city": address.get("city", ""),
            "province": address.get("state", ""),
            "country": "US",
            "zip": address.get("zip_code", ""),
            "phone": order.customer_phone or "",
        }
        note_lines = [
            "DELIVERY ORDER",
            f"Delivery Date: {order.delivery_date.isoformat()}",
            f"Delivery Time: {order.delivery_time}",
            f"Delivery Address: {format_address(address)}",
        ]
        if order.delivery_instructions:
            note_lines.append(f"Special Instructions: {order.delivery_instructions}")
        note_lines.append(f"Stripe Payment ID: {order.payment_intent_id}")

        return {
            "order": {
                "line_items": [
                    {
                        "title": item["title"],
                        "price": str(item["price"]),
                        "quantity": item["quantity"],
                        "requires_shipping": True,
                    }
                    for item in order.line_items
                ],
                "billing_address": postal,
                "shipping_address": postal,
                "email": order.customer_email,
                "phone": order.customer_phone or "",
                "financial_status": "paid",
                "note": "\n".join(note_lines),
                "tags": f"delivery-order, delivery-{order.delivery_date.isoformat()}, stripe-{order.payment_intent_id}",
                "shipping_lines": [{
                    "title": "Scheduled Delivery Service",
                    "price": f"{Decimal(order.delivery_fee):.2f}",
                    "code": "DELIVERY",
                }],
            }
        }

    async def create_order(self, order) -> Optional[str]:
        """Mirror a paid order into Shopify. Returns the Shopify order id, or None on failure."""
        if not self.is_configured:
            logger.info(f"Shopify not configured; order {order.order_number} not mirrored")
            return None

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/orders.json",
                    json=self.build_order_payload(order),
                    headers=self._headers(),
                )
                response.raise_for_status()
                shopify_order_id = str(response.json()["order"]["id"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Shopify order mirror failed for {order.order_number}: {e}")
            return None

        logger.info(f"Order {order.order_number} mirrored to Shopify as {shopify_order_id}")
        return shopify_order_id

