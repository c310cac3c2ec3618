import logging
from typing import Any, Dict, List, Optional

import requests

from core.config import settings
from models.store import Store
from schemas.catalog import CatalogProduct, ProductImage, ProductVariant

logger = logging.getLogger(__name__)

# Admin API tokens; anything else is treated as a Storefront token
ADMIN_TOKEN_PREFIXES = ("shpat_", "shpca_")

_PRODUCT_FIELDS = """
    id
    handle
    title
    descriptionHtml
    vendor
    productType
    tags
    images(first: 10) { edges { node { id url altText } } }
    variants(first: 10) {
      edges {
        node {
          id
          title
          price { amount }
          compareAtPrice { amount }
          availableForSale
          quantityAvailable
          sku
        }
      }
    }
"""

PRODUCTS_QUERY = "query getProducts($first: Int!) { products(first: $first) { edges { node { %s } } } }" % _PRODUCT_FIELDS
PRODUCT_BY_HANDLE_QUERY = "query getProduct($handle: String!) { product(handle: $handle) { %s } }" % _PRODUCT_FIELDS


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def product_from_admin(data: Dict[str, Any]) -> CatalogProduct:
    title = data.get("title") or ""
    tags = data.get("tags") or ""
    return CatalogProduct(
        id=str(data["id"]) if data.get("id") is not None else None,
        handle=data["handle"],
        title=title,
        description=data.get("body_html") or "",
        vendor=data.get("vendor") or "",
        product_type=data.get("product_type") or "",
        tags=[tag.strip() for tag in tags.split(",") if tag.strip()] if isinstance(tags, str) else list(tags),
        images=[
            ProductImage(id=str(image.get("id")), src=image["src"], alt=image.get("alt") or title)
            for image in data.get("images") or []
        ],
        variants=[
            ProductVariant(
                id=str(variant.get("id")),
                title=variant.get("title") or "",
                price=_to_float(variant.get("price")) or 0.0,
                compare_at_price=_to_float(variant.get("compare_at_price")),
                available=(variant.get("inventory_quantity") or 0) > 0,
                inventory_quantity=variant.get("inventory_quantity"),
                sku=variant.get("sku") or "",
            )
            for variant in data.get("variants") or []
        ],
    )


def product_from_storefront(node: Dict[str, Any]) -> CatalogProduct:
    title = node.get("title") or ""
    images = [edge["node"] for edge in (node.get("images") or {}).get("edges", [])]
    variants = [edge["node"] for edge in (node.get("variants") or {}).get("edges", [])]
    return CatalogProduct(
        id=node.get("id"),
        handle=node["handle"],
        title=title,
        description=node.get("descriptionHtml") or node.get("description") or "",
        vendor=node.get("vendor") or "",
        product_type=node.get("productType") or "",
        tags=node.get("tags") or [],
        images=[ProductImage(id=image.get("id"), src=image["url"], alt=image.get("altText") or title) for image in images],
        variants=[
            ProductVariant(
                id=variant.get("id"),
                title=variant.get("title") or "",
                price=_to_float((variant.get("price") or {}).get("amount")) or 0.0,
                compare_at_price=_to_float((variant.get("compareAtPrice") or {}).get("amount")),
                available=bool(variant.get("availableForSale")),
                inventory_quantity=variant.get("quantityAvailable"),
                sku=variant.get("sku") or "",
            )
            for variant in variants
        ],
    )


class ShopifyCatalog:
    """Read-only product lookups against one Shopify shop.

    Transport and HTTP errors propagate to the caller.
    """

    def __init__(self, shop_domain: str, access_token: str, api_version: Optional[str] = None, timeout: Optional[float] = None):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout if timeout is not None else settings.CATALOG_TIMEOUT_SECONDS

    @property
    def uses_admin_api(self) -> bool:
        return self.access_token.startswith(ADMIN_TOKEN_PREFIXES)

    def _admin_get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.get(
            f"https://{self.shop_domain}/admin/api/{self.api_version}/{path}",
            params=params,
            headers={"X-Shopify-Access-Token": self.access_token, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def _storefront_query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.post(
            f"https://{self.shop_domain}/api/{self.api_version}/graphql.json",
            json={"query": query, "variables": variables},
            headers={"X-Shopify-Storefront-Access-Token": self.access_token, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("errors"):
            raise RuntimeError(f"Storefront API error from {self.shop_domain}: {payload['errors']}")
        return payload.get("data") or {}

    def get_product(self, handle: str) -> Optional[CatalogProduct]:
        if self.uses_admin_api:
            data = self._admin_get("products.json", {"handle": handle, "status": "active"})
            products = data.get("products") or []
            return product_from_admin(products[0]) if products else None

        data = self._storefront_query(PRODUCT_BY_HANDLE_QUERY, {"handle": handle})
        node = data.get("product")
        return product_from_storefront(node) if node else None

    def list_products(self, limit: Optional[int] = None) -> List[CatalogProduct]:
        limit = limit or settings.CATALOG_PRODUCT_LIMIT
        if self.uses_admin_api:
            data = self._admin_get("products.json", {"limit": limit, "status": "active"})
            products = [product_from_admin(product) for product in data.get("products") or []]
        else:
            data = self._storefront_query(PRODUCTS_QUERY, {"first": limit})
            edges = (data.get("products") or {}).get("edges", [])
            products = [product_from_storefront(edge["node"]) for edge in edges]
        logger.info(f"Fetched {len(products)} products from {self.shop_domain}")
        return products


def catalog_for_store(store: Store) -> Optional[ShopifyCatalog]:
    """Catalog client for a connected store, None otherwise."""
    if not (store.shopify_connected and store.shopify_domain and store.shopify_access_token):
        return None
    return ShopifyCatalog(store.shopify_domain, store.shopify_access_token)
