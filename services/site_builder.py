import logging
import os
import re
import shutil
from typing import Callable, List, Optional

import requests
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import settings
from core.exceptions import SecurityViolation, ValidationError
from models.store import Store
from schemas.catalog import CatalogProduct
from services.catalog import ShopifyCatalog, catalog_for_store
from services.product_templates import CustomProductTemplateRenderer
from services.renderer import TemplateRenderer

logger = logging.getLogger(__name__)

SAFE_HANDLE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,254}$")

FEATURED_PRODUCT_COUNT = 8


def is_safe_handle(handle: Optional[str]) -> bool:
    return bool(handle) and SAFE_HANDLE_RE.match(handle) is not None


def store_directory(store: Store, stores_dir: Optional[str] = None) -> str:
    return os.path.join(stores_dir or settings.STORES_DIR, store.domain)


class SiteBuilder:
    """Writes the static site of one store under ``<stores_dir>/<domain>/``.

    Output depends only on the store, its pages, the catalog and the product
    templates, so rebuilding from unchanged inputs reproduces identical files.
    """

    def __init__(
        self,
        renderer: TemplateRenderer,
        product_renderer: CustomProductTemplateRenderer,
        catalog_factory: Callable[[Store], Optional[ShopifyCatalog]] = catalog_for_store,
        stores_dir: Optional[str] = None,
    ):
        self.renderer = renderer
        self.product_renderer = product_renderer
        self.catalog_factory = catalog_factory
        self.stores_dir = stores_dir or settings.STORES_DIR

    def store_dir(self, store: Store) -> str:
        return store_directory(store, self.stores_dir)

    def load_products(self, store: Store) -> List[CatalogProduct]:
        catalog = self.catalog_factory(store)
        if catalog is None:
            return []
        try:
            return catalog.list_products(settings.CATALOG_PRODUCT_LIMIT)
        except (requests.RequestException, RuntimeError, ValueError, KeyError) as e:
            logger.warning(f"Catalog unavailable for {store.domain}, rendering an empty product grid: {e}")
            return []

    def featured_products(self, store: Store, products: List[CatalogProduct]) -> List[CatalogProduct]:
        selected = store.selected_products or []
        if selected:
            by_handle = {product.handle: product for product in products}
            return [by_handle[handle] for handle in selected if handle in by_handle]
        return products[:FEATURED_PRODUCT_COUNT]

    async def build(self, db: Session, store: Store) -> List[str]:
        """Render and write every file of the store. Returns the written paths, relative to the store directory."""
        root = self.store_dir(store)
        os.makedirs(root, exist_ok=True)
        pages = await self.renderer.page_source(store)
        products = await run_in_threadpool(self.load_products, store)
        written: List[str] = []

        for page in pages:
            if page.page_type == "home":
                page_products = self.featured_products(store, products)
            elif page.page_type == "products":
                page_products = products
            else:
                page_products = []
            html = await self.renderer.render_page(store, page, page_products)
            written.append(self._write(root, page.file_name, html))

        # Product pages are rebuilt from scratch so removed products disappear
        products_dir = os.path.join(root, "products")
        if os.path.isdir(products_dir):
            shutil.rmtree(products_dir)

        handles: List[str] = []
        for product in products:
            if not is_safe_handle(product.handle):
                logger.warning(f"Skipping product with unsafe handle {product.handle!r} for {store.domain}")
                continue
            html = await self.render_product(db, store, product)
            written.append(self._write(root, f"products/{product.handle}.html", html))
            handles.append(product.handle)

        written.append(self._write(root, "robots.txt", self.renderer.render_robots(store)))
        written.append(self._write(root, "sitemap.xml", self.renderer.render_sitemap(store, pages, handles)))
        written.append(self._write(root, "styles.css", self.renderer.render_stylesheet(store)))
        written.append(self._write(root, "scripts.js", self.renderer.render_script(store)))

        logger.info(f"Generated {len(written)} files for {store.domain}")
        return written

    async def render_product(self, db: Session, store: Store, product: CatalogProduct) -> str:
        """Custom template page when one applies, the default detail page otherwise."""
        sections = None
        try:
            sections = self.product_renderer.render_for_product(db, store, product)
        except (SecurityViolation, ValidationError) as e:
            logger.warning(f"Custom template rejected for {product.handle} on {store.domain}, using default page: {e}")
        return await self.renderer.render_product_page(store, product, sections)

    @staticmethod
    def _write(root: str, relative: str, content: str) -> str:
        path = os.path.join(root, relative)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        return relative
