import asyncio
import logging
import os
import re
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import FileResponse, HTMLResponse, Response

from core.config import settings
from core.db import SessionLocal
from core.exceptions import NotFoundError, SecurityViolation, ValidationError
from core.tenancy import find_store_by_host, is_local_host, normalize_host
from models.store import Store
from services.catalog import ShopifyCatalog, catalog_for_store
from services.product_templates import CustomProductTemplateRenderer
from services.renderer import TemplateRenderer
from services.site_builder import is_safe_handle

logger = logging.getLogger(__name__)

ROUTED_METHODS = ("GET", "HEAD")

CONTENT_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
    ".xml": "application/xml",
    ".txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

STATIC_ASSET_EXTENSIONS = frozenset({".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico"})
STATIC_CACHE_CONTROL = "public, max-age=31536000, immutable"
PAGE_CACHE_CONTROL = "public, max-age=300"

HOLDING_PAGE_REFRESH_SECONDS = 10

_PRODUCT_PATH_RE = re.compile(r"^products/([^/]+)$")


def header_value(value: Optional[str]) -> str:
    """Percent-encode characters an HTTP header cannot carry as Latin-1."""
    if not value:
        return ""
    return "".join(ch if 32 <= ord(ch) < 256 and ord(ch) != 127 else quote(ch) for ch in value)


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(os.path.splitext(path)[1].lower(), DEFAULT_CONTENT_TYPE)


def cache_control_for(path: str) -> str:
    if os.path.splitext(path)[1].lower() in STATIC_ASSET_EXTENSIONS:
        return STATIC_CACHE_CONTROL
    return PAGE_CACHE_CONTROL


def has_extension(relative: str) -> bool:
    last_segment = relative.rstrip("/").rsplit("/", 1)[-1]
    return bool(os.path.splitext(last_segment)[1])


def safe_join(root: str, relative: str) -> Optional[str]:
    """Real path of ``relative`` under ``root``, or None if it escapes it."""
    root_real = os.path.realpath(root)
    candidate = os.path.realpath(os.path.join(root_real, relative))
    if candidate != root_real and not candidate.startswith(root_real + os.sep):
        return None
    return candidate


def resolve_static_path(root: str, path: str) -> Optional[str]:
    """Generated file for a request path: index, direct asset, then page fallbacks."""
    if "\x00" in path:
        return None
    relative = path.lstrip("/")
    if not relative:
        candidates = ["index.html"]
    elif has_extension(relative):
        candidates = [relative]
    else:
        base = relative.rstrip("/")
        candidates = [f"{base}/index.html", f"{base}.html", base]

    for candidate in candidates:
        full_path = safe_join(root, candidate)
        if full_path and os.path.isfile(full_path):
            return full_path
    return None


class DomainRouterMiddleware(BaseHTTPMiddleware):
    """Serves each store's generated site on its own domain or subdomain.

    Requests that do not belong to a known store are passed on untouched, as are
    any requests for which routing itself fails.
    """

    def __init__(
        self,
        app,
        session_factory: Optional[Callable] = None,
        renderer: Optional[TemplateRenderer] = None,
        product_renderer: Optional[CustomProductTemplateRenderer] = None,
        catalog_factory: Callable[[Store], Optional[ShopifyCatalog]] = catalog_for_store,
        stores_dir: Optional[str] = None,
        reserved_prefixes: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.session_factory = session_factory or SessionLocal
        self.renderer = renderer or TemplateRenderer()
        self.product_renderer = product_renderer or CustomProductTemplateRenderer(self.renderer.env)
        self.catalog_factory = catalog_factory
        self.stores_dir = stores_dir or settings.STORES_DIR
        self.reserved_prefixes = reserved_prefixes if reserved_prefixes is not None else settings.RESERVED_PATH_PREFIXES

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            response = await self.route(request)
        except Exception:
            logger.exception(f"Domain routing failed for {request.headers.get('host')}{request.url.path}")
            response = None
        if response is None:
            return await call_next(request)
        return response

    def is_reserved(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in self.reserved_prefixes)

    def _find_store(self, host: str) -> Optional[Store]:
        db = self.session_factory()
        try:
            return find_store_by_host(db, host)
        finally:
            db.close()

    async def route(self, request: Request) -> Optional[Response]:
        """Response for a store request, or None to hand the request on."""
        if request.method not in ROUTED_METHODS:
            return None
        path = request.url.path
        if self.is_reserved(path):
            return None
        host = normalize_host(request.headers.get("host"))
        if host is None or is_local_host(host):
            return None

        store = await run_in_threadpool(self._find_store, host)
        if store is None:
            return None

        headers = {
            "X-Store-Name": header_value(store.name),
            "X-Store-Domain": header_value(store.domain),
        }

        if not store.is_deployed:
            html = self.renderer.render_status_page(
                store, "deploying", refresh_seconds=HOLDING_PAGE_REFRESH_SECONDS
            )
            headers.update({"Cache-Control": "no-store", "Retry-After": str(HOLDING_PAGE_REFRESH_SECONDS)})
            return HTMLResponse(html, status_code=503, headers=headers)

        relative = path.lstrip("/")
        match = _PRODUCT_PATH_RE.match(relative)
        if match and is_safe_handle(match.group(1)):
            html = await self.render_product(store, match.group(1))
            if html is not None:
                headers["Cache-Control"] = PAGE_CACHE_CONTROL
                return HTMLResponse(html, headers=headers)

        root = os.path.join(self.stores_dir, store.domain)
        file_path = resolve_static_path(root, path)
        if file_path is None:
            return self.not_found(store, path, headers)

        headers["Cache-Control"] = cache_control_for(file_path)
        return FileResponse(file_path, media_type=content_type_for(file_path), headers=headers)

    def not_found(self, store: Store, path: str, headers: Dict[str, str]) -> Response:
        is_asset = has_extension(path.lstrip("/"))
        html = self.renderer.render_status_page(
            store,
            "not_found",
            heading="File Not Found" if is_asset else "Page Not Found",
            is_asset=is_asset,
            path=path,
        )
        return HTMLResponse(html, status_code=404, headers=headers)

    async def render_product(self, store: Store, handle: str) -> Optional[str]:
        """Live product page from the catalog. None on any failure, so the
        generated file (or the 404 page) is served instead."""
        catalog = self.catalog_factory(store)
        if catalog is None:
            return None
        try:
            product = await asyncio.wait_for(
                run_in_threadpool(catalog.get_product, handle),
                timeout=settings.CATALOG_TIMEOUT_SECONDS,
            )
            if product is None:
                raise NotFoundError(f"Product {handle} not found in the catalog of {store.domain}")
            sections = await run_in_threadpool(self._custom_sections, store, product)
            return await self.renderer.render_product_page(store, product, sections)
        except asyncio.TimeoutError:
            logger.warning(f"Catalog lookup for {handle} on {store.domain} timed out")
        except NotFoundError as e:
            logger.info(str(e))
        except Exception as e:
            logger.warning(f"Live render of {handle} on {store.domain} failed: {e}")
        return None

    def _custom_sections(self, store: Store, product) -> Optional[str]:
        db = self.session_factory()
        try:
            return self.product_renderer.render_for_product(db, store, product)
        except (SecurityViolation, ValidationError) as e:
            logger.warning(f"Custom template rejected for {product.handle} on {store.domain}: {e}")
            return None
        finally:
            db.close()
