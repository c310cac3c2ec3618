import json
import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

from jinja2 import Environment
from markupsafe import escape

from core.templating import create_template_env
from models.page import Page
from models.store import DEFAULT_PRIMARY_COLOR, DEFAULT_SECONDARY_COLOR, Store
from schemas.catalog import CatalogProduct

logger = logging.getLogger(__name__)

THEME_KEYS = ("primary", "secondary", "accent", "background", "surface")

DEFAULT_THEME = {
    "primary": DEFAULT_PRIMARY_COLOR,
    "secondary": DEFAULT_SECONDARY_COLOR,
    "accent": DEFAULT_PRIMARY_COLOR,
    "background": "#ffffff",
    "surface": "#f8f9fa",
}

NAV_LABELS = {"home": "Home", "products": "Products", "about": "About", "contact": "Contact"}

PAGE_TEMPLATES = {"home": "site/home.html", "products": "site/products.html"}

_BODY_RE = re.compile(r"<body[^>]*>(.*)</body>", re.IGNORECASE | re.DOTALL)
_HEADING_RE = re.compile(r"<h1[\s>]", re.IGNORECASE)

PageSource = Callable[[Store], Awaitable[List[Page]]]


async def enabled_store_pages(store: Store) -> List[Page]:
    """Default page source: the store's enabled pages in navigation order."""
    pages = [page for page in store.pages if page.is_enabled]
    return sorted(pages, key=lambda page: (page.sort_order or 0, page.page_type))


def parse_content_blocks(raw: Any) -> List[Dict[str, Any]]:
    """Normalize stored page content into a list of typed blocks.

    Accepts a JSON array, a single block object or anything else; text that is not
    JSON at all becomes one ``text`` block holding the raw string.
    """
    if not raw:
        return []
    if isinstance(raw, list):
        return [block for block in raw if isinstance(block, dict)]
    if isinstance(raw, dict):
        return [raw]

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return [{"type": "text", "content": raw}]

    if isinstance(data, list):
        return [block for block in data if isinstance(block, dict)]
    if isinstance(data, dict):
        return [data]
    return [{"type": "text", "content": raw}]


def legal_body(content: Optional[str]) -> str:
    """Inner ``<body>`` of a stored legal document, or the content as-is for fragments."""
    if not content:
        return ""
    match = _BODY_RE.search(content)
    return match.group(1).strip() if match else content


class TemplateRenderer:
    """Composes storefront pages from the ``templates/site`` Jinja2 templates.

    Rendering is structural substitution with autoescape off; merchant text is
    sanitized before it is stored. Values coming from the catalog or from the
    request are escaped in the templates.

    ``page_source`` is the only awaited collaborator: page renders await it once to
    get the store's enabled pages for the navigation and the footer.
    """

    def __init__(self, env: Optional[Environment] = None, page_source: Optional[PageSource] = None, year: Optional[int] = None):
        self.env = env or create_template_env()
        self.page_source = page_source or enabled_store_pages
        self.year = year

    # Theme

    def theme_for(self, store: Store) -> Dict[str, str]:
        theme = dict(DEFAULT_THEME)
        if store.primary_color:
            theme["primary"] = store.primary_color
            theme["accent"] = store.primary_color
        if store.secondary_color:
            theme["secondary"] = store.secondary_color

        overrides = store.theme_config or {}
        if isinstance(overrides, dict):
            for key in THEME_KEYS:
                value = overrides.get(key)
                if isinstance(value, str) and value.strip():
                    theme[key] = value.strip()
        return theme

    # Shared fragments

    def nav_links(self, pages: List[Page], current_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {
                "href": page.url_path,
                "text": NAV_LABELS.get(page.page_type, page.title),
                "active": page.page_type == current_type,
            }
            for page in pages
            if not page.is_legal
        ]

    def build_footer_context(self, store: Store, pages: List[Page]) -> Dict[str, Any]:
        """Named footer variables. Each one left empty drops its footer section."""
        legal_links = {
            page.page_type: {"href": page.url_path, "text": page.title}
            for page in pages
            if page.is_legal
        }
        social_links = sorted(
            (network, url) for network, url in (store.social_links or {}).items() if url
        )
        prefooter_cards = []
        if store.prefooter_enabled:
            prefooter_cards = [
                card
                for card in store.prefooter_cards or []
                if isinstance(card, dict) and any(card.get(key) for key in ("title", "text", "image"))
            ]

        return {
            "store_name": store.name,
            "store_logo_url": store.logo_url,
            "store_tagline": store.tagline,
            "support_email": store.support_email,
            "support_phone": store.support_phone,
            "business_address": store.business_address,
            "business_orgnr": store.business_orgnr,
            "quick_links": [{"href": page.url_path, "text": page.title} for page in pages if not page.is_legal],
            "terms_link": legal_links.get("terms"),
            "privacy_link": legal_links.get("privacy"),
            "refund_link": legal_links.get("refund"),
            "delivery_link": legal_links.get("delivery"),
            "social_links": social_links,
            "current_year": self.year or datetime.utcnow().year,
            "payment_icons": [icon for icon in store.payment_icons or [] if icon],
            "prefooter_cards": prefooter_cards,
        }

    def compose_footer(self, context: Dict[str, Any]) -> str:
        return self.env.get_template("site/_footer.html").render(**context)

    def _base_context(self, store: Store, pages: List[Page], page_type: str) -> Dict[str, Any]:
        return {
            "store": store,
            "theme": self.theme_for(store),
            "page_type": page_type,
            "nav_links": self.nav_links(pages, page_type),
            "footer": self.compose_footer(self.build_footer_context(store, pages)),
            "meta_description": store.meta_description or "",
        }

    # Pages

    async def render_page(self, store: Store, page: Page, products: Optional[List[CatalogProduct]] = None) -> str:
        pages = await self.page_source(store)
        return self.compose_page(store, page, pages, products or [])

    def compose_page(self, store: Store, page: Page, pages: List[Page], products: List[CatalogProduct]) -> str:
        context = self._base_context(store, pages, page.page_type)
        if page.page_type == "home":
            context["meta_title"] = page.meta_title or store.meta_title or store.name
        else:
            context["meta_title"] = page.meta_title or f"{page.title} - {store.name}"
        if page.meta_description:
            context["meta_description"] = page.meta_description
        context["page"] = page

        if page.is_legal:
            body = legal_body(page.content_blocks)
            context.update(body=body, has_heading=bool(_HEADING_RE.search(body)))
            return self.env.get_template("site/legal.html").render(**context)

        context["blocks"] = parse_content_blocks(page.content_blocks)
        context["products"] = products
        template = PAGE_TEMPLATES.get(page.page_type, "site/page.html")
        return self.env.get_template(template).render(**context)

    async def render_product_page(self, store: Store, product: CatalogProduct, sections_html: Optional[str] = None) -> str:
        """Product detail page; ``sections_html`` replaces the default layout when a
        custom product template produced one."""
        pages = await self.page_source(store)
        context = self._base_context(store, pages, "product")
        context["meta_title"] = f"{escape(product.title)} - {store.name}"
        context["product"] = product
        if sections_html is not None:
            context["sections_html"] = sections_html
            return self.env.get_template("product/page.html").render(**context)
        return self.env.get_template("site/product.html").render(**context)

    # Static assets

    def render_stylesheet(self, store: Store) -> str:
        return self.env.get_template("site/styles.css").render(store=store, theme=self.theme_for(store))

    def render_script(self, store: Store) -> str:
        return self.env.get_template("site/scripts.js").render(store=store)

    def render_robots(self, store: Store) -> str:
        return self.env.get_template("site/robots.txt").render(store=store)

    def render_sitemap(self, store: Store, pages: List[Page], product_handles: Optional[List[str]] = None) -> str:
        paths = [page.url_path for page in pages]
        paths.extend(f"/products/{quote(handle)}" for handle in product_handles or [])
        return self.env.get_template("site/sitemap.xml").render(store=store, paths=paths)

    # Router status pages

    def render_status_page(self, store: Store, name: str, **context) -> str:
        template = self.env.get_template(f"status/{name}.html")
        return template.render(store=store, theme=self.theme_for(store), **context)
