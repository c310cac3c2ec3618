import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from jinja2 import Environment
from sqlalchemy.orm import Session

from core.exceptions import DegradedInput, SecurityViolation, ValidationError
from core.templating import create_template_env, format_money
from models.product_template import ProductPageTemplate, TemplateAssignment
from models.store import Store
from schemas.catalog import CatalogProduct
from schemas.product_template import ElementSpec

logger = logging.getLogger(__name__)

FIELD_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")

# Checked against the raw JSON text before it is parsed
FORBIDDEN_FRAGMENTS = ("<script", "javascript:", "eval(")

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_TAG_RE = re.compile(r"</?script\b[^>]*>", re.IGNORECASE)
# Browsers ignore whitespace and control characters inside the scheme name
_JS_PROTOCOL_RE = re.compile(r"j\s*a\s*v\s*a\s*s\s*c\s*r\s*i\s*p\s*t\s*:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\s*\bon\w+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]*)", re.IGNORECASE)

_TRUE_STRINGS = ("true", "1", "yes", "on")


def check_raw_json(raw: str, source: str) -> None:
    lowered = raw.lower()
    for fragment in FORBIDDEN_FRAGMENTS:
        if fragment in lowered:
            raise SecurityViolation(f"Rejected {source}: contains '{fragment}'")


def strip_unsafe(value: str) -> str:
    """Remove script blocks, ``javascript:`` URLs and inline event handlers.

    Stripping repeats until nothing changes, so fragments that join into a new
    tag once the inner one is removed are caught too. Entity-encoded schemes
    (``&#106;avascript:``) are decoded before the next pass.
    """
    while True:
        previous = value
        value = _SCRIPT_BLOCK_RE.sub("", value)
        value = _SCRIPT_TAG_RE.sub("", value)
        value = _JS_PROTOCOL_RE.sub("", value)
        value = _EVENT_HANDLER_RE.sub("", value)
        decoded = html.unescape(value)
        if decoded != value and (_JS_PROTOCOL_RE.search(decoded) or _SCRIPT_TAG_RE.search(decoded)):
            value = decoded
        if value == previous:
            return value


def clean_fields(data: Dict[Any, Any], source: str = "field_data") -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in data.items():
        if not isinstance(key, str) or not FIELD_NAME_RE.match(key):
            logger.warning(f"Dropping {source} field with invalid name: {key!r}")
            continue
        if isinstance(value, str):
            cleaned[key] = strip_unsafe(value)
        elif isinstance(value, (bool, int, float)):
            cleaned[key] = value
        else:
            logger.warning(f"Dropping {source} field '{key}': unsupported value type {type(value).__name__}")
    return cleaned


def _load_field_data(raw: Any) -> Dict[Any, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise DegradedInput(f"field_data must be a JSON object, got {type(raw).__name__}")

    check_raw_json(raw, "field_data")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise DegradedInput(f"field_data is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise DegradedInput("field_data must be a JSON object")
    return data


def sanitize_field_data(raw: Any) -> Dict[str, Any]:
    """Parse and clean per-product field overrides.

    Tampering signatures raise ``SecurityViolation``; anything merely malformed
    degrades to an empty mapping so the template falls back to its defaults.
    """
    try:
        data = _load_field_data(raw)
    except DegradedInput as e:
        logger.warning(f"Ignoring field data: {e}")
        return {}
    return clean_fields(data)


def parse_elements(raw: Any) -> List[ElementSpec]:
    """Normalize a template's element list into ``ElementSpec`` entries.

    Entries are either a bare section type name or ``{type, id, settings}``.
    """
    if isinstance(raw, str):
        check_raw_json(raw, "elements")
        try:
            data = json.loads(raw or "[]")
        except ValueError as e:
            raise ValidationError(f"Template elements are not valid JSON: {e}", fields=["elements"])
    else:
        data = raw

    if not isinstance(data, list):
        raise ValidationError("Template elements must be a JSON array", fields=["elements"])

    specs: List[ElementSpec] = []
    for index, entry in enumerate(data):
        if isinstance(entry, str):
            specs.append(ElementSpec(type=entry))
            continue
        if not isinstance(entry, dict) or not isinstance(entry.get("type"), str):
            raise ValidationError(f"Template element {index} has no type", fields=["elements"])

        element_settings = entry.get("settings") or {}
        if not isinstance(element_settings, dict):
            raise ValidationError(f"Settings of template element {index} must be an object", fields=["elements"])
        element_id = entry.get("id")
        specs.append(
            ElementSpec(
                type=entry["type"],
                id=str(element_id) if element_id is not None else None,
                settings=clean_fields(element_settings, source="settings"),
            )
        )
    return specs


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class SectionContext:
    store: Store
    product: CatalogProduct
    element: ElementSpec
    field_data: Dict[str, Any]
    macros: Any

    def value(self, name: str, default: Any = None) -> Any:
        """``template_<Type>_<name>`` field, then element setting, then ``default``."""
        override = self.field_data.get(f"template_{self.element.type}_{name}")
        if override is not None and override != "":
            return override
        setting = self.element.settings.get(name)
        if setting is not None and setting != "":
            return setting
        return default

    @property
    def price_label(self) -> str:
        variant = self.product.primary_variant
        return format_money(variant.price, self.store.currency) if variant else "Price unavailable"


SectionRenderer = Callable[[SectionContext], str]

SECTION_RENDERERS: Dict[str, SectionRenderer] = {}


def section(name: str):
    def register(func: SectionRenderer) -> SectionRenderer:
        SECTION_RENDERERS[name] = func
        return func
    return register


@section("FreeShippingBar")
def render_free_shipping_bar(ctx: SectionContext) -> str:
    return ctx.macros.free_shipping_bar(ctx.value("message", "Free shipping on all orders!"))


@section("FreeShippingTeaser")
def render_free_shipping_teaser(ctx: SectionContext) -> str:
    threshold = _as_float(ctx.value("threshold", 50), 50.0)
    default_message = f"Free shipping on orders over {format_money(threshold, ctx.store.currency)}"
    return ctx.macros.free_shipping_teaser(ctx.value("message", default_message))


@section("FlashSaleCountdown")
def render_flash_sale_countdown(ctx: SectionContext) -> str:
    minutes = max(int(_as_float(ctx.value("duration_minutes", 15), 15.0)), 0)
    return ctx.macros.flash_sale_countdown(ctx.value("title", "Flash Sale ends in"), minutes)


@section("NavigationBar")
def render_navigation_bar(ctx: SectionContext) -> str:
    crumbs = [
        {"href": "/", "text": ctx.value("home_text", "Home")},
        {"href": "/products", "text": ctx.value("products_text", "Products")},
    ]
    if _as_bool(ctx.value("show_current", True)):
        crumbs.append({"href": None, "text": ctx.product.title})
    return ctx.macros.navigation_bar(crumbs)


@section("StarRating")
def render_star_rating(ctx: SectionContext) -> str:
    rating = min(max(_as_float(ctx.value("rating", 4.8), 4.8), 0.0), 5.0)
    review_count = int(_as_float(ctx.value("review_count", 127), 127.0))
    return ctx.macros.star_rating(rating, int(round(rating)), review_count)


@section("ProductTitle")
def render_product_title(ctx: SectionContext) -> str:
    return ctx.macros.product_title(ctx.product.title, ctx.value("subtitle", ""))


@section("PricingSection")
def render_pricing_section(ctx: SectionContext) -> str:
    variant = ctx.product.primary_variant
    price = variant.price if variant else 0.0
    compare_at = variant.compare_at_price if variant else None
    on_sale = bool(variant and variant.on_sale)
    savings = None
    if on_sale and _as_bool(ctx.value("show_savings", False)):
        savings = f"{compare_at - price:.2f}"
    symbol = ctx.value("currency_symbol", ctx.store.currency)
    return ctx.macros.pricing_section(symbol, price, compare_at, on_sale, savings)


@section("ProductImageGallery")
def render_image_gallery(ctx: SectionContext) -> str:
    show_thumbnails = _as_bool(ctx.value("show_thumbnails", True))
    return ctx.macros.image_gallery(ctx.product.images, ctx.product.title, show_thumbnails)


@section("FreeTextField")
def render_free_text(ctx: SectionContext) -> str:
    content = ctx.value("content", "")
    return ctx.macros.free_text(content) if content else ""


@section("ListSection")
def render_list_section(ctx: SectionContext) -> str:
    raw_items = ctx.value("items", "")
    items = [item.strip() for item in str(raw_items).split("\n") if item.strip()]
    if not items:
        return ""
    return ctx.macros.list_section(ctx.value("title", "Features"), items)


@section("GuaranteeBadge")
def render_guarantee_badge(ctx: SectionContext) -> str:
    return ctx.macros.guarantee_badge(ctx.value("guarantee_text", "30-Day Money Back Guarantee"))


@section("ScarcityNotice")
def render_scarcity_notice(ctx: SectionContext) -> str:
    return ctx.macros.scarcity_notice(ctx.value("message", "Limited stock available!"))


@section("ATCButton")
def render_atc_button(ctx: SectionContext) -> str:
    variant = ctx.product.primary_variant
    return ctx.macros.buy_button(
        "atc-button-section",
        "atc-button add-to-cart",
        ctx.value("button_text", "Add to Cart"),
        ctx.price_label,
        variant.id if variant else None,
        ctx.product.is_available,
    )


@section("QuickBuyButton")
def render_quick_buy_button(ctx: SectionContext) -> str:
    variant = ctx.product.primary_variant
    return ctx.macros.buy_button(
        "quick-buy-section",
        "quick-buy-button quick-buy",
        ctx.value("button_text", "Buy Now"),
        ctx.price_label,
        variant.id if variant else None,
        ctx.product.is_available,
    )


@section("TrustIndicators")
def render_trust_indicators(ctx: SectionContext) -> str:
    defaults = ("Secure Checkout", "Fast Shipping", "Easy Returns")
    items = [ctx.value(f"item_{index}", default) for index, default in enumerate(defaults, start=1)]
    return ctx.macros.trust_indicators(items)


def find_template(db: Session, handle: str) -> Optional[Tuple[ProductPageTemplate, Optional[str]]]:
    """Template and raw field data for a product handle.

    An explicit assignment wins; otherwise the default template applies with no
    field data. None means the product keeps the standard detail page.
    """
    assignment = db.query(TemplateAssignment).filter(TemplateAssignment.product_handle == handle).one_or_none()
    if assignment is not None and assignment.template is not None:
        return assignment.template, assignment.field_data

    default = db.query(ProductPageTemplate).filter(ProductPageTemplate.is_default.is_(True)).first()
    if default is not None:
        return default, None
    return None


def set_default_template(db: Session, template: ProductPageTemplate) -> ProductPageTemplate:
    db.query(ProductPageTemplate).filter(
        ProductPageTemplate.id != template.id,
        ProductPageTemplate.is_default.is_(True),
    ).update({ProductPageTemplate.is_default: False}, synchronize_session="fetch")
    # Flush the unset first so the partial unique index never sees two defaults
    db.flush()
    template.is_default = True
    db.commit()
    db.refresh(template)
    return template


class CustomProductTemplateRenderer:
    """Renders section-based product pages from merchant-built templates."""

    def __init__(self, env: Optional[Environment] = None, registry: Optional[Dict[str, SectionRenderer]] = None):
        self.env = env or create_template_env()
        self.registry = registry if registry is not None else SECTION_RENDERERS

    def render_sections(self, store: Store, product: CatalogProduct, elements: Any, field_data: Any = None) -> str:
        specs = parse_elements(elements)
        data = sanitize_field_data(field_data)
        macros = self.env.get_template("product/sections.html").module

        rendered: List[str] = []
        for spec in specs:
            renderer = self.registry.get(spec.type)
            if renderer is None:
                logger.warning(f"Unknown product section type '{spec.type}' for {product.handle}, skipping")
                continue
            html = renderer(SectionContext(store=store, product=product, element=spec, field_data=data, macros=macros))
            if html:
                rendered.append(str(html).strip())
        return "\n".join(rendered)

    def render_for_product(self, db: Session, store: Store, product: CatalogProduct) -> Optional[str]:
        """Section HTML for the product, or None when no template applies."""
        found = find_template(db, product.handle)
        if found is None:
            return None
        template, field_data = found
        logger.info(f"Rendering product {product.handle} with template '{template.name}'")
        return self.render_sections(store, product, template.elements, field_data)
