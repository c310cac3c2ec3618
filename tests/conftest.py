import json
import pytest
from sqlalchemy.orm import Session

from core.config import settings
from core.db import Base, SessionLocal, engine, init_db
from models.page import Page
from models.product_template import ProductPageTemplate, TemplateAssignment
from models.store import Store
from schemas.catalog import CatalogProduct, ProductImage, ProductVariant
from services.legal_pages import LegalPageLoader
from services.product_templates import CustomProductTemplateRenderer
from services.renderer import TemplateRenderer
from services.site_builder import SiteBuilder
from services.stores import StoreService


class FakeCatalog:
    """In-memory stand-in for ShopifyCatalog."""

    def __init__(self, products=None, error=None):
        self.products = list(products or [])
        self.error = error
        self.calls = []

    def get_product(self, handle):
        self.calls.append(("get_product", handle))
        if self.error:
            raise self.error
        return next((product for product in self.products if product.handle == handle), None)

    def list_products(self, limit=None):
        self.calls.append(("list_products", limit))
        if self.error:
            raise self.error
        return self.products[:limit] if limit else list(self.products)


def build_product(handle="classic-tee", title="Classic Tee", price=19.0, compare_at=None, available=True, images=1):
    return CatalogProduct(
        id=f"gid://shopify/Product/{handle}",
        handle=handle,
        title=title,
        description="<p>Soft cotton tee.</p>",
        vendor="Acme",
        images=[ProductImage(id=str(i), src=f"https://cdn.example.com/{handle}-{i}.jpg", alt="") for i in range(images)],
        variants=[
            ProductVariant(
                id=f"gid://shopify/ProductVariant/{handle}",
                title="Default",
                price=price,
                compare_at_price=compare_at,
                available=available,
            )
        ],
    )


@pytest.fixture(scope="function")
def db() -> Session:
    """Fresh schema on the app's in-memory engine for each test."""
    init_db(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def stores_dir(tmp_path):
    path = tmp_path / "stores"
    path.mkdir()
    return path


@pytest.fixture(scope="session")
def legal_pages():
    loader = LegalPageLoader(settings.LEGAL_PAGES_DIR)
    loader.load_all()
    return loader


@pytest.fixture
def renderer():
    return TemplateRenderer(year=2024)


@pytest.fixture
def product_renderer(renderer):
    return CustomProductTemplateRenderer(renderer.env)


@pytest.fixture
def catalog():
    return FakeCatalog([build_product(), build_product("sale-hoodie", "Sale Hoodie", price=30.0, compare_at=45.0)])


@pytest.fixture
def builder(renderer, product_renderer, stores_dir):
    return SiteBuilder(renderer, product_renderer, catalog_factory=lambda store: None, stores_dir=str(stores_dir))


@pytest.fixture
def service(db, builder, legal_pages, stores_dir):
    return StoreService(db, builder, legal_pages, stores_dir=str(stores_dir))


@pytest.fixture
def store_data():
    return {
        "name": "Nordic Goods",
        "domain": "nordicgoods.se",
        "country": "SE",
        "language": "se",
        "currency": "SEK",
        "support_email": "hello@nordicgoods.se",
        "business_address": "Storgatan 1, Stockholm",
    }


@pytest.fixture
def make_store(db):
    """Factory for Store rows with sensible defaults."""
    def _make(**overrides):
        fields = {
            "name": "Test Store",
            "domain": "test-store.com",
            "subdomain": "test-store",
            "country": "SE",
            "language": "se",
            "currency": "SEK",
        }
        fields.update(overrides)
        store = Store(**fields)
        db.add(store)
        db.commit()
        db.refresh(store)
        return store
    return _make


@pytest.fixture
def add_page(db):
    def _add(store, page_type, title=None, content_blocks=None, slug=None, sort_order=0, is_enabled=True):
        page = Page(
            page_type=page_type,
            slug=slug if slug is not None else ("" if page_type == "home" else page_type),
            title=title or page_type.capitalize(),
            content_blocks=json.dumps(content_blocks) if isinstance(content_blocks, list) else content_blocks,
            sort_order=sort_order,
            is_enabled=is_enabled,
        )
        store.pages.append(page)
        db.commit()
        return page
    return _add


@pytest.fixture
def make_template(db):
    def _make(elements, name="Custom", is_default=False, handle=None, field_data=None):
        template = ProductPageTemplate(
            name=name,
            elements=elements if isinstance(elements, str) else json.dumps(elements),
            is_default=is_default,
        )
        db.add(template)
        db.commit()
        if handle:
            db.add(TemplateAssignment(
                template_id=template.id,
                product_handle=handle,
                field_data=field_data if field_data is None or isinstance(field_data, str) else json.dumps(field_data),
            ))
            db.commit()
        return template
    return _make


@pytest.fixture
def product_factory():
    return build_product


@pytest.fixture
def fake_catalog():
    return FakeCatalog
