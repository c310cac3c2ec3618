"""
Tests for serving generated store sites by host.
"""
import logging
import os
import pytest
from fastapi import FastAPI, status
from fastapi.testclient import TestClient

from core.db import SessionLocal
from core.domain_router import (
    DomainRouterMiddleware,
    content_type_for,
    header_value,
    resolve_static_path,
)
from core.tenancy import find_store_by_host, is_local_host, normalize_host

STORE_HOST = {"host": "nordicgoods.se"}


def write(root, relative, content):
    path = os.path.join(root, relative)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


@pytest.fixture
def site_root(stores_dir):
    root = str(stores_dir / "nordicgoods.se")
    write(root, "index.html", "<html><body>Home page</body></html>")
    write(root, "about.html", "<html><body>About page</body></html>")
    write(root, "guides/index.html", "<html><body>Guides index</body></html>")
    write(root, "styles.css", "body { color: red; }")
    write(root, "products/classic-tee.html", "<html><body>Static tee</body></html>")
    write(os.path.dirname(root), "secret.txt", "outside the store")
    return root


@pytest.fixture
def deployed_store(make_store, add_page):
    store = make_store(name="Nordic Goods", domain="nordicgoods.se", subdomain="nordic-goods", deployment_status="deployed")
    add_page(store, "home", title="Welcome")
    return store


@pytest.fixture
def make_client(stores_dir, renderer):
    def _make(catalog=None):
        app = FastAPI()

        @app.get("/api/ping")
        def ping():
            return {"ok": True}

        @app.post("/submit")
        def submit():
            return {"posted": True}

        app.add_middleware(
            DomainRouterMiddleware,
            session_factory=SessionLocal,
            renderer=renderer,
            catalog_factory=lambda store: catalog,
            stores_dir=str(stores_dir),
        )
        return TestClient(app)
    return _make


class TestHostHandling:
    """Host normalization and store lookup"""

    @pytest.mark.parametrize("raw,expected", [
        ("NordicGoods.se", "nordicgoods.se"),
        ("www.nordicgoods.se:8443", "nordicgoods.se"),
        ("nordicgoods.se.", "nordicgoods.se"),
        ("[::1]:8000", "::1"),
        ("", None),
        (None, None),
    ])
    def test_normalize_host(self, raw, expected):
        assert normalize_host(raw) == expected

    @pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "::1", "shop.local"])
    def test_local_hosts(self, host):
        assert is_local_host(host)

    def test_lookup_by_domain_or_subdomain(self, db, deployed_store):
        assert find_store_by_host(db, "nordicgoods.se").id == deployed_store.id
        assert find_store_by_host(db, "nordic-goods").id == deployed_store.id
        assert find_store_by_host(db, "unknown.se") is None


class TestStaticResolution:
    """Mapping request paths to generated files"""

    def test_resolution_order(self, site_root):
        assert resolve_static_path(site_root, "/").endswith("index.html")
        assert resolve_static_path(site_root, "/about").endswith("about.html")
        assert resolve_static_path(site_root, "/guides").endswith(os.path.join("guides", "index.html"))
        assert resolve_static_path(site_root, "/styles.css").endswith("styles.css")
        assert resolve_static_path(site_root, "/missing") is None

    def test_traversal_rejected(self, site_root):
        assert resolve_static_path(site_root, "/../secret.txt") is None
        assert resolve_static_path(site_root, "/guides/../../secret.txt") is None
        assert resolve_static_path(site_root, "/index.html\x00.png") is None

    def test_content_types(self):
        assert content_type_for("a/b.html") == "text/html; charset=utf-8"
        assert content_type_for("logo.SVG") == "image/svg+xml"
        assert content_type_for("archive.tar.gz") == "application/octet-stream"

    def test_header_value_encoding(self):
        assert header_value("Åsa Shop") == "Åsa Shop"
        assert header_value("店 Shop") == "%E5%BA%97 Shop"
        assert header_value("a\nb") == "a%0Ab"
        assert header_value(None) == ""


class TestRouting:
    """Requests served by the middleware"""

    def test_home_page(self, make_client, deployed_store, site_root):
        response = make_client().get("/", headers=STORE_HOST)

        assert response.status_code == status.HTTP_200_OK
        assert "Home page" in response.text
        assert response.headers["content-type"].startswith("text/html")
        assert response.headers["cache-control"] == "public, max-age=300"
        assert response.headers["x-store-name"] == "Nordic Goods"
        assert response.headers["x-store-domain"] == "nordicgoods.se"

    def test_extensionless_page_and_directory(self, make_client, deployed_store, site_root):
        client = make_client()
        assert "About page" in client.get("/about", headers=STORE_HOST).text
        assert "Guides index" in client.get("/guides/", headers=STORE_HOST).text

    def test_static_asset_cached(self, make_client, deployed_store, site_root):
        response = make_client().get("/styles.css", headers=STORE_HOST)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/css")
        assert response.headers["cache-control"] == "public, max-age=31536000, immutable"

    def test_www_and_port_normalized(self, make_client, deployed_store, site_root):
        response = make_client().get("/", headers={"host": "WWW.NordicGoods.se:8080"})
        assert "Home page" in response.text

    def test_missing_asset(self, make_client, deployed_store, site_root):
        response = make_client().get("/missing.png", headers=STORE_HOST)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "File Not Found" in response.text
        assert response.headers["x-store-domain"] == "nordicgoods.se"

    def test_missing_page_escapes_path(self, make_client, deployed_store, site_root):
        response = make_client().get("/missing<b>page", headers=STORE_HOST)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "Page Not Found" in response.text
        assert "&lt;b&gt;" in response.text
        assert "<b>page" not in response.text

    def test_holding_page_while_not_deployed(self, make_client, make_store, site_root):
        make_store(name="Nordic Goods", domain="nordicgoods.se", subdomain="nordic-goods")
        response = make_client().get("/", headers=STORE_HOST)

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.headers["retry-after"] == "10"
        assert response.headers["cache-control"] == "no-store"
        assert '<meta http-equiv="refresh" content="10">' in response.text
        assert "Home page" not in response.text


class TestPassThrough:
    """Requests the middleware hands on to the application"""

    def test_reserved_prefix(self, make_client, deployed_store, site_root):
        response = make_client().get("/api/ping", headers=STORE_HOST)
        assert response.json() == {"ok": True}
        assert "x-store-name" not in response.headers

    def test_similar_prefix_is_routed(self, make_client, deployed_store, site_root):
        response = make_client().get("/apiary", headers=STORE_HOST)
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "Page Not Found" in response.text

    def test_local_host(self, make_client, deployed_store, site_root):
        response = make_client().get("/api/ping", headers={"host": "localhost:8000"})
        assert response.json() == {"ok": True}
        response = make_client().get("/", headers={"host": "127.0.0.1"})
        assert "x-store-name" not in response.headers

    def test_unknown_host(self, make_client, deployed_store, site_root):
        response = make_client().get("/", headers={"host": "unknown.se"})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"detail": "Not Found"}

    def test_non_get_methods(self, make_client, deployed_store, site_root):
        response = make_client().post("/submit", headers=STORE_HOST)
        assert response.json() == {"posted": True}


class TestLiveProductPages:
    """Product pages rendered from the catalog at request time"""

    def test_live_render(self, make_client, deployed_store, site_root, fake_catalog, product_factory):
        catalog = fake_catalog([product_factory(title="Live Tee", price=21.0)])
        response = make_client(catalog).get("/products/classic-tee", headers=STORE_HOST)

        assert response.status_code == status.HTTP_200_OK
        assert "Live Tee" in response.text
        assert "21.00 SEK" in response.text
        assert "Static tee" not in response.text
        assert response.headers["cache-control"] == "public, max-age=300"
        assert catalog.calls == [("get_product", "classic-tee")]

    def test_live_render_uses_custom_template(self, make_client, deployed_store, site_root, fake_catalog, product_factory, make_template):
        make_template([{"type": "GuaranteeBadge", "settings": {"guarantee_text": "Lifetime warranty"}}], is_default=True)
        catalog = fake_catalog([product_factory()])

        response = make_client(catalog).get("/products/classic-tee", headers=STORE_HOST)

        assert "Lifetime warranty" in response.text
        assert 'class="custom-product-page"' in response.text

    def test_catalog_error_falls_back_to_static(self, make_client, deployed_store, site_root, fake_catalog):
        catalog = fake_catalog(error=RuntimeError("shop offline"))
        response = make_client(catalog).get("/products/classic-tee", headers=STORE_HOST)

        assert response.status_code == status.HTTP_200_OK
        assert "Static tee" in response.text

    def test_unknown_product_falls_back(self, make_client, deployed_store, site_root, fake_catalog, caplog):
        with caplog.at_level(logging.INFO, logger="core.domain_router"):
            response = make_client(fake_catalog([])).get("/products/other-tee", headers=STORE_HOST)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "Page Not Found" in response.text
        assert "Product other-tee not found in the catalog of nordicgoods.se" in caplog.text

    def test_no_catalog_serves_static(self, make_client, deployed_store, site_root):
        response = make_client().get("/products/classic-tee", headers=STORE_HOST)
        assert "Static tee" in response.text
