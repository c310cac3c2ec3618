import json
import pytest
from sqlalchemy.exc import IntegrityError

from core.exceptions import ValidationError
from models.page import Page
from models.product_template import ProductPageTemplate, TemplateAssignment
from models.store import Store


class TestStore:
    """Test cases for Store model"""

    def test_store_creation_defaults(self, make_store):
        store = make_store()

        assert store.id is not None
        assert len(store.uuid) == 36
        assert store.deployment_status == "pending"
        assert store.primary_color == "#007cba"
        assert store.is_deployed is False

    def test_domain_unique(self, db, make_store):
        make_store()
        db.add(Store(name="Other", domain="test-store.com", subdomain="other", country="SE", language="se", currency="SEK"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_subdomain_unique(self, db, make_store):
        make_store()
        db.add(Store(name="Other", domain="other.com", subdomain="test-store", country="SE", language="se", currency="SEK"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_invalid_deployment_status(self, make_store):
        store = make_store()
        with pytest.raises(ValidationError) as exc:
            store.deployment_status = "live"
        assert exc.value.fields == ["deployment_status"]

    def test_contact_email_fallback(self, make_store):
        store = make_store()
        assert store.contact_email == "support@test-store.com"
        store.support_email = "help@test-store.com"
        assert store.contact_email == "help@test-store.com"

    def test_pages_deleted_with_store(self, db, make_store, add_page):
        store = make_store()
        add_page(store, "home")
        add_page(store, "about")

        db.delete(store)
        db.commit()
        assert db.query(Page).count() == 0


class TestTemplateVariables:
    """$variable substitution in legal texts"""

    def test_replaces_all_variables(self, make_store):
        store = make_store(
            name="Nordic Goods",
            domain="nordicgoods.se",
            support_email="hello@nordicgoods.se",
            business_address="Storgatan 1",
            business_orgnr="556677-8899",
        )
        text = "$company_name ($company_orgnr), $company_address, $domain, $contact_email, $country, $currency"
        assert store.replace_template_variables(text) == (
            "Nordic Goods (556677-8899), Storgatan 1, nordicgoods.se, hello@nordicgoods.se, SE, SEK"
        )

    def test_missing_value_becomes_tbd(self, make_store):
        store = make_store()
        assert store.replace_template_variables("Org: $company_orgnr") == "Org: TBD"

    def test_text_without_variables_unchanged(self, make_store):
        store = make_store()
        assert store.replace_template_variables("no vars here") == "no vars here"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input_unchanged(self, make_store, value):
        assert make_store().replace_template_variables(value) == value


class TestContentPlaceholders:
    """{placeholder} substitution in page content"""

    def test_text_fields_and_blocks(self, make_store):
        store = make_store(name="Nordic Goods")
        content = {
            "title": "Welcome to {store_name}",
            "meta_description": "Shop in {store_currency}",
            "content_blocks": json.dumps([{"type": "hero", "title": "{store_name}", "items": [{"title": "{store_country}"}]}]),
        }

        result = store.replace_content_placeholders(content)

        assert result["title"] == "Welcome to Nordic Goods"
        assert result["meta_description"] == "Shop in SEK"
        blocks = json.loads(result["content_blocks"])
        assert blocks[0]["title"] == "Nordic Goods"
        assert blocks[0]["items"][0]["title"] == "SE"

    def test_invalid_json_blocks_left_unchanged(self, make_store):
        store = make_store(name="Nordic Goods")
        result = store.replace_content_placeholders({"title": "{store_name}", "content_blocks": "not json"})

        assert result["content_blocks"] == "not json"
        assert result["title"] == "Nordic Goods"

    def test_input_not_mutated(self, make_store):
        store = make_store()
        content = {"title": "{store_name}"}
        store.replace_content_placeholders(content)
        assert content["title"] == "{store_name}"


class TestPage:
    """Test cases for Page model"""

    def test_file_name_and_url(self):
        assert Page(page_type="home", title="Home").file_name == "index.html"
        assert Page(page_type="home", title="Home").url_path == "/"
        privacy = Page(page_type="privacy", slug="integritetspolicy", title="Integritetspolicy")
        assert privacy.file_name == "integritetspolicy.html"
        assert privacy.url_path == "/integritetspolicy"
        assert privacy.is_legal is True

    def test_unknown_page_type_rejected(self):
        with pytest.raises(ValidationError):
            Page(page_type="blog", title="Blog")

    def test_one_page_per_type(self, db, make_store, add_page):
        store = make_store()
        add_page(store, "about")
        db.add(Page(store_id=store.id, page_type="about", title="Again"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


class TestProductTemplates:
    """Test cases for product page templates"""

    def test_single_assignment_per_handle(self, db, make_template):
        first = make_template(["ProductTitle"], handle="classic-tee")
        second = make_template(["PricingSection"], name="Other")
        db.add(TemplateAssignment(template_id=second.id, product_handle="classic-tee"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
        assert first.assignments[0].product_handle == "classic-tee"

    def test_single_default_template(self, db, make_template):
        make_template(["ProductTitle"], is_default=True)
        db.add(ProductPageTemplate(name="Second", elements="[]", is_default=True))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
