import json
import logging
import os
import random
import re
import shutil
import string
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import settings
from core.exceptions import ConflictError, ValidationError
from models.page import LEGAL_PAGE_TYPES, PAGE_TYPES, Page
from models.store import Store
from schemas.store import StoreCreate
from services.content_defaults import default_content_for
from services.hosting import HostingClient
from services.legal_pages import LegalPageLoader
from services.locks import store_lock
from services.site_builder import SiteBuilder, store_directory

logger = logging.getLogger(__name__)

DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$")
SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

SUBDOMAIN_MAX_LENGTH = 20
SUBDOMAIN_MIN_LENGTH = 3
RANDOM_SUFFIX_CHARS = string.ascii_lowercase + string.digits

DEFAULT_PAGE_SET = ("home", "products", "about", "contact", "terms", "privacy", "refund", "delivery")
ALWAYS_CREATED_PAGES = ("home", "products")

# Page names offered in the admin setup form
SELECTION_PAGE_TYPES = {
    "privacy-policy": "privacy",
    "terms-of-service": "terms",
    "return-policy": "refund",
    "shipping-policy": "delivery",
}

UPDATABLE_FIELDS = frozenset({
    "name", "country", "language", "currency", "timezone",
    "shopify_domain", "shopify_access_token", "shopify_shop_name", "shopify_connected",
    "primary_color", "secondary_color", "theme_config", "logo_url", "favicon_url",
    "meta_title", "meta_description", "tagline",
    "support_email", "support_phone", "business_address", "business_orgnr",
    "shipping_info", "return_policy",
    "selected_pages", "selected_products", "social_links", "payment_icons",
    "prefooter_enabled", "prefooter_cards",
    "status",
})

# Changes to these show up in generated files
REGENERATE_FIELDS = frozenset({
    "name", "language", "currency",
    "shopify_domain", "shopify_access_token", "shopify_connected",
    "primary_color", "secondary_color", "theme_config", "logo_url", "favicon_url",
    "meta_title", "meta_description", "tagline",
    "support_email", "support_phone", "business_address", "business_orgnr",
    "selected_products", "social_links", "payment_icons",
    "prefooter_enabled", "prefooter_cards",
})


def normalize_domain(domain: str) -> str:
    domain = domain.strip().lower().rstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def slugify_subdomain(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:SUBDOMAIN_MAX_LENGTH].strip("-")
    if len(slug) < SUBDOMAIN_MIN_LENGTH:
        slug = f"store-{slug}" if slug else "store"
    return slug


def subdomain_taken(db: Session, subdomain: str) -> bool:
    return db.query(Store.id).filter(Store.subdomain == subdomain).first() is not None


def generate_unique_subdomain(
    db: Session,
    name: str,
    clock: Callable[[], float] = time.time,
    rand: random.Random = random,
) -> str:
    """Free subdomain derived from a store name.

    Tries the bare slug, then a suffix of the last six millisecond-clock digits, then
    random six-character suffixes until one is free.
    """
    base = slugify_subdomain(name)
    if not subdomain_taken(db, base):
        return base

    candidate = f"{base}-{str(int(clock() * 1000))[-6:]}"
    if not subdomain_taken(db, candidate):
        return candidate

    while True:
        suffix = "".join(rand.choice(RANDOM_SUFFIX_CHARS) for _ in range(6))
        candidate = f"{base}-{suffix}"
        if not subdomain_taken(db, candidate):
            return candidate
        logger.info(f"Subdomain {candidate} taken, retrying")


def pages_to_create(store: Store) -> List[str]:
    selected = store.selected_pages
    if not selected:
        return list(DEFAULT_PAGE_SET)
    if isinstance(selected, str):
        selected = selected.split(",")

    page_types = list(ALWAYS_CREATED_PAGES)
    for name in selected:
        name = str(name).strip()
        page_type = SELECTION_PAGE_TYPES.get(name, name)
        if page_type not in PAGE_TYPES:
            logger.warning(f"Ignoring unsupported page selection '{name}' for {store.domain}")
            continue
        if page_type not in page_types:
            page_types.append(page_type)
    return page_types


def _sort_order(page_type: str) -> int:
    return DEFAULT_PAGE_SET.index(page_type) if page_type in DEFAULT_PAGE_SET else len(DEFAULT_PAGE_SET)


class StoreService:
    """Store lifecycle: creation, updates, file generation, deployment and deletion.

    Mutating operations let their errors propagate unchanged to the caller.
    """

    def __init__(
        self,
        db: Session,
        builder: SiteBuilder,
        legal_pages: LegalPageLoader,
        hosting: Optional[HostingClient] = None,
        lock=store_lock,
        stores_dir: Optional[str] = None,
    ):
        self.db = db
        self.builder = builder
        self.legal_pages = legal_pages
        self.hosting = hosting
        self.lock = lock
        self.stores_dir = stores_dir or settings.STORES_DIR

    def store_dir(self, store: Store) -> str:
        return store_directory(store, self.stores_dir)

    def find_by_domain(self, domain: str) -> Optional[Store]:
        return self.db.query(Store).filter(Store.domain == domain).one_or_none()

    # Creation

    async def create(self, data: StoreCreate | Dict[str, Any]) -> Store:
        payload = data if isinstance(data, StoreCreate) else StoreCreate(**data)

        missing = payload.missing_fields()
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

        domain = normalize_domain(payload.domain)
        if not DOMAIN_RE.match(domain):
            raise ValidationError(f"Invalid domain '{payload.domain}'", fields=["domain"])
        if self.find_by_domain(domain):
            raise ConflictError(f"A store already exists with domain '{domain}'", value=domain)

        subdomain = None
        if payload.subdomain:
            subdomain = payload.subdomain.strip().lower()
            if not SUBDOMAIN_RE.match(subdomain):
                raise ValidationError(f"Invalid subdomain '{payload.subdomain}'", fields=["subdomain"])
            if subdomain_taken(self.db, subdomain):
                raise ConflictError(f"A store already exists with subdomain '{subdomain}'", value=subdomain)

        store_path = os.path.join(self.stores_dir, domain)
        if os.path.exists(store_path):
            raise ConflictError(f"Directory for '{domain}' already exists at {store_path}", value=domain)

        if not subdomain:
            subdomain = generate_unique_subdomain(self.db, payload.name)

        fields = payload.model_dump(exclude={"domain", "subdomain"}, exclude_none=True)
        fields.update(
            name=payload.name.strip(),
            country=payload.country.strip().upper(),
            language=payload.language.strip().lower(),
            currency=payload.currency.strip().upper(),
        )
        store = Store(**fields, domain=domain, subdomain=subdomain, deployment_status="pending")
        self.db.add(store)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"Domain or subdomain already taken for '{domain}'", value=domain) from e
        self.db.refresh(store)
        logger.info(f"Store created: {store.name} ({store.domain}, subdomain {store.subdomain})")

        try:
            self.create_default_pages(store)
            await self.generate_store_files(store)
        except Exception:
            logger.exception(f"Initial generation failed for {store.domain}")
            self.db.rollback()
            store.deployment_status = "failed"
            self.db.commit()
            raise
        return store

    def create_default_pages(self, store: Store) -> List[Page]:
        existing = {page.page_type: page for page in store.pages}
        created = []
        for page_type in pages_to_create(store):
            content = self._page_content(store, page_type)
            page = existing.get(page_type)
            if page is None:
                page = Page(page_type=page_type)
                store.pages.append(page)
            page.slug = "" if page_type == "home" else content.get("slug") or page_type
            page.language = content.get("language") or store.language
            page.title = content["title"]
            page.subtitle = content.get("subtitle") or None
            page.content_blocks = content.get("content_blocks")
            page.meta_title = content.get("meta_title")
            page.meta_description = content.get("meta_description")
            page.sort_order = _sort_order(page_type)
            page.is_enabled = True
            created.append(page)

        self.db.commit()
        logger.info(f"Default pages for {store.domain}: {', '.join(page.page_type for page in created)}")
        return created

    def _page_content(self, store: Store, page_type: str) -> Dict[str, Any]:
        if page_type in LEGAL_PAGE_TYPES:
            legal = self.legal_pages.get_legal_page(store.language, page_type)
            if legal is not None:
                return {
                    "title": legal.title,
                    "content_blocks": store.replace_template_variables(legal.content),
                    "meta_title": legal.title,
                    "meta_description": f"{legal.title} - {store.name}",
                    "slug": legal.slug,
                    "language": store.language,
                }
            logger.warning(f"No localized {page_type} page for language '{store.language}', using a basic page")

        defaults = default_content_for(page_type, store.language)
        if defaults is not None:
            return store.replace_content_placeholders(defaults)

        label = page_type.capitalize()
        return {
            "title": f"{store.name} - {label}",
            "subtitle": f"Welcome to our {page_type} page",
            "content_blocks": json.dumps(
                [{"type": "text", "content": f"Welcome to the {page_type} page of {store.name}."}], ensure_ascii=False
            ),
            "meta_title": f"{store.name} - {label}",
            "meta_description": f"Visit our {page_type} page at {store.name}",
            "slug": page_type,
        }

    # Updates

    def update(self, store: Store, fields: Dict[str, Any]) -> List[str]:
        """Apply allow-listed fields. Returns the names of fields whose value changed."""
        allowed = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
        if not allowed:
            return []

        changed = []
        for key, value in allowed.items():
            if getattr(store, key) != value:
                setattr(store, key, value)
                changed.append(key)
        if not changed:
            return []

        self.db.commit()
        logger.info(f"Store {store.domain} updated: {', '.join(changed)}")
        return changed

    async def apply_changes(self, store: Store, fields: Dict[str, Any]) -> List[str]:
        changed = self.update(store, fields)
        if store.files_generated_at and REGENERATE_FIELDS.intersection(changed):
            await self.regenerate_store_files(store)
        return changed

    # Files

    async def generate_store_files(self, store: Store) -> List[str]:
        written = await self.builder.build(self.db, store)
        store.files_generated_at = datetime.utcnow()
        self.db.commit()
        return written

    async def regenerate_store_files(self, store: Store) -> List[str]:
        lock = self.lock(store.id)
        # Waiting on the lock must not stall the event loop
        if not await run_in_threadpool(lock.acquire):
            raise ConflictError(f"Files for {store.domain} are already being regenerated", value=store.domain)
        try:
            return await self.generate_store_files(store)
        finally:
            await run_in_threadpool(lock.release)

    # Deployment

    async def deploy(self, store: Store, force: bool = False) -> Store:
        if store.deployment_status == "deploying":
            raise ConflictError(f"Store {store.domain} is already deploying", value=store.domain)
        if (
            not force
            and store.is_deployed
            and store.files_generated_at
            and os.path.isdir(self.store_dir(store))
        ):
            logger.info(f"Store {store.domain} already deployed, skipping")
            return store

        store.deployment_status = "deploying"
        self.db.commit()
        try:
            await self.regenerate_store_files(store)
            if self.hosting is not None:
                target = settings.HOSTING_ALIAS_TARGET
                if not target:
                    raise ValidationError("HOSTING_ALIAS_TARGET is not configured", fields=["HOSTING_ALIAS_TARGET"])
                self.hosting.create_domain_alias(store.domain, target)
            store.deployment_status = "deployed"
            store.deployed_at = datetime.utcnow()
            store.deployment_url = f"https://{store.domain}"
            self.db.commit()
        except Exception:
            logger.exception(f"Deployment failed for {store.domain}")
            self.db.rollback()
            store.deployment_status = "failed"
            self.db.commit()
            raise

        logger.info(f"Store deployed: {store.domain}")
        return store

    # Deletion

    def delete(self, store: Store) -> None:
        """Alias, then files, then the row. A failing step leaves the row for a retry."""
        domain = store.domain
        if self.hosting is not None:
            self.hosting.remove_domain_alias(domain)

        path = self.store_dir(store)
        if os.path.isdir(path):
            shutil.rmtree(path)

        self.db.delete(store)
        self.db.commit()
        logger.info(f"Store deleted: {domain}")
