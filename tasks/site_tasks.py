import asyncio
import logging

from celery import current_app
from sqlalchemy.orm import Session

from core.config import settings
from core.db import db_session
from core.exceptions import ConflictError
from models.store import Store
from services.hosting import HostingClient
from services.legal_pages import LegalPageLoader
from services.product_templates import CustomProductTemplateRenderer
from services.renderer import TemplateRenderer
from services.site_builder import SiteBuilder
from services.stores import StoreService

logger = logging.getLogger(__name__)


def build_store_service(db: Session, legal_pages: LegalPageLoader | None = None) -> StoreService:
    """StoreService wired from settings, for work running outside the web process."""
    if legal_pages is None:
        legal_pages = LegalPageLoader(settings.LEGAL_PAGES_DIR)
        legal_pages.load_all()
    renderer = TemplateRenderer()
    builder = SiteBuilder(renderer, CustomProductTemplateRenderer(renderer.env))
    hosting = HostingClient() if settings.HOSTING_API_TOKEN else None
    return StoreService(db, builder, legal_pages, hosting=hosting)


@current_app.task(bind=True, max_retries=3)
def regenerate_store_task(self, store_id: int):
    """
    Regenerate a store's files in the background.
    Retries with backoff while another regeneration holds the store lock.
    """
    with db_session() as db:
        store = db.get(Store, store_id)
        if store is None:
            logger.warning(f"Regeneration skipped, store {store_id} no longer exists")
            return {"status": "missing", "store_id": store_id}

        try:
            written = asyncio.run(build_store_service(db).regenerate_store_files(store))
        except ConflictError as exc:
            countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
            raise self.retry(exc=exc, countdown=countdown)

        return {"status": "generated", "store_id": store_id, "files": len(written)}


@current_app.task(bind=True)
def deploy_store_task(self, store_id: int, force: bool = False):
    """Deploy a store. Failures are recorded on the store and re-raised."""
    with db_session() as db:
        store = db.get(Store, store_id)
        if store is None:
            logger.warning(f"Deployment skipped, store {store_id} no longer exists")
            return {"status": "missing", "store_id": store_id}

        asyncio.run(build_store_service(db).deploy(store, force=force))
        return {"status": store.deployment_status, "store_id": store_id, "url": store.deployment_url}
