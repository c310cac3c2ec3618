from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from core.db import Base
from core.exceptions import ValidationError

STANDARD_PAGE_TYPES = ("home", "products", "about", "contact")
LEGAL_PAGE_TYPES = ("privacy", "terms", "refund", "delivery")
PAGE_TYPES = STANDARD_PAGE_TYPES + LEGAL_PAGE_TYPES


class Page(Base):
    __tablename__ = "store_pages"
    __table_args__ = (UniqueConstraint("store_id", "page_type", name="uq_store_pages_store_type"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    store_id: Mapped[int] = mapped_column(ForeignKey("stores.id", ondelete="CASCADE"), index=True)
    page_type: Mapped[str] = mapped_column(String(50))
    slug: Mapped[str] = mapped_column(String(200), default="")
    language: Mapped[str | None] = mapped_column(String(5), nullable=True)
    title: Mapped[str] = mapped_column(String(255))
    subtitle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # JSON array of typed blocks, or raw HTML for legal pages
    content_blocks: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("Store", back_populates="pages")

    @validates("page_type")
    def _validate_page_type(self, key, value):
        if value not in PAGE_TYPES:
            raise ValidationError(f"Unknown page type '{value}'", fields=[key])
        return value

    @property
    def is_legal(self) -> bool:
        return self.page_type in LEGAL_PAGE_TYPES

    @property
    def file_name(self) -> str:
        if self.page_type == "home":
            return "index.html"
        return f"{self.slug or self.page_type}.html"

    @property
    def url_path(self) -> str:
        if self.page_type == "home":
            return "/"
        return f"/{self.slug or self.page_type}"
