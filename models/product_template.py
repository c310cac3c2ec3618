from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class ProductPageTemplate(Base):
    __tablename__ = "product_page_templates"
    __table_args__ = (
        # At most one default template
        Index(
            "uq_product_page_templates_default",
            "is_default",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(150))
    # Raw merchant JSON: ["ProductTitle", {"type": "PricingSection", "id": "...", "settings": {...}}, ...]
    elements: Mapped[str] = mapped_column(Text, default="[]")
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assignments = relationship("TemplateAssignment", back_populates="template", cascade="all, delete-orphan")


class TemplateAssignment(Base):
    __tablename__ = "template_assignments"
    __table_args__ = (UniqueConstraint("template_id", "product_handle", name="uq_template_assignments_template_handle"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("product_page_templates.id", ondelete="CASCADE"), index=True)
    product_handle: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    # Raw merchant JSON keyed template_<ElementType>_<fieldName>
    field_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    template = relationship("ProductPageTemplate", back_populates="assignments")
