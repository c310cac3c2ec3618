import json
import logging
import re
import uuid as uuid_lib
from datetime import datetime
from typing import Any

from sqlalchemy import String, Boolean, DateTime, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from core.db import Base
from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEPLOYMENT_STATUSES = ("pending", "deploying", "deployed", "failed")

DEFAULT_PRIMARY_COLOR = "#007cba"
DEFAULT_SECONDARY_COLOR = "#f8f9fa"

# Sentinel substituted for legal-text variables the merchant has not filled in
MISSING_VALUE = "TBD"

# Text fields of a content record that carry {placeholder} tokens
PLACEHOLDER_TEXT_FIELDS = ("title", "subtitle", "description", "content", "meta_title", "meta_description")

_PLACEHOLDER_RE = re.compile(
    r"\{(store_name|store_domain|store_country|store_currency|support_email|support_phone|business_address)\}"
)


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid_lib.uuid4()))
    name: Mapped[str] = mapped_column(String(150), index=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    subdomain: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True, index=True)

    # Locale
    country: Mapped[str] = mapped_column(String(2))
    language: Mapped[str] = mapped_column(String(5))
    currency: Mapped[str] = mapped_column(String(3))
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    # Catalog connection
    shopify_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_access_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_shop_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_connected: Mapped[bool] = mapped_column(Boolean, default=False)

    # Theme & branding
    primary_color: Mapped[str] = mapped_column(String(20), default=DEFAULT_PRIMARY_COLOR)
    secondary_color: Mapped[str] = mapped_column(String(20), default=DEFAULT_SECONDARY_COLOR)
    theme_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    favicon_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meta_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Contact & business info
    support_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    support_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    business_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_orgnr: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipping_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_policy: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Site composition
    selected_pages: Mapped[list | None] = mapped_column(JSON, nullable=True)
    selected_products: Mapped[list | None] = mapped_column(JSON, nullable=True)
    social_links: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payment_icons: Mapped[list | None] = mapped_column(JSON, nullable=True)
    prefooter_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    prefooter_cards: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="active")
    deployment_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    deployment_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    files_generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pages = relationship(
        "Page",
        back_populates="store",
        cascade="all, delete-orphan",
        order_by="Page.sort_order",
    )

    @validates("deployment_status")
    def _validate_deployment_status(self, key, value):
        if value not in DEPLOYMENT_STATUSES:
            raise ValidationError(
                f"Invalid deployment_status '{value}', expected one of {', '.join(DEPLOYMENT_STATUSES)}",
                fields=[key],
            )
        return value

    @property
    def is_deployed(self) -> bool:
        return self.deployment_status == "deployed"

    @property
    def contact_email(self) -> str:
        return self.support_email or f"support@{self.domain}"

    def replace_template_variables(self, content: str | None) -> str | None:
        """Fill ``$variable`` tokens in legal texts.

        Variables without a value become ``TBD`` so a half-configured store still
        publishes readable legal pages. Empty input is returned untouched.
        """
        if not content:
            return content

        variables = {
            "$company_name": self.name,
            "$domain": self.domain,
            "$contact_email": self.contact_email,
            "$company_address": self.business_address,
            "$company_orgnr": self.business_orgnr,
            "$country": self.country,
            "$currency": self.currency,
        }
        # Longest names first so "$company_name" never gets eaten by a shorter prefix
        pattern = re.compile("|".join(re.escape(name) for name in sorted(variables, key=len, reverse=True)))
        return pattern.sub(lambda match: variables[match.group(0)] or MISSING_VALUE, content)

    def replace_content_placeholders(self, content: dict[str, Any]) -> dict[str, Any]:
        """Fill ``{placeholder}`` tokens across a content record.

        ``content_blocks`` is parsed as JSON so nested block text is filled too. A
        value that does not parse is left exactly as it was.
        """
        placeholders = {
            "store_name": self.name,
            "store_domain": self.domain,
            "store_country": self.country,
            "store_currency": self.currency,
            "support_email": self.contact_email,
            "support_phone": self.support_phone or "",
            "business_address": self.business_address or "",
        }

        def _fill(text):
            if not isinstance(text, str) or not text:
                return text
            return _PLACEHOLDER_RE.sub(lambda match: placeholders[match.group(1)] or "", text)

        def _fill_nested(value):
            if isinstance(value, str):
                return _fill(value)
            if isinstance(value, list):
                return [_fill_nested(item) for item in value]
            if isinstance(value, dict):
                return {key: _fill_nested(item) for key, item in value.items()}
            return value

        processed = dict(content)
        for field in PLACEHOLDER_TEXT_FIELDS:
            if processed.get(field):
                processed[field] = _fill(processed[field])

        raw_blocks = processed.get("content_blocks")
        if raw_blocks:
            try:
                blocks = json.loads(raw_blocks) if isinstance(raw_blocks, str) else raw_blocks
            except (TypeError, ValueError) as e:
                logger.warning(f"Leaving content_blocks untouched for {self.domain}: {e}")
            else:
                filled = _fill_nested(blocks)
                processed["content_blocks"] = json.dumps(filled, ensure_ascii=False) if isinstance(raw_blocks, str) else filled

        return processed
