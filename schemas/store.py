from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional

REQUIRED_STORE_FIELDS = ("name", "domain", "country", "language", "currency")


class StoreCreate(BaseModel):
    """Admin payload for a new store. Required fields are checked by the service
    so the error can name every missing one at once."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    domain: Optional[str] = None
    subdomain: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None
    timezone: str = "UTC"

    shopify_domain: Optional[str] = None
    shopify_access_token: Optional[str] = None
    shopify_shop_name: Optional[str] = None
    shopify_connected: bool = False

    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    theme_config: Optional[Dict[str, Any]] = None
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    tagline: Optional[str] = None

    support_email: Optional[str] = None
    support_phone: Optional[str] = None
    business_address: Optional[str] = None
    business_orgnr: Optional[str] = None
    shipping_info: Optional[str] = None
    return_policy: Optional[str] = None

    selected_pages: Optional[List[str]] = None
    selected_products: Optional[List[str]] = None
    social_links: Optional[Dict[str, str]] = None
    payment_icons: Optional[List[str]] = None
    prefooter_enabled: bool = False
    prefooter_cards: Optional[List[Dict[str, str]]] = None

    def missing_fields(self) -> List[str]:
        return [field for field in REQUIRED_STORE_FIELDS if not (getattr(self, field) or "").strip()]
