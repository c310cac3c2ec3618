from pydantic import BaseModel
from typing import List, Optional


class ProductImage(BaseModel):
    id: Optional[str] = None
    src: str
    alt: str = ""


class ProductVariant(BaseModel):
    id: Optional[str] = None
    title: str = ""
    price: float
    compare_at_price: Optional[float] = None
    available: bool = False
    inventory_quantity: Optional[int] = None
    sku: str = ""

    @property
    def on_sale(self) -> bool:
        return self.compare_at_price is not None and self.compare_at_price > self.price


class CatalogProduct(BaseModel):
    id: Optional[str] = None
    handle: str
    title: str
    description: str = ""
    vendor: str = ""
    product_type: str = ""
    tags: List[str] = []
    images: List[ProductImage] = []
    variants: List[ProductVariant] = []

    @property
    def primary_variant(self) -> Optional[ProductVariant]:
        return self.variants[0] if self.variants else None

    @property
    def primary_image(self) -> Optional[ProductImage]:
        return self.images[0] if self.images else None

    @property
    def is_available(self) -> bool:
        variant = self.primary_variant
        return bool(variant and variant.available)
