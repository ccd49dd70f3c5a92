"""
Catalog entity models.
The catalog store's view of a product with its variants and images.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CatalogImage(BaseModel):
    """Product image. Identity is the normalized URL, or the checksum when known."""

    url: str
    checksum: Optional[str] = None

    @property
    def normalized_url(self) -> str:
        return self.url.strip().rstrip("/").lower()

    def same_as(self, other: "CatalogImage") -> bool:
        if self.checksum and other.checksum and self.checksum == other.checksum:
            return True
        return self.normalized_url == other.normalized_url


class CatalogVariant(BaseModel):
    """Sellable variant, keyed by SKU."""

    sku: str
    price: Optional[int] = None
    compare_at_price: Optional[int] = None
    currency_code: Optional[str] = None
    inventory_quantity: Optional[int] = None
    manage_inventory: Optional[bool] = None
    allow_backorder: Optional[bool] = None
    weight: Optional[float] = None


# Entity attributes a row can set directly
ENTITY_FIELDS = (
    "handle",
    "external_id",
    "title",
    "description",
    "status",
    "config_type",
    "thumbnail_url",
    "tags",
    "collection_handles",
    "category_handles",
    "min_selections",
    "max_selections",
    "category_filter",
    "collection_filter",
    "metadata",
)


class CatalogEntity(BaseModel):
    """
    Product as stored in the catalog.

    An entity without an id is a draft that has not been created yet.
    """

    id: Optional[str] = None
    handle: str
    external_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: str = "draft"
    config_type: Optional[str] = None
    archived: bool = False
    thumbnail_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    collection_handles: List[str] = Field(default_factory=list)
    category_handles: List[str] = Field(default_factory=list)
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None
    category_filter: Optional[str] = None
    collection_filter: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    variants: List[CatalogVariant] = Field(default_factory=list)
    images: List[CatalogImage] = Field(default_factory=list)

    @property
    def skus(self) -> List[str]:
        return [variant.sku for variant in self.variants]

    def variant(self, sku: str) -> Optional[CatalogVariant]:
        for variant in self.variants:
            if variant.sku == sku:
                return variant
        return None


class EntityPatch(BaseModel):
    """
    Changes to apply to an existing entity.

    `fields` holds changed attributes, `variants` the variants to upsert by
    SKU, `images` the full new image list (None leaves images untouched).
    """

    fields: Dict[str, Any] = Field(default_factory=dict)
    variants: List[CatalogVariant] = Field(default_factory=list)
    images: Optional[List[CatalogImage]] = None

    @property
    def is_empty(self) -> bool:
        return not self.fields and not self.variants and self.images is None

    def apply_to(self, entity: CatalogEntity) -> CatalogEntity:
        """Return a copy of `entity` with this patch applied."""
        updated = entity.model_copy(deep=True, update=dict(self.fields))
        for variant in self.variants:
            existing = updated.variant(variant.sku)
            if existing is None:
                updated.variants.append(variant.model_copy())
            else:
                index = updated.variants.index(existing)
                merged = existing.model_dump()
                merged.update(variant.model_dump(exclude_none=True))
                updated.variants[index] = CatalogVariant(**merged)
        if self.images is not None:
            updated.images = [image.model_copy() for image in self.images]
        return updated
