"""
Row models for CSV import.
Typed row fields, per-field errors and the per-row outcome record.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator

LIST_DELIMITERS = ("|", ";", ",")
TRUE_VALUES = {"true", "yes", "y", "1", "t"}
FALSE_VALUES = {"false", "no", "n", "0", "f"}
FORMULA_PREFIXES = ("=", "+", "-", "@")


def normalize_header(name: str) -> str:
    """Lower-case a column name and collapse non-alphanumerics to underscores."""
    name = re.sub(r"[^a-z0-9]+", "_", str(name).strip().lower())
    return name.strip("_")


def split_list(value: str) -> List[str]:
    """Split a list cell on the first delimiter it contains (| then ; then ,)."""
    for delimiter in LIST_DELIMITERS:
        if delimiter in value:
            parts = value.split(delimiter)
            break
    else:
        parts = [value]
    return [part.strip() for part in parts if part.strip()]


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def starts_with_formula(value: Optional[str]) -> bool:
    """True when a spreadsheet would evaluate the cell as a formula."""
    return bool(value) and value.lstrip()[:1] in FORMULA_PREFIXES


class ProductStatus(str, Enum):
    """Catalog product publication status."""

    DRAFT = "draft"
    PROPOSED = "proposed"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ConfigType(str, Enum):
    """Product configuration type. Multi-selection types need a selection source."""

    SIMPLE = "simple"
    CONFIGURABLE_FABRIC = "configurable_fabric"
    CONFIGURABLE_SWATCH_SET = "configurable_swatch_set"

    @property
    def is_multi_selection(self) -> bool:
        return self != ConfigType.SIMPLE


class CatalogRow(BaseModel):
    """
    Typed view of one CSV row.

    Every field is optional: presence rules live in the row validator so
    that all problems of a row are reported together.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,  # Auto-strip whitespace
        extra="ignore",
    )

    # === IDENTITY ===
    title: Optional[str] = None
    handle: Optional[str] = None
    external_id: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ProductStatus] = None
    config_type: Optional[ConfigType] = None

    # === VARIANTS ===
    sku: Optional[str] = None
    variant_skus: Optional[List[str]] = None

    # === PRICING (integer minor units) ===
    price: Optional[int] = None
    compare_at_price: Optional[int] = None
    currency_code: Optional[str] = None

    # === INVENTORY ===
    inventory_quantity: Optional[int] = None
    manage_inventory: Optional[bool] = None
    allow_backorder: Optional[bool] = None
    weight: Optional[float] = None

    # === IMAGES ===
    image_urls: Optional[List[str]] = None
    image_checksums: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None

    # === ORGANIZATION ===
    tags: Optional[List[str]] = None
    collection_handles: Optional[List[str]] = None
    category_handles: Optional[List[str]] = None

    # === SELECTION CONFIG ===
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None
    category_filter: Optional[str] = None
    collection_filter: Optional[str] = None

    metadata_json: Optional[Dict[str, Any]] = None

    @field_validator("status", "config_type", "currency_code", mode="before")
    @classmethod
    def lower_enum_value(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator(
        "variant_skus",
        "image_urls",
        "image_checksums",
        "tags",
        "collection_handles",
        "category_handles",
        mode="before",
    )
    @classmethod
    def parse_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return split_list(v)
        return v

    @field_validator("image_urls")
    @classmethod
    def validate_image_urls(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        bad = [url for url in v if not is_http_url(url)]
        if bad:
            raise ValueError(f"invalid URL: {bad[0]}")
        return v

    @field_validator("thumbnail_url")
    @classmethod
    def validate_thumbnail(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_http_url(v):
            raise ValueError(f"invalid URL: {v}")
        return v

    @field_validator("manage_inventory", "allow_backorder", mode="before")
    @classmethod
    def parse_bool(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
        return v

    @field_validator("metadata_json", mode="before")
    @classmethod
    def parse_metadata(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"invalid JSON: {e.msg}")
            if not isinstance(v, dict):
                raise ValueError("metadata must be a JSON object")
        return v

    @property
    def all_skus(self) -> List[str]:
        """Primary SKU followed by the extra variant SKUs, in row order."""
        skus = [self.sku] if self.sku else []
        return skus + list(self.variant_skus or [])


class FieldError(BaseModel):
    """One problem with one field of one row."""

    field: str
    code: str
    message: str
    value: Optional[str] = None

    def render(self) -> str:
        return f"{self.field}: {self.message}"


class OutcomeStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class RowOutcome(BaseModel):
    """Final result for one row. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    row_index: int
    status: OutcomeStatus
    entity_id: Optional[str] = None
    handle: Optional[str] = None
    variant_skus: List[str] = []
    message: Optional[str] = None


@dataclass
class RowRecord:
    """A row in flight through the pipeline."""

    row_index: int
    raw: Dict[str, str]
    fields: Optional[CatalogRow] = None
    errors: List[FieldError] = field(default_factory=list)
    key: Optional[Any] = None
    entity_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.fields is not None and not self.errors

    def error_message(self) -> str:
        return "; ".join(error.render() for error in self.errors)
