"""
Row Parser
Maps raw CSV rows onto the typed `CatalogRow` model using header names.
"""

import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..models.row import CatalogRow, FieldError, RowRecord, normalize_header
from .errors import SourceFileError

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = frozenset(CatalogRow.model_fields.keys())

# Header columns that must exist for the file to be importable at all
STRUCTURAL_FIELDS = ("title",)

# Canonical field -> accepted source header aliases (already normalized)
FIELD_ALIASES: Dict[str, List[str]] = {
    "title": ["name", "product_name", "product_title"],
    "handle": ["slug", "url_handle", "product_handle"],
    "external_id": ["ext_id", "external_product_id"],
    "description": ["product_description", "desc", "details"],
    "status": ["product_status", "state", "visibility"],
    "config_type": ["configuration_type", "fabric_type"],
    "sku": ["product_sku", "variant_sku", "item_code"],
    "variant_skus": ["skus", "additional_skus", "variant_sku_list"],
    "price": ["retail_price", "price_minor", "price_cents", "unit_price"],
    "compare_at_price": ["compare_price", "original_price", "msrp"],
    "currency_code": ["currency", "price_currency"],
    "inventory_quantity": ["quantity", "stock", "qty", "stock_quantity"],
    "manage_inventory": ["track_inventory", "inventory_managed"],
    "allow_backorder": ["backorder_allowed", "allow_backorders"],
    "weight": ["product_weight", "weight_kg"],
    "image_urls": ["images", "additional_images", "gallery_images"],
    "image_checksums": ["image_hashes", "image_sha256"],
    "thumbnail_url": ["thumbnail", "main_image", "featured_image", "primary_image"],
    "tags": ["product_tags", "keywords", "labels"],
    "collection_handles": ["collections", "product_collections"],
    "category_handles": ["categories", "product_categories", "cat_handles"],
    "min_selections": ["min_select", "minimum_selections"],
    "max_selections": ["max_select", "maximum_selections"],
    "category_filter": ["filter_category"],
    "collection_filter": ["filter_collection"],
    "metadata_json": ["metadata", "custom_data"],
}

_ALIAS_INDEX: Dict[str, str] = {
    alias: field for field, aliases in FIELD_ALIASES.items() for alias in aliases
}


class HeaderSchema:
    """
    Column name -> canonical field mapping for one file.

    Matching is case-insensitive and ignores column order. An explicit
    column mapping wins over canonical names and aliases; the first column
    claiming a field wins over later ones. Unknown columns are ignored.
    """

    def __init__(self, columns: List[str], column_mapping: Optional[Dict[str, str]] = None):
        self.columns = list(columns)
        self.mapping: Dict[str, str] = {}
        self.unknown: List[str] = []
        self.duplicates: List[str] = []

        overrides = {
            normalize_header(k): normalize_header(v) for k, v in (column_mapping or {}).items()
        }
        claimed = set()
        for column in self.columns:
            field = self._resolve(normalize_header(column), overrides)
            if field is None:
                self.unknown.append(column)
            elif field in claimed:
                self.duplicates.append(column)
            else:
                self.mapping[column] = field
                claimed.add(field)

        if self.unknown:
            logger.info(f"Ignoring unknown columns: {self.unknown}")
        if self.duplicates:
            logger.warning(f"Ignoring columns mapped to an already mapped field: {self.duplicates}")

    @staticmethod
    def _resolve(name: str, overrides: Dict[str, str]) -> Optional[str]:
        if name in overrides:
            target = overrides[name]
            return target if target in CANONICAL_FIELDS else None
        if name in CANONICAL_FIELDS:
            return name
        return _ALIAS_INDEX.get(name)

    @property
    def fields(self) -> List[str]:
        return list(self.mapping.values())

    def has_field(self, field: str) -> bool:
        return field in self.mapping.values()

    def check_structure(self) -> None:
        """
        Raise SourceFileError when the header cannot describe catalog rows at all.
        """
        if not self.columns:
            raise SourceFileError("Source file has no columns")
        missing = [field for field in STRUCTURAL_FIELDS if not self.has_field(field)]
        if missing:
            raise SourceFileError(
                f"Source file header is missing required column(s): {', '.join(missing)}",
                {"missing_columns": missing, "columns": self.columns},
            )


class RowParser:
    """Turns raw fields into a typed `CatalogRow`, collecting per-field type errors."""

    def __init__(self, schema: HeaderSchema):
        self.schema = schema

    def parse(self, record: RowRecord) -> RowRecord:
        values = {}
        for column, field in self.schema.mapping.items():
            value = record.raw.get(column, "")
            if value != "":
                values[field] = value

        # Each failing field is reported and dropped, then the rest is re-validated
        for _ in range(len(values) + 1):
            try:
                record.fields = CatalogRow.model_validate(values)
                break
            except ValidationError as e:
                for error in e.errors():
                    field = str(error["loc"][0]) if error.get("loc") else "row"
                    raw_value = values.pop(field, None)
                    record.errors.append(
                        FieldError(
                            field=field,
                            code=error.get("type", "invalid"),
                            message=_clean_message(error.get("msg", "invalid value")),
                            value=None if raw_value is None else str(raw_value)[:200],
                        )
                    )
        return record


def _clean_message(message: str) -> str:
    # pydantic prefixes custom validator messages with "Value error, "
    return message.replace("Value error, ", "")
