"""
Row Validator
Field-level and cross-field business rules for catalog rows.

All rules run on every row and every failure is collected, so the
error-rows artifact shows the complete list of problems per row.
"""

import logging
from collections import Counter
from typing import Iterable, List, Optional

from ..models.options import UpsertStrategy
from ..models.row import CatalogRow, FieldError, RowRecord, starts_with_formula
from .keys import KEY_FIELDS, normalize_handle
from .parser import HeaderSchema

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "price")
FORMULA_CHECKED_FIELDS = ("title", "handle", "description")


class RowValidator:
    """Validates parsed rows against catalog business rules."""

    def __init__(
        self,
        schema: HeaderSchema,
        upsert: UpsertStrategy = UpsertStrategy.OFF,
        allowed_currencies: Optional[Iterable[str]] = None,
        max_variants: int = 100,
        max_images: int = 20,
    ):
        self.schema = schema
        self.upsert = UpsertStrategy(upsert)
        self.allowed_currencies = {c.lower() for c in (allowed_currencies or [])}
        self.max_variants = max_variants
        self.max_images = max_images

    def validate(self, record: RowRecord) -> RowRecord:
        fields = record.fields or CatalogRow()
        errors: List[FieldError] = []
        failed_fields = {error.field for error in record.errors}

        for name in REQUIRED_FIELDS:
            self._require(fields, name, failed_fields, errors)

        key_field = KEY_FIELDS[self.upsert]
        suffix = f" for upsert={self.upsert.value}"
        if key_field and self._require(fields, key_field, failed_fields, errors, suffix=suffix):
            if key_field == "handle" and not normalize_handle(fields.handle):
                errors.append(
                    FieldError(
                        field="handle",
                        code="invalid_key",
                        message="does not contain any letters or digits",
                        value=fields.handle,
                    )
                )

        if key_field != "handle":
            self._check_derived_handle(fields, errors)

        self._check_pricing(fields, errors)
        self._check_inventory(fields, errors)
        self._check_selection(fields, errors)
        self._check_variants(fields, errors)
        self._check_images(fields, errors)
        self._check_formulas(fields, errors)

        record.errors.extend(errors)
        return record

    def _require(
        self,
        fields: CatalogRow,
        name: str,
        failed_fields: set,
        errors: List[FieldError],
        suffix: str = "",
    ) -> bool:
        """Report a missing value; returns True when the value is present."""
        if getattr(fields, name) is not None:
            return True
        if name in failed_fields:
            # Already reported as a type error by the parser
            return False
        if not self.schema.has_field(name):
            errors.append(
                FieldError(field=name, code="missing_column", message=f"column is missing{suffix}")
            )
        else:
            errors.append(FieldError(field=name, code="required", message=f"is required{suffix}"))
        return False

    def _check_derived_handle(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        """The entity handle is the handle column, or else the slugified title."""
        if fields.handle is not None:
            if not normalize_handle(fields.handle):
                errors.append(
                    FieldError(
                        field="handle",
                        code="invalid_handle",
                        message="does not contain any letters or digits",
                        value=fields.handle,
                    )
                )
        elif fields.title is not None and not normalize_handle(fields.title):
            errors.append(
                FieldError(
                    field="title",
                    code="invalid_handle",
                    message="cannot derive a handle; add a handle column value",
                    value=fields.title,
                )
            )

    def _check_pricing(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        for name in ("price", "compare_at_price"):
            value = getattr(fields, name)
            if value is not None and value < 0:
                errors.append(
                    FieldError(
                        field=name,
                        code="negative_price",
                        message="must be a non-negative integer amount in minor currency units",
                        value=str(value),
                    )
                )

        if (
            fields.price is not None
            and fields.compare_at_price is not None
            and 0 <= fields.compare_at_price < fields.price
        ):
            errors.append(
                FieldError(
                    field="compare_at_price",
                    code="below_price",
                    message=f"must not be lower than price ({fields.price})",
                    value=str(fields.compare_at_price),
                )
            )

        if fields.currency_code and self.allowed_currencies:
            if fields.currency_code not in self.allowed_currencies:
                errors.append(
                    FieldError(
                        field="currency_code",
                        code="unsupported_currency",
                        message=f"must be one of {', '.join(sorted(self.allowed_currencies))}",
                        value=fields.currency_code,
                    )
                )

    def _check_inventory(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        if fields.inventory_quantity is not None and fields.inventory_quantity < 0:
            errors.append(
                FieldError(
                    field="inventory_quantity",
                    code="negative_quantity",
                    message="must not be negative",
                    value=str(fields.inventory_quantity),
                )
            )
        if fields.weight is not None and fields.weight < 0:
            errors.append(
                FieldError(
                    field="weight",
                    code="negative_weight",
                    message="must not be negative",
                    value=str(fields.weight),
                )
            )

    def _check_selection(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        for name in ("min_selections", "max_selections"):
            value = getattr(fields, name)
            if value is not None and value < 0:
                errors.append(
                    FieldError(
                        field=name,
                        code="negative_selection",
                        message="must not be negative",
                        value=str(value),
                    )
                )

        if (
            fields.min_selections is not None
            and fields.max_selections is not None
            and fields.min_selections > fields.max_selections
        ):
            errors.append(
                FieldError(
                    field="min_selections",
                    code="selection_range",
                    message=f"must not exceed max_selections ({fields.max_selections})",
                    value=str(fields.min_selections),
                )
            )

        config_type = fields.config_type
        if config_type is not None and config_type.is_multi_selection:
            if not fields.category_filter and not fields.collection_filter:
                errors.append(
                    FieldError(
                        field="config_type",
                        code="missing_reference",
                        message=(
                            f"{config_type.value} requires category_filter or collection_filter"
                        ),
                        value=config_type.value,
                    )
                )

    def _check_variants(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        skus = fields.all_skus
        duplicates = sorted(sku for sku, count in Counter(skus).items() if count > 1)
        if duplicates:
            errors.append(
                FieldError(
                    field="variant_skus",
                    code="duplicate_sku",
                    message=f"duplicate SKU(s) in row: {', '.join(duplicates)}",
                    value=", ".join(duplicates),
                )
            )
        if len(skus) > self.max_variants:
            errors.append(
                FieldError(
                    field="variant_skus",
                    code="too_many_variants",
                    message=f"has {len(skus)} variants; the limit is {self.max_variants}",
                )
            )

    def _check_images(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        urls = fields.image_urls or []
        if len(urls) > self.max_images:
            errors.append(
                FieldError(
                    field="image_urls",
                    code="too_many_images",
                    message=f"has {len(urls)} images; the limit is {self.max_images}",
                )
            )
        if fields.image_checksums is not None and len(fields.image_checksums) != len(urls):
            errors.append(
                FieldError(
                    field="image_checksums",
                    code="checksum_mismatch",
                    message=(
                        f"has {len(fields.image_checksums)} checksums for {len(urls)} image URLs"
                    ),
                )
            )

    def _check_formulas(self, fields: CatalogRow, errors: List[FieldError]) -> None:
        """Text that a spreadsheet would evaluate never reaches the catalog."""
        for name in FORMULA_CHECKED_FIELDS:
            value = getattr(fields, name)
            if starts_with_formula(value):
                errors.append(
                    FieldError(
                        field=name,
                        code="formula_injection",
                        message="must not start with =, +, - or @",
                        value=value,
                    )
                )
