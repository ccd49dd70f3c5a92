"""
Row Applier
Creates or updates catalog entities from validated rows, or simulates it in dry run.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..models.catalog import (
    ENTITY_FIELDS,
    CatalogEntity,
    CatalogImage,
    CatalogVariant,
    EntityPatch,
)
from ..models.options import ImportOptions
from ..models.row import CatalogRow, OutcomeStatus, RowOutcome, RowRecord
from ..stores.base import CatalogStore
from .errors import (
    ConstraintViolationError,
    EntityNotFoundError,
    ImageValidationError,
    StoreError,
    StoreUnavailableError,
)
from .images import ImageChecker, ImageReconciler
from .keys import normalize_handle
from .matcher import CatalogMatcher
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# Row field -> variant attribute
VARIANT_FIELDS = (
    "price",
    "compare_at_price",
    "currency_code",
    "inventory_quantity",
    "manage_inventory",
    "allow_backorder",
    "weight",
)


def row_images(fields: CatalogRow) -> List[CatalogImage]:
    urls = fields.image_urls or []
    checksums = fields.image_checksums or []
    return [
        CatalogImage(url=url, checksum=checksums[i] if i < len(checksums) else None)
        for i, url in enumerate(urls)
    ]


def entity_values(fields: CatalogRow) -> Dict[str, Any]:
    """Entity attributes present in the row (absent cells are not included)."""
    values = {
        "handle": normalize_handle(fields.handle) if fields.handle else None,
        "external_id": fields.external_id,
        "title": fields.title,
        "description": fields.description,
        "status": fields.status.value if fields.status else None,
        "config_type": fields.config_type.value if fields.config_type else None,
        "thumbnail_url": fields.thumbnail_url,
        "tags": fields.tags,
        "collection_handles": fields.collection_handles,
        "category_handles": fields.category_handles,
        "min_selections": fields.min_selections,
        "max_selections": fields.max_selections,
        "category_filter": fields.category_filter,
        "collection_filter": fields.collection_filter,
        "metadata": fields.metadata_json,
    }
    return {name: values[name] for name in ENTITY_FIELDS if values[name] is not None}


def variant_values(fields: CatalogRow) -> Dict[str, Any]:
    values = {name: getattr(fields, name) for name in VARIANT_FIELDS}
    return {name: value for name, value in values.items() if value is not None}


def build_draft(fields: CatalogRow, default_currency: Optional[str] = None) -> CatalogEntity:
    """New entity for the create path. The handle falls back to the slugified title."""
    values = entity_values(fields)
    values.setdefault("handle", normalize_handle(fields.title or ""))
    shared = variant_values(fields)
    if default_currency and "price" in shared:
        shared.setdefault("currency_code", default_currency)
    variants = [CatalogVariant(sku=sku, **shared) for sku in fields.all_skus]
    return CatalogEntity(variants=variants, images=row_images(fields), **values)


class RowApplier:
    """
    Applies one validated row.

    Row-level store failures (constraint violations, vanished entities,
    unreachable images) become `failed` outcomes. StoreUnavailableError
    escapes once retries are exhausted: it is fatal for the job.
    """

    def __init__(
        self,
        store: CatalogStore,
        matcher: CatalogMatcher,
        options: ImportOptions,
        image_checker: Optional[ImageChecker] = None,
        retry: Optional[RetryPolicy] = None,
        default_currency: Optional[str] = None,
    ):
        self.store = store
        self.matcher = matcher
        self.options = options
        self.reconciler = ImageReconciler(options.image_strategy)
        # Reachability checks only run when a checker is configured and the job allows them
        self.image_checker = None if options.skip_image_validation else image_checker
        self.retry = retry or RetryPolicy()
        self.default_currency = default_currency
        self.dry_run = options.is_dry_run
        # Handles, SKUs and external ids a dry run has already "created"
        self._reserved: Dict[str, set] = {"handle": set(), "sku": set(), "external_id": set()}
        self._reserve_lock = threading.Lock()

    def apply(self, record: RowRecord) -> RowOutcome:
        fields = record.fields
        draft = build_draft(fields, self.default_currency)
        existing = self.matcher.match(record.key)

        try:
            if existing is None or (existing.archived and not self.options.unarchive):
                return self._create(record, draft)
            return self._update(record, draft, existing)
        except StoreUnavailableError:
            raise
        except ImageValidationError as e:
            return self._failed(record, draft, f"Image validation failed: {e.message}")
        except ConstraintViolationError as e:
            return self._failed(record, draft, f"Constraint violation: {e.message}")
        except EntityNotFoundError as e:
            return self._failed(record, draft, f"Entity not found: {e.message}")
        except StoreError as e:
            return self._failed(record, draft, f"Catalog store rejected the row: {e.message}")

    def _create(self, record: RowRecord, draft: CatalogEntity) -> RowOutcome:
        images, added = self.reconciler.reconcile([], draft.images)
        if self.image_checker and added:
            self.image_checker.check(added)
        draft.images = images

        entity_id = None
        if self.dry_run:
            self._reserve(draft)
        else:
            entity_id = self.retry.call(self.store.create, draft, description="create")
        created = draft.model_copy(update={"id": entity_id})
        self.matcher.remember(record.key, created)
        record.entity_id = entity_id

        message = "Would create" if self.dry_run else "Created"
        return RowOutcome(
            row_index=record.row_index,
            status=OutcomeStatus.CREATED,
            entity_id=entity_id,
            handle=draft.handle,
            variant_skus=draft.skus,
            message=f"{message} with {len(draft.variants)} variant(s), {len(images)} image(s)",
        )

    def _reserve(self, draft: CatalogEntity) -> None:
        """
        Apply the catalog uniqueness rules to a simulated create.

        Checks the stored catalog and the rows this dry run already created.

        Raises:
            ConstraintViolationError: when the create would collide
        """
        claims = [("handle", [draft.handle]), ("sku", draft.skus)]
        if draft.external_id:
            claims.append(("external_id", [draft.external_id]))

        for kind, values in claims:
            if not values:
                continue
            found = self.retry.call(
                self.store.lookup_by_keys, kind, values, description="lookup_by_keys"
            )
            if found:
                raise ConstraintViolationError(
                    f"{kind} already exists in the catalog: {', '.join(sorted(found))}"
                )

        with self._reserve_lock:
            for kind, values in claims:
                taken = self._reserved[kind].intersection(values)
                if taken:
                    raise ConstraintViolationError(
                        f"{kind} already used by an earlier row: {', '.join(sorted(taken))}"
                    )
            for kind, values in claims:
                self._reserved[kind].update(values)

    def _update(
        self, record: RowRecord, draft: CatalogEntity, existing: CatalogEntity
    ) -> RowOutcome:
        fields = record.fields
        restore = existing.archived
        patch, added_images = self._diff(fields, draft, existing)
        prune = self._prune_list(draft, existing)

        if self.image_checker and added_images:
            self.image_checker.check(added_images)

        if patch.is_empty and not restore and not prune:
            self.matcher.remember(record.key, existing)
            record.entity_id = existing.id
            return RowOutcome(
                row_index=record.row_index,
                status=OutcomeStatus.SKIPPED,
                entity_id=existing.id,
                handle=existing.handle,
                variant_skus=draft.skus,
                message="No changes",
            )

        if not self.dry_run:
            if restore:
                self.retry.call(self.store.restore, existing.id, description="restore")
            if not patch.is_empty:
                self.retry.call(self.store.update, existing.id, patch, description="update")
            if prune:
                self.retry.call(
                    self.store.delete_variants, existing.id, prune, description="delete_variants"
                )

        updated = patch.apply_to(existing)
        updated.archived = False
        updated.variants = [v for v in updated.variants if v.sku not in prune]
        self.matcher.remember(record.key, updated)
        record.entity_id = existing.id

        return RowOutcome(
            row_index=record.row_index,
            status=OutcomeStatus.UPDATED,
            entity_id=existing.id,
            handle=updated.handle,
            variant_skus=draft.skus,
            message=self._describe(patch, restore, prune),
        )

    def _diff(
        self, fields: CatalogRow, draft: CatalogEntity, existing: CatalogEntity
    ) -> Tuple[EntityPatch, List[CatalogImage]]:
        patch = EntityPatch()
        for name, value in entity_values(fields).items():
            if getattr(existing, name) != value:
                patch.fields[name] = value

        wanted = variant_values(fields)
        for variant in draft.variants:
            current = existing.variant(variant.sku)
            if current is None:
                patch.variants.append(variant)
            elif any(getattr(current, name) != value for name, value in wanted.items()):
                patch.variants.append(CatalogVariant(sku=variant.sku, **wanted))

        added: List[CatalogImage] = []
        if fields.image_urls is not None:
            images, added = self.reconciler.reconcile(existing.images, draft.images)
            if not ImageReconciler.same_set(images, existing.images):
                patch.images = images
        return patch, added

    def _prune_list(self, draft: CatalogEntity, existing: CatalogEntity) -> List[str]:
        # A row without any SKU says nothing about variants, so it never prunes
        if not self.options.prune_missing_variants or not draft.variants:
            return []
        keep = set(draft.skus)
        return [sku for sku in existing.skus if sku not in keep]

    def _describe(self, patch: EntityPatch, restored: bool, pruned: List[str]) -> str:
        parts = []
        if restored:
            parts.append("restored from archive")
        if patch.fields:
            parts.append(f"fields: {', '.join(sorted(patch.fields))}")
        if patch.variants:
            parts.append(f"variants: {', '.join(v.sku for v in patch.variants)}")
        if patch.images is not None:
            parts.append(f"images: {len(patch.images)}")
        if pruned:
            parts.append(f"pruned variants: {', '.join(pruned)}")
        prefix = "Would update" if self.dry_run else "Updated"
        return f"{prefix} {'; '.join(parts)}"

    def _failed(self, record: RowRecord, draft: CatalogEntity, message: str) -> RowOutcome:
        logger.warning(f"Row {record.row_index} failed: {message}")
        return RowOutcome(
            row_index=record.row_index,
            status=OutcomeStatus.FAILED,
            entity_id=record.entity_id,
            handle=draft.handle,
            variant_skus=draft.skus,
            message=message,
        )
