"""
SQL Catalog Store
CatalogStore backed by the catalog_* tables through SQLAlchemy.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..db.models import CatalogImageRow, CatalogProduct, CatalogVariantRow
from ..ingestion.errors import (
    ConstraintViolationError,
    EntityNotFoundError,
    StoreError,
    StoreUnavailableError,
)
from ..models.catalog import CatalogEntity, CatalogImage, CatalogVariant, EntityPatch
from .base import CatalogStore

logger = logging.getLogger(__name__)

VARIANT_COLUMNS = (
    "price",
    "compare_at_price",
    "currency_code",
    "inventory_quantity",
    "manage_inventory",
    "allow_backorder",
    "weight",
)

# Lookups use IN clauses; keep them below common bind parameter limits
LOOKUP_BATCH_SIZE = 500


def _to_entity(product: CatalogProduct) -> CatalogEntity:
    return CatalogEntity(
        id=product.id,
        handle=product.handle,
        external_id=product.external_id,
        title=product.title,
        description=product.description,
        status=product.status,
        config_type=product.config_type,
        archived=product.archived,
        thumbnail_url=product.thumbnail_url,
        tags=list(product.tags or []),
        collection_handles=list(product.collection_handles or []),
        category_handles=list(product.category_handles or []),
        min_selections=product.min_selections,
        max_selections=product.max_selections,
        category_filter=product.category_filter,
        collection_filter=product.collection_filter,
        metadata=dict(product.product_metadata or {}),
        variants=[
            CatalogVariant(sku=v.sku, **{name: getattr(v, name) for name in VARIANT_COLUMNS})
            for v in product.variants
        ],
        images=[CatalogImage(url=i.url, checksum=i.checksum) for i in product.images],
    )


def _set_field(product: CatalogProduct, name: str, value) -> None:
    setattr(product, "product_metadata" if name == "metadata" else name, value)


def _image_rows(images: List[CatalogImage]) -> List[CatalogImageRow]:
    return [
        CatalogImageRow(position=position, url=image.url, checksum=image.checksum)
        for position, image in enumerate(images)
    ]


class SqlCatalogStore(CatalogStore):
    """
    Every call runs in its own session and transaction.

    OperationalError (connection lost, database locked, timeout) maps to
    StoreUnavailableError so callers retry; IntegrityError maps to
    ConstraintViolationError.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConstraintViolationError(f"Integrity constraint violated: {e.orig}")
        except OperationalError as e:
            session.rollback()
            raise StoreUnavailableError(f"Database unavailable: {e.orig}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Catalog store error: {e}")
            raise StoreError(f"Database error: {e}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _load(self, session: Session, entity_id: str) -> CatalogProduct:
        product = session.get(CatalogProduct, entity_id)
        if product is None:
            raise EntityNotFoundError(f"No entity {entity_id}", {"entity_id": entity_id})
        return product

    def lookup_by_keys(self, kind: str, keys: List[str]) -> Dict[str, str]:
        if kind == "sku":
            column, id_column = CatalogVariantRow.sku, CatalogVariantRow.product_id
        elif kind == "handle":
            column, id_column = CatalogProduct.handle, CatalogProduct.id
        elif kind == "external_id":
            column, id_column = CatalogProduct.external_id, CatalogProduct.id
        else:
            raise ValueError(f"Unknown key kind: {kind}")

        found: Dict[str, str] = {}
        with self._session() as session:
            for start in range(0, len(keys), LOOKUP_BATCH_SIZE):
                batch = keys[start:start + LOOKUP_BATCH_SIZE]
                rows = session.execute(select(column, id_column).where(column.in_(batch)))
                found.update({key: entity_id for key, entity_id in rows})
        return found

    def fetch_entities(self, ids: List[str]) -> Dict[str, CatalogEntity]:
        entities: Dict[str, CatalogEntity] = {}
        with self._session() as session:
            for start in range(0, len(ids), LOOKUP_BATCH_SIZE):
                query = (
                    select(CatalogProduct)
                    .where(CatalogProduct.id.in_(ids[start:start + LOOKUP_BATCH_SIZE]))
                    .options(
                        selectinload(CatalogProduct.variants),
                        selectinload(CatalogProduct.images),
                    )
                )
                for product in session.scalars(query):
                    entities[product.id] = _to_entity(product)
        return entities

    def create(self, entity: CatalogEntity) -> str:
        entity_id = entity.id or str(uuid4())
        with self._session() as session:
            product = CatalogProduct(id=entity_id, archived=entity.archived)
            for name in (
                "handle", "external_id", "title", "description", "status", "config_type",
                "thumbnail_url", "tags", "collection_handles", "category_handles",
                "min_selections", "max_selections", "category_filter", "collection_filter",
                "metadata",
            ):
                _set_field(product, name, getattr(entity, name))
            product.variants = [
                CatalogVariantRow(sku=v.sku, **{name: getattr(v, name) for name in VARIANT_COLUMNS})
                for v in entity.variants
            ]
            product.images = _image_rows(entity.images)
            session.add(product)
            session.flush()
        return entity_id

    def update(self, entity_id: str, patch: EntityPatch) -> None:
        with self._session() as session:
            product = self._load(session, entity_id)
            for name, value in patch.fields.items():
                _set_field(product, name, value)

            by_sku = {v.sku: v for v in product.variants}
            for variant in patch.variants:
                row = by_sku.get(variant.sku)
                if row is None:
                    row = CatalogVariantRow(sku=variant.sku)
                    product.variants.append(row)
                for name, value in variant.model_dump(exclude_none=True).items():
                    if name != "sku":
                        setattr(row, name, value)

            if patch.images is not None:
                product.images = _image_rows(patch.images)
            session.flush()

    def delete_variants(self, entity_id: str, skus: List[str]) -> None:
        doomed = set(skus)
        with self._session() as session:
            product = self._load(session, entity_id)
            product.variants = [v for v in product.variants if v.sku not in doomed]

    def restore(self, entity_id: str) -> None:
        with self._session() as session:
            self._load(session, entity_id).archived = False
