"""
In-memory catalog and artifact stores.
Used by the CLI dry runs and the test suite.
"""

import threading
from typing import Dict, List, Optional
from uuid import uuid4

from ..ingestion.errors import ConstraintViolationError, EntityNotFoundError
from ..models.catalog import CatalogEntity, EntityPatch
from .base import ArtifactStore, CatalogStore


class InMemoryCatalogStore(CatalogStore):
    """
    Catalog held in a dict.

    Enforces the same uniqueness rules as the SQL store: handle,
    external_id and SKU are unique across all entities, archived included.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entities: Dict[str, CatalogEntity] = {}

    # Test helpers

    def add(self, entity: CatalogEntity) -> str:
        return self.create(entity)

    def get(self, entity_id: str) -> CatalogEntity:
        with self._lock:
            if entity_id not in self._entities:
                raise EntityNotFoundError(f"No entity {entity_id}", {"entity_id": entity_id})
            return self._entities[entity_id].model_copy(deep=True)

    def archive(self, entity_id: str) -> None:
        with self._lock:
            self.get(entity_id)
            self._entities[entity_id].archived = True

    def all(self) -> List[CatalogEntity]:
        with self._lock:
            return [entity.model_copy(deep=True) for entity in self._entities.values()]

    def find(self, handle: str) -> Optional[CatalogEntity]:
        with self._lock:
            for entity in self._entities.values():
                if entity.handle == handle:
                    return entity.model_copy(deep=True)
        return None

    def __len__(self) -> int:
        return len(self._entities)

    # CatalogStore

    def _check_unique(self, entity: CatalogEntity, entity_id: Optional[str] = None) -> None:
        skus = set(entity.skus)
        for other_id, other in self._entities.items():
            if other_id == entity_id:
                continue
            if other.handle == entity.handle:
                raise ConstraintViolationError(
                    f"handle '{entity.handle}' already exists", {"entity_id": other_id}
                )
            if entity.external_id and other.external_id == entity.external_id:
                raise ConstraintViolationError(
                    f"external_id '{entity.external_id}' already exists", {"entity_id": other_id}
                )
            taken = skus.intersection(other.skus)
            if taken:
                raise ConstraintViolationError(
                    f"SKU(s) already exist on another product: {', '.join(sorted(taken))}",
                    {"entity_id": other_id},
                )

    def lookup_by_keys(self, kind: str, keys: List[str]) -> Dict[str, str]:
        wanted = set(keys)
        found: Dict[str, str] = {}
        with self._lock:
            for entity_id, entity in self._entities.items():
                if kind == "sku":
                    values = entity.skus
                elif kind == "handle":
                    values = [entity.handle]
                elif kind == "external_id":
                    values = [entity.external_id] if entity.external_id else []
                else:
                    raise ValueError(f"Unknown key kind: {kind}")
                for value in values:
                    if value in wanted:
                        found[value] = entity_id
        return found

    def fetch_entities(self, ids: List[str]) -> Dict[str, CatalogEntity]:
        with self._lock:
            return {
                entity_id: self._entities[entity_id].model_copy(deep=True)
                for entity_id in ids
                if entity_id in self._entities
            }

    def create(self, entity: CatalogEntity) -> str:
        with self._lock:
            self._check_unique(entity)
            entity_id = entity.id or str(uuid4())
            self._entities[entity_id] = entity.model_copy(deep=True, update={"id": entity_id})
            return entity_id

    def update(self, entity_id: str, patch: EntityPatch) -> None:
        with self._lock:
            current = self.get(entity_id)
            updated = patch.apply_to(current)
            self._check_unique(updated, entity_id)
            self._entities[entity_id] = updated

    def delete_variants(self, entity_id: str, skus: List[str]) -> None:
        with self._lock:
            entity = self.get(entity_id)
            doomed = set(skus)
            entity.variants = [v for v in entity.variants if v.sku not in doomed]
            self._entities[entity_id] = entity

    def restore(self, entity_id: str) -> None:
        with self._lock:
            self.get(entity_id)
            self._entities[entity_id].archived = False


class InMemoryArtifactStore(ArtifactStore):
    """Keeps artifact bytes in memory; URLs use the memory:// scheme."""

    def __init__(self):
        self._lock = threading.Lock()
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

    def put(self, data: bytes, content_type: str, name: str) -> str:
        with self._lock:
            self.objects[name] = data
            self.content_types[name] = content_type
        return f"memory://{name}"

    def read(self, url_or_name: str) -> bytes:
        prefix = "memory://"
        name = url_or_name[len(prefix):] if url_or_name.startswith(prefix) else url_or_name
        with self._lock:
            return self.objects[name]
