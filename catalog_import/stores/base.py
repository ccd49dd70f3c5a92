"""
Store capabilities consumed by the import pipeline.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

from ..models.catalog import CatalogEntity, EntityPatch


class CatalogStore(ABC):
    """
    Catalog lookup/create/update capability.

    Implementations raise StoreUnavailableError for transient failures,
    ConstraintViolationError for uniqueness violations and
    EntityNotFoundError when an id no longer exists.
    """

    @abstractmethod
    def lookup_by_keys(self, kind: str, keys: List[str]) -> Dict[str, str]:
        """
        Map upsert keys to entity ids.

        Args:
            kind: "handle", "sku" or "external_id"
            keys: Key values to look up; archived entities are included

        Returns:
            {key: entity_id} for keys that exist
        """

    @abstractmethod
    def fetch_entities(self, ids: List[str]) -> Dict[str, CatalogEntity]:
        """Bulk fetch entities with their variants and images."""

    @abstractmethod
    def create(self, entity: CatalogEntity) -> str:
        """Create an entity; returns its id."""

    @abstractmethod
    def update(self, entity_id: str, patch: EntityPatch) -> None:
        """Apply a patch; variants in the patch are upserted by SKU."""

    @abstractmethod
    def delete_variants(self, entity_id: str, skus: List[str]) -> None:
        """Delete variants of an entity by SKU."""

    @abstractmethod
    def restore(self, entity_id: str) -> None:
        """Clear the archived flag of an entity."""


class ArtifactStore(ABC):
    """Object storage capability: put bytes, get back a URL."""

    @abstractmethod
    def put(self, data: bytes, content_type: str, name: str) -> str:
        """
        Store `data` under `name`.

        Returns:
            URL where the artifact can be fetched
        """
