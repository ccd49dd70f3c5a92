"""
Catalog Matcher
Resolves upsert keys to existing catalog entities with one bulk prefetch per job.
"""

import logging
import threading
from typing import Dict, Iterable, Optional, Set

from ..models.catalog import CatalogEntity
from ..stores.base import CatalogStore
from .keys import UpsertKey
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class CatalogMatcher:
    """
    Key -> entity cache for one job.

    `prefetch` issues a single `lookup_by_keys` call for every distinct key
    in the file and a single `fetch_entities` call for the matches. Rows
    applied later update the cache through `remember`, so a second row with
    the same key, or another key of the same entity, sees the entity the
    first row created or changed.
    """

    def __init__(self, store: CatalogStore, retry: Optional[RetryPolicy] = None):
        self.store = store
        self.retry = retry or RetryPolicy()
        self._entities: Dict[UpsertKey, CatalogEntity] = {}
        self._keys_by_id: Dict[str, Set[UpsertKey]] = {}
        self._lock = threading.Lock()
        self.lookups = 0

    def prefetch(self, keys: Iterable[UpsertKey]) -> int:
        """
        Load existing entities for `keys`. Returns the number of keys matched.

        Raises:
            StoreUnavailableError: catalog store unreachable after retries
        """
        by_kind: Dict[str, set] = {}
        for key in keys:
            if key is not None:
                by_kind.setdefault(key.kind, set()).add(key.value)

        matched = 0
        for kind, values in by_kind.items():
            id_map = self.retry.call(
                self.store.lookup_by_keys, kind.value, sorted(values), description="lookup_by_keys"
            )
            self.lookups += 1
            if not id_map:
                continue

            entities = self.retry.call(
                self.store.fetch_entities,
                sorted(set(id_map.values())),
                description="fetch_entities",
            )
            with self._lock:
                for value, entity_id in id_map.items():
                    entity = entities.get(entity_id)
                    if entity is not None:
                        key = UpsertKey(kind, value)
                        self._entities[key] = entity
                        self._keys_by_id.setdefault(entity_id, set()).add(key)
                        matched += 1

        key_count = sum(len(values) for values in by_kind.values())
        logger.info(f"Prefetched {matched} existing entities for {key_count} keys")
        return matched

    def match(self, key: Optional[UpsertKey]) -> Optional[CatalogEntity]:
        """Current entity for `key`, or None for the create path."""
        if key is None:
            return None
        with self._lock:
            entity = self._entities.get(key)
            return entity.model_copy(deep=True) if entity is not None else None

    def matched_id(self, key: Optional[UpsertKey]) -> Optional[str]:
        """Id of the stored entity `key` resolves to, if any."""
        if key is None:
            return None
        with self._lock:
            entity = self._entities.get(key)
            return entity.id if entity is not None else None

    def remember(self, key: Optional[UpsertKey], entity: CatalogEntity) -> None:
        """Cache `entity` under `key` and under every other key of the same entity."""
        if key is None:
            return
        with self._lock:
            if entity.id is None:
                self._entities[key] = entity.model_copy(deep=True)
                return
            keys = self._keys_by_id.setdefault(entity.id, set())
            keys.add(key)
            for other in keys:
                self._entities[other] = entity.model_copy(deep=True)
