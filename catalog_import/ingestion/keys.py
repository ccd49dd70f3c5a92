"""
Upsert key resolution.
Pure functions from typed row fields to the key used to find an existing entity.
"""

import re
import unicodedata
from typing import Callable, Dict, NamedTuple, Optional

from ..models.options import UpsertStrategy
from ..models.row import CatalogRow


class UpsertKey(NamedTuple):
    kind: UpsertStrategy
    value: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


def normalize_handle(value: str) -> str:
    """
    Slugify a handle or title: ASCII, lower-case, hyphen separated.

    >>> normalize_handle("  Linen Blend / Natural ")
    'linen-blend-natural'
    """
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return value.strip("-")


def _no_key(fields: CatalogRow) -> Optional[str]:
    return None


def _handle_key(fields: CatalogRow) -> Optional[str]:
    return normalize_handle(fields.handle) if fields.handle else None


def _sku_key(fields: CatalogRow) -> Optional[str]:
    return fields.sku.strip() if fields.sku else None


def _external_id_key(fields: CatalogRow) -> Optional[str]:
    return fields.external_id.strip() if fields.external_id else None


_EXTRACTORS: Dict[UpsertStrategy, Callable[[CatalogRow], Optional[str]]] = {
    UpsertStrategy.OFF: _no_key,
    UpsertStrategy.HANDLE: _handle_key,
    UpsertStrategy.SKU: _sku_key,
    UpsertStrategy.EXTERNAL_ID: _external_id_key,
}

# Row field that carries the key for each strategy
KEY_FIELDS: Dict[UpsertStrategy, Optional[str]] = {
    UpsertStrategy.OFF: None,
    UpsertStrategy.HANDLE: "handle",
    UpsertStrategy.SKU: "sku",
    UpsertStrategy.EXTERNAL_ID: "external_id",
}


class KeyResolver:
    """Computes the upsert key of a row. The extractor is chosen once, at construction."""

    def __init__(self, strategy: UpsertStrategy):
        self.strategy = UpsertStrategy(strategy)
        self._extract = _EXTRACTORS[self.strategy]

    @property
    def key_field(self) -> Optional[str]:
        return KEY_FIELDS[self.strategy]

    def resolve(self, fields: CatalogRow) -> Optional[UpsertKey]:
        """None means the row is always a create candidate."""
        value = self._extract(fields)
        if not value:
            return None
        return UpsertKey(self.strategy, value)
