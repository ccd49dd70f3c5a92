"""
Stores
Catalog, job and artifact persistence used by the import pipeline.
"""

from .base import ArtifactStore, CatalogStore
from .jobs import InMemoryJobStore, JobStore
from .memory import InMemoryArtifactStore, InMemoryCatalogStore

__all__ = [
    "ArtifactStore",
    "CatalogStore",
    "JobStore",
    "InMemoryJobStore",
    "InMemoryArtifactStore",
    "InMemoryCatalogStore",
]
