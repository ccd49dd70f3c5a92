"""
Catalog Import Pipeline
Reads a CSV file of catalog rows, validates and matches each row, applies
creates/updates to the catalog store and writes the job artifacts.

Import pipeline classes from their modules (`.controller`, `.source`, ...);
this package only re-exports the exception hierarchy.
"""

from .errors import (
    ArtifactWriteError,
    CatalogImportError,
    ConstraintViolationError,
    EntityNotFoundError,
    ImageValidationError,
    JobAlreadyRunningError,
    JobFrozenError,
    JobNotFoundError,
    JobStateError,
    SourceFileError,
    StoreError,
    StoreUnavailableError,
)

__all__ = [
    "ArtifactWriteError",
    "CatalogImportError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "ImageValidationError",
    "JobAlreadyRunningError",
    "JobFrozenError",
    "JobNotFoundError",
    "JobStateError",
    "SourceFileError",
    "StoreError",
    "StoreUnavailableError",
]
