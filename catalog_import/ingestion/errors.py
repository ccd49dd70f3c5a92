"""
Import pipeline exceptions.

Row-level problems are reported as outcomes and never raised past the
applier; everything here either fails a single row (store constraint,
missing entity, image check) or the whole job.
"""

from typing import Dict, List, Optional


class CatalogImportError(Exception):
    """Base exception for the import pipeline."""

    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SourceFileError(CatalogImportError):
    """The source file itself is unreadable or structurally malformed."""

    code = "invalid_source"


class JobStateError(CatalogImportError):
    """Illegal job state transition."""

    code = "invalid_state"


class JobNotFoundError(CatalogImportError):
    """No job with the given id."""

    code = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__(f"Import job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id


class JobAlreadyRunningError(JobStateError):
    """Another worker already claimed the job."""

    code = "job_already_running"


class JobFrozenError(JobStateError):
    """A terminal job was modified."""

    code = "job_frozen"


class StoreError(CatalogImportError):
    """Catalog or artifact store call failed."""

    code = "store_error"


class StoreUnavailableError(StoreError):
    """Transient store failure (connection refused, timeout). Retried at the call level."""

    code = "store_unavailable"


class ConstraintViolationError(StoreError):
    """Uniqueness or integrity constraint rejected a write."""

    code = "constraint_violation"


class EntityNotFoundError(StoreError):
    """Entity disappeared between lookup and write."""

    code = "entity_not_found"


class ArtifactWriteError(CatalogImportError):
    """Artifacts could not be persisted."""

    code = "artifact_write_failed"


class ImageValidationError(CatalogImportError):
    """One or more image URLs failed the reachability check."""

    code = "image_unreachable"

    def __init__(self, failed_urls: List[str]):
        super().__init__(
            f"Unreachable image URLs: {', '.join(failed_urls)}", {"urls": failed_urls}
        )
        self.failed_urls = failed_urls
