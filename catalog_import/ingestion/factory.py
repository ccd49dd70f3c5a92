"""
Wiring for the configured stores and dispatcher.
"""

import logging
from typing import Optional

from ..config.settings import ImportSettings, get_settings
from ..db.session import create_session_factory, get_engine, init_db
from ..stores.artifacts import GCSArtifactStore, LocalArtifactStore
from ..stores.base import ArtifactStore
from ..stores.sql_catalog import SqlCatalogStore
from ..stores.sql_jobs import SqlJobStore
from .controller import JobController
from .dispatch import CeleryDispatcher, ThreadDispatcher

logger = logging.getLogger(__name__)


def build_artifact_store(settings: ImportSettings) -> ArtifactStore:
    if settings.artifact_backend == "gcs":
        if not settings.gcs_bucket:
            raise ValueError("IMPORT_GCS_BUCKET is required for the gcs artifact backend")
        return GCSArtifactStore(settings.gcs_bucket)
    if settings.artifact_backend == "local":
        return LocalArtifactStore(settings.artifact_dir, settings.artifact_base_url)
    raise ValueError(f"Unknown artifact backend: {settings.artifact_backend}")


def build_job_controller(
    settings: Optional[ImportSettings] = None,
    dispatcher=None,
    create_tables: bool = True,
    worker_only: bool = False,
) -> JobController:
    """
    Build a controller on the configured database and artifact backend.

    Args:
        settings: Defaults to the global settings
        dispatcher: Overrides IMPORT_DISPATCHER
        create_tables: Create missing tables on startup
        worker_only: Build without a dispatcher, for processes that only run jobs
    """
    settings = settings or get_settings()
    engine = get_engine(settings.database_url)
    if create_tables:
        init_db(engine)
    session_factory = create_session_factory(engine)

    if dispatcher is None and not worker_only:
        if settings.dispatcher == "celery":
            dispatcher = CeleryDispatcher()
        else:
            dispatcher = ThreadDispatcher()

    controller = JobController(
        job_store=SqlJobStore(session_factory),
        catalog_store=SqlCatalogStore(session_factory),
        artifact_store=build_artifact_store(settings),
        settings=settings,
        dispatcher=dispatcher,
    )
    if isinstance(dispatcher, ThreadDispatcher):
        dispatcher.bind(controller.run)

    logger.info(
        f"Import controller ready (dispatcher={type(dispatcher).__name__}, "
        f"artifacts={settings.artifact_backend})"
    )
    return controller
