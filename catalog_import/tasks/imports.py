"""
Catalog Import Tasks
Runs submitted import jobs on Celery workers.
"""

import logging
from typing import Any, Dict, Optional

from ..ingestion.controller import JobController
from ..ingestion.errors import JobStateError
from .celery_app import app

logger = logging.getLogger(__name__)

_controller: Optional[JobController] = None


def get_worker_controller() -> JobController:
    """Controller for this worker process; it never dispatches further jobs."""
    global _controller
    if _controller is None:
        from ..ingestion.factory import build_job_controller

        _controller = build_job_controller(worker_only=True)
    return _controller


@app.task(bind=True, name="tasks.run_catalog_import", max_retries=0)
def run_catalog_import(self, job_id: str) -> Dict[str, Any]:
    """
    Run one import job to completion.

    Jobs are never retried automatically: a failed job stays failed and a
    new submission (optionally with resume_from_row) starts over.

    Args:
        job_id: Import job ID

    Returns:
        Dictionary with the final status and stats
    """
    logger.info(f"Worker {self.request.hostname} picked up import job {job_id}")
    controller = get_worker_controller()

    try:
        job = controller.run(job_id, worker_id=f"{self.request.hostname}:{self.request.id}")
    except JobStateError as e:
        logger.warning(f"Import job {job_id} not run: {e}")
        return {"status": "skipped", "job_id": job_id, "error": e.message}

    return {
        "status": job.status.value,
        "job_id": job.id,
        "stats": job.stats.model_dump(),
        "error": job.error.model_dump() if job.error else None,
    }
