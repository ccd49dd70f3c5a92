"""
Job Dispatchers
Hand a submitted job to a worker without blocking the submitter.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .errors import JobStateError

logger = logging.getLogger(__name__)


class ThreadDispatcher:
    """
    Runs jobs on a local thread pool.

    Suitable for the CLI, tests and single-process deployments.
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="import-job"
        )
        self._runner: Optional[Callable[[str], object]] = None

    def bind(self, runner: Callable[[str], object]) -> None:
        self._runner = runner

    def dispatch(self, job_id: str) -> Future:
        if self._runner is None:
            raise RuntimeError("ThreadDispatcher has no runner bound")
        future = self._executor.submit(self._runner, job_id)
        future.add_done_callback(lambda f: self._log_result(job_id, f))
        return future

    @staticmethod
    def _log_result(job_id: str, future: Future) -> None:
        error = future.exception()
        if error is None:
            return
        if isinstance(error, JobStateError):
            logger.warning(f"Job {job_id} not run: {error}")
        else:
            logger.error(f"Job {job_id} failed in worker thread: {error}", exc_info=error)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class CeleryDispatcher:
    """Queues jobs on the Celery broker."""

    def dispatch(self, job_id: str):
        # Import here so the API does not need a broker connection at import time
        from ..tasks.imports import run_catalog_import

        result = run_catalog_import.delay(job_id)
        logger.info(f"Queued job {job_id} as Celery task {result.id}")
        return result
