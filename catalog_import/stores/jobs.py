"""
Job Stores
Persistence for ImportJob records.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Set

from ..ingestion.errors import JobFrozenError, JobNotFoundError
from ..models.job import ImportJob, JobStatus


class JobStore(ABC):
    """Job persistence consumed by the controller."""

    @abstractmethod
    def create(self, job: ImportJob) -> ImportJob:
        """
        Store a new job.

        Returns:
            The stored job; when another job already holds the same
            idempotency key, that job is returned instead.
        """

    @abstractmethod
    def get(self, job_id: str) -> ImportJob:
        """
        Raises:
            JobNotFoundError
        """

    @abstractmethod
    def save(self, job: ImportJob) -> None:
        """
        Overwrite a job.

        Raises:
            JobFrozenError: the stored job is already terminal
        """

    @abstractmethod
    def claim(self, job_id: str, worker_id: str) -> bool:
        """Atomically assign an unclaimed created job to a worker."""

    @abstractmethod
    def request_cancel(self, job_id: str) -> None:
        """Flag a job for cancellation."""

    @abstractmethod
    def is_cancel_requested(self, job_id: str) -> bool:
        """Whether cancellation was requested for the job."""

    @abstractmethod
    def find_by_idempotency_key(self, key: str) -> Optional[ImportJob]:
        """Job previously submitted with `key`, if any."""


class InMemoryJobStore(JobStore):
    """Process-local job store; returns copies so callers never share state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, ImportJob] = {}
        self._cancelled: Set[str] = set()

    def create(self, job: ImportJob) -> ImportJob:
        with self._lock:
            if job.idempotency_key:
                for existing in self._jobs.values():
                    if existing.idempotency_key == job.idempotency_key:
                        return existing.model_copy(deep=True)
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: str) -> ImportJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def save(self, job: ImportJob) -> None:
        with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                raise JobNotFoundError(job.id)
            if stored.is_terminal:
                raise JobFrozenError(
                    f"Job {job.id} is {stored.status.value} and can no longer change",
                    {"job_id": job.id, "status": stored.status.value},
                )
            job.updated_at = datetime.utcnow()
            self._jobs[job.id] = job.model_copy(deep=True)

    def claim(self, job_id: str, worker_id: str) -> bool:
        with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None:
                raise JobNotFoundError(job_id)
            if stored.status != JobStatus.CREATED or stored.worker_id is not None:
                return False
            stored.worker_id = worker_id
            return True

    def request_cancel(self, job_id: str) -> None:
        with self._lock:
            if job_id not in self._jobs:
                raise JobNotFoundError(job_id)
            self._cancelled.add(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._cancelled

    def find_by_idempotency_key(self, key: str) -> Optional[ImportJob]:
        with self._lock:
            for job in self._jobs.values():
                if job.idempotency_key == key:
                    return job.model_copy(deep=True)
        return None
