"""
SQL Job Store
JobStore backed by the import_jobs table, shared by the API and workers.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db.models import ImportJobRow
from ..ingestion.errors import JobFrozenError, JobNotFoundError, StoreError, StoreUnavailableError
from ..models.job import TERMINAL_STATES, ImportJob, JobStatus
from .jobs import JobStore

logger = logging.getLogger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATES]


class SqlJobStore(JobStore):
    """
    Jobs are stored as JSON payloads.

    `claim` is a conditional UPDATE, so exactly one worker wins even when
    several receive the same job.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            raise StoreUnavailableError(f"Job store unavailable: {e.orig}")
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Job store error: {e}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _to_job(row: ImportJobRow) -> ImportJob:
        job = ImportJob.model_validate(row.payload)
        job.worker_id = row.worker_id
        return job

    def create(self, job: ImportJob) -> ImportJob:
        try:
            with self._session() as session:
                session.add(
                    ImportJobRow(
                        id=job.id,
                        status=job.status.value,
                        idempotency_key=job.idempotency_key,
                        worker_id=job.worker_id,
                        payload=job.model_dump(mode="json"),
                    )
                )
        except IntegrityError:
            if job.idempotency_key:
                existing = self.find_by_idempotency_key(job.idempotency_key)
                if existing is not None:
                    return existing
            raise StoreError(f"Could not create job {job.id}")
        return job

    def get(self, job_id: str) -> ImportJob:
        with self._session() as session:
            row = session.get(ImportJobRow, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            return self._to_job(row)

    def save(self, job: ImportJob) -> None:
        job.updated_at = datetime.utcnow()
        with self._session() as session:
            result = session.execute(
                update(ImportJobRow)
                .where(ImportJobRow.id == job.id)
                .where(ImportJobRow.status.not_in(TERMINAL_VALUES))
                .values(
                    status=job.status.value,
                    worker_id=job.worker_id,
                    payload=job.model_dump(mode="json"),
                    updated_at=job.updated_at,
                )
            )
            if result.rowcount == 0:
                row = session.get(ImportJobRow, job.id)
                if row is None:
                    raise JobNotFoundError(job.id)
                raise JobFrozenError(
                    f"Job {job.id} is {row.status} and can no longer change",
                    {"job_id": job.id, "status": row.status},
                )

    def claim(self, job_id: str, worker_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                update(ImportJobRow)
                .where(ImportJobRow.id == job_id)
                .where(ImportJobRow.status == JobStatus.CREATED.value)
                .where(ImportJobRow.worker_id.is_(None))
                .values(worker_id=worker_id)
            )
            if result.rowcount == 1:
                logger.info(f"Worker {worker_id} claimed job {job_id}")
                return True
            if session.get(ImportJobRow, job_id) is None:
                raise JobNotFoundError(job_id)
            return False

    def request_cancel(self, job_id: str) -> None:
        with self._session() as session:
            result = session.execute(
                update(ImportJobRow).where(ImportJobRow.id == job_id).values(cancel_requested=True)
            )
            if result.rowcount == 0:
                raise JobNotFoundError(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._session() as session:
            value = session.scalar(
                select(ImportJobRow.cancel_requested).where(ImportJobRow.id == job_id)
            )
            return bool(value)

    def find_by_idempotency_key(self, key: str) -> Optional[ImportJob]:
        with self._session() as session:
            row = session.scalar(select(ImportJobRow).where(ImportJobRow.idempotency_key == key))
            return self._to_job(row) if row is not None else None
