"""
Import Job Controller
Owns the job state machine and drives a job through the row pipeline:

    read -> parse -> validate -> resolve key -> match -> apply -> record

followed by artifact generation and finalization.
"""

import logging
import os
import socket
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from ..config.settings import ImportSettings, get_settings
from ..models.job import ImportJob, JobStatus, SourceFileRef
from ..models.options import ImportOptions
from ..models.row import RowRecord
from ..stores.base import ArtifactStore, CatalogStore
from ..stores.jobs import JobStore
from .applier import RowApplier
from .artifacts import ArtifactWriter
from .errors import (
    ArtifactWriteError,
    JobAlreadyRunningError,
    JobStateError,
    SourceFileError,
    StoreError,
    StoreUnavailableError,
)
from .images import ImageChecker
from .keys import KeyResolver
from .matcher import CatalogMatcher
from .parser import HeaderSchema, RowParser
from .recorder import OutcomeRecorder
from .retry import RetryPolicy
from .source import FIRST_DATA_ROW, RowSource
from .validator import RowValidator

logger = logging.getLogger(__name__)


class ImportInterrupted(Exception):
    """Cancellation or timeout observed between rows."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _batched(items: Iterable, size: int) -> Iterator[List]:
    iterator = iter(items)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch


class ImportRun:
    """State for one execution of one job by the worker that claimed it."""

    def __init__(self, controller: "JobController", job: ImportJob):
        self.controller = controller
        self.settings = controller.settings
        self.job = job
        self.options = job.options
        self.retry = controller.retry
        self.recorder = OutcomeRecorder(listener=self._on_progress)
        self.writer = ArtifactWriter(
            controller.artifact_store, self.retry, sample_size=self.settings.report_sample_size
        )
        self.columns: List[str] = []

        self._started = time.monotonic()
        self._deadline = self._started + self.settings.job_timeout_seconds
        self._job_lock = threading.RLock()
        self._poll_lock = threading.Lock()
        self._stop = threading.Event()
        self._interrupt: Optional[ImportInterrupted] = None
        self._last_cancel_poll: Optional[float] = None
        self._last_published = 0

    # Job bookkeeping

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def _save(self) -> None:
        with self._job_lock:
            self.job.stats = self.recorder.snapshot(self._elapsed_ms())
            self.job.progress.rows_processed = self.recorder.processed
            self.controller.job_store.save(self.job)

    def _transition(self, status: JobStatus) -> None:
        with self._job_lock:
            self.job.transition(status)
            self._save()
        logger.info(f"Job {self.job.id} -> {status.value}", extra={"job_id": self.job.id})

    def _on_progress(self, processed: int) -> None:
        if processed - self._last_published < self.settings.progress_interval:
            return
        with self._job_lock:
            if processed - self._last_published < self.settings.progress_interval:
                return
            self._last_published = processed
            try:
                self._save()
            except StoreError as e:
                logger.warning(f"Could not publish progress for job {self.job.id}: {e}")
        logger.info(
            f"Progress: {processed}/{self.job.progress.rows_expected} "
            f"({self.job.progress.percent}%)",
            extra={"job_id": self.job.id},
        )

    # Cancellation and timeout

    def _should_stop(self) -> bool:
        if self._stop.is_set():
            return True

        if time.monotonic() > self._deadline:
            self._interrupt_with(
                "timeout",
                f"Job exceeded the {self.settings.job_timeout_minutes:g} minute time limit",
            )
            return True

        with self._poll_lock:
            now = time.monotonic()
            due = (
                self._last_cancel_poll is None
                or now - self._last_cancel_poll >= self.settings.cancel_poll_interval
            )
            if due:
                self._last_cancel_poll = now
        if due and self.controller.job_store.is_cancel_requested(self.job.id):
            self._interrupt_with("cancelled", "Job was cancelled")
            return True
        return False

    def _interrupt_with(self, code: str, message: str) -> None:
        with self._poll_lock:
            if self._interrupt is None:
                self._interrupt = ImportInterrupted(code, message)
                logger.warning(f"Job {self.job.id} interrupted: {message}")
        self._stop.set()

    def _checkpoint(self) -> None:
        if self._should_stop() and self._interrupt is not None:
            raise self._interrupt

    # Pipeline phases

    def _check_row(self, parser: RowParser, validator: RowValidator, item) -> RowRecord:
        row_index, raw = item
        record = RowRecord(row_index=row_index, raw=raw)
        parser.parse(record)
        validator.validate(record)
        return record

    def _validate(self) -> List[RowRecord]:
        """
        Parse and validate every row.

        Raises:
            SourceFileError: structural problems with the file
            ImportInterrupted: cancelled or timed out
        """
        source = RowSource(self.job.source.path, chunk_size=self.settings.chunk_size)
        self.columns = source.read_header()
        schema = HeaderSchema(self.columns, self.options.column_mapping)
        schema.check_structure()

        total = source.count_rows()
        if total > self.settings.max_rows:
            raise SourceFileError(
                f"Source file has {total} rows; the limit is {self.settings.max_rows}",
                {"rows": total, "max_rows": self.settings.max_rows},
            )
        start_row = max(FIRST_DATA_ROW, self.job.resume_from_row)
        expected = total if start_row == FIRST_DATA_ROW else source.count_rows(start_row)
        with self._job_lock:
            self.job.progress.rows_expected = expected
            self._save()

        parser = RowParser(schema)
        validator = RowValidator(
            schema,
            upsert=self.options.upsert,
            allowed_currencies=self.settings.allowed_currencies,
            max_variants=self.settings.max_variants_per_product,
            max_images=self.settings.max_images_per_product,
        )
        resolver = KeyResolver(self.options.upsert)

        def check(item):
            return self._check_row(parser, validator, item)

        valid: List[RowRecord] = []
        with ThreadPoolExecutor(
            max_workers=self.settings.validation_workers, thread_name_prefix="import-validate"
        ) as pool:
            for chunk in _batched(source.iter_rows(start_row), self.settings.chunk_size):
                self._checkpoint()
                for record in pool.map(check, chunk):
                    if record.is_valid:
                        record.key = resolver.resolve(record.fields)
                        self.recorder.record_valid(record)
                        valid.append(record)
                    else:
                        self.recorder.record_invalid(record)

        stats = self.recorder.snapshot()
        logger.info(
            f"Validated {stats.rows_total} rows: {stats.rows_valid} valid, "
            f"{stats.rows_invalid} invalid",
            extra={"job_id": self.job.id},
        )
        return valid

    def _apply_group(self, applier: RowApplier, records: List[RowRecord]) -> None:
        # Rows of one group run in file order, so the last row wins
        for record in records:
            if self._should_stop():
                return
            outcome = applier.apply(record)
            self.recorder.record_outcome(record, outcome)

    def _apply(self, records: List[RowRecord]) -> None:
        """
        Resolve, match and apply valid rows (simulated under dry run).

        Raises:
            StoreUnavailableError: catalog store unreachable after retries
            ImportInterrupted: cancelled or timed out
        """
        self._checkpoint()
        matcher = CatalogMatcher(self.controller.catalog_store, self.retry)
        matcher.prefetch(record.key for record in records)

        applier = RowApplier(
            self.controller.catalog_store,
            matcher,
            self.options,
            image_checker=self.controller.image_checker_for_run(),
            retry=self.retry,
            default_currency=self.settings.default_currency,
        )

        # Rows that resolve to the same stored entity share a group even when
        # their keys differ
        groups: Dict[object, List[RowRecord]] = OrderedDict()
        for record in records:
            entity_id = matcher.matched_id(record.key)
            if entity_id is not None:
                group_key = ("entity", entity_id)
            elif record.key is not None:
                group_key = record.key
            else:
                group_key = ("row", record.row_index)
            groups.setdefault(group_key, []).append(record)

        errors: List[BaseException] = []
        workers = max(1, min(self.settings.apply_workers, len(groups)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="import-apply") as pool:
            futures = [pool.submit(self._apply_group, applier, group) for group in groups.values()]
            for future in as_completed(futures):
                error = future.exception()
                if error is not None:
                    errors.append(error)
                    self._stop.set()

        if errors:
            fatal = [e for e in errors if isinstance(e, StoreUnavailableError)]
            raise fatal[0] if fatal else errors[0]
        if self._interrupt is not None:
            raise self._interrupt

    # Finalization

    def _write_artifacts(self) -> None:
        """
        Raises:
            ArtifactWriteError
        """
        with self._job_lock:
            self.job.stats = self.recorder.snapshot(self._elapsed_ms())
        try:
            self.writer.write(self.job, self.recorder, self.columns)
        finally:
            self.job.artifacts = self.writer.artifacts.model_copy()

    def _fail(
        self,
        code: str,
        message: str,
        status: JobStatus = JobStatus.FAILED,
        write_artifacts: bool = True,
    ) -> ImportJob:
        if write_artifacts:
            try:
                self._write_artifacts()
            except ArtifactWriteError as e:
                logger.warning(f"Partial artifacts for job {self.job.id} not written: {e}")
        with self._job_lock:
            self.job.fail(code, message, status)
            self._save()
        logger.error(
            f"Job {self.job.id} {status.value}: [{code}] {message}", extra={"job_id": self.job.id}
        )
        return self.job

    def _complete(self) -> ImportJob:
        try:
            self._write_artifacts()
        except ArtifactWriteError as e:
            return self._fail(e.code, e.message, write_artifacts=False)

        self._transition(JobStatus.COMPLETED)
        stats = self.job.stats
        seconds = max(stats.duration_ms / 1000.0, 0.001)
        logger.info(
            f"Job {self.job.id} completed in {seconds:.1f}s "
            f"({stats.rows_total / seconds:.1f} rows/s): created={stats.created} "
            f"updated={stats.updated} skipped={stats.skipped} failed={stats.failed} "
            f"invalid={stats.rows_invalid}",
            extra={"job_id": self.job.id},
        )
        return self.job

    def execute(self) -> ImportJob:
        logger.info(
            f"Starting import job {self.job.id} ({self.job.source.filename}, "
            f"mode={self.options.mode.value}, upsert={self.options.upsert.value})",
            extra={"job_id": self.job.id},
        )
        self._transition(JobStatus.VALIDATING)
        try:
            records = self._validate()
        except SourceFileError as e:
            return self._fail(e.code, e.message, JobStatus.FAILED_VALIDATION, write_artifacts=False)
        except ImportInterrupted as e:
            return self._fail(e.code, e.message)

        self._transition(JobStatus.VALIDATED)
        try:
            if not self.options.is_dry_run:
                self._transition(JobStatus.PROCESSING)
            self._apply(records)
        except ImportInterrupted as e:
            return self._fail(e.code, e.message)
        except StoreUnavailableError as e:
            return self._fail(
                e.code,
                f"Catalog store unavailable: {e.message}",
                write_artifacts=self.recorder.processed > 0,
            )

        return self._complete()


class JobController:
    """
    Entry point for submitting, running, cancelling and reading import jobs.

    The job store is injected; at most one worker runs a given job, enforced
    through `JobStore.claim`.
    """

    def __init__(
        self,
        job_store: JobStore,
        catalog_store: CatalogStore,
        artifact_store: ArtifactStore,
        settings: Optional[ImportSettings] = None,
        image_checker: Optional[ImageChecker] = None,
        dispatcher=None,
    ):
        self.job_store = job_store
        self.catalog_store = catalog_store
        self.artifact_store = artifact_store
        self.settings = settings or get_settings()
        self.image_checker = image_checker
        self.dispatcher = dispatcher
        self.retry = RetryPolicy.from_settings(self.settings)

    def image_checker_for_run(self) -> Optional[ImageChecker]:
        if self.image_checker is not None:
            return self.image_checker
        if self.settings.enable_image_validation:
            return ImageChecker(timeout_ms=self.settings.image_check_timeout_ms)
        return None

    def submit(
        self,
        source: Optional[SourceFileRef],
        options: Optional[ImportOptions] = None,
        idempotency_key: Optional[str] = None,
        source_job_id: Optional[str] = None,
        resume_from_row: int = 0,
    ) -> ImportJob:
        """
        Store a new job and hand it to the dispatcher. Never waits for the run.

        A repeated idempotency key returns the job created the first time.
        `source_job_id` reuses the file of an earlier job.
        """
        if resume_from_row and resume_from_row < FIRST_DATA_ROW:
            raise ValueError(f"resume_from_row must be >= {FIRST_DATA_ROW}")

        if idempotency_key:
            existing = self.job_store.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(f"Idempotency key matched existing job {existing.id}")
                return existing

        if source_job_id:
            source = self.job_store.get(source_job_id).source
        if source is None:
            raise ValueError("A source file or source_job_id is required")

        job = ImportJob(
            options=options or ImportOptions(),
            source=source,
            idempotency_key=idempotency_key,
            source_job_id=source_job_id,
            resume_from_row=resume_from_row,
        )
        stored = self.job_store.create(job)
        if stored.id != job.id:
            # Lost a race against a submission with the same idempotency key
            return stored

        logger.info(
            f"Submitted import job {job.id} for {source.filename}",
            extra={"job_id": job.id, "mode": job.options.mode.value},
        )
        if self.dispatcher is not None:
            try:
                self.dispatcher.dispatch(job.id)
            except Exception as e:
                logger.error(f"Failed to dispatch job {job.id}: {e}", exc_info=True)
                job.fail("dispatch_failed", f"Could not dispatch job: {e}")
                self.job_store.save(job)
                raise
        return job

    def get(self, job_id: str) -> ImportJob:
        return self.job_store.get(job_id)

    def cancel(self, job_id: str) -> ImportJob:
        """
        Request cancellation. A job nobody has claimed yet fails immediately;
        a running job stops between rows.
        """
        job = self.job_store.get(job_id)
        if job.is_terminal:
            return job

        self.job_store.request_cancel(job_id)
        if job.status == JobStatus.CREATED and self.job_store.claim(job_id, "cancel"):
            job = self.job_store.get(job_id)
            job.fail("cancelled", "Job was cancelled before it started")
            self.job_store.save(job)
            logger.info(f"Job {job_id} cancelled before start")
        return self.job_store.get(job_id)

    def run(self, job_id: str, worker_id: Optional[str] = None) -> ImportJob:
        """
        Execute a job synchronously in the calling worker.

        Raises:
            JobAlreadyRunningError: another worker claimed the job
            JobStateError: the job is not in the created state
        """
        worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"
        job = self.job_store.get(job_id)
        if job.status != JobStatus.CREATED:
            raise JobStateError(
                f"Job {job_id} is {job.status.value}; only created jobs can run",
                {"job_id": job_id, "status": job.status.value},
            )
        if not self.job_store.claim(job_id, worker_id):
            raise JobAlreadyRunningError(
                f"Job {job_id} is already claimed by another worker", {"job_id": job_id}
            )

        job = self.job_store.get(job_id)
        try:
            return ImportRun(self, job).execute()
        except Exception as e:
            logger.error(f"Import job {job_id} crashed: {e}", exc_info=True)
            if not job.is_terminal:
                job.fail("internal_error", f"Unexpected error: {e}")
                try:
                    self.job_store.save(job)
                except StoreError as save_error:
                    logger.error(f"Could not record failure of job {job_id}: {save_error}")
            raise
