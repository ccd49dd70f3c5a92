"""
Import job model and state machine.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ..ingestion.errors import JobFrozenError, JobStateError
from .options import ImportOptions


class JobStatus(str, Enum):
    """Import job lifecycle states."""

    CREATED = "created"
    VALIDATING = "validating"
    VALIDATED = "validated"
    FAILED_VALIDATION = "failed_validation"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.FAILED_VALIDATION}
)

# validated -> completed is the dry-run path, which never enters processing.
# created/validating -> failed covers cancellation, timeout and store outages
# before any row was applied.
ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.VALIDATING, JobStatus.FAILED}),
    JobStatus.VALIDATING: frozenset(
        {JobStatus.VALIDATED, JobStatus.FAILED_VALIDATION, JobStatus.FAILED}
    ),
    JobStatus.VALIDATED: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.FAILED_VALIDATION: frozenset(),
}


class ImportStats(BaseModel):
    """Running counters for a job."""

    rows_total: int = 0
    rows_valid: int = 0
    rows_invalid: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0

    @property
    def applied(self) -> int:
        return self.created + self.updated + self.skipped + self.failed


class Artifacts(BaseModel):
    validation_report_url: Optional[str] = None
    error_rows_url: Optional[str] = None
    result_rows_url: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.validation_report_url and self.error_rows_url and self.result_rows_url)


class JobProgress(BaseModel):
    rows_processed: int = 0
    rows_expected: int = 0

    @property
    def percent(self) -> int:
        if self.rows_expected <= 0:
            return 0
        return min(100, int(self.rows_processed * 100 / self.rows_expected))


class JobError(BaseModel):
    code: str
    message: str


class SourceFileRef(BaseModel):
    """Where the uploaded file lives and what it was."""

    path: str
    filename: str
    size_bytes: int = 0
    checksum: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.utcnow()


class ImportJob(BaseModel):
    """
    One import of one file.

    Mutated only by the worker that claimed it; frozen once terminal.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.CREATED
    options: ImportOptions = Field(default_factory=ImportOptions)
    source: SourceFileRef
    stats: ImportStats = Field(default_factory=ImportStats)
    artifacts: Artifacts = Field(default_factory=Artifacts)
    progress: JobProgress = Field(default_factory=JobProgress)
    error: Optional[JobError] = None

    idempotency_key: Optional[str] = None
    source_job_id: Optional[str] = None
    resume_from_row: int = 0
    worker_id: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, new_status: JobStatus) -> None:
        """Move to `new_status`, enforcing the state machine."""
        if self.is_terminal:
            raise JobFrozenError(
                f"Job {self.id} is {self.status.value} and can no longer change",
                {"job_id": self.id, "status": self.status.value},
            )
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise JobStateError(
                f"Illegal transition {self.status.value} -> {new_status.value} for job {self.id}",
                {"job_id": self.id, "from": self.status.value, "to": new_status.value},
            )
        now = _utcnow()
        if new_status == JobStatus.VALIDATING:
            self.started_at = now
        if new_status.is_terminal:
            self.completed_at = now
        self.status = new_status
        self.updated_at = now

    def fail(self, code: str, message: str, status: JobStatus = JobStatus.FAILED) -> None:
        self.error = JobError(code=code, message=message)
        self.transition(status)
