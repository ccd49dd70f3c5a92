"""
Pydantic schemas for import job endpoints.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ...models.job import Artifacts, ImportJob, ImportStats, JobError


class ImportSubmitResponse(BaseModel):
    """Response for an accepted submission."""

    job_id: str = Field(..., description="Import job ID")
    status: str = Field(..., description="Job status at submission time")


class ImportProgressInfo(BaseModel):
    rows_processed: int = Field(..., description="Rows with a recorded outcome")
    rows_expected: int = Field(..., description="Data rows in the file (from the resume row)")
    percent: int = Field(..., ge=0, le=100, description="Progress percentage (0-100)")


class ImportContext(BaseModel):
    """What the job was asked to do."""

    options: Dict[str, Any] = Field(..., description="Import options snapshot")
    source_file: Dict[str, Any] = Field(..., description="Uploaded file reference")
    resume_from_row: Optional[int] = Field(None, description="First row processed on a resume")
    source_job_id: Optional[str] = Field(None, description="Job whose file was reused")
    idempotency_key: Optional[str] = Field(None, description="Idempotency key of the submission")


class ImportTimestamps(BaseModel):
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportJobResponse(BaseModel):
    """Import job status response."""

    job_id: str = Field(..., description="Import job ID")
    status: str = Field(..., description="created, validating, validated, failed_validation, "
                        "processing, completed or failed")
    progress: ImportProgressInfo
    stats: ImportStats
    artifacts: Artifacts
    context: ImportContext
    error: Optional[JobError] = Field(None, description="Set when the job failed")
    timestamps: ImportTimestamps

    @classmethod
    def from_job(cls, job: ImportJob) -> "ImportJobResponse":
        return cls(
            job_id=job.id,
            status=job.status.value,
            progress=ImportProgressInfo(
                rows_processed=job.progress.rows_processed,
                rows_expected=job.progress.rows_expected,
                percent=job.progress.percent,
            ),
            stats=job.stats,
            artifacts=job.artifacts,
            context=ImportContext(
                options=job.options.describe(),
                source_file={
                    "filename": job.source.filename,
                    "size_bytes": job.source.size_bytes,
                    "checksum": job.source.checksum,
                },
                resume_from_row=job.resume_from_row or None,
                source_job_id=job.source_job_id,
                idempotency_key=job.idempotency_key,
            ),
            error=job.error,
            timestamps=ImportTimestamps(
                created_at=job.created_at,
                updated_at=job.updated_at,
                started_at=job.started_at,
                completed_at=job.completed_at,
            ),
        )
