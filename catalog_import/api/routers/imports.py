"""
Import Endpoints
POST /api/v1/imports - Upload a CSV file and submit an import job
GET /api/v1/imports/{job_id} - Job status, progress, stats and artifacts
POST /api/v1/imports/{job_id}/cancel - Request cancellation
"""

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile, status

from ...config.settings import ImportSettings
from ...ingestion.controller import JobController
from ...ingestion.errors import StoreError
from ...models.job import SourceFileRef
from ...models.options import parse_options
from ..dependencies import get_import_settings, get_job_controller
from ..errors import ConflictError, InvalidRequestError, PayloadTooLargeError
from ..schemas.imports import ImportJobResponse, ImportSubmitResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/imports", tags=["imports"])

ALLOWED_EXTENSIONS = (".csv", ".txt")
UPLOAD_CHUNK_BYTES = 1024 * 1024


def _safe_filename(filename: str) -> str:
    name = Path(filename).name
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name) or "upload.csv"


def save_upload(upload: UploadFile, settings: ImportSettings) -> SourceFileRef:
    """
    Stream an upload to the upload directory, enforcing the size limit.

    Raises:
        InvalidRequestError: unsupported file type
        PayloadTooLargeError: file exceeds IMPORT_MAX_FILE_SIZE_MB
    """
    filename = upload.filename or "upload.csv"
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise InvalidRequestError(
            f"Unsupported file type: {filename}", {"allowed": list(ALLOWED_EXTENSIONS)}
        )

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{uuid4().hex}_{_safe_filename(filename)}"

    digest = hashlib.sha256()
    size = 0
    with open(path, "wb") as out:
        while True:
            chunk = upload.file.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > settings.max_file_size_bytes:
                out.close()
                path.unlink()
                raise PayloadTooLargeError(
                    f"File exceeds the {settings.max_file_size_mb} MB limit",
                    {"max_file_size_mb": settings.max_file_size_mb},
                )
            digest.update(chunk)
            out.write(chunk)

    if size == 0:
        path.unlink()
        raise InvalidRequestError("Uploaded file is empty")

    logger.info(f"Stored upload {filename} ({size / 1024:.1f} KB) at {path}")
    return SourceFileRef(
        path=str(path), filename=filename, size_bytes=size, checksum=digest.hexdigest()
    )


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=ImportSubmitResponse)
def submit_import(
    file: Optional[UploadFile] = File(None, description="CSV file to import"),
    mode: str = Form("dry_run"),
    upsert: str = Form("off"),
    image_strategy: str = Form("replace"),
    prune_missing_variants: bool = Form(False),
    skip_image_validation: bool = Form(False),
    unarchive: bool = Form(False),
    column_mapping: Optional[str] = Form(None, description="JSON object: header -> field"),
    source_job_id: Optional[str] = Form(None, description="Reuse the file of this job"),
    resume_from_row: int = Form(0, ge=0, description="First source row to process"),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    confirm_prune: Optional[str] = Header(None, alias="X-Confirm-Prune"),
    controller: JobController = Depends(get_job_controller),
    settings: ImportSettings = Depends(get_import_settings),
) -> ImportSubmitResponse:
    """
    Submit an import job. Returns immediately with the job id.

    Repeating a request with the same Idempotency-Key returns the original job.
    """
    if idempotency_key:
        existing = controller.job_store.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(f"Idempotent replay of job {existing.id}")
            return ImportSubmitResponse(job_id=existing.id, status=existing.status.value)

    mapping = {}
    if column_mapping:
        try:
            mapping = json.loads(column_mapping)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"column_mapping is not valid JSON: {e}")
        if not isinstance(mapping, dict):
            raise InvalidRequestError("column_mapping must be a JSON object")

    options = parse_options(
        {
            "mode": mode,
            "upsert": upsert,
            "image_strategy": image_strategy,
            "prune_missing_variants": prune_missing_variants,
            "skip_image_validation": skip_image_validation,
            "unarchive": unarchive,
            "column_mapping": mapping,
        }
    )

    if options.prune_missing_variants:
        if not settings.enable_pruning:
            raise InvalidRequestError(
                "Variant pruning is disabled on this server", {"setting": "IMPORT_ENABLE_PRUNING"}
            )
        if (confirm_prune or "").lower() != "yes":
            raise InvalidRequestError(
                "prune_missing_variants deletes catalog variants; "
                "confirm with the header X-Confirm-Prune: yes"
            )

    if file is not None and source_job_id:
        raise InvalidRequestError("Send either a file or source_job_id, not both")
    if file is None and not source_job_id:
        raise InvalidRequestError("A CSV file is required")
    if resume_from_row == 1:
        # Row 1 is the header
        raise InvalidRequestError(
            "resume_from_row must be 0 or a data row (2 or later)",
            {"resume_from_row": resume_from_row},
        )

    source = save_upload(file, settings) if file is not None else None
    try:
        job = controller.submit(
            source,
            options,
            idempotency_key=idempotency_key,
            source_job_id=source_job_id,
            resume_from_row=resume_from_row,
        )
    except (ValueError, StoreError):
        # No job refers to the upload
        if source is not None:
            Path(source.path).unlink(missing_ok=True)
        raise
    if source is not None and job.source.path != source.path:
        # Another request with the same Idempotency-Key created the job first
        Path(source.path).unlink(missing_ok=True)
    return ImportSubmitResponse(job_id=job.id, status=job.status.value)


@router.get("/{job_id}", response_model=ImportJobResponse)
def get_import(
    job_id: str,
    controller: JobController = Depends(get_job_controller),
) -> ImportJobResponse:
    """Read job status, progress, stats, artifacts and context."""
    return ImportJobResponse.from_job(controller.get(job_id))


@router.post(
    "/{job_id}/cancel", status_code=status.HTTP_202_ACCEPTED, response_model=ImportSubmitResponse
)
def cancel_import(
    job_id: str,
    controller: JobController = Depends(get_job_controller),
) -> ImportSubmitResponse:
    """
    Request cancellation. The job stops between rows and still writes
    artifacts for the rows it finished.
    """
    job = controller.get(job_id)
    if job.is_terminal:
        raise ConflictError(
            f"Job {job_id} already finished with status {job.status.value}",
            {"job_id": job_id, "status": job.status.value},
        )
    job = controller.cancel(job_id)
    logger.info(f"Cancellation requested for job {job_id}")
    return ImportSubmitResponse(job_id=job.id, status=job.status.value)
