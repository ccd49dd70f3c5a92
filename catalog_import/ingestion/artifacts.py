"""
Artifact Writer
Serializes the validation report, error rows and result rows of a job.
"""

import json
import logging
import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from ..models.job import Artifacts, ImportJob
from ..models.row import OutcomeStatus, starts_with_formula
from ..stores.base import ArtifactStore
from .errors import ArtifactWriteError, StoreError
from .recorder import OutcomeRecorder
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["row_index", "status", "entity_id", "handle", "variant_skus", "message"]
TOP_ERROR_TYPES = 10
NUMBER_PATTERN = re.compile(r"^\s*[-+]?\d+(\.\d+)?\s*$")


def escape_formula(value: Any) -> Any:
    """
    Quote a cell that a spreadsheet would evaluate as a formula.

    Plain signed numbers are left alone.
    """
    if isinstance(value, str) and starts_with_formula(value) and not NUMBER_PATTERN.match(value):
        return "'" + value
    return value


class ArtifactWriter:
    """
    Writes the three job artifacts once.

    Artifacts written before a failure stay available on `artifacts`, so
    a failed job can still report what it managed to persist.
    """

    def __init__(
        self,
        store: ArtifactStore,
        retry: Optional[RetryPolicy] = None,
        sample_size: int = 50,
    ):
        self.store = store
        self.retry = retry or RetryPolicy()
        self.sample_size = sample_size
        self.artifacts = Artifacts()
        self._written = False

    def write(
        self, job: ImportJob, recorder: OutcomeRecorder, columns: Optional[List[str]] = None
    ) -> Artifacts:
        """
        Persist all artifacts.

        Raises:
            ArtifactWriteError: on a second call, or when the store rejects a write
        """
        if self._written:
            raise ArtifactWriteError(f"Artifacts for job {job.id} were already written")
        self._written = True

        prefix = f"imports/{job.id}"
        try:
            self.artifacts.validation_report_url = self._put(
                json.dumps(self.build_report(job, recorder), indent=2, default=str).encode("utf-8"),
                "application/json",
                f"{prefix}/validation_report.json",
            )
            self.artifacts.error_rows_url = self._put(
                self.build_error_rows(recorder, columns or []).encode("utf-8"),
                "text/csv",
                f"{prefix}/error_rows.csv",
            )
            self.artifacts.result_rows_url = self._put(
                self.build_result_rows(recorder).encode("utf-8"),
                "text/csv",
                f"{prefix}/result_rows.csv",
            )
        except StoreError as e:
            logger.error(f"Artifact write failed for job {job.id}: {e}")
            raise ArtifactWriteError(f"Could not persist artifacts: {e}", {"job_id": job.id})

        logger.info(f"Artifacts written for job {job.id}", extra={"job_id": job.id})
        return self.artifacts

    def _put(self, data: bytes, content_type: str, name: str) -> str:
        return self.retry.call(
            self.store.put, data, content_type, name, description="artifact put"
        )

    def build_report(self, job: ImportJob, recorder: OutcomeRecorder) -> Dict[str, Any]:
        stats = recorder.snapshot(job.stats.duration_ms)
        field_errors = recorder.field_errors()

        error_types = Counter((error.field, error.code) for _, error in field_errors)
        common = [
            {"field": field, "code": code, "count": count}
            for (field, code), count in error_types.most_common(TOP_ERROR_TYPES)
        ]

        samples = [
            {
                "row_index": row_index,
                "field": error.field,
                "code": error.code,
                "message": error.message,
                "value": error.value,
            }
            for row_index, error in field_errors[: self.sample_size]
        ]

        invalid_rows = {row_index for row_index, _ in field_errors}
        apply_failures = [
            {"row_index": outcome.row_index, "message": outcome.message}
            for outcome in recorder.outcomes()
            if outcome.status == OutcomeStatus.FAILED and outcome.row_index not in invalid_rows
        ][: self.sample_size]

        return {
            "job_id": job.id,
            "mode": job.options.mode.value,
            "options": job.options.describe(),
            "source": {"filename": job.source.filename, "size_bytes": job.source.size_bytes},
            "resume_from_row": job.resume_from_row or None,
            "summary": stats.model_dump(),
            "error_types": common,
            "sample_errors": samples,
            "sample_apply_failures": apply_failures,
            "generated_at": datetime.utcnow().isoformat(),
        }

    def build_error_rows(self, recorder: OutcomeRecorder, columns: List[str]) -> str:
        header = ["row_index"] + [c for c in columns if c not in ("row_index", "error")] + ["error"]
        rows = []
        for error_row in recorder.error_rows():
            row = {"row_index": error_row.row_index, "error": escape_formula(error_row.error)}
            for column in header[1:-1]:
                row[column] = escape_formula(error_row.raw.get(column, ""))
            rows.append(row)
        return pd.DataFrame(rows, columns=header).to_csv(index=False)

    def build_result_rows(self, recorder: OutcomeRecorder) -> str:
        rows = [
            {
                "row_index": outcome.row_index,
                "status": outcome.status.value,
                "entity_id": outcome.entity_id or "",
                "handle": escape_formula(outcome.handle or ""),
                "variant_skus": escape_formula(";".join(outcome.variant_skus)),
                "message": escape_formula(outcome.message or ""),
            }
            for outcome in recorder.outcomes()
        ]
        return pd.DataFrame(rows, columns=RESULT_COLUMNS).to_csv(index=False)
