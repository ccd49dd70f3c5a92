"""
Outcome Recorder
Thread-safe collection of per-row outcomes and running job statistics.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

from ..models.job import ImportStats
from ..models.row import FieldError, OutcomeStatus, RowOutcome, RowRecord

ProgressListener = Callable[[int], None]


class ErrorRow:
    """A row for the error-rows artifact: original cells plus an error message."""

    __slots__ = ("row_index", "raw", "error")

    def __init__(self, row_index: int, raw: Dict[str, str], error: str):
        self.row_index = row_index
        self.raw = raw
        self.error = error


class OutcomeRecorder:
    """
    Accumulates one RowOutcome per row and the running ImportStats.

    rows_total counts rows read, so rows_total == rows_valid + rows_invalid
    holds at every snapshot. Invalid rows get a `failed` outcome but count
    only towards rows_invalid; created/updated/skipped/failed count
    outcomes of valid rows.
    """

    def __init__(self, listener: Optional[ProgressListener] = None):
        self._lock = threading.Lock()
        self._stats = ImportStats()
        self._outcomes: Dict[int, RowOutcome] = {}
        self._error_rows: Dict[int, ErrorRow] = {}
        self._field_errors: List[Tuple[int, FieldError]] = []
        self._listener = listener

    def record_invalid(self, record: RowRecord) -> None:
        message = f"Validation failed: {record.error_message()}"
        outcome = RowOutcome(
            row_index=record.row_index,
            status=OutcomeStatus.FAILED,
            handle=record.fields.handle if record.fields else None,
            variant_skus=record.fields.all_skus if record.fields else [],
            message=message,
        )
        with self._lock:
            self._stats.rows_total += 1
            self._stats.rows_invalid += 1
            self._outcomes[record.row_index] = outcome
            self._error_rows[record.row_index] = ErrorRow(
                record.row_index, record.raw, record.error_message()
            )
            self._field_errors.extend((record.row_index, error) for error in record.errors)
            processed = len(self._outcomes)
        self._notify(processed)

    def record_valid(self, record: RowRecord) -> None:
        with self._lock:
            self._stats.rows_total += 1
            self._stats.rows_valid += 1

    def record_outcome(self, record: RowRecord, outcome: RowOutcome) -> None:
        """Record the applier's outcome for a valid row."""
        with self._lock:
            if outcome.row_index in self._outcomes:
                raise ValueError(f"Outcome for row {outcome.row_index} already recorded")
            self._outcomes[outcome.row_index] = outcome
            if outcome.status == OutcomeStatus.CREATED:
                self._stats.created += 1
            elif outcome.status == OutcomeStatus.UPDATED:
                self._stats.updated += 1
            elif outcome.status == OutcomeStatus.SKIPPED:
                self._stats.skipped += 1
            else:
                self._stats.failed += 1
                self._error_rows[record.row_index] = ErrorRow(
                    record.row_index, record.raw, outcome.message or "failed"
                )
            processed = len(self._outcomes)
        self._notify(processed)

    def _notify(self, processed: int) -> None:
        if self._listener is not None:
            self._listener(processed)

    @property
    def processed(self) -> int:
        with self._lock:
            return len(self._outcomes)

    @property
    def applied(self) -> int:
        """Outcomes of valid rows."""
        with self._lock:
            return self._stats.applied

    def snapshot(self, duration_ms: Optional[int] = None) -> ImportStats:
        with self._lock:
            stats = self._stats.model_copy()
        if duration_ms is not None:
            stats.duration_ms = duration_ms
        return stats

    def outcomes(self) -> List[RowOutcome]:
        with self._lock:
            return [self._outcomes[i] for i in sorted(self._outcomes)]

    def error_rows(self) -> List[ErrorRow]:
        with self._lock:
            return [self._error_rows[i] for i in sorted(self._error_rows)]

    def field_errors(self) -> List[Tuple[int, FieldError]]:
        with self._lock:
            return sorted(self._field_errors, key=lambda item: item[0])
