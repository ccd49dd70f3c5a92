"""
Tests for outcome recording and artifact generation.
"""

import io
import json

import pandas as pd
import pytest

from catalog_import.ingestion.artifacts import RESULT_COLUMNS, ArtifactWriter, escape_formula
from catalog_import.ingestion.errors import ArtifactWriteError, StoreError, StoreUnavailableError
from catalog_import.ingestion.recorder import OutcomeRecorder
from catalog_import.ingestion.retry import RetryPolicy
from catalog_import.models.job import ImportJob, SourceFileRef
from catalog_import.models.row import (
    CatalogRow,
    FieldError,
    OutcomeStatus,
    RowOutcome,
    RowRecord,
)
from catalog_import.stores.base import ArtifactStore
from catalog_import.stores.memory import InMemoryArtifactStore


def valid_record(row_index, title="Shirt"):
    return RowRecord(
        row_index=row_index,
        raw={"title": title, "price": "100"},
        fields=CatalogRow(title=title, price=100),
    )


def invalid_record(row_index):
    return RowRecord(
        row_index=row_index,
        raw={"title": "", "price": "100"},
        fields=CatalogRow(price=100),
        errors=[FieldError(field="title", code="required", message="is required")],
    )


def outcome(row_index, status, message=None):
    return RowOutcome(row_index=row_index, status=status, message=message)


@pytest.fixture
def recorder():
    recorder = OutcomeRecorder()
    recorder.record_invalid(invalid_record(3))
    for index in (2, 4, 5, 6):
        recorder.record_valid(valid_record(index))
    recorder.record_outcome(valid_record(2), outcome(2, OutcomeStatus.CREATED, "Created"))
    recorder.record_outcome(valid_record(4), outcome(4, OutcomeStatus.UPDATED, "Updated"))
    recorder.record_outcome(valid_record(5), outcome(5, OutcomeStatus.SKIPPED, "No changes"))
    recorder.record_outcome(
        valid_record(6), outcome(6, OutcomeStatus.FAILED, "Constraint violation: handle")
    )
    return recorder


@pytest.fixture
def job():
    return ImportJob(source=SourceFileRef(path="/tmp/catalog.csv", filename="catalog.csv"))


class TestOutcomeRecorder:
    def test_stats_invariants(self, recorder):
        stats = recorder.snapshot()
        assert stats.rows_total == 5
        assert stats.rows_total == stats.rows_valid + stats.rows_invalid
        assert stats.created + stats.updated + stats.skipped + stats.failed == stats.rows_valid
        assert recorder.processed == 5
        assert recorder.applied == 4

    def test_invalid_row_gets_failed_outcome_with_field_message(self, recorder):
        invalid = next(o for o in recorder.outcomes() if o.row_index == 3)
        assert invalid.status == OutcomeStatus.FAILED
        assert invalid.message == "Validation failed: title: is required"

    def test_outcomes_are_ordered_by_row(self, recorder):
        assert [o.row_index for o in recorder.outcomes()] == [2, 3, 4, 5, 6]

    def test_error_rows_cover_invalid_and_failed(self, recorder):
        assert [row.row_index for row in recorder.error_rows()] == [3, 6]

    def test_outcome_is_recorded_once(self, recorder):
        with pytest.raises(ValueError):
            recorder.record_outcome(valid_record(2), outcome(2, OutcomeStatus.UPDATED))

    def test_listener_receives_processed_count(self):
        seen = []
        recorder = OutcomeRecorder(listener=seen.append)
        recorder.record_invalid(invalid_record(2))
        recorder.record_valid(valid_record(3))
        recorder.record_outcome(valid_record(3), outcome(3, OutcomeStatus.CREATED))
        assert seen == [1, 2]


class FailingArtifactStore(ArtifactStore):
    """Accepts the first `ok` writes, then fails."""

    def __init__(self, ok, error=None):
        self.ok = ok
        self.error = error or StoreError("bucket is read-only")
        self.names = []

    def put(self, data, content_type, name):
        if len(self.names) >= self.ok:
            raise self.error
        self.names.append(name)
        return f"memory://{name}"


class TestArtifactWriter:
    def test_writes_three_artifacts(self, recorder, job):
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, recorder, ["title", "price"])

        assert artifacts.complete
        report_url = f"memory://imports/{job.id}/validation_report.json"
        assert artifacts.validation_report_url == report_url
        assert store.content_types[f"imports/{job.id}/error_rows.csv"] == "text/csv"

    def test_validation_report(self, recorder, job):
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, recorder, ["title", "price"])
        report = json.loads(store.read(artifacts.validation_report_url))

        assert report["job_id"] == job.id
        assert report["mode"] == "dry_run"
        assert report["summary"]["rows_invalid"] == 1
        assert report["error_types"] == [{"field": "title", "code": "required", "count": 1}]
        assert report["sample_errors"][0]["row_index"] == 3
        assert report["sample_apply_failures"] == [
            {"row_index": 6, "message": "Constraint violation: handle"}
        ]

    def test_error_rows_keep_original_columns(self, recorder, job):
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, recorder, ["title", "price"])
        frame = pd.read_csv(
            io.BytesIO(store.read(artifacts.error_rows_url)), dtype=str, keep_default_na=False
        )

        assert list(frame.columns) == ["row_index", "title", "price", "error"]
        assert frame["row_index"].tolist() == ["3", "6"]
        assert frame["error"].tolist() == ["title: is required", "Constraint violation: handle"]

    def test_result_rows(self, recorder, job):
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, recorder, ["title", "price"])
        frame = pd.read_csv(
            io.BytesIO(store.read(artifacts.result_rows_url)), dtype=str, keep_default_na=False
        )

        assert list(frame.columns) == RESULT_COLUMNS
        assert frame["status"].tolist() == ["created", "failed", "updated", "skipped", "failed"]

    def test_empty_job_still_gets_headers(self, job):
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, OutcomeRecorder(), ["title"])
        assert store.read(artifacts.result_rows_url).decode().strip() == ",".join(RESULT_COLUMNS)

    def test_second_write_is_rejected(self, recorder, job):
        writer = ArtifactWriter(InMemoryArtifactStore())
        writer.write(job, recorder)
        with pytest.raises(ArtifactWriteError):
            writer.write(job, recorder)

    def test_store_failure_keeps_partial_artifacts(self, recorder, job):
        writer = ArtifactWriter(FailingArtifactStore(ok=1))
        with pytest.raises(ArtifactWriteError):
            writer.write(job, recorder)
        assert writer.artifacts.validation_report_url is not None
        assert writer.artifacts.error_rows_url is None
        assert not writer.artifacts.complete

    def test_unavailable_store_is_retried(self, recorder, job):
        store = FailingArtifactStore(ok=0, error=StoreUnavailableError("503"))
        writer = ArtifactWriter(store, RetryPolicy(max_retries=1, sleep=lambda _: None))
        with pytest.raises(ArtifactWriteError):
            writer.write(job, recorder)

    def test_formula_cells_are_quoted_in_csv_artifacts(self, job):
        formula = '=HYPERLINK("http://evil.example.com","x")'
        record = RowRecord(
            row_index=2,
            raw={"title": formula, "price": "-5"},
            fields=CatalogRow(title=formula, price=-5),
            errors=[FieldError(field="price", code="negative_price", message="is negative")],
        )
        recorder = OutcomeRecorder()
        recorder.record_invalid(record)
        store = InMemoryArtifactStore()
        artifacts = ArtifactWriter(store).write(job, recorder, ["title", "price"])

        frame = pd.read_csv(
            io.BytesIO(store.read(artifacts.error_rows_url)), dtype=str, keep_default_na=False
        )
        assert frame["title"].tolist() == ["'" + formula]
        assert frame["price"].tolist() == ["-5"]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("=1+2", "'=1+2"),
        (" @cmd", "' @cmd"),
        ("+shirt", "'+shirt"),
        ("-10", "-10"),
        ("+3.5", "+3.5"),
        ("Linen Shirt", "Linen Shirt"),
        ("", ""),
        (7, 7),
    ],
)
def test_escape_formula(value, expected):
    assert escape_formula(value) == expected
