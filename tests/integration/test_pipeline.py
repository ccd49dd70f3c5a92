"""
End-to-end import runs through the job controller.
"""

import io

import pandas as pd
import pytest

from catalog_import.ingestion.controller import JobController
from catalog_import.ingestion.dispatch import ThreadDispatcher
from catalog_import.ingestion.errors import JobStateError, StoreError, StoreUnavailableError
from catalog_import.models.job import JobStatus
from catalog_import.models.options import ImportOptions
from catalog_import.stores.base import ArtifactStore
from catalog_import.stores.memory import InMemoryCatalogStore


def read_csv(artifact_store, url):
    return pd.read_csv(io.BytesIO(artifact_store.read(url)), dtype=str, keep_default_na=False)


def make_controller(job_store, catalog_store, artifact_store, settings, **overrides):
    return JobController(
        job_store=job_store,
        catalog_store=catalog_store,
        artifact_store=artifact_store,
        settings=settings.model_copy(update=overrides),
    )


class TestExecute:
    def test_mixed_file_completes_with_row_level_errors(
        self, run_import, write_csv, product_row, catalog_store, artifact_store
    ):
        rows = [product_row(n) for n in range(1, 6)]
        rows[2]["title"] = ""
        job = run_import(write_csv(rows), mode="execute", upsert="sku")

        assert job.status == JobStatus.COMPLETED
        stats = job.stats
        assert (stats.rows_total, stats.rows_valid, stats.rows_invalid) == (5, 4, 1)
        assert stats.created == 4
        assert stats.applied == stats.rows_valid
        assert len(catalog_store) == 4
        assert job.progress.rows_processed == 5
        assert job.progress.percent == 100

        errors = read_csv(artifact_store, job.artifacts.error_rows_url)
        assert errors["row_index"].tolist() == ["4"]
        assert errors["error"].tolist() == ["title: is required"]
        results = read_csv(artifact_store, job.artifacts.result_rows_url)
        assert results["status"].tolist() == ["created", "created", "failed", "created", "created"]

    def test_rerun_with_sku_upsert_changes_nothing(
        self, run_import, write_csv, product_row, catalog_store
    ):
        source = write_csv([product_row(n) for n in range(1, 6)])
        run_import(source, mode="execute", upsert="sku")
        job = run_import(source, mode="execute", upsert="sku")

        assert job.status == JobStatus.COMPLETED
        assert (job.stats.created, job.stats.updated, job.stats.skipped) == (0, 0, 5)
        assert len(catalog_store) == 5

    def test_rerun_without_upsert_never_updates(
        self, run_import, write_csv, product_row, catalog_store
    ):
        source = write_csv([product_row(n) for n in range(1, 4)])
        run_import(source, mode="execute", upsert="off")
        job = run_import(source, mode="execute", upsert="off")

        assert job.status == JobStatus.COMPLETED
        assert job.stats.updated == 0
        assert job.stats.failed == 3
        assert len(catalog_store) == 3

    def test_changed_rows_update_matched_products(
        self, run_import, write_csv, product_row, catalog_store
    ):
        run_import(write_csv([product_row(1), product_row(2)]), mode="execute", upsert="handle")
        changed = [product_row(1, price="1999"), product_row(2)]
        job = run_import(write_csv(changed), mode="execute", upsert="handle")

        assert (job.stats.updated, job.stats.skipped) == (1, 1)
        assert catalog_store.find("linen-shirt-1").variant("LS-001").price == 1999

    def test_rows_sharing_a_key_apply_in_file_order(
        self, run_import, write_csv, product_row, catalog_store
    ):
        rows = [product_row(1, price="1100"), product_row(1, price="1200")]
        job = run_import(write_csv(rows), mode="execute", upsert="sku")

        assert (job.stats.created, job.stats.updated) == (1, 1)
        assert catalog_store.find("linen-shirt-1").variant("LS-001").price == 1200

    def test_image_strategies(self, run_import, write_csv, product_row, catalog_store):
        def urls():
            return [image.url for image in catalog_store.find("linen-shirt-1").images]

        a, b, c = (f"https://cdn.example.com/{name}.jpg" for name in "abc")
        run_import(write_csv([product_row(1, image_urls=a)]), mode="execute", upsert="sku")

        run_import(
            write_csv([product_row(1, image_urls=b)]),
            mode="execute",
            upsert="sku",
            image_strategy="merge",
        )
        assert urls() == [a, b]

        run_import(
            write_csv([product_row(1, image_urls=c)]),
            mode="execute",
            upsert="sku",
            image_strategy="replace",
        )
        assert urls() == [c]

    def test_rows_with_different_skus_of_one_product_apply_in_file_order(
        self, run_import, write_csv, product_row, catalog_store
    ):
        a, b, c = (f"https://cdn.example.com/{name}.jpg" for name in "abc")
        first = product_row(1, variant_skus="LS-002", image_urls=a)
        run_import(write_csv([first]), mode="execute", upsert="sku")

        rows = [
            product_row(1, image_urls=b),
            product_row(1, sku="LS-002", image_urls=c),
        ]
        job = run_import(write_csv(rows), mode="execute", upsert="sku", image_strategy="merge")

        assert job.stats.updated == 2
        entity = catalog_store.find("linen-shirt-1")
        assert [image.url for image in entity.images] == [a, b, c]
        assert entity.skus == ["LS-001", "LS-002"]


class TestDryRun:
    def test_dry_run_matches_execute(self, controller, write_csv, product_row, catalog_store):
        catalog_rows = [product_row(n) for n in range(1, 5)]
        catalog_rows.append(product_row(1, price="1500"))
        catalog_rows.append(product_row(9, title=""))
        source = write_csv(catalog_rows)

        dry = controller.run(controller.submit(source, ImportOptions(upsert="sku")).id)
        assert dry.status == JobStatus.COMPLETED
        assert dry.started_at is not None
        assert len(catalog_store) == 0

        options = ImportOptions(mode="execute", upsert="sku")
        executed = controller.run(controller.submit(source, options).id)

        ignore = {"duration_ms"}
        assert dry.stats.model_dump(exclude=ignore) == executed.stats.model_dump(exclude=ignore)
        assert (executed.stats.created, executed.stats.updated) == (4, 1)
        assert len(catalog_store) == 4

    def test_dry_run_reports_collisions_without_upsert(
        self, controller, write_csv, product_row, catalog_store
    ):
        rows = [product_row(1), product_row(2, handle="linen-shirt-1"), product_row(3)]
        source = write_csv(rows)

        dry = controller.run(controller.submit(source, ImportOptions(upsert="off")).id)
        executed = controller.run(controller.submit(source, ImportOptions(mode="execute")).id)

        assert (dry.stats.created, dry.stats.failed) == (2, 1)
        assert (executed.stats.created, executed.stats.failed) == (2, 1)
        assert len(catalog_store) == 2


class TestValidationFailures:
    def test_missing_title_column(self, run_import, write_csv, catalog_store):
        job = run_import(write_csv("sku,price\nLS-1,100\n"), mode="execute")

        assert job.status == JobStatus.FAILED_VALIDATION
        assert job.error.code == "invalid_source"
        assert "title" in job.error.message
        assert job.artifacts.validation_report_url is None
        assert len(catalog_store) == 0

    def test_row_limit(
        self, job_store, catalog_store, artifact_store, settings, write_csv, product_row
    ):
        controller = make_controller(
            job_store, catalog_store, artifact_store, settings, max_rows=3
        )
        source = write_csv([product_row(n) for n in range(1, 6)])
        job = controller.run(controller.submit(source, ImportOptions(mode="execute")).id)

        assert job.status == JobStatus.FAILED_VALIDATION
        assert "limit is 3" in job.error.message
        assert len(catalog_store) == 0

    def test_formula_rows_never_reach_the_catalog(
        self, run_import, write_csv, product_row, catalog_store, artifact_store
    ):
        rows = [product_row(1), product_row(2, title="=1+2")]
        job = run_import(write_csv(rows), mode="execute", upsert="sku")

        assert job.status == JobStatus.COMPLETED
        assert (job.stats.rows_valid, job.stats.rows_invalid, job.stats.created) == (1, 1, 1)
        assert catalog_store.lookup_by_keys("sku", ["LS-002"]) == {}

        errors = read_csv(artifact_store, job.artifacts.error_rows_url)
        assert errors["title"].tolist() == ["'=1+2"]
        assert errors["error"].tolist() == ["title: must not start with =, +, - or @"]


class CancellingCatalogStore(InMemoryCatalogStore):
    """Requests cancellation of `job_id` right after the Nth create."""

    def __init__(self, cancel_after):
        super().__init__()
        self.cancel_after = cancel_after
        self.creates = 0
        self.controller = None
        self.job_id = None

    def create(self, entity):
        entity_id = super().create(entity)
        self.creates += 1
        if self.creates == self.cancel_after:
            self.controller.cancel(self.job_id)
        return entity_id


class UnavailableCatalogStore(InMemoryCatalogStore):
    def create(self, entity):
        raise StoreUnavailableError("connection refused")


class BrokenArtifactStore(ArtifactStore):
    def put(self, data, content_type, name):
        raise StoreError("bucket is read-only")


class TestInterruptions:
    def test_cancel_stops_between_rows_and_keeps_partial_results(
        self, job_store, artifact_store, settings, write_csv, product_row
    ):
        catalog_store = CancellingCatalogStore(cancel_after=3)
        controller = make_controller(
            job_store, catalog_store, artifact_store, settings, apply_workers=1
        )
        catalog_store.controller = controller

        source = write_csv([product_row(n) for n in range(1, 11)])
        job = controller.submit(source, ImportOptions(mode="execute"))
        catalog_store.job_id = job.id
        job = controller.run(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error.code == "cancelled"
        assert job.stats.created == 3
        assert len(catalog_store) == 3
        results = read_csv(artifact_store, job.artifacts.result_rows_url)
        assert results["row_index"].tolist() == ["2", "3", "4"]

    def test_cancel_before_start(self, controller, write_csv, product_row):
        job = controller.submit(write_csv([product_row(1)]), ImportOptions(mode="execute"))
        cancelled = controller.cancel(job.id)

        assert cancelled.status == JobStatus.FAILED
        assert cancelled.error.code == "cancelled"
        with pytest.raises(JobStateError):
            controller.run(job.id)

    def test_cancel_finished_job_is_a_no_op(self, controller, run_import, write_csv, product_row):
        job = run_import(write_csv([product_row(1)]))
        assert controller.cancel(job.id).status == JobStatus.COMPLETED

    def test_timeout(
        self, job_store, catalog_store, artifact_store, settings, write_csv, product_row
    ):
        controller = make_controller(
            job_store, catalog_store, artifact_store, settings, job_timeout_minutes=0
        )
        source = write_csv([product_row(n) for n in range(1, 4)])
        job = controller.run(controller.submit(source, ImportOptions(mode="execute")).id)

        assert job.status == JobStatus.FAILED
        assert job.error.code == "timeout"
        assert len(catalog_store) == 0

    def test_catalog_outage_fails_the_job(
        self, job_store, artifact_store, settings, write_csv, product_row
    ):
        catalog_store = UnavailableCatalogStore()
        controller = make_controller(job_store, catalog_store, artifact_store, settings)
        source = write_csv([product_row(n) for n in range(1, 4)])
        job = controller.run(controller.submit(source, ImportOptions(mode="execute")).id)

        assert job.status == JobStatus.FAILED
        assert job.error.code == "store_unavailable"
        assert job.error.message.startswith("Catalog store unavailable")
        assert job.stats.applied == 0
        assert job.artifacts.result_rows_url is None

    def test_artifact_failure_fails_the_job(
        self, job_store, catalog_store, settings, write_csv, product_row
    ):
        controller = make_controller(job_store, catalog_store, BrokenArtifactStore(), settings)
        source = write_csv([product_row(n) for n in range(1, 3)])
        job = controller.run(controller.submit(source, ImportOptions(mode="execute")).id)

        assert job.status == JobStatus.FAILED
        assert job.error.code == "artifact_write_failed"
        assert job.stats.created == 2


class TestSubmission:
    def test_resume_from_row(self, controller, write_csv, product_row, catalog_store):
        source = write_csv([product_row(n) for n in range(1, 6)])
        job = controller.submit(source, ImportOptions(mode="execute"), resume_from_row=4)
        job = controller.run(job.id)

        assert job.status == JobStatus.COMPLETED
        assert job.stats.rows_total == 3
        assert job.progress.rows_expected == 3
        assert sorted(entity.handle for entity in catalog_store.all()) == [
            "linen-shirt-3",
            "linen-shirt-4",
            "linen-shirt-5",
        ]

    def test_resume_row_before_first_data_row(self, controller, write_csv, product_row):
        with pytest.raises(ValueError):
            controller.submit(write_csv([product_row(1)]), resume_from_row=1)

    def test_source_job_reuse(self, controller, write_csv, product_row, catalog_store):
        first = controller.run(controller.submit(write_csv([product_row(1)])).id)
        second = controller.submit(
            None, ImportOptions(mode="execute"), source_job_id=first.id
        )
        assert second.source == first.source

        second = controller.run(second.id)
        assert second.stats.created == 1
        assert len(catalog_store) == 1

    def test_source_is_required(self, controller):
        with pytest.raises(ValueError):
            controller.submit(None)

    def test_idempotency_key(self, controller, job_store, write_csv, product_row):
        source = write_csv([product_row(1)])
        first = controller.submit(source, idempotency_key="upload-42")
        again = controller.submit(source, idempotency_key="upload-42")

        assert again.id == first.id
        assert job_store.find_by_idempotency_key("upload-42").id == first.id

    def test_job_runs_once(self, controller, run_import, write_csv, product_row):
        job = run_import(write_csv([product_row(1)]))
        with pytest.raises(JobStateError):
            controller.run(job.id)


def test_thread_dispatcher_runs_submitted_jobs(
    job_store, catalog_store, artifact_store, settings, write_csv, product_row
):
    dispatcher = ThreadDispatcher(max_workers=1)
    controller = JobController(
        job_store=job_store,
        catalog_store=catalog_store,
        artifact_store=artifact_store,
        settings=settings,
        dispatcher=dispatcher,
    )
    dispatcher.bind(controller.run)

    source = write_csv([product_row(1), product_row(2)])
    job = controller.submit(source, ImportOptions(mode="execute"))
    dispatcher.shutdown(wait=True)

    assert controller.get(job.id).status == JobStatus.COMPLETED
    assert len(catalog_store) == 2


class ExplodingDispatcher:
    def dispatch(self, job_id):
        raise ConnectionError("broker unreachable")


def test_dispatch_failure_marks_the_job(
    job_store, catalog_store, artifact_store, settings, write_csv, product_row
):
    controller = JobController(
        job_store=job_store,
        catalog_store=catalog_store,
        artifact_store=artifact_store,
        settings=settings,
        dispatcher=ExplodingDispatcher(),
    )
    with pytest.raises(ConnectionError):
        controller.submit(write_csv([product_row(1)]), idempotency_key="upload-7")

    job = job_store.find_by_idempotency_key("upload-7")
    assert job.status == JobStatus.FAILED
    assert job.error.code == "dispatch_failed"
