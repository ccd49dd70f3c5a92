"""
Tests for the import API endpoints.
"""

import json
from pathlib import Path

CSV = (
    "title,handle,sku,price,currency_code,image_urls\n"
    "Linen Shirt,linen-shirt,LS-1,1200,usd,https://cdn.example.com/a.jpg\n"
    "Wool Scarf,wool-scarf,WS-1,2500,usd,\n"
)


def submit(client, content=CSV, filename="catalog.csv", headers=None, **form):
    files = {"file": (filename, content.encode("utf-8"), "text/csv")} if content else None
    return client.post("/api/v1/imports", files=files, data=form, headers=headers or {})


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_root(api_client):
    assert api_client.get("/").json()["endpoints"]["imports"] == "/api/v1/imports"


class TestSubmit:
    def test_accepted_and_finished(self, api_client):
        response = submit(api_client, mode="execute", upsert="sku")
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        body = api_client.get(f"/api/v1/imports/{job_id}").json()
        assert body["status"] == "completed"
        assert body["stats"]["created"] == 2
        assert body["progress"] == {"rows_processed": 2, "rows_expected": 2, "percent": 100}
        assert body["context"]["options"]["upsert"] == "sku"
        assert body["context"]["source_file"]["filename"] == "catalog.csv"
        assert len(body["context"]["source_file"]["checksum"]) == 64
        assert body["artifacts"]["result_rows_url"].startswith("file://")
        assert body["error"] is None

    def test_dry_run_is_the_default(self, api_client, sql_controller):
        job_id = submit(api_client).json()["job_id"]
        body = api_client.get(f"/api/v1/imports/{job_id}").json()

        assert body["context"]["options"]["mode"] == "dry_run"
        assert body["stats"]["created"] == 2
        assert sql_controller.catalog_store.lookup_by_keys("sku", ["LS-1"]) == {}

    def test_idempotency_key_replays_the_job(self, api_client, inline_dispatcher):
        headers = {"Idempotency-Key": "upload-42"}
        first = submit(api_client, headers=headers).json()
        second = submit(api_client, headers=headers).json()

        assert second["job_id"] == first["job_id"]
        assert inline_dispatcher.dispatched == [first["job_id"]]

    def test_source_job_reuse(self, api_client):
        first = submit(api_client).json()["job_id"]
        response = submit(api_client, content=None, source_job_id=first, mode="execute")
        assert response.status_code == 202

        body = api_client.get(f"/api/v1/imports/{response.json()['job_id']}").json()
        assert body["context"]["source_job_id"] == first
        assert body["stats"]["created"] == 2

    def test_column_mapping(self, api_client):
        content = "Name,Code,Cost\nLinen Shirt,LS-1,1200\n"
        mapping = json.dumps({"Name": "title", "Code": "sku", "Cost": "price"})
        job_id = submit(api_client, content=content, column_mapping=mapping).json()["job_id"]

        body = api_client.get(f"/api/v1/imports/{job_id}").json()
        assert body["status"] == "completed"
        assert body["stats"]["rows_valid"] == 1

    def test_structural_failure_is_reported_on_the_job(self, api_client):
        job_id = submit(api_client, content="sku,price\nLS-1,100\n").json()["job_id"]
        body = api_client.get(f"/api/v1/imports/{job_id}").json()

        assert body["status"] == "failed_validation"
        assert body["error"]["code"] == "invalid_source"


class TestSubmitRejections:
    def test_missing_file(self, api_client):
        response = submit(api_client, content=None)
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "InvalidRequestError"

    def test_file_and_source_job(self, api_client):
        assert submit(api_client, source_job_id="abc").status_code == 400

    def test_unsupported_file_type(self, api_client):
        assert submit(api_client, filename="catalog.xlsx").status_code == 400

    def test_empty_file(self, api_client):
        files = {"file": ("catalog.csv", b"", "text/csv")}
        assert api_client.post("/api/v1/imports", files=files).status_code == 400

    def test_file_too_large(self, api_client, settings):
        settings.max_file_size_mb = 0
        response = submit(api_client)
        assert response.status_code == 413
        assert response.json()["error"]["details"] == {"max_file_size_mb": 0}

    def test_invalid_option(self, api_client):
        response = submit(api_client, upsert="barcode")
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid import options"

    def test_invalid_column_mapping(self, api_client):
        assert submit(api_client, column_mapping="{not json").status_code == 400
        assert submit(api_client, column_mapping='["title"]').status_code == 400

    def test_resume_row_must_be_a_data_row(self, api_client, settings):
        response = submit(api_client, resume_from_row="1")
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"resume_from_row": 1}
        assert not list(Path(settings.upload_dir).glob("*"))

    def test_rejected_submission_removes_the_upload(
        self, api_client, sql_controller, settings, monkeypatch
    ):
        def reject(*args, **kwargs):
            raise ValueError("A source file or source_job_id is required")

        monkeypatch.setattr(sql_controller, "submit", reject)
        assert submit(api_client).status_code == 400
        assert not list(Path(settings.upload_dir).glob("*"))

    def test_unknown_source_job(self, api_client):
        response = submit(api_client, content=None, source_job_id="missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "job_not_found"


class TestPruneConfirmation:
    def test_disabled_on_server(self, api_client):
        response = submit(api_client, prune_missing_variants="true")
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"setting": "IMPORT_ENABLE_PRUNING"}

    def test_requires_confirmation_header(self, api_client, settings):
        settings.enable_pruning = True
        assert submit(api_client, prune_missing_variants="true").status_code == 400

        response = submit(
            api_client, prune_missing_variants="true", headers={"X-Confirm-Prune": "yes"}
        )
        assert response.status_code == 202


class TestStatusAndCancel:
    def test_unknown_job(self, api_client):
        response = api_client.get("/api/v1/imports/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "job_not_found"

    def test_cancel_finished_job_conflicts(self, api_client):
        job_id = submit(api_client).json()["job_id"]
        response = api_client.post(f"/api/v1/imports/{job_id}/cancel")
        assert response.status_code == 409
        assert response.json()["error"]["details"]["status"] == "completed"

    def test_cancel_queued_job(self, api_client, sql_controller):
        sql_controller.dispatcher = None
        job_id = submit(api_client).json()["job_id"]
        assert api_client.get(f"/api/v1/imports/{job_id}").json()["status"] == "created"

        response = api_client.post(f"/api/v1/imports/{job_id}/cancel")
        assert response.status_code == 202
        assert response.json()["status"] == "failed"

        body = api_client.get(f"/api/v1/imports/{job_id}").json()
        assert body["error"]["code"] == "cancelled"

    def test_cancel_unknown_job(self, api_client):
        assert api_client.post("/api/v1/imports/missing/cancel").status_code == 404
