"""
Pytest configuration and shared fixtures
"""

import csv
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_import.config.settings import ImportSettings
from catalog_import.ingestion.controller import JobController
from catalog_import.models.job import ImportJob, SourceFileRef
from catalog_import.models.options import ImportOptions
from catalog_import.stores.jobs import InMemoryJobStore
from catalog_import.stores.memory import InMemoryArtifactStore, InMemoryCatalogStore

DEFAULT_COLUMNS = [
    "title",
    "handle",
    "sku",
    "variant_skus",
    "price",
    "currency_code",
    "inventory_quantity",
    "image_urls",
]


@pytest.fixture
def settings(tmp_path):
    """Fast settings: no backoff delays, progress published on every row."""
    return ImportSettings(
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        artifact_dir=str(tmp_path / "artifacts"),
        validation_workers=2,
        apply_workers=2,
        chunk_size=3,
        progress_interval=1,
        cancel_poll_interval=0,
        store_max_retries=2,
        store_retry_base_delay=0,
        store_retry_max_delay=0,
    )


@pytest.fixture
def write_csv(tmp_path):
    """Write rows (dicts) or raw text to a CSV file and return its SourceFileRef."""
    counter = {"n": 0}

    def _write(
        rows: Union[str, List[Dict[str, str]]],
        columns: Optional[List[str]] = None,
        name: Optional[str] = None,
        encoding: str = "utf-8",
    ) -> SourceFileRef:
        counter["n"] += 1
        path = tmp_path / (name or f"catalog_{counter['n']}.csv")
        if isinstance(rows, str):
            path.write_text(rows, encoding=encoding)
        else:
            fieldnames = columns or DEFAULT_COLUMNS
            with open(path, "w", newline="", encoding=encoding) as f:
                writer = csv.DictWriter(f, fieldnames=fieldnames, restval="", extrasaction="ignore")
                writer.writeheader()
                writer.writerows(rows)
        return SourceFileRef(path=str(path), filename=path.name, size_bytes=path.stat().st_size)

    return _write


@pytest.fixture
def product_row():
    """Factory for a valid catalog row; keyword arguments override cells."""

    def _row(n: int = 1, **overrides) -> Dict[str, str]:
        row = {
            "title": f"Linen Shirt {n}",
            "handle": f"linen-shirt-{n}",
            "sku": f"LS-{n:03d}",
            "variant_skus": "",
            "price": str(1000 + n),
            "currency_code": "usd",
            "inventory_quantity": "5",
            "image_urls": f"https://cdn.example.com/ls-{n}.jpg",
        }
        row.update(overrides)
        return row

    return _row


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def catalog_store():
    return InMemoryCatalogStore()


@pytest.fixture
def artifact_store():
    return InMemoryArtifactStore()


@pytest.fixture
def controller(job_store, catalog_store, artifact_store, settings):
    return JobController(
        job_store=job_store,
        catalog_store=catalog_store,
        artifact_store=artifact_store,
        settings=settings,
    )


@pytest.fixture
def run_import(controller):
    """Submit and run a job synchronously; returns the final job."""

    def _run(source: SourceFileRef, **options) -> ImportJob:
        job = controller.submit(source, ImportOptions(**options))
        return controller.run(job.id)

    return _run
