"""
Integration test fixtures
"""

import pytest
from fastapi.testclient import TestClient

from catalog_import.api.dependencies import get_import_settings, get_job_controller
from catalog_import.api.main import app
from catalog_import.ingestion.factory import build_job_controller


class InlineDispatcher:
    """Runs a job inside `submit`, so requests return after the job finished."""

    def __init__(self):
        self.controller = None
        self.dispatched = []

    def dispatch(self, job_id: str) -> None:
        self.dispatched.append(job_id)
        self.controller.run(job_id)


@pytest.fixture
def inline_dispatcher():
    return InlineDispatcher()


@pytest.fixture
def sql_controller(settings, inline_dispatcher):
    """
    Controller on in-memory SQLite and local artifacts, running jobs inline.

    In-memory SQLite shares a single connection, so rows are applied by one thread.
    """
    sql_settings = settings.model_copy(update={"apply_workers": 1})
    controller = build_job_controller(sql_settings, dispatcher=inline_dispatcher)
    inline_dispatcher.controller = controller
    return controller


@pytest.fixture
def api_client(sql_controller, settings):
    """Create test API client."""
    app.dependency_overrides[get_job_controller] = lambda: sql_controller
    app.dependency_overrides[get_import_settings] = lambda: settings
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
