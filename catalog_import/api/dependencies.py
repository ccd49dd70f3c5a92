"""
Dependency Injection
FastAPI dependencies for the import controller and settings.
"""

import logging
from typing import Optional

from ..config.settings import ImportSettings, get_settings
from ..ingestion.controller import JobController
from ..ingestion.factory import build_job_controller

logger = logging.getLogger(__name__)

_controller: Optional[JobController] = None


def get_import_settings() -> ImportSettings:
    return get_settings()


def get_job_controller() -> JobController:
    """Get the job controller (singleton), built from settings on first use."""
    global _controller
    if _controller is None:
        _controller = build_job_controller()
        logger.info("Job controller created")
    return _controller


def set_job_controller(controller: Optional[JobController]) -> None:
    """Install a prebuilt controller (or clear it with None)."""
    global _controller
    _controller = controller


def current_job_controller() -> Optional[JobController]:
    """The controller if one was built, without building it."""
    return _controller
