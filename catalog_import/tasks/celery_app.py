"""
Celery Application Configuration
"""

import logging

from celery import Celery
from celery.signals import setup_logging

from ..config.settings import get_settings

settings = get_settings()

# Create Celery app
app = Celery(
    "catalog_import",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "catalog_import.tasks.imports",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Jobs enforce their own timeout; the hard limit only catches a stuck worker
    task_time_limit=int(settings.job_timeout_seconds) + 10 * 60,
    task_acks_late=False,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
)


@setup_logging.connect
def configure_logging(**kwargs):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


if __name__ == "__main__":
    app.start()
