from celery import Celery
from celery.signals import setup_logging

from unleashed_sync.config import settings
from unleashed_sync.logging import configure_logging

celery_app = Celery(
    "unleashed_sync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["unleashed_sync.tasks.sync"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    timezone="UTC",
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()
