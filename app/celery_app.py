from celery import Celery
from celery.signals import setup_logging

from app.config import settings

celery_app = Celery(
    "issue_control",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.events"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    from app.logging import configure_logging

    configure_logging()
