from __future__ import annotations

from celery import Celery

from tag_ledger.app.config import settings


TASK_NAME_PREFIX = "tag_ledger."


def task_name(job_type: str) -> str:
    return f"{TASK_NAME_PREFIX}{job_type}"


celery = Celery(
    "tag_ledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A job is acknowledged only once its handler returned; a worker crash
    # hands it to another worker.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
)
