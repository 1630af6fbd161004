"""
Celery worker entry point.

    celery -A tag_ledger.app.interface.worker worker --loglevel=INFO
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from dotenv import load_dotenv

from tag_ledger.app.application.services.listen_for_chain_events import APPLY_CHAIN_EVENT_JOB
from tag_ledger.app.config import settings
from tag_ledger.app.domain.errors import ValidationError
from tag_ledger.app.infrastructure.queue.celery_app import celery, task_name
from tag_ledger.app.interface.tasks.apply_chain_event_task import apply_chain_event_task


load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

celery.conf.update(
    worker_log_format=LOG_FORMAT,
    worker_task_log_format=LOG_FORMAT,
)


@celery.task(
    name=task_name(APPLY_CHAIN_EVENT_JOB),
    acks_late=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=(ValidationError,),
    max_retries=settings.event_job_max_attempts - 1,
    retry_backoff=settings.event_job_backoff_seconds,
    retry_backoff_max=600,
    retry_jitter=False,
)
def apply_chain_event(payload: dict[str, Any]) -> str | None:
    """
    Book one chain event. Retried with exponential backoff
    (5s, 10s, ...) on any failure; duplicates are no-ops.
    """
    logger.info(
        "Applying %s %s (tx=%s)",
        payload.get("chain_key"),
        payload.get("name"),
        payload.get("tx_hash"),
    )
    return asyncio.run(apply_chain_event_task(payload=payload))


__all__ = ["celery", "apply_chain_event"]
