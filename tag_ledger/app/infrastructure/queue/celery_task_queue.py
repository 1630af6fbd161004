from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Celery

from tag_ledger.app.infrastructure.queue.celery_app import task_name


logger = logging.getLogger(__name__)


class CeleryTaskQueue:
    """
    TaskQueue backed by Celery on a Redis broker.

    Jobs are published by name, so the producer does not import the worker's
    task functions. send_task talks to the broker synchronously and is run in
    a thread to keep the event loop free.
    """

    def __init__(self, app: Celery) -> None:
        self._app = app

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> None:
        name = task_name(job_type)
        await asyncio.to_thread(self._app.send_task, name, args=[payload])
        logger.debug("Published %s", name)
