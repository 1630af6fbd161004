from __future__ import annotations

from typing import Callable, Dict

from tag_ledger.app.domain.ports.out import TaskQueue
from tag_ledger.app.infrastructure.queue.celery_app import celery
from tag_ledger.app.infrastructure.queue.celery_task_queue import CeleryTaskQueue

_TASK_QUEUE_REGISTRY: Dict[str, Callable[[], TaskQueue]] = {}

# Register backends
_TASK_QUEUE_REGISTRY["celery"] = lambda: CeleryTaskQueue(celery)


def task_queue_factory(*, backend: str = "celery") -> TaskQueue:
    try:
        factory = _TASK_QUEUE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported task queue backend: {backend!r}")
    return factory()
