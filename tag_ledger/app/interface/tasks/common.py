from __future__ import annotations

from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.config import settings


def rpc_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.rpc_retry_attempts,
        base_delay=settings.rpc_retry_base_delay_seconds,
        timeout=settings.rpc_timeout_seconds,
    )
