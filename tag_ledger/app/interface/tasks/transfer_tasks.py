from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from tag_ledger.app.application.services.transfers import TransferOrchestrator, TransferResult
from tag_ledger.app.config import settings
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.chains_factory import chain_registry_factory
from tag_ledger.app.infrastructure.factories.lock_factory import distributed_lock_factory
from tag_ledger.app.infrastructure.factories.storage_factory import ledger_store_factory
from tag_ledger.app.interface.tasks.common import rpc_retry_policy


@asynccontextmanager
async def _orchestrator(*, chain_key: str, backend: str) -> AsyncIterator[TransferOrchestrator]:
    engine = create_app_async_engine()
    lock = distributed_lock_factory()
    try:
        yield TransferOrchestrator(
            ledger=ledger_store_factory(backend=backend, engine=engine),
            chains=chain_registry_factory(chain_keys=[chain_key]),
            lock=lock,
            retry=rpc_retry_policy(),
            in_flight_ttl_seconds=settings.transfer_in_flight_ttl_seconds,
            in_flight_wait_seconds=settings.transfer_in_flight_wait_seconds,
        )
    finally:
        await lock.close()
        await engine.dispose()


async def send_to_tag_task(
    *,
    user_id: int,
    chain_key: str,
    recipient_tag: str,
    amount: str,
    backend: str = "sqlalchemy",
) -> TransferResult:
    """Task: move funds from a user's tag wallet to another tag on one chain."""
    async with _orchestrator(chain_key=chain_key, backend=backend) as orchestrator:
        return await orchestrator.send_to_tag(
            user_id=user_id,
            chain_key=chain_key,
            recipient_tag=recipient_tag,
            amount=amount,
        )


async def send_to_wallet_task(
    *,
    user_id: int,
    chain_key: str,
    recipient_address: str,
    amount: str,
    backend: str = "sqlalchemy",
) -> TransferResult:
    """Task: withdraw funds from a user's tag wallet to an external address."""
    async with _orchestrator(chain_key=chain_key, backend=backend) as orchestrator:
        return await orchestrator.send_to_wallet(
            user_id=user_id,
            chain_key=chain_key,
            recipient_address=recipient_address,
            amount=amount,
        )
