from __future__ import annotations

from tag_ledger.app.application.services.reconcile_balances import BalanceReconciler, ReconcileReport
from tag_ledger.app.config import settings
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.chains_factory import chain_registry_factory
from tag_ledger.app.infrastructure.factories.lock_factory import distributed_lock_factory
from tag_ledger.app.infrastructure.factories.storage_factory import ledger_store_factory
from tag_ledger.app.interface.tasks.common import rpc_retry_policy


async def reconcile_balances_task(
    *,
    once: bool = False,
    backend: str = "sqlalchemy",
) -> ReconcileReport | None:
    """
    Task: keep ledger balances in line with on-chain balances.

    Runs one sweep with once=True, otherwise loops every
    RECONCILE_INTERVAL_SECONDS. Safe to run on several hosts: the Redis lock
    lets only one of them sweep per cycle.
    """
    engine = create_app_async_engine()
    lock = distributed_lock_factory()
    try:
        reconciler = BalanceReconciler(
            ledger=ledger_store_factory(backend=backend, engine=engine),
            chains=chain_registry_factory(),
            lock=lock,
            retry=rpc_retry_policy(),
            lock_ttl_seconds=settings.reconcile_lock_ttl_seconds,
            interval_seconds=settings.reconcile_interval_seconds,
            batch_size=settings.reconcile_batch_size,
            epsilon=settings.reconcile_epsilon,
        )
        if once:
            return await reconciler.run_cycle()
        await reconciler.run_forever()
        return None
    finally:
        await lock.close()
        await engine.dispose()
