from __future__ import annotations

from tag_ledger.app.application.services.wallet_balances import WalletBalance, get_wallet_balances
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.storage_factory import ledger_store_factory


async def wallet_balance_task(*, user_id: int, backend: str = "sqlalchemy") -> list[WalletBalance]:
    engine = create_app_async_engine()
    try:
        return await get_wallet_balances(
            ledger=ledger_store_factory(backend=backend, engine=engine),
            user_id=user_id,
        )
    finally:
        await engine.dispose()
