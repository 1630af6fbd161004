from __future__ import annotations

from tag_ledger.app.application.services.register_tag import RegistrationResult, TagRegistrar
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.chains_factory import chain_registry_factory
from tag_ledger.app.infrastructure.factories.storage_factory import ledger_store_factory
from tag_ledger.app.interface.tasks.common import rpc_retry_policy


async def register_tag_task(*, tag: str, backend: str = "sqlalchemy") -> RegistrationResult:
    engine = create_app_async_engine()
    try:
        registrar = TagRegistrar(
            ledger=ledger_store_factory(backend=backend, engine=engine),
            chains=chain_registry_factory(),
            retry=rpc_retry_policy(),
        )
        return await registrar.register(tag)
    finally:
        await engine.dispose()
