import asyncio
import logging
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert

from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.db.models.ledger.tokens import TokensDB


logger = logging.getLogger(__name__)

# One native token per supported chain. All tag wallets report 18-decimal units.
TOKENS: list[dict] = [
    {"symbol": "STRK", "name": "Starknet Token", "chain_key": "STRK", "decimals": 18, "price": Decimal("0.143654")},
    {"symbol": "BASE", "name": "Base", "chain_key": "BASE", "decimals": 18, "price": Decimal(0)},
    {"symbol": "LSK", "name": "Lisk", "chain_key": "LSK", "decimals": 18, "price": Decimal("0.42895")},
    {"symbol": "FLOW", "name": "Flow", "chain_key": "FLOW", "decimals": 18, "price": Decimal(0)},
    {"symbol": "U2U", "name": "U2U", "chain_key": "U2U", "decimals": 18, "price": Decimal(0)},
]


async def seed_tokens() -> None:
    engine = create_app_async_engine()
    stmt = insert(TokensDB).values(TOKENS)
    stmt = stmt.on_conflict_do_nothing(index_elements=[TokensDB.symbol])

    try:
        async with engine.begin() as conn:
            result = await conn.execute(stmt)
        logger.info("Seeded %s tokens", result.rowcount)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    asyncio.run(seed_tokens())
