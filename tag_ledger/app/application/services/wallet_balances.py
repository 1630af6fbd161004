from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tag_ledger.app.domain.errors import UnknownUserError
from tag_ledger.app.domain.ports.out import LedgerStore


@dataclass(frozen=True)
class WalletBalance:
    symbol: str
    amount: Decimal
    usd_value: Decimal
    address: str | None


async def get_wallet_balances(*, ledger: LedgerStore, user_id: int) -> list[WalletBalance]:
    """Ledger balances of one user, ordered by token symbol."""
    user = await ledger.get_user(user_id)
    if user is None:
        raise UnknownUserError(user_id)

    out: list[WalletBalance] = []
    for balance in await ledger.list_balances_for_user(user.id):
        token = await ledger.get_token(balance.token_id)
        if token is None:
            continue
        out.append(
            WalletBalance(
                symbol=token.symbol,
                amount=balance.amount,
                usd_value=balance.usd_value,
                address=balance.address,
            )
        )
    return sorted(out, key=lambda b: b.symbol)
