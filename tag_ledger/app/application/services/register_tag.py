from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.domain.models import Balance, User, normalize_tag
from tag_ledger.app.domain.ports.out import LedgerStore


logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    user: User
    balances: list[Balance] = field(default_factory=list)
    failed_chains: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_chains


class TagRegistrar:
    """
    Creates a user for a tag and a tag wallet on every configured chain.

    Chain registration is idempotent, so running this again for the same tag
    fills in only the chains that failed last time.
    """

    def __init__(self, *, ledger: LedgerStore, chains: ChainRegistry, retry: RetryPolicy) -> None:
        self._ledger = ledger
        self._chains = chains
        self._retry = retry

    async def register(self, tag: str) -> RegistrationResult:
        normalized = normalize_tag(tag)

        user = await self._ledger.find_user_by_tag(normalized)
        if user is None:
            user = await self._ledger.create_user(tag=normalized)
            logger.info("Created user @%s (id=%s)", user.tag, user.id)

        result = RegistrationResult(user=user)

        for token in await self._ledger.list_tokens():
            adapter = self._chains.get(token.symbol)
            if adapter is None:
                logger.debug("No adapter for %s, skipping", token.symbol)
                continue

            try:
                address = await self._retry.run(
                    lambda: adapter.register_tag(user.tag),
                    description=f"{token.symbol} register_tag({user.tag})",
                )
            except Exception:
                logger.exception("Tag registration on %s failed for @%s", token.symbol, user.tag)
                address = None

            if not address:
                result.failed_chains.append(token.symbol)
                continue

            balance = await self._ledger.get_or_create_balance(user.id, token.id, address=address)
            result.balances.append(balance)
            logger.info("Registered @%s on %s: %s", user.tag, token.symbol, address)

        if result.failed_chains:
            logger.warning(
                "Registration of @%s incomplete, failed chains: %s",
                user.tag,
                ", ".join(result.failed_chains),
            )
        return result
