from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .reconcile_balances_task import reconcile_balances_task
from .listen_for_chain_events_task import listen_for_chain_events_task
from .register_tag_task import register_tag_task
from .transfer_tasks import send_to_tag_task, send_to_wallet_task
from .wallet_balance_task import wallet_balance_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "reconcile_balances_task": reconcile_balances_task,
    "listen_for_chain_events_task": listen_for_chain_events_task,
    "register_tag_task": register_tag_task,
    "send_to_tag_task": send_to_tag_task,
    "send_to_wallet_task": send_to_wallet_task,
    "wallet_balance_task": wallet_balance_task,
}
