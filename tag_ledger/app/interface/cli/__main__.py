import asyncio
import inspect
import logging
import types
from typing import Any, Awaitable, Union, get_args, get_origin

import typer
from dotenv import load_dotenv
from InquirerPy import inquirer

from tag_ledger.app.application.services.reconcile_balances import ReconcileReport
from tag_ledger.app.application.services.register_tag import RegistrationResult
from tag_ledger.app.application.services.transfers import TransferResult
from tag_ledger.app.application.services.wallet_balances import WalletBalance
from tag_ledger.app.domain.errors import TagLedgerError
from tag_ledger.app.interface.tasks import TASKS
from tag_ledger.app.interface.tasks.listen_for_chain_events_task import listen_for_chain_events_task
from tag_ledger.app.interface.tasks.reconcile_balances_task import reconcile_balances_task
from tag_ledger.app.interface.tasks.register_tag_task import register_tag_task
from tag_ledger.app.interface.tasks.transfer_tasks import send_to_tag_task, send_to_wallet_task
from tag_ledger.app.interface.tasks.wallet_balance_task import wallet_balance_task


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer(help="cli for the multi-chain tag ledger.")


def _render(result: Any) -> None:
    if result is None:
        return
    if isinstance(result, ReconcileReport):
        if result.skipped:
            typer.echo("Reconciler lock held elsewhere, cycle skipped.")
            return
        typer.echo(
            f"total={result.total} ok={result.ok} credited={result.credited} "
            f"debited={result.debited} in_flight={result.in_flight} "
            f"unsupported={result.unsupported} errors={result.errors} "
            f"({result.duration_seconds:.2f}s)"
        )
    elif isinstance(result, TransferResult):
        typer.echo(f"{result.reference}: {result.amount} {result.chain_key} (tx {result.tx_hash})")
    elif isinstance(result, RegistrationResult):
        typer.echo(f"@{result.user.tag} (user {result.user.id})")
        for balance in result.balances:
            typer.echo(f"  token {balance.token_id}: {balance.address}")
        if result.failed_chains:
            typer.echo(f"  failed: {', '.join(result.failed_chains)}")
    elif isinstance(result, list) and all(isinstance(b, WalletBalance) for b in result):
        for b in result:
            typer.echo(f"{b.symbol:<6} {b.amount} (${b.usd_value}) {b.address or '-'}")
    else:
        typer.echo(str(result))


def _run(coro: Awaitable[Any]) -> None:
    try:
        _render(asyncio.run(coro))  # type: ignore[arg-type]
    except TagLedgerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command("reconcile")
def reconcile(once: bool = typer.Option(False, help="Run a single sweep and exit.")) -> None:
    _run(reconcile_balances_task(once=once))


@app.command("listen")
def listen(
    chain_key: str = typer.Argument(..., help="STRK, BASE, LSK, FLOW or U2U"),
    once: bool = typer.Option(False, help="Poll once and exit."),
    start_block: int | None = typer.Option(None, help="First block to scan when no checkpoint exists."),
) -> None:
    _run(listen_for_chain_events_task(chain_key=chain_key, once=once, start_block=start_block))


@app.command("register-tag")
def register_tag(tag: str) -> None:
    _run(register_tag_task(tag=tag))


@app.command("send-to-tag")
def send_to_tag(user_id: int, chain_key: str, recipient_tag: str, amount: str) -> None:
    _run(send_to_tag_task(user_id=user_id, chain_key=chain_key, recipient_tag=recipient_tag, amount=amount))


@app.command("send-to-wallet")
def send_to_wallet(user_id: int, chain_key: str, recipient_address: str, amount: str) -> None:
    _run(
        send_to_wallet_task(
            user_id=user_id,
            chain_key=chain_key,
            recipient_address=recipient_address,
            amount=amount,
        )
    )


@app.command("wallet-balance")
def wallet_balance(user_id: int) -> None:
    _run(wallet_balance_task(user_id=user_id))


def _base_type(annotation: Any) -> tuple[Any, bool]:
    """(type, optional) for annotations like `int`, `int | None`, `str`."""
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        return (args[0] if args else str), True
    return annotation, False


def _prompt(name: str, param: inspect.Parameter) -> Any:
    typ, optional = _base_type(param.annotation)
    has_default = param.default is not inspect.Parameter.empty

    if typ is bool:
        return inquirer.confirm(message=f"{name}?", default=bool(param.default) if has_default else False).execute()

    default = "" if not has_default or param.default is None else str(param.default)
    hint = " (optional, empty = none)" if optional else ""
    raw = inquirer.text(message=f"{name}{hint}:", default=default).execute().strip()
    if not raw and optional:
        return None
    return int(raw) if typ is int else raw


@app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]

    kwargs: dict[str, object] = {}
    for name, param in inspect.signature(task, eval_str=True).parameters.items():
        if name == "backend":
            continue
        kwargs[name] = _prompt(name, param)

    _run(task(**kwargs))


if __name__ == "__main__":
    LOGO = r"""
      _                 _          _
     | |_ __ _  __ _   | | ___  __| | __ _  ___ _ __
     | __/ _` |/ _` |  | |/ _ \/ _` |/ _` |/ _ \ '__|
     | || (_| | (_| |  | |  __/ (_| | (_| |  __/ |
      \__\__,_|\__, |  |_|\___|\__,_|\__, |\___|_|
               |___/                 |___/

      --- Tag Ledger CLI ---
    """
    typer.echo(LOGO)
    app()
