#!/usr/bin/env python3
"""
Command-line interface for the task lifecycle and billing engine.

This CLI lets operators and developers drive the engine directly:
- Create tasks and move them through their lifecycle
- Submit and accept evaluations
- Top up, withdraw, and adjust balances
- Issue and void invoices

The caller identity is given with ``--as USER_ID --role ROLE`` (or the
``TASKLEDGER_USER`` / ``TASKLEDGER_ROLE`` environment variables).
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api.service import MarketplaceService, OperationResult
from .config import DEFAULT_DATA_DIR, load_config
from .errors import EngineError, InvalidAmount
from .models.money import Money
from .models.task import TaskPriority, TaskStatus
from .models.user import Actor, Role
from .workflows.ledger import AdjustmentDirection

console = Console()


class MoneyParam(click.ParamType):
    """A major-unit amount such as ``75.00``."""

    name = "amount"

    def convert(self, value, param, ctx):
        if isinstance(value, Money):
            return value
        try:
            return Money.parse(value)
        except InvalidAmount as e:
            self.fail(e.message, param, ctx)


MONEY = MoneyParam()


def _service(ctx: click.Context) -> MarketplaceService:
    return ctx.obj["service"]


def _actor(ctx: click.Context) -> Actor:
    actor = ctx.obj.get("actor")
    if actor is None:
        raise click.UsageError("Set the caller with --as USER_ID --role ROLE")
    return actor


def _unwrap(result: OperationResult):
    """Return the payload or exit with the failure reason."""
    if not result.ok:
        console.print(f"[red]Error ({result.error}):[/red] {result.message}")
        sys.exit(1)
    return result.value


def _money(ctx: click.Context, amount: Optional[Money]) -> str:
    if amount is None:
        return "-"
    return amount.format(_service(ctx).config.currency_symbol)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="YAML configuration file.")
@click.option("--as", "user_id", envvar="TASKLEDGER_USER", default=None, help="Caller user ID.")
@click.option("--role", type=click.Choice([r.value for r in Role]), envvar="TASKLEDGER_ROLE",
              default=None, help="Caller role.")
@click.option("-v", "--verbose", is_flag=True, help="Show engine log output.")
@click.pass_context
def cli(ctx, config_path, user_id, role, verbose):
    """Task lifecycle and billing ledger engine."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    try:
        config = load_config(config_path)
    except EngineError as e:
        raise click.ClickException(e.message)
    if config.data_dir is None:
        config.data_dir = DEFAULT_DATA_DIR

    ctx.ensure_object(dict)
    ctx.obj["service"] = MarketplaceService.from_config(config)
    ctx.obj["actor"] = Actor(user_id, Role(role)) if user_id and role else None


# === Task Commands ===

@cli.group()
def task():
    """Create tasks and drive their lifecycle."""


@task.command("create")
@click.argument("title")
@click.option("--description", default="", help="What needs doing.")
@click.option("--category", default="general")
@click.option("--priority", type=click.Choice([p.value for p in TaskPriority]), default="medium")
@click.option("--deadline", type=click.DateTime(), default=None)
@click.pass_context
def task_create(ctx, title, description, category, priority, deadline: Optional[datetime]):
    """Create a new task (clients only)."""
    created = _unwrap(_service(ctx).create_task(
        _actor(ctx), title, description, category, TaskPriority(priority), deadline,
    ))
    console.print(f"[green]Created task {created.id}[/green] ({created.status.value})")


@task.command("list")
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=None)
@click.option("--mine", is_flag=True, help="Only tasks I own or am assigned to.")
@click.option("--open", "open_only", is_flag=True, help="Hide completed, cancelled and rejected tasks.")
@click.pass_context
def task_list(ctx, status, mine, open_only):
    """List tasks."""
    service = _service(ctx)
    kwargs = {"status": TaskStatus(status) if status else None, "include_terminal": not open_only}
    if mine:
        actor = _actor(ctx)
        key = "specialist_id" if actor.is_specialist else "client_id"
        kwargs[key] = actor.user_id
    tasks = service.tasks.list_tasks(**kwargs)

    if not tasks:
        console.print("No tasks found.")
        return

    table = Table(title="Tasks")
    for column in ("ID", "Title", "Status", "Priority", "Client", "Specialist"):
        table.add_column(column)
    for t in tasks:
        title = t.title[:38] + ".." if len(t.title) > 40 else t.title
        table.add_row(t.id, title, t.status.value, t.priority.value, t.client_id, t.specialist_id or "-")
    console.print(table)


@task.command("show")
@click.argument("task_id")
@click.pass_context
def task_show(ctx, task_id):
    """Show task details and status history."""
    service = _service(ctx)
    try:
        t = service.tasks.get_task(task_id)
        history = service.tasks.history(task_id)
    except EngineError as e:
        raise click.ClickException(e.message)

    console.print(f"[bold]{t.id}[/bold]  {t.title}")
    console.print(f"Status: {t.status.value}   Priority: {t.priority.value}   Category: {t.category}")
    console.print(f"Client: {t.client_id}   Specialist: {t.specialist_id or '-'}")
    if t.evaluation_id:
        evaluation = service.evaluations.get(t.evaluation_id)
        console.print(f"Accepted evaluation: {evaluation.id} ({_money(ctx, evaluation.total_cost)})")
    if t.deadline:
        overdue = "  [red]OVERDUE[/red]" if t.is_overdue else ""
        console.print(f"Deadline: {t.deadline.strftime('%Y-%m-%d %H:%M')}{overdue}")
    if t.description:
        console.print(f"\n{t.description}")

    if history:
        table = Table(title="History")
        for column in ("When", "From", "To", "By", "Note"):
            table.add_column(column)
        for record in history:
            table.add_row(
                record.at.strftime("%Y-%m-%d %H:%M:%S"),
                record.from_status.value,
                record.to_status.value,
                f"{record.actor_id} ({record.actor_role.value})",
                record.note,
            )
        console.print(table)


def _lifecycle_command(name: str, method: str, help_text: str, with_reason: bool = False):
    def command(ctx, task_id, reason=""):
        operation = getattr(_service(ctx), method)
        args = (_actor(ctx), task_id, reason) if with_reason else (_actor(ctx), task_id)
        updated = _unwrap(operation(*args))
        console.print(f"[green]Task {updated.id} is now {updated.status.value}[/green]")

    command = click.pass_context(command)
    if with_reason:
        command = click.option("--reason", default="", help="Recorded in the task history.")(command)
    command = click.argument("task_id")(command)
    return task.command(name, help=help_text)(command)


_lifecycle_command("begin", "begin_evaluation", "Start evaluating a task (specialists).")
_lifecycle_command("pay", "capture_payment", "Pay for an evaluated task (owning client).")
_lifecycle_command("start", "start_work", "Start work on a paid task (assigned specialist).")
_lifecycle_command("complete", "complete_task", "Mark a task done and settle payment.")
_lifecycle_command("cancel", "cancel_task", "Cancel a task, refunding captured funds.", with_reason=True)
_lifecycle_command("reject", "reject_task", "Reject a task under evaluation (admins).", with_reason=True)


# === Evaluation Commands ===

@cli.group("eval")
def evaluation():
    """Submit and accept evaluations."""


@evaluation.command("submit")
@click.argument("task_id")
@click.option("--hours", required=True, help="Estimated hours, e.g. 10 or 2.5.")
@click.option("--rate", type=MONEY, required=True, help="Hourly rate, e.g. 75.00.")
@click.option("--notes", default="")
@click.pass_context
def eval_submit(ctx, task_id, hours, rate, notes):
    """Submit a price/time proposal for a task."""
    submitted = _unwrap(_service(ctx).submit_evaluation(_actor(ctx), task_id, hours, rate, notes))
    console.print(
        f"[green]Evaluation {submitted.id}[/green]: {submitted.estimated_hours} h x "
        f"{_money(ctx, submitted.hourly_rate)} = {_money(ctx, submitted.total_cost)}"
    )


@evaluation.command("accept")
@click.argument("evaluation_id")
@click.pass_context
def eval_accept(ctx, evaluation_id):
    """Accept an evaluation (owning client or admin)."""
    accepted = _unwrap(_service(ctx).accept_evaluation(_actor(ctx), evaluation_id))
    console.print(f"[green]Accepted {accepted.id}[/green] for task {accepted.task_id}")


@evaluation.command("list")
@click.argument("task_id")
@click.pass_context
def eval_list(ctx, task_id):
    """List the evaluations of a task."""
    evaluations = _service(ctx).evaluations.list_for_task(task_id)
    if not evaluations:
        console.print("No evaluations found.")
        return

    table = Table(title=f"Evaluations for {task_id}")
    for column in ("ID", "Specialist", "Hours", "Rate", "Total", "Status"):
        table.add_column(column)
    for e in evaluations:
        table.add_row(
            e.id, e.specialist_id, str(e.estimated_hours),
            _money(ctx, e.hourly_rate), _money(ctx, e.total_cost), e.status.value,
        )
    console.print(table)


# === Ledger Commands ===

@cli.group()
def ledger():
    """Balances and transactions."""


@ledger.command("topup")
@click.argument("amount", type=MONEY)
@click.option("--user", "user_id", default=None, help="Credit another user (admins).")
@click.pass_context
def ledger_topup(ctx, amount, user_id):
    """Credit externally confirmed funds."""
    entry = _unwrap(_service(ctx).top_up(_actor(ctx), amount, user_id))
    console.print(f"[green]Topped up {_money(ctx, entry.amount)}[/green] ({entry.id})")


@ledger.command("withdraw")
@click.argument("amount", type=MONEY)
@click.pass_context
def ledger_withdraw(ctx, amount):
    """Withdraw funds to an external account."""
    entry = _unwrap(_service(ctx).withdraw(_actor(ctx), amount))
    console.print(f"[green]Withdrew {_money(ctx, entry.amount)}[/green] ({entry.id})")


@ledger.command("adjust")
@click.argument("user_id")
@click.argument("amount", type=MONEY)
@click.option("--direction", type=click.Choice([d.value for d in AdjustmentDirection]),
              default="credit", show_default=True)
@click.option("--reason", required=True)
@click.pass_context
def ledger_adjust(ctx, user_id, amount, direction, reason):
    """Manually credit or debit a user's balance (admins)."""
    entry = _unwrap(_service(ctx).adjust_balance(
        _actor(ctx), user_id, amount, AdjustmentDirection(direction), reason,
    ))
    console.print(f"[green]Adjustment {entry.id}[/green]: {direction} {_money(ctx, entry.amount)}")


@ledger.command("balance")
@click.option("--user", "user_id", default=None)
@click.pass_context
def ledger_balance(ctx, user_id):
    """Show a balance."""
    actor = _actor(ctx)
    balance = _unwrap(_service(ctx).get_balance(actor, user_id))
    console.print(f"Balance of {user_id or actor.user_id}: [bold]{_money(ctx, balance)}[/bold]")


@ledger.command("history")
@click.option("--user", "user_id", default=None)
@click.pass_context
def ledger_history(ctx, user_id):
    """List transactions touching a user."""
    entries = _unwrap(_service(ctx).list_transactions(_actor(ctx), user_id))
    if not entries:
        console.print("No transactions found.")
        return

    table = Table(title="Transactions")
    for column in ("ID", "Type", "Amount", "From", "To", "Task", "Status", "Created"):
        table.add_column(column)
    for e in entries:
        table.add_row(
            e.id, e.type.value, _money(ctx, e.amount), e.from_user_id or "-",
            e.to_user_id or "-", e.related_task_id or "-", e.status.value,
            e.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


# === Invoice Commands ===

@cli.group()
def invoice():
    """Issue and manage invoices."""


@invoice.command("issue")
@click.argument("transaction_id")
@click.pass_context
def invoice_issue(ctx, transaction_id):
    """Issue (or fetch) the invoice for a completed payment."""
    issued = _unwrap(_service(ctx).issue_invoice(_actor(ctx), transaction_id))
    console.print(
        f"[green]Invoice {issued.invoice_number}[/green] {_money(ctx, issued.amount)} "
        f"({issued.status.value}), due {issued.due_date.strftime('%Y-%m-%d')}"
    )


@invoice.command("show")
@click.argument("invoice_id")
@click.pass_context
def invoice_show(ctx, invoice_id):
    """Show an invoice."""
    try:
        i = _service(ctx).invoices.get_invoice(invoice_id)
    except EngineError as e:
        raise click.ClickException(e.message)

    console.print(f"[bold]Invoice {i.invoice_number}[/bold]  ({i.status.value})")
    console.print(f"Issued by: {i.issuer_name}")
    if i.issuer_address:
        console.print(f"           {i.issuer_address}")
    if i.issuer_tax_id:
        console.print(f"Tax ID: {i.issuer_tax_id}")
    console.print(f"Payer: {i.payer_id or '-'}   Payee: {i.payee_id or '-'}")
    console.print(f"Task: {i.task_id or '-'}   Transaction: {i.transaction_id}")
    console.print(f"Amount: [bold]{_money(ctx, i.amount)}[/bold]")
    console.print(f"Issued: {i.issued_at.strftime('%Y-%m-%d')}")
    if i.due_date:
        console.print(f"Due: {i.due_date.strftime('%Y-%m-%d')}")
    if i.paid_at:
        console.print(f"Paid: {i.paid_at.strftime('%Y-%m-%d')}")
    if i.notes:
        console.print(f"\n{i.notes}")


@invoice.command("list")
@click.option("--payer", default=None)
@click.pass_context
def invoice_list(ctx, payer):
    """List issued invoices."""
    invoices = _service(ctx).invoices.list_invoices(payer_id=payer)
    if not invoices:
        console.print("No invoices found.")
        return

    table = Table(title="Invoices")
    for column in ("Number", "Transaction", "Task", "Payer", "Amount", "Status", "Due"):
        table.add_column(column)
    for i in invoices:
        table.add_row(
            i.invoice_number, i.transaction_id, i.task_id or "-", i.payer_id or "-",
            _money(ctx, i.amount), i.status.value,
            i.due_date.strftime("%Y-%m-%d") if i.due_date else "-",
        )
    console.print(table)


@invoice.command("void")
@click.argument("invoice_id")
@click.pass_context
def invoice_void(ctx, invoice_id):
    """Cancel an invoice (admins)."""
    voided = _unwrap(_service(ctx).void_invoice(_actor(ctx), invoice_id))
    console.print(f"[yellow]Invoice {voided.invoice_number} cancelled[/yellow]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
