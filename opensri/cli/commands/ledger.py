"""Accounting ledger commands."""

import typer
from rich.console import Console
from rich.table import Table

from opensri.cli.lifespan import get_pipeline
from opensri.exceptions import OpenSRIError
from opensri.storage.database.models import LedgerTransaction

app = typer.Typer(no_args_is_help=True)
console = Console()


def _print_transaction(transaction: LedgerTransaction) -> None:
    table = Table(
        title=f"{transaction.reference_number} ({transaction.transaction_date.isoformat()})",
        caption=transaction.description,
    )
    table.add_column("Account", style="cyan", width=8)
    table.add_column("Name")
    table.add_column("Debit", justify="right", style="green", width=12)
    table.add_column("Credit", justify="right", style="yellow", width=12)
    table.add_column("Note", style="dim")
    for entry in transaction.entries:
        table.add_row(
            entry.account.code,
            entry.account.name,
            f"{entry.debit:.2f}" if entry.debit else "",
            f"{entry.credit:.2f}" if entry.credit else "",
            entry.note or "",
        )
    table.add_row(
        "",
        "[bold]Total[/bold]",
        f"[bold]{transaction.total_debit:.2f}[/bold]",
        f"[bold]{transaction.total_credit:.2f}[/bold]",
        "",
    )
    console.print(table)


@app.command("show")
def show_ledger(
    reference: str | None = typer.Argument(None, help="Reference, e.g. SALE-1001"),
    order_id: int | None = typer.Option(None, "--order", help="Record the sale for this order"),
    limit: int = typer.Option(10, "--limit", "-l", help="Transactions to list"),
) -> None:
    """
    Show ledger transactions.

    Examples:
        opensri ledger show
        opensri ledger show SALE-1001
        opensri ledger show --order 1001
    """
    pipeline = get_pipeline()

    if order_id is not None:
        try:
            _print_transaction(pipeline.ledger.record(order_id))
        except OpenSRIError as e:
            console.print(f"[red]Error: {e.message}[/red]")
            raise typer.Exit(1)
        return

    if reference:
        transaction = pipeline.ledger.get_transaction(reference)
        if transaction is None:
            console.print(f"[red]Transaction {reference} not found[/red]")
            raise typer.Exit(1)
        _print_transaction(transaction)
        return

    transactions = pipeline.ledger.list_transactions(limit=limit)
    if not transactions:
        console.print("[yellow]No ledger transactions[/yellow]")
        return
    for transaction in transactions:
        _print_transaction(transaction)
