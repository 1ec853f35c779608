"""Main CLI entry point for OpenSRI."""

import typer
from rich.console import Console

from opensri import __version__
from opensri.storage.database.base import init_db
from opensri.utils.config import get_settings
from opensri.utils.logging import configure_from_settings, set_correlation_id

from opensri.cli.commands import documents, ledger

app = typer.Typer(
    name="opensri",
    help="🧾 Electronic fiscal documents for the marketplace (SRI)",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]OpenSRI[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """
    OpenSRI - fiscal document pipeline.

    Issues invoices for completed orders, submits them to the tax authority,
    retries failures and delivers the authorized PDF to the customer.
    """
    configure_from_settings(get_settings())
    set_correlation_id()


@app.command("init-db")
def init_database() -> None:
    """Create the database schema and document number sequences."""
    settings = get_settings()
    settings.ensure_directories()
    init_db(str(settings.database_url))
    console.print(f"[green]✓ Database ready:[/green] {settings.database_url}")
    console.print(f"[green]✓ Archive:[/green] {settings.archive_dir}")


app.add_typer(documents.app, name="documents", help="🧾 Manage fiscal documents")
app.add_typer(ledger.app, name="ledger", help="📒 Accounting ledger")


if __name__ == "__main__":
    app()
