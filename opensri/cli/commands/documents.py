"""Fiscal document commands."""

import json
from datetime import date, timedelta
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from opensri.cli.lifespan import deliver_due_retries, get_pipeline
from opensri.core.documents.state import STATUS_LABELS
from opensri.exceptions import OpenSRIError
from opensri.storage.database.models import DocumentKind, DocumentStatus, FiscalDocument
from opensri.utils.config import get_settings

app = typer.Typer(no_args_is_help=True)
console = Console()

STATUS_COLORS = {
    DocumentStatus.DRAFT: "dim",
    DocumentStatus.SENT: "cyan",
    DocumentStatus.PENDING: "yellow",
    DocumentStatus.PROCESSING: "yellow",
    DocumentStatus.RECEIVED: "yellow",
    DocumentStatus.AUTHORIZED: "green",
    DocumentStatus.REJECTED: "red",
    DocumentStatus.NOT_AUTHORIZED: "red",
    DocumentStatus.RETURNED: "red",
    DocumentStatus.FAILED: "magenta",
    DocumentStatus.DEFINITIVELY_FAILED: "bold red",
}


def _status(status: DocumentStatus) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _fail(error: OpenSRIError) -> None:
    console.print(f"[red]Error: {error.message}[/red]")
    raise typer.Exit(1)


def _parse_status(value: str | None) -> DocumentStatus | None:
    if value is None:
        return None
    try:
        return DocumentStatus(value.upper())
    except ValueError:
        valid = ", ".join(s.value for s in DocumentStatus)
        console.print(f"[red]Invalid status '{value}'. Valid: {valid}[/red]")
        raise typer.Exit(1)


def _document_table(documents: list[FiscalDocument], title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("ID", style="cyan", width=6)
    table.add_column("Number", style="white", width=19)
    table.add_column("Kind", width=12)
    table.add_column("Date", width=12)
    table.add_column("Customer", style="bold white")
    table.add_column("Total", style="green", justify="right", width=12)
    table.add_column("Status", width=20)
    table.add_column("Retries", justify="right", width=7)

    for doc in documents:
        table.add_row(
            str(doc.id),
            doc.formatted_number,
            doc.kind.value,
            doc.issue_date.isoformat(),
            doc.customer_name[:30],
            f"{doc.currency} {doc.total_amount:.2f}",
            _status(doc.status),
            str(doc.retry_count),
        )
    return table


@app.command("list")
def list_documents(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    kind: str | None = typer.Option(None, "--kind", "-k", help="INVOICE or CREDIT_NOTE"),
    date_from: str | None = typer.Option(None, "--from", help="Issued on or after (YYYY-MM-DD)"),
    date_to: str | None = typer.Option(None, "--to", help="Issued on or before (YYYY-MM-DD)"),
    customer: str | None = typer.Option(None, "--customer", "-c", help="Name or ID contains"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    per_page: int = typer.Option(20, "--per-page", min=1, max=100),
) -> None:
    """List fiscal documents, newest first."""
    pipeline = get_pipeline()
    try:
        result = pipeline.admin.list_documents(
            status=_parse_status(status),
            kind=DocumentKind(kind.upper()) if kind else None,
            date_from=date.fromisoformat(date_from) if date_from else None,
            date_to=date.fromisoformat(date_to) if date_to else None,
            customer=customer,
            page=page,
            per_page=per_page,
        )
    except ValueError as e:
        console.print(f"[red]Invalid filter: {e}[/red]")
        raise typer.Exit(1)
    except OpenSRIError as e:
        _fail(e)

    if not result.items:
        console.print("[yellow]No documents found[/yellow]")
        return

    console.print(
        _document_table(
            result.items,
            f"Fiscal documents (page {result.page}/{result.pages}, {result.total} total)",
        )
    )


@app.command("show")
def show_document(document_id: int = typer.Argument(..., help="Document ID")) -> None:
    """Show document details."""
    pipeline = get_pipeline()
    try:
        doc = pipeline.admin.get_document(document_id)
    except OpenSRIError as e:
        _fail(e)

    console.print(f"\n[bold blue]{doc.kind.value} {doc.formatted_number}[/bold blue]\n")

    info = Table(show_header=False, box=None)
    info.add_column("Field", style="cyan", width=22)
    info.add_column("Value", style="white")
    info.add_row("Status", f"{_status(doc.status)} ({STATUS_LABELS[doc.status]})")
    info.add_row("Issue date", doc.issue_date.isoformat())
    info.add_row("Customer", doc.customer_name)
    info.add_row("Identification", f"{doc.customer_id_type} {doc.customer_id_number}")
    info.add_row("Email", doc.customer_email or "-")
    if doc.source_order_id:
        info.add_row("Order", str(doc.source_order_id))
    if doc.modified_document_number:
        info.add_row("Modifies", doc.modified_document_number)
    if doc.reason:
        info.add_row("Reason", doc.reason)
    info.add_row("Access key", doc.access_key or "-")
    info.add_row("Authorization", doc.authorization_number or "-")
    info.add_row("Retries", str(doc.retry_count))
    if doc.authority_error_message:
        info.add_row("Last error", f"[red]{doc.authority_error_message}[/red]")
    info.add_row("PDF", doc.pdf_path or "-")
    info.add_row("Emailed", doc.email_sent_at.isoformat() if doc.email_sent_at else "-")
    console.print(info)

    lines = Table(show_lines=True)
    lines.add_column("#", width=4, justify="right")
    lines.add_column("Code", width=12)
    lines.add_column("Description")
    lines.add_column("Qty", justify="right", width=8)
    lines.add_column("Price", justify="right", width=10)
    lines.add_column("Disc.", justify="right", width=8)
    lines.add_column("Subtotal", justify="right", width=12)
    for line in doc.lines:
        lines.add_row(
            str(line.line_number),
            line.code,
            line.description,
            f"{line.quantity:g}",
            f"{line.unit_price:.2f}",
            f"{line.discount:.2f}",
            f"{line.line_subtotal:.2f}",
        )
    console.print(lines)

    totals = Table(show_header=False, box=None)
    totals.add_column("", style="cyan", justify="right", width=30)
    totals.add_column("", style="white", justify="right", width=15)
    totals.add_row("Subtotal", f"{doc.subtotal:.2f}")
    totals.add_row("Tax", f"{doc.tax_amount:.2f}")
    totals.add_row("[bold]Total[/bold]", f"[bold]{doc.currency} {doc.total_amount:.2f}[/bold]")
    console.print(totals)
    console.print()


@app.command("create")
def create_document(
    payload_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON payload"),
) -> None:
    """Create a manual invoice or credit note from a JSON payload and submit it."""
    pipeline = get_pipeline()
    try:
        payload = json.loads(payload_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON: {e}[/red]")
        raise typer.Exit(1)

    try:
        doc = pipeline.admin.create_document(payload)
        doc = pipeline.admin.get_document(doc.id)
    except OpenSRIError as e:
        _fail(e)

    console.print(
        f"[green]✓ Created {doc.kind.value} {doc.formatted_number} (ID {doc.id})[/green] "
        f"status {_status(doc.status)}"
    )


@app.command("retry")
def retry_document(document_id: int = typer.Argument(..., help="Document ID")) -> None:
    """Resubmit a DRAFT or retryable FAILED document now."""
    pipeline = get_pipeline()
    try:
        status = pipeline.admin.retry(document_id)
    except OpenSRIError as e:
        _fail(e)
    console.print(f"Document {document_id}: {_status(status)}")


@app.command("retry-all")
def retry_all() -> None:
    """Resubmit every FAILED document that still has retries left."""
    pipeline = get_pipeline()
    count = pipeline.admin.retry_all_failed()
    delivered = deliver_due_retries(pipeline)
    console.print(f"[green]Queued {count} document(s), delivered {delivered}[/green]")


@app.command("check-status")
def check_status(document_id: int = typer.Argument(..., help="Document ID")) -> None:
    """Ask the tax authority for the decision on one document."""
    pipeline = get_pipeline()
    try:
        status = pipeline.admin.check_status(document_id)
    except OpenSRIError as e:
        _fail(e)
    console.print(f"Document {document_id}: {_status(status)}")


@app.command("poll")
def poll_pending() -> None:
    """Check every document awaiting an authority decision."""
    pipeline = get_pipeline()
    summary = pipeline.coordinator.poll_pending()
    deliver_due_retries(pipeline)

    table = Table(title="Status poll", show_header=False)
    table.add_column("", style="cyan")
    table.add_column("", justify="right")
    table.add_row("Checked", str(summary.checked))
    table.add_row("Authorized", f"[green]{summary.authorized}[/green]")
    table.add_row("Rejected", f"[red]{summary.rejected}[/red]")
    table.add_row("Failed", f"[magenta]{summary.failed}[/magenta]")
    table.add_row("Still pending", str(summary.still_pending))
    table.add_row("Errors", str(len(summary.errors)))
    console.print(table)


@app.command("download")
def download_pdf(
    document_id: int = typer.Argument(..., help="Document ID"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Copy the PDF here"),
) -> None:
    """Print (or copy) the PDF of an authorized document, generating it if needed."""
    pipeline = get_pipeline()
    try:
        path = pipeline.admin.download_pdf(document_id)
    except OpenSRIError as e:
        _fail(e)

    if output is not None:
        output.write_bytes(path.read_bytes())
        path = output
    console.print(f"[green]✓ PDF:[/green] {path}")


@app.command("undelivered")
def list_undelivered() -> None:
    """Authorized documents still missing their PDF or customer email."""
    pipeline = get_pipeline()
    documents = pipeline.admin.list_undelivered()
    if not documents:
        console.print("[green]All authorized documents were delivered[/green]")
        return

    table = Table(title=f"Undelivered documents ({len(documents)})")
    table.add_column("ID", style="cyan", width=6)
    table.add_column("Number", width=19)
    table.add_column("Customer")
    table.add_column("PDF", justify="center", width=5)
    table.add_column("Email", justify="center", width=5)
    for doc in documents:
        table.add_row(
            str(doc.id),
            doc.formatted_number,
            doc.customer_name[:30],
            "✓" if doc.pdf_path else "[red]✗[/red]",
            "✓" if doc.email_sent_at else "[red]✗[/red]",
        )
    console.print(table)


@app.command("stats")
def statistics() -> None:
    """Document counts per status and authorization success rate."""
    pipeline = get_pipeline()
    stats = pipeline.admin.statistics()

    table = Table(title="Fiscal documents")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for status in DocumentStatus:
        count = stats["by_status"][status.value]
        if count:
            table.add_row(_status(status), str(count))
    table.add_row("[bold]Total[/bold]", f"[bold]{stats['total']}[/bold]")
    console.print(table)
    console.print(
        f"Success rate: [bold]{stats['success_rate']:.2f}%[/bold]  "
        f"Pending retries: {stats['pending_retries']}"
    )


@app.command("report")
def monthly_report(
    year: int = typer.Option(date.today().year, "--year", help="Year"),
    month: int = typer.Option(date.today().month, "--month", min=1, max=12, help="Month"),
) -> None:
    """Monthly document totals per status."""
    pipeline = get_pipeline()
    report = pipeline.admin.monthly_report(year, month)

    table = Table(title=f"Documents {report['period']}")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Amount", justify="right", style="green")
    for status_value, row in sorted(report["by_status"].items()):
        table.add_row(status_value, str(row["count"]), f"{row['amount']:.2f}")
    table.add_row(
        "[bold]Authorized[/bold]",
        f"[bold]{report['authorized']}[/bold]",
        f"[bold]{report['authorized_amount']:.2f}[/bold]",
    )
    console.print(table)


@app.command("recover")
def recover_stale(
    minutes: int | None = typer.Option(
        None, "--minutes", "-m", min=1, help="Age of SENT documents considered stale"
    ),
) -> None:
    """Move documents stuck in SENT after a crash through the failure path."""
    pipeline = get_pipeline()
    minutes = minutes or get_settings().stale_submission_minutes
    recovered = pipeline.coordinator.recover_stale_submissions(timedelta(minutes=minutes))
    deliver_due_retries(pipeline)

    if not recovered:
        console.print("[green]No stale submissions[/green]")
        return
    console.print(
        f"[yellow]Recovered {len(recovered)} document(s): "
        f"{', '.join(str(i) for i in recovered)}[/yellow]"
    )
