"""CLI tests with typer's CliRunner and a pipeline wired around fakes."""

import json

import pytest
from typer.testing import CliRunner

from opensri import __version__
from opensri.cli.commands import documents, ledger
from opensri.cli.lifespan import set_pipeline
from opensri.cli.main import app
from opensri.exceptions import TransientAuthorityError
from opensri.storage.database.models import DocumentStatus
from opensri.utils.config import reload_settings
from tests.support.builders import invoice_payload, issue_document
from tests.support.fakes import pending

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_pipeline(pipeline, tmp_path, monkeypatch):
    monkeypatch.setenv("OPENSRI_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("OPENSRI_ARCHIVE_DIR", str(tmp_path / "archive"))
    reload_settings()
    for module in (documents, ledger):
        monkeypatch.setattr(module.console, "width", 200)
    set_pipeline(pipeline)
    yield pipeline
    set_pipeline(None)
    monkeypatch.undo()
    reload_settings()


def invoke(*args: str):
    return runner.invoke(app, list(args))


def test_version():
    result = invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_order_document_listed(cli_pipeline, sample_order):
    cli_pipeline.order_completed(sample_order.id)

    result = invoke("documents", "list")

    assert result.exit_code == 0
    assert "001-001-000000001" in result.output
    assert "AUTHORIZED" in result.output


def test_list_empty():
    result = invoke("documents", "list", "--status", "failed")

    assert result.exit_code == 0
    assert "No documents found" in result.output


def test_list_invalid_status():
    result = invoke("documents", "list", "--status", "LOST")

    assert result.exit_code == 1
    assert "Invalid status" in result.output


def test_show(cli_pipeline, sample_order):
    cli_pipeline.order_completed(sample_order.id)

    result = invoke("documents", "show", "1")

    assert result.exit_code == 0
    assert "MUG-001" in result.output
    assert "115.00" in result.output


def test_show_missing_document():
    result = invoke("documents", "show", "99")

    assert result.exit_code == 1
    assert "Error" in result.output


def test_create_from_payload_file(tmp_path, store, email_sender):
    payload_file = tmp_path / "invoice.json"
    payload_file.write_text(json.dumps(invoice_payload()), encoding="utf-8")

    result = invoke("documents", "create", str(payload_file))

    assert result.exit_code == 0
    assert "Created INVOICE 001-001-000000001" in result.output
    assert store.get(1).status is DocumentStatus.AUTHORIZED
    assert len(email_sender.sent) == 1


def test_create_with_invalid_payload(tmp_path):
    payload_file = tmp_path / "invoice.json"
    payload_file.write_text(json.dumps(invoice_payload(lines=[])), encoding="utf-8")

    result = invoke("documents", "create", str(payload_file))

    assert result.exit_code == 1


def test_retry_and_retry_all(store, authority):
    authority.submit_results.extend([TransientAuthorityError("timeout")] * 2)
    first = issue_document(store)
    second = issue_document(store)

    assert "FAILED" in invoke("documents", "retry", str(first.id)).output
    assert "FAILED" in invoke("documents", "retry", str(second.id)).output

    result = invoke("documents", "retry-all")

    assert result.exit_code == 0
    assert "Queued 2 document(s), delivered 2" in result.output
    assert store.get(first.id).status is DocumentStatus.AUTHORIZED


def test_check_status_and_poll(cli_pipeline, store, authority, sample_order):
    authority.submit_results.append(pending())
    cli_pipeline.order_completed(sample_order.id)
    authority.status_results.append(pending())

    result = invoke("documents", "check-status", "1")
    assert "PENDING" in result.output

    result = invoke("documents", "poll")

    assert result.exit_code == 0
    assert "Checked" in result.output
    assert store.get(1).status is DocumentStatus.AUTHORIZED


def test_download(cli_pipeline, tmp_path, sample_order):
    cli_pipeline.order_completed(sample_order.id)
    output = tmp_path / "copy.pdf"

    result = invoke("documents", "download", "1", "--output", str(output))

    assert result.exit_code == 0
    assert output.read_bytes()[:5] == b"%PDF-"


def test_undelivered(cli_pipeline, email_sender, sample_order):
    email_sender.fail_with = ConnectionRefusedError("SMTP down")
    cli_pipeline.order_completed(sample_order.id)

    result = invoke("documents", "undelivered")

    assert "Undelivered documents (1)" in result.output


def test_stats_and_report(cli_pipeline, sample_order):
    cli_pipeline.order_completed(sample_order.id)

    stats = invoke("documents", "stats")
    report = invoke("documents", "report")

    assert stats.exit_code == 0
    assert "100.00%" in stats.output
    assert report.exit_code == 0
    assert "115.00" in report.output


def test_recover_without_stale_documents():
    result = invoke("documents", "recover", "--minutes", "30")

    assert result.exit_code == 0
    assert "No stale submissions" in result.output


def test_ledger_show(cli_pipeline, sample_order):
    cli_pipeline.order_completed(sample_order.id)

    listing = invoke("ledger", "show")
    single = invoke("ledger", "show", "SALE-1001")
    missing = invoke("ledger", "show", "SALE-9999")

    assert "SALE-1001" in listing.output
    assert "115.00" in single.output
    assert missing.exit_code == 1
