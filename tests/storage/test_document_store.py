"""Tests for the fiscal document repository and its compare-and-set updates."""

import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from opensri.exceptions import DatabaseIntegrityError, RecordNotFoundError
from opensri.storage.database.models import (
    DocumentKind,
    DocumentStatus,
    FiscalDocument,
    FiscalDocumentLine,
)
from opensri.storage.documents import DocumentFilters, SQLAlchemyDocumentStore
from opensri.utils.datetime import utc_now
from tests.support.database import make_engine, make_session_factory


def new_document(
    kind: DocumentKind = DocumentKind.INVOICE,
    customer_name: str = "Ana Pérez",
    issue_date: date | None = None,
    source_order_id: int | None = None,
) -> FiscalDocument:
    return FiscalDocument(
        kind=kind,
        issue_date=issue_date or date(2024, 10, 15),
        customer_id_type="05",
        customer_id_number="1712345678",
        customer_name=customer_name,
        customer_email="ana.perez@example.com",
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("15.00"),
        total_amount=Decimal("115.00"),
        source_order_id=source_order_id,
        lines=[
            FiscalDocumentLine(
                line_number=1,
                code="MUG-001",
                description="Taza",
                quantity=Decimal("1"),
                unit_price=Decimal("100.00"),
                tax_rate=Decimal("15"),
                tax_code="4",
                line_subtotal=Decimal("100.00"),
                line_tax=Decimal("15.00"),
            )
        ],
    )


@pytest.fixture
def document(store) -> FiscalDocument:
    return store.create(new_document())


class TestCreate:
    def test_assigns_sequential_numbers_per_kind(self, store):
        first = store.create(new_document())
        second = store.create(new_document())
        note = store.create(new_document(kind=DocumentKind.CREDIT_NOTE))

        assert first.document_number == "000000001"
        assert second.document_number == "000000002"
        assert note.document_number == "000000001"
        assert first.status is DocumentStatus.DRAFT
        assert first.retry_count == 0

    def test_lines_are_persisted(self, store, document):
        loaded = store.get(document.id)

        assert [line.code for line in loaded.lines] == ["MUG-001"]

    def test_failed_validation_rolls_back_the_number(self, store):
        def reject(document):
            raise ValueError("nope")

        with pytest.raises(ValueError):
            store.create(new_document(), validate=reject)

        assert store.create(new_document()).document_number == "000000001"

    def test_second_document_for_an_order_is_rejected(self, store, sample_order):
        store.create(new_document(source_order_id=sample_order.id))

        with pytest.raises(DatabaseIntegrityError):
            store.create(new_document(source_order_id=sample_order.id))

        assert store.find_by_source_order(sample_order.id).document_number == "000000001"

    def test_concurrent_numbering_has_no_gaps_or_duplicates(self, tmp_path):
        engine = make_engine(f"sqlite:///{tmp_path / 'numbers.db'}")
        factory = make_session_factory(engine)
        store = SQLAlchemyDocumentStore(factory)
        numbers: list[str] = []
        lock = threading.Lock()

        def worker():
            for _ in range(5):
                doc = store.create(new_document())
                with lock:
                    numbers.append(doc.document_number)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(numbers) == [str(n).zfill(9) for n in range(1, 21)]
        engine.dispose()


class TestReads:
    def test_get_missing_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            store.get(999)

    def test_find_by_number(self, store, document):
        found = store.find_by_number(DocumentKind.INVOICE, "000000001")

        assert found.id == document.id
        assert store.find_by_number(DocumentKind.CREDIT_NOTE, "000000001") is None

    def test_search_filters_and_pages(self, store):
        for name in ("Ana Pérez", "Bruno Díaz", "Carla Ruiz"):
            store.create(new_document(customer_name=name))
        store.create(new_document(issue_date=date(2024, 9, 1), customer_name="Dario"))

        items, total = store.search(DocumentFilters(customer="bruno"))
        assert total == 1
        assert items[0].customer_name == "Bruno Díaz"

        items, total = store.search(DocumentFilters(date_from=date(2024, 10, 1), per_page=2))
        assert total == 3
        assert len(items) == 2
        assert items[0].id > items[1].id  # newest first

        items, total = store.search(DocumentFilters(status=DocumentStatus.AUTHORIZED))
        assert (items, total) == ([], 0)

    def test_count_and_totals_by_status(self, store, document):
        store.create(new_document())
        store.transition(document.id, [DocumentStatus.DRAFT], DocumentStatus.SENT)

        assert store.count_by_status() == {DocumentStatus.DRAFT: 1, DocumentStatus.SENT: 1}
        totals = store.totals_by_status(date(2024, 10, 1), date(2024, 10, 31))
        assert totals[DocumentStatus.DRAFT][0] == 1
        assert Decimal(str(totals[DocumentStatus.SENT][1])) == Decimal("115.00")


class TestCompareAndSet:
    def test_claim_only_once(self, store, document):
        assert store.claim_for_submission(document.id, max_retries=3)
        assert not store.claim_for_submission(document.id, max_retries=3)
        assert store.get(document.id).status is DocumentStatus.SENT

    def test_claim_failed_respects_retry_limit(self, store, document):
        store.claim_for_submission(document.id, 2)
        store.record_failure(document.id, "timeout")
        assert store.claim_for_submission(document.id, 2)
        store.record_failure(document.id, "timeout")

        assert store.get(document.id).retry_count == 2
        assert not store.claim_for_submission(document.id, 2)

    def test_transition_requires_source_status(self, store, document):
        assert not store.transition(
            document.id, [DocumentStatus.SENT], DocumentStatus.AUTHORIZED
        )
        assert store.transition(
            document.id, [DocumentStatus.DRAFT], DocumentStatus.SENT, access_key="abc"
        )
        assert store.get(document.id).access_key == "abc"

    def test_record_failure_increments_in_the_database(self, store, document):
        store.claim_for_submission(document.id, 12)
        failed = store.record_failure(document.id, "Tax authority request timed out")

        assert failed.status is DocumentStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_retry_at is not None
        assert failed.authority_error_message == "Tax authority request timed out"
        assert store.record_failure(document.id, "again") is None

    def test_pdf_path_is_set_once_and_only_when_authorized(self, store, document):
        assert not store.set_pdf_path(document.id, "invoices/000000001.pdf")

        store.transition(document.id, [DocumentStatus.DRAFT], DocumentStatus.AUTHORIZED)
        assert store.set_pdf_path(document.id, "invoices/000000001.pdf")
        assert not store.set_pdf_path(document.id, "invoices/other.pdf")
        assert store.get(document.id).pdf_path == "invoices/000000001.pdf"

    def test_mark_emailed_once(self, store, document):
        assert store.mark_emailed(document.id)
        assert not store.mark_emailed(document.id)

    def test_update_fields_limited_to_statuses(self, store, document):
        assert store.update_fields(
            document.id, [DocumentStatus.DRAFT], customer_name="Ana María Pérez"
        )
        assert not store.update_fields(
            document.id, [DocumentStatus.FAILED], customer_name="Otra"
        )
        assert store.get(document.id).customer_name == "Ana María Pérez"


class TestQueues:
    def test_retryable_ids(self, store):
        docs = [store.create(new_document()) for _ in range(3)]
        for doc in docs[:2]:
            store.claim_for_submission(doc.id, 1)
            store.record_failure(doc.id, "timeout")
        store.transition(docs[1].id, [DocumentStatus.FAILED], DocumentStatus.FAILED, retry_count=5)

        assert store.retryable_ids(max_retries=3) == [docs[0].id]

    def test_stale_submission_ids(self, store, session_factory):
        fresh = store.create(new_document())
        stale = store.create(new_document())
        for doc in (fresh, stale):
            store.claim_for_submission(doc.id, 12)

        with session_factory() as db:
            db.execute(
                update(FiscalDocument)
                .where(FiscalDocument.id == stale.id)
                .values(updated_at=utc_now() - timedelta(hours=2))
            )
            db.commit()

        assert store.stale_submission_ids(utc_now() - timedelta(minutes=30)) == [stale.id]

    def test_undelivered(self, store):
        docs = [store.create(new_document()) for _ in range(3)]
        for doc in docs:
            store.transition(doc.id, [DocumentStatus.DRAFT], DocumentStatus.AUTHORIZED)
        store.set_pdf_path(docs[0].id, "invoices/a.pdf")
        store.mark_emailed(docs[0].id)
        store.set_pdf_path(docs[1].id, "invoices/b.pdf")

        assert [d.id for d in store.undelivered()] == [docs[1].id, docs[2].id]
