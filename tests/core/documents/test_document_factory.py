"""Tests for DocumentFactory: invoices from orders and manual documents."""

from decimal import Decimal

import pytest

from opensri.core.documents import DocumentFactory
from opensri.exceptions import ValidationError
from opensri.storage.database.models import (
    CreatedVia,
    DocumentKind,
    DocumentStatus,
    Order,
)
from tests.support.builders import credit_note_payload, invoice_payload, make_order


@pytest.fixture
def factory(store, orders) -> DocumentFactory:
    return DocumentFactory(store, orders)


class TestFromOrder:
    def test_invoice_for_paid_order(self, factory, sample_order):
        document, created = factory.from_order(1001)

        assert created is True
        assert document.kind is DocumentKind.INVOICE
        assert document.status is DocumentStatus.DRAFT
        assert document.document_number == "000000001"
        assert document.customer_id_type == "05"
        assert document.subtotal == Decimal("100.00")
        assert document.tax_amount == Decimal("15.00")
        assert document.total_amount == Decimal("115.00")
        assert document.source_order_id == 1001
        assert document.created_via is CreatedVia.AUTOMATIC
        assert [line.code for line in document.lines] == ["MUG-001", "TEE-002"]
        assert all(line.tax_code == "4" for line in document.lines)

    def test_second_call_returns_existing_document(self, factory, store, sample_order):
        first, _ = factory.from_order(1001)
        second, created = factory.from_order(1001)

        assert created is False
        assert second.id == first.id
        assert store.count_by_status() == {DocumentStatus.DRAFT: 1}

    def test_numbers_increase_per_order(self, factory, session_factory):
        make_order(session_factory, order_id=1001)
        make_order(session_factory, order_id=1002)

        first, _ = factory.from_order(1001)
        second, _ = factory.from_order(1002)

        assert (first.document_number, second.document_number) == ("000000001", "000000002")

    def test_shipping_becomes_a_line(self, factory, session_factory):
        make_order(session_factory, shipping_cost=Decimal("10.00"))

        document, _ = factory.from_order(1001)

        shipping = document.lines[-1]
        assert shipping.code == "SHIPPING"
        assert shipping.line_subtotal == Decimal("10.00")
        assert shipping.line_tax == Decimal("1.50")
        assert document.subtotal == Decimal("110.00")
        assert document.total_amount == Decimal("126.50")

    def test_ruc_customer(self, factory, session_factory):
        make_order(session_factory, customer_id_number="1790012345001")

        document, _ = factory.from_order(1001)

        assert document.customer_id_type == "04"

    def test_unpaid_order_is_rejected(self, factory, store, session_factory):
        make_order(session_factory, payment_status="pending")

        with pytest.raises(ValidationError) as exc_info:
            factory.from_order(1001)

        assert exc_info.value.context["field"] == "payment_status"
        assert store.count_by_status() == {}

    def test_missing_order(self, factory):
        with pytest.raises(ValidationError):
            factory.from_order(404)

    def test_missing_email(self, factory, session_factory):
        make_order(session_factory, customer_email=None)

        with pytest.raises(ValidationError) as exc_info:
            factory.from_order(1001)

        assert exc_info.value.context["field"] == "customer_email"

    @pytest.mark.parametrize("id_number", [None, "", "12345", "1790012345999"])
    def test_invalid_identification(self, factory, session_factory, id_number):
        make_order(session_factory, customer_id_number=id_number)

        with pytest.raises(ValidationError):
            factory.from_order(1001)

    def test_total_mismatch_fails_reconciliation(self, factory, store, session_factory):
        make_order(session_factory, total=Decimal("120.00"))

        with pytest.raises(ValidationError) as exc_info:
            factory.from_order(1001)

        assert exc_info.value.context["field"] == "total_amount"
        assert store.count_by_status() == {}

    def test_rounding_within_one_cent_is_accepted(self, factory, session_factory):
        make_order(session_factory, total=Decimal("115.01"))

        document, created = factory.from_order(1001)

        assert created
        assert document.total_amount == Decimal("115.01")

    def test_failed_validation_does_not_consume_a_number(self, factory, session_factory):
        make_order(session_factory, order_id=1001, payment_status="pending")
        make_order(session_factory, order_id=1002)

        with pytest.raises(ValidationError):
            factory.from_order(1001)
        document, _ = factory.from_order(1002)

        assert document.document_number == "000000001"

    def test_non_positive_item_quantity(self, factory, session_factory):
        order = make_order(session_factory)
        with session_factory() as db:
            db.get(Order, order.id).items[0].quantity = Decimal("0")
            db.commit()

        with pytest.raises(ValidationError) as exc_info:
            factory.from_order(1001)

        assert exc_info.value.context["field"] == "quantity"


class TestFromPayload:
    def test_manual_invoice(self, factory):
        document = factory.from_payload(invoice_payload())

        assert document.kind is DocumentKind.INVOICE
        assert document.created_via is CreatedVia.MANUAL
        assert document.customer_id_type == "04"
        assert document.subtotal == Decimal("100.00")
        assert document.tax_amount == Decimal("15.00")
        assert document.total_amount == Decimal("115.00")
        assert document.source_order_id is None

    def test_zero_rate_line(self, factory):
        payload = invoice_payload()
        payload["lines"][0]["tax_code"] = "0"

        document = factory.from_payload(payload)

        assert document.tax_amount == Decimal("0.00")
        assert document.total_amount == Decimal("100.00")

    def test_credit_note(self, factory, store):
        factory.from_payload(invoice_payload())

        note = factory.from_payload(credit_note_payload())

        assert note.kind is DocumentKind.CREDIT_NOTE
        assert note.document_number == "000000001"
        assert note.modified_document_type == "01"
        assert note.modified_document_number == "001-001-000000001"
        assert note.reason == "Devolución de mercadería"

    def test_modified_number_is_normalized(self, factory):
        note = factory.from_payload(credit_note_payload(modified_number="7"))

        assert note.modified_document_number == "001-001-000000007"

    def test_credit_note_cannot_modify_itself(self, factory, store):
        payload = credit_note_payload()
        payload["modified_document"]["type"] = "04"

        with pytest.raises(ValidationError) as exc_info:
            factory.from_payload(payload)

        assert exc_info.value.context["field"] == "modified_document.number"
        assert store.count_by_status() == {}

    def test_credit_note_requires_reason(self, factory):
        with pytest.raises(ValidationError) as exc_info:
            factory.from_payload(credit_note_payload(reason="no"))

        assert exc_info.value.context["errors"]

    def test_credit_note_requires_modified_document(self, factory):
        with pytest.raises(ValidationError):
            factory.from_payload(credit_note_payload(modified_document=None))

    @pytest.mark.parametrize(
        "line_override",
        [{"quantity": "0"}, {"unit_price": "-1"}, {"tax_code": "9"}],
    )
    def test_invalid_lines(self, factory, line_override):
        payload = invoice_payload()
        payload["lines"][0].update(line_override)

        with pytest.raises(ValidationError):
            factory.from_payload(payload)

    def test_discount_cannot_cancel_the_line(self, factory):
        payload = invoice_payload()
        payload["lines"][0]["discount"] = "100.00"

        with pytest.raises(ValidationError) as exc_info:
            factory.from_payload(payload)

        assert exc_info.value.context["field"] == "lines.1"

    def test_id_type_must_match_number(self, factory):
        payload = invoice_payload()
        payload["buyer"]["id_type"] = "05"

        with pytest.raises(ValidationError) as exc_info:
            factory.from_payload(payload)

        assert exc_info.value.context["field"] == "buyer.id_type"

    def test_empty_lines(self, factory):
        with pytest.raises(ValidationError):
            factory.from_payload(invoice_payload(lines=[]))
