"""Builds fiscal documents from completed orders or admin payloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from opensri.core.documents.schemas import DocumentPayload, tax_code_for_rate
from opensri.exceptions import DatabaseIntegrityError, ValidationError
from opensri.storage.database.models import (
    CreatedVia,
    DocumentKind,
    DocumentStatus,
    FiscalDocument,
    FiscalDocumentLine,
    Order,
)
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.storage.orders import OrderRepository
from opensri.utils.logging import get_logger
from opensri.utils.money import money_equal, percentage_of, to_money
from opensri.utils.validators import identification_type_for

logger = get_logger(__name__)

PAID_STATUS = "completed"
SHIPPING_CODE = "SHIPPING"


class DocumentFactory:
    """Creates DRAFT documents with a freshly assigned sequence number.

    Amounts on order-based documents are copied from checkout, never
    recomputed; manual documents compute line taxes from their tax codes.
    """

    def __init__(
        self,
        store: SQLAlchemyDocumentStore,
        orders: OrderRepository,
        currency: str = "USD",
    ):
        self.store = store
        self.orders = orders
        self.currency = currency

    # ------------------------------------------------------------------
    # From orders
    # ------------------------------------------------------------------

    def from_order(self, order_id: int) -> tuple[FiscalDocument, bool]:
        """Issue the invoice for a completed order.

        Returns:
            ``(document, created)``; ``created`` is False when the order was
            already invoiced and the existing document is returned

        Raises:
            ValidationError: If the order cannot be invoiced
        """
        existing = self.store.find_by_source_order(order_id)
        if existing is not None:
            logger.info(
                "document_already_exists_for_order",
                order_id=order_id,
                document_id=existing.id,
            )
            return existing, False

        order = self.orders.find(order_id)
        if order is None:
            raise ValidationError(f"Order {order_id} not found", field="order_id", value=order_id)

        id_type = self._validate_order(order)
        document = self._build_from_order(order, id_type)
        self._reconcile(document)

        try:
            self.store.create(document)
        except DatabaseIntegrityError:
            # A concurrent delivery of the same event won the insert
            existing = self.store.find_by_source_order(order_id)
            if existing is None:
                raise
            logger.info(
                "document_insert_race_resolved",
                order_id=order_id,
                document_id=existing.id,
            )
            return existing, False

        return document, True

    def _validate_order(self, order: Order) -> str:
        """Check invoicing preconditions and return the identification type code."""
        if order.payment_status != PAID_STATUS:
            raise ValidationError(
                f"Order {order.order_number} is not paid",
                field="payment_status",
                value=order.payment_status,
                constraint=PAID_STATUS,
            )
        if not order.items:
            raise ValidationError(f"Order {order.order_number} has no items", field="items")
        if to_money(order.total) <= 0:
            raise ValidationError("Order total must be positive", field="total", value=order.total)
        if to_money(order.subtotal_products) <= 0:
            raise ValidationError(
                "Order subtotal must be positive",
                field="subtotal_products",
                value=order.subtotal_products,
            )

        id_type = identification_type_for(order.customer_id_number)

        if not order.customer_email:
            raise ValidationError("Customer email is required", field="customer_email")
        if not order.customer_name:
            raise ValidationError("Customer name is required", field="customer_name")

        for item in order.items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Item {item.sku} has a non-positive quantity",
                    field="quantity",
                    value=item.quantity,
                )
            if item.unit_price <= 0:
                raise ValidationError(
                    f"Item {item.sku} has a non-positive unit price",
                    field="unit_price",
                    value=item.unit_price,
                )
            if item.discount < 0:
                raise ValidationError(
                    f"Item {item.sku} has a negative discount",
                    field="discount",
                    value=item.discount,
                )
        return id_type

    def _build_from_order(self, order: Order, id_type: str) -> FiscalDocument:
        lines = [
            FiscalDocumentLine(
                line_number=position,
                code=item.sku,
                description=item.name,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
                discount=to_money(item.discount),
                tax_rate=item.tax_rate,
                tax_code=tax_code_for_rate(item.tax_rate),
                line_subtotal=to_money(item.subtotal),
                line_tax=to_money(item.tax_amount),
            )
            for position, item in enumerate(order.items, start=1)
        ]

        shipping = to_money(order.shipping_cost)
        if shipping > 0:
            lines.append(
                FiscalDocumentLine(
                    line_number=len(lines) + 1,
                    code=SHIPPING_CODE,
                    description="Shipping",
                    quantity=Decimal("1"),
                    unit_price=shipping,
                    discount=Decimal("0.00"),
                    tax_rate=order.tax_rate,
                    tax_code=tax_code_for_rate(order.tax_rate),
                    line_subtotal=shipping,
                    line_tax=percentage_of(shipping, order.tax_rate),
                )
            )

        return FiscalDocument(
            kind=DocumentKind.INVOICE,
            status=DocumentStatus.DRAFT,
            customer_id_type=id_type,
            customer_id_number=order.customer_id_number,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_address=order.customer_address,
            customer_phone=order.customer_phone,
            subtotal=to_money(order.subtotal_products) + shipping,
            tax_amount=to_money(order.tax_amount),
            total_amount=to_money(order.total),
            currency=self.currency,
            retry_count=0,
            source_order_id=order.id,
            created_via=CreatedVia.AUTOMATIC,
            lines=lines,
        )

    # ------------------------------------------------------------------
    # Manual entry
    # ------------------------------------------------------------------

    def from_payload(self, payload: DocumentPayload | dict[str, Any]) -> FiscalDocument:
        """Create a document from an admin payload.

        Raises:
            ValidationError: If the payload is malformed, a line does not
                produce a positive subtotal, or a credit note modifies itself
        """
        if not isinstance(payload, DocumentPayload):
            try:
                payload = DocumentPayload.model_validate(payload)
            except PydanticValidationError as e:
                errors = [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
                raise ValidationError(
                    "Invalid document payload", context={"errors": errors}, original_error=e
                ) from e

        buyer = payload.buyer
        id_type = identification_type_for(buyer.id_number)
        if buyer.id_type and buyer.id_type != id_type:
            raise ValidationError(
                "Identification type does not match the identification number",
                field="buyer.id_type",
                value=buyer.id_type,
                constraint=id_type,
            )

        lines = []
        for position, line in enumerate(payload.lines, start=1):
            line_subtotal = to_money(line.unit_price * line.quantity - line.discount)
            if line_subtotal <= 0:
                raise ValidationError(
                    f"Line {position} subtotal must be positive",
                    field=f"lines.{position}",
                    value=line_subtotal,
                )
            lines.append(
                FiscalDocumentLine(
                    line_number=position,
                    code=line.code,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=to_money(line.unit_price),
                    discount=to_money(line.discount),
                    tax_rate=line.tax_rate,
                    tax_code=line.tax_code,
                    line_subtotal=line_subtotal,
                    line_tax=percentage_of(line_subtotal, line.tax_rate),
                )
            )

        subtotal = sum((line.line_subtotal for line in lines), Decimal("0.00"))
        tax_amount = sum((line.line_tax for line in lines), Decimal("0.00"))
        modified = payload.modified_document

        document = FiscalDocument(
            kind=payload.kind,
            status=DocumentStatus.DRAFT,
            issue_date=payload.issue_date,
            reason=payload.reason.strip() if payload.reason else None,
            modified_document_type=modified.type if modified else None,
            modified_document_number=modified.number if modified else None,
            modified_document_date=modified.issue_date if modified else None,
            customer_id_type=id_type,
            customer_id_number=buyer.id_number,
            customer_name=buyer.name,
            customer_email=buyer.email,
            customer_address=buyer.address,
            customer_phone=buyer.phone,
            subtotal=to_money(subtotal),
            tax_amount=to_money(tax_amount),
            total_amount=to_money(subtotal + tax_amount),
            currency=payload.currency,
            retry_count=0,
            created_via=CreatedVia.MANUAL,
            lines=lines,
        )
        self._reconcile(document)

        self.store.create(document, validate=self._reject_self_reference)
        return document

    @staticmethod
    def _reject_self_reference(document: FiscalDocument) -> None:
        if (
            document.modified_document_number
            and document.modified_document_type == document.kind.sri_code
            and document.modified_document_number == document.formatted_number
        ):
            raise ValidationError(
                "A credit note cannot modify itself",
                field="modified_document.number",
                value=document.modified_document_number,
            )

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    @staticmethod
    def _reconcile(document: FiscalDocument) -> None:
        """Totals must match the lines within one cent."""
        lines_subtotal = sum((line.line_subtotal for line in document.lines), Decimal("0.00"))
        if not money_equal(lines_subtotal, document.subtotal):
            logger.warning(
                "document_reconciliation_failed",
                source_order_id=document.source_order_id,
                lines_subtotal=str(lines_subtotal),
                subtotal=str(document.subtotal),
            )
            raise ValidationError(
                "Line subtotals do not add up to the document subtotal",
                field="subtotal",
                value=document.subtotal,
                constraint=f"sum(lines)={lines_subtotal}",
            )
        if not money_equal(document.subtotal + document.tax_amount, document.total_amount):
            logger.warning(
                "document_reconciliation_failed",
                source_order_id=document.source_order_id,
                subtotal=str(document.subtotal),
                tax_amount=str(document.tax_amount),
                total=str(document.total_amount),
            )
            raise ValidationError(
                "Subtotal plus tax does not match the total",
                field="total_amount",
                value=document.total_amount,
                constraint=f"subtotal+tax={document.subtotal + document.tax_amount}",
            )
