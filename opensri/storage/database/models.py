"""SQLAlchemy models for OpenSRI."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from opensri.storage.database.base import Base, IntPKMixin


class DocumentKind(PyEnum):
    """Fiscal document types, with their SRI document codes."""

    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"

    @property
    def sri_code(self) -> str:
        return "01" if self is DocumentKind.INVOICE else "04"

    @property
    def storage_folder(self) -> str:
        return "invoices" if self is DocumentKind.INVOICE else "credit_notes"


class DocumentStatus(PyEnum):
    """Fiscal document lifecycle status."""

    DRAFT = "DRAFT"  # Created, never submitted
    SENT = "SENT"  # Claimed by a worker, submission in flight
    PENDING = "PENDING"  # Accepted by the authority, awaiting review
    PROCESSING = "PROCESSING"
    RECEIVED = "RECEIVED"
    AUTHORIZED = "AUTHORIZED"  # Terminal
    REJECTED = "REJECTED"  # Terminal
    NOT_AUTHORIZED = "NOT_AUTHORIZED"  # Terminal
    RETURNED = "RETURNED"  # Terminal
    AUTHORITY_ERROR = "AUTHORITY_ERROR"  # Authority-side processing error
    FAILED = "FAILED"  # Transient failure, retryable while retries remain
    DEFINITIVELY_FAILED = "DEFINITIVELY_FAILED"  # Terminal, needs an operator


class CreatedVia(PyEnum):
    """Document provenance."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class IdentificationType(PyEnum):
    """Customer identification types (SRI codes)."""

    RUC = "04"
    CEDULA = "05"
    PASSPORT = "06"
    FINAL_CONSUMER = "07"


class Order(IntPKMixin, Base):
    """Completed marketplace order (read model of the checkout subsystem).

    Amounts are already resolved by checkout (discounts applied, tax
    computed) and are copied, never recomputed, downstream.
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, index=True)
    seller_id: Mapped[int | None] = mapped_column(Integer)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Billing data captured at checkout
    customer_id_number: Mapped[str | None] = mapped_column(String(13))
    customer_name: Mapped[str | None] = mapped_column(String(300))
    customer_email: Mapped[str | None] = mapped_column(String(256))
    customer_address: Mapped[str | None] = mapped_column(String(500))
    customer_phone: Mapped[str | None] = mapped_column(String(20))

    # Resolved amounts
    subtotal_products: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_discounts: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=15)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, order_number='{self.order_number}', total={self.total})>"


class OrderItem(IntPKMixin, Base):
    """Order line as priced by checkout."""

    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    order: Mapped[Order] = relationship(back_populates="items")

    sku: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=15)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, sku='{self.sku}')>"


class DocumentSequence(Base):
    """Last issued document number, one row per document kind."""

    __tablename__ = "document_sequences"

    kind: Mapped[DocumentKind] = mapped_column(Enum(DocumentKind), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<DocumentSequence(kind='{self.kind.value}', last_value={self.last_value})>"


class FiscalDocument(IntPKMixin, Base):
    """Invoice or credit note submitted to the tax authority."""

    __tablename__ = "fiscal_documents"
    __table_args__ = (UniqueConstraint("kind", "document_number", name="uq_document_number"),)

    # Sequential number (9 digits, per kind)
    document_number: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    kind: Mapped[DocumentKind] = mapped_column(
        Enum(DocumentKind), nullable=False, default=DocumentKind.INVOICE
    )
    issue_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)

    # Credit note: document being modified
    modified_document_type: Mapped[str | None] = mapped_column(String(2))
    modified_document_number: Mapped[str | None] = mapped_column(String(17))
    modified_document_date: Mapped[date | None] = mapped_column(Date)
    reason: Mapped[str | None] = mapped_column(String(500))

    # Customer (copied at creation)
    customer_id_type: Mapped[str] = mapped_column(String(2), nullable=False)
    customer_id_number: Mapped[str] = mapped_column(String(13), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(300), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(256))
    customer_address: Mapped[str | None] = mapped_column(String(500))
    customer_phone: Mapped[str | None] = mapped_column(String(20))

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Lifecycle
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT, index=True
    )

    # Authority linkage
    access_key: Mapped[str | None] = mapped_column(String(49), index=True)
    authorization_number: Mapped[str | None] = mapped_column(String(49))
    authorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    authority_error_message: Mapped[str | None] = mapped_column(Text)
    authority_response: Mapped[str | None] = mapped_column(Text)  # JSON

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Artifacts (idempotency fences)
    pdf_path: Mapped[str | None] = mapped_column(String(500))
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Provenance
    source_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("orders.id"), unique=True, nullable=True
    )
    created_via: Mapped[CreatedVia] = mapped_column(
        Enum(CreatedVia), nullable=False, default=CreatedVia.AUTOMATIC
    )

    lines: Mapped[list[FiscalDocumentLine]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="FiscalDocumentLine.line_number",
    )

    @property
    def formatted_number(self) -> str:
        """Number in ``EEE-PPP-NNNNNNNNN`` form (establishment-point-sequence)."""
        return f"001-001-{self.document_number}"

    def __repr__(self) -> str:
        return (
            f"<FiscalDocument(id={self.id}, kind='{self.kind.value}', "
            f"number='{self.document_number}', status='{self.status.value}')>"
        )


class FiscalDocumentLine(IntPKMixin, Base):
    """Fiscal document line item."""

    __tablename__ = "fiscal_document_lines"

    document_id: Mapped[int] = mapped_column(ForeignKey("fiscal_documents.id"), nullable=False)
    document: Mapped[FiscalDocument] = relationship(back_populates="lines")

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    # IVA
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_code: Mapped[str | None] = mapped_column(String(2))

    line_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<FiscalDocumentLine(id={self.id}, document_id={self.document_id}, "
            f"code='{self.code}')>"
        )


class LedgerAccount(IntPKMixin, Base):
    """Chart of accounts entry."""

    __tablename__ = "ledger_accounts"

    code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<LedgerAccount(code='{self.code}', name='{self.name}')>"


class LedgerTransaction(IntPKMixin, Base):
    """Double-entry accounting transaction."""

    __tablename__ = "ledger_transactions"

    reference_number: Mapped[str] = mapped_column(String(60), unique=True, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="SALE")
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), index=True)
    user_id: Mapped[int | None] = mapped_column(Integer)
    is_posted: Mapped[bool] = mapped_column(Boolean, default=True)

    entries: Mapped[list[LedgerEntry]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="LedgerEntry.position",
    )

    @property
    def total_debit(self) -> Decimal:
        return sum((e.debit for e in self.entries), Decimal("0.00"))

    @property
    def total_credit(self) -> Decimal:
        return sum((e.credit for e in self.entries), Decimal("0.00"))

    def __repr__(self) -> str:
        return f"<LedgerTransaction(id={self.id}, reference='{self.reference_number}')>"


class LedgerEntry(IntPKMixin, Base):
    """One debit or credit line of a ledger transaction."""

    __tablename__ = "ledger_entries"

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_transactions.id"), nullable=False
    )
    transaction: Mapped[LedgerTransaction] = relationship(back_populates="entries")

    account_id: Mapped[int] = mapped_column(ForeignKey("ledger_accounts.id"), nullable=False)
    account: Mapped[LedgerAccount] = relationship(lazy="joined")

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    debit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    credit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    note: Mapped[str | None] = mapped_column(String(300))

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, account_id={self.account_id}, "
            f"debit={self.debit}, credit={self.credit})>"
        )


__all__ = [
    "CreatedVia",
    "DocumentKind",
    "DocumentSequence",
    "DocumentStatus",
    "FiscalDocument",
    "FiscalDocumentLine",
    "IdentificationType",
    "LedgerAccount",
    "LedgerEntry",
    "LedgerTransaction",
    "Order",
    "OrderItem",
]
