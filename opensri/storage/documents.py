"""Fiscal document repository.

Every state change goes through a conditional ``UPDATE ... WHERE`` and reports
whether it affected a row, so concurrent workers racing on the same document
serialize on the database instead of on in-process locks.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from opensri.exceptions import DatabaseIntegrityError, RecordNotFoundError
from opensri.storage.database.models import (
    DocumentKind,
    DocumentSequence,
    DocumentStatus,
    FiscalDocument,
)
from opensri.storage.session import transaction
from opensri.utils.datetime import utc_now
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

NUMBER_WIDTH = 9


@dataclass
class DocumentFilters:
    """Admin listing filters. ``None`` means no constraint."""

    status: DocumentStatus | None = None
    kind: DocumentKind | None = None
    date_from: date | None = None
    date_to: date | None = None
    customer: str | None = None
    page: int = 1
    per_page: int = 20


class DocumentStore(Protocol):
    """Persistence operations the pipeline relies on."""

    def get(self, document_id: int) -> FiscalDocument: ...

    def find_by_source_order(self, order_id: int) -> FiscalDocument | None: ...

    def create(
        self,
        document: FiscalDocument,
        validate: Callable[[FiscalDocument], None] | None = None,
    ) -> FiscalDocument: ...

    def claim_for_submission(
        self,
        document_id: int,
        max_retries: int,
        from_statuses: Iterable[DocumentStatus] = ...,
    ) -> bool: ...

    def transition(
        self,
        document_id: int,
        from_statuses: Iterable[DocumentStatus],
        to_status: DocumentStatus,
        **fields: Any,
    ) -> bool: ...

    def record_failure(
        self,
        document_id: int,
        message: str,
        from_statuses: Iterable[DocumentStatus] = ...,
    ) -> FiscalDocument | None: ...

    def set_pdf_path(self, document_id: int, pdf_path: str) -> bool: ...

    def mark_emailed(self, document_id: int, sent_at: datetime | None = None) -> bool: ...


class SQLAlchemyDocumentStore:
    """:class:`DocumentStore` backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, document_id: int) -> FiscalDocument | None:
        with transaction(self._session_factory) as db:
            return (
                db.query(FiscalDocument)
                .options(selectinload(FiscalDocument.lines))
                .filter(FiscalDocument.id == document_id)
                .one_or_none()
            )

    def get(self, document_id: int) -> FiscalDocument:
        """Load a document with its lines.

        Raises:
            RecordNotFoundError: If no document has this id
        """
        document = self.find(document_id)
        if document is None:
            raise RecordNotFoundError(
                f"Fiscal document {document_id} not found",
                entity_type="fiscal_document",
                entity_id=document_id,
            )
        return document

    def find_by_source_order(self, order_id: int) -> FiscalDocument | None:
        with transaction(self._session_factory) as db:
            return (
                db.query(FiscalDocument)
                .options(selectinload(FiscalDocument.lines))
                .filter(FiscalDocument.source_order_id == order_id)
                .one_or_none()
            )

    def find_by_number(self, kind: DocumentKind, document_number: str) -> FiscalDocument | None:
        with transaction(self._session_factory) as db:
            return (
                db.query(FiscalDocument)
                .filter(
                    FiscalDocument.kind == kind,
                    FiscalDocument.document_number == document_number,
                )
                .one_or_none()
            )

    def search(self, filters: DocumentFilters | None = None) -> tuple[list[FiscalDocument], int]:
        """Return one page of documents (newest first) and the total match count."""
        filters = filters or DocumentFilters()
        page = max(filters.page, 1)
        per_page = max(filters.per_page, 1)

        with transaction(self._session_factory) as db:
            query = db.query(FiscalDocument)
            if filters.status is not None:
                query = query.filter(FiscalDocument.status == filters.status)
            if filters.kind is not None:
                query = query.filter(FiscalDocument.kind == filters.kind)
            if filters.date_from is not None:
                query = query.filter(FiscalDocument.issue_date >= filters.date_from)
            if filters.date_to is not None:
                query = query.filter(FiscalDocument.issue_date <= filters.date_to)
            if filters.customer:
                pattern = f"%{filters.customer}%"
                query = query.filter(
                    or_(
                        FiscalDocument.customer_name.ilike(pattern),
                        FiscalDocument.customer_id_number.like(pattern),
                        FiscalDocument.customer_email.ilike(pattern),
                    )
                )

            total = query.count()
            items = (
                query.order_by(FiscalDocument.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            return items, total

    def ids_in_status(self, statuses: Iterable[DocumentStatus]) -> list[int]:
        with transaction(self._session_factory) as db:
            rows = db.execute(
                select(FiscalDocument.id)
                .where(FiscalDocument.status.in_(list(statuses)))
                .order_by(FiscalDocument.id)
            )
            return [row[0] for row in rows]

    def retryable_ids(self, max_retries: int) -> list[int]:
        """FAILED documents that still have retries left."""
        with transaction(self._session_factory) as db:
            rows = db.execute(
                select(FiscalDocument.id)
                .where(
                    FiscalDocument.status == DocumentStatus.FAILED,
                    FiscalDocument.retry_count < max_retries,
                )
                .order_by(FiscalDocument.id)
            )
            return [row[0] for row in rows]

    def stale_submission_ids(self, older_than: datetime) -> list[int]:
        """SENT documents not touched since ``older_than``."""
        with transaction(self._session_factory) as db:
            rows = db.execute(
                select(FiscalDocument.id)
                .where(
                    FiscalDocument.status == DocumentStatus.SENT,
                    FiscalDocument.updated_at < older_than,
                )
                .order_by(FiscalDocument.id)
            )
            return [row[0] for row in rows]

    def undelivered(self) -> list[FiscalDocument]:
        """Authorized documents still missing their PDF or their email."""
        with transaction(self._session_factory) as db:
            return (
                db.query(FiscalDocument)
                .filter(
                    FiscalDocument.status == DocumentStatus.AUTHORIZED,
                    or_(
                        FiscalDocument.pdf_path.is_(None),
                        FiscalDocument.email_sent_at.is_(None),
                    ),
                )
                .order_by(FiscalDocument.id)
                .all()
            )

    def count_by_status(self) -> dict[DocumentStatus, int]:
        with transaction(self._session_factory) as db:
            rows = db.execute(
                select(FiscalDocument.status, func.count(FiscalDocument.id)).group_by(
                    FiscalDocument.status
                )
            )
            return {status: count for status, count in rows}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        document: FiscalDocument,
        validate: Callable[[FiscalDocument], None] | None = None,
    ) -> FiscalDocument:
        """Number and insert a new document in a single transaction.

        ``validate`` runs after the number is assigned and before the insert;
        raising from it aborts the transaction (the sequence increment is
        rolled back with it).

        Raises:
            DatabaseIntegrityError: If a unique constraint is violated
                (e.g. another document already exists for the source order)
        """
        try:
            with transaction(self._session_factory) as db:
                document.document_number = self._next_number(db, document.kind)
                if validate is not None:
                    validate(document)
                db.add(document)
                db.flush()
        except IntegrityError as e:
            logger.warning(
                "document_insert_conflict",
                kind=document.kind.value,
                source_order_id=document.source_order_id,
                error=str(e.orig),
            )
            raise DatabaseIntegrityError(
                "Fiscal document violates a uniqueness constraint",
                context={
                    "kind": document.kind.value,
                    "source_order_id": document.source_order_id,
                },
                original_error=e,
            ) from e

        logger.info(
            "document_created",
            document_id=document.id,
            kind=document.kind.value,
            document_number=document.document_number,
            source_order_id=document.source_order_id,
        )
        return document

    def _next_number(self, db: Session, kind: DocumentKind) -> str:
        """Increment-and-read the per-kind counter inside ``db``'s transaction."""
        result = db.execute(
            update(DocumentSequence)
            .where(DocumentSequence.kind == kind)
            .values(last_value=DocumentSequence.last_value + 1)
        )
        if result.rowcount == 0:
            # Rows are seeded by init_db; this only covers bare schemas
            db.add(DocumentSequence(kind=kind, last_value=1))
            db.flush()

        value = db.execute(
            select(DocumentSequence.last_value).where(DocumentSequence.kind == kind)
        ).scalar_one()
        return str(value).zfill(NUMBER_WIDTH)

    # ------------------------------------------------------------------
    # Compare-and-set transitions
    # ------------------------------------------------------------------

    def _conditional_update(self, *criteria: Any, **values: Any) -> bool:
        with transaction(self._session_factory) as db:
            result = db.execute(
                update(FiscalDocument)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def claim_for_submission(
        self,
        document_id: int,
        max_retries: int,
        from_statuses: Iterable[DocumentStatus] = (DocumentStatus.DRAFT, DocumentStatus.FAILED),
    ) -> bool:
        """Move a document in ``from_statuses`` to SENT.

        A FAILED document is only claimed while it has retries left.

        Returns:
            True if this caller won the claim
        """
        conditions = [
            (FiscalDocument.status == status) & (FiscalDocument.retry_count < max_retries)
            if status is DocumentStatus.FAILED
            else FiscalDocument.status == status
            for status in from_statuses
        ]
        return self._conditional_update(
            FiscalDocument.id == document_id,
            or_(*conditions),
            status=DocumentStatus.SENT,
        )

    def transition(
        self,
        document_id: int,
        from_statuses: Iterable[DocumentStatus],
        to_status: DocumentStatus,
        **fields: Any,
    ) -> bool:
        """Set ``to_status`` (and ``fields``) only if the current status is in ``from_statuses``."""
        return self._conditional_update(
            FiscalDocument.id == document_id,
            FiscalDocument.status.in_(list(from_statuses)),
            status=to_status,
            **fields,
        )

    def record_failure(
        self,
        document_id: int,
        message: str,
        from_statuses: Iterable[DocumentStatus] = (DocumentStatus.SENT,),
    ) -> FiscalDocument | None:
        """Move to FAILED with a database-side ``retry_count`` increment.

        Returns:
            The refreshed document, or None if its status was not in ``from_statuses``
        """
        won = self._conditional_update(
            FiscalDocument.id == document_id,
            FiscalDocument.status.in_(list(from_statuses)),
            status=DocumentStatus.FAILED,
            retry_count=FiscalDocument.retry_count + 1,
            last_retry_at=utc_now(),
            authority_error_message=message,
        )
        if not won:
            return None
        return self.get(document_id)

    def set_pdf_path(self, document_id: int, pdf_path: str) -> bool:
        """Store the artifact path once; later callers lose."""
        return self._conditional_update(
            FiscalDocument.id == document_id,
            FiscalDocument.status == DocumentStatus.AUTHORIZED,
            FiscalDocument.pdf_path.is_(None),
            pdf_path=pdf_path,
        )

    def mark_emailed(self, document_id: int, sent_at: datetime | None = None) -> bool:
        """Set ``email_sent_at`` once; later callers lose."""
        return self._conditional_update(
            FiscalDocument.id == document_id,
            FiscalDocument.email_sent_at.is_(None),
            email_sent_at=sent_at or utc_now(),
        )

    def update_fields(
        self,
        document_id: int,
        allowed_statuses: Sequence[DocumentStatus],
        **fields: Any,
    ) -> bool:
        """Update plain columns while the status is one of ``allowed_statuses``."""
        return self._conditional_update(
            FiscalDocument.id == document_id,
            FiscalDocument.status.in_(list(allowed_statuses)),
            **fields,
        )

    def totals_by_status(
        self, date_from: date, date_to: date
    ) -> dict[DocumentStatus, tuple[int, Any]]:
        """Count and total amount per status for documents issued in a date range."""
        with transaction(self._session_factory) as db:
            rows = db.execute(
                select(
                    FiscalDocument.status,
                    func.count(FiscalDocument.id),
                    func.coalesce(func.sum(FiscalDocument.total_amount), 0),
                )
                .where(
                    FiscalDocument.issue_date >= date_from,
                    FiscalDocument.issue_date <= date_to,
                )
                .group_by(FiscalDocument.status)
            )
            return {status: (count, total) for status, count, total in rows}
