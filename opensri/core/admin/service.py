"""Operator-facing document operations.

Every method raises from :mod:`opensri.exceptions`; an HTTP layer maps those
with :func:`opensri.exceptions.http_status_for` (404 missing, 422 illegal
state or invalid input, 400 business rule, 500 otherwise).
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from opensri.core.artifacts.pipeline import ArtifactPipeline
from opensri.core.documents.factory import DocumentFactory
from opensri.core.documents.schemas import DocumentPayload
from opensri.core.documents.state import CUSTOMER_EDITABLE, IN_FLIGHT, is_terminal
from opensri.core.events.base import EventBus
from opensri.core.events.document_events import DocumentGeneratedEvent
from opensri.core.submission.coordinator import SubmissionCoordinator
from opensri.core.submission.scheduler import RetryScheduler
from opensri.exceptions import BusinessLogicError, DocumentStateError, ValidationError
from opensri.storage.database.models import DocumentKind, DocumentStatus, FiscalDocument
from opensri.storage.documents import DocumentFilters, SQLAlchemyDocumentStore
from opensri.utils.logging import get_logger
from opensri.utils.money import to_money
from opensri.utils.validators import identification_type_for

logger = get_logger(__name__)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


@dataclass
class DocumentPage:
    items: list[FiscalDocument]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return max((self.total + self.per_page - 1) // self.per_page, 1)


class AdminDocumentService:
    """Listing, inspection and manual intervention on fiscal documents."""

    def __init__(
        self,
        store: SQLAlchemyDocumentStore,
        factory: DocumentFactory,
        coordinator: SubmissionCoordinator,
        artifacts: ArtifactPipeline,
        scheduler: RetryScheduler,
        event_bus: EventBus,
    ):
        self.store = store
        self.factory = factory
        self.coordinator = coordinator
        self.artifacts = artifacts
        self.scheduler = scheduler
        self.event_bus = event_bus

    def list_documents(
        self,
        status: DocumentStatus | None = None,
        kind: DocumentKind | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        customer: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> DocumentPage:
        if per_page < 1 or per_page > 100:
            raise ValidationError("per_page must be between 1 and 100", field="per_page")
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from is after date_to", field="date_from")

        items, total = self.store.search(
            DocumentFilters(
                status=status,
                kind=kind,
                date_from=date_from,
                date_to=date_to,
                customer=customer,
                page=page,
                per_page=per_page,
            )
        )
        return DocumentPage(items=items, total=total, page=max(page, 1), per_page=per_page)

    def get_document(self, document_id: int) -> FiscalDocument:
        return self.store.get(document_id)

    def create_document(self, payload: DocumentPayload | dict[str, Any]) -> FiscalDocument:
        """Create a manual invoice or credit note and queue it for submission."""
        document = self.factory.from_payload(payload)
        logger.info(
            "manual_document_created",
            document_id=document.id,
            kind=document.kind.value,
            document_number=document.document_number,
        )
        self.event_bus.publish(
            DocumentGeneratedEvent(
                document_id=document.id,
                document_number=document.document_number,
                kind=document.kind.value,
            )
        )
        return document

    def retry(self, document_id: int) -> DocumentStatus:
        """Resubmit a DRAFT or retryable FAILED document now.

        Raises:
            DocumentStateError: If the document is in a terminal state
            BusinessLogicError: If it is in flight or has no retries left
        """
        document = self.store.get(document_id)
        if is_terminal(document.status):
            raise DocumentStateError(
                "Document is in a terminal state and cannot be retried",
                document_id=document_id,
                current_state=document.status.value,
                attempted_action="retry",
            )
        if document.status is not DocumentStatus.DRAFT and not self.coordinator.can_retry(
            document
        ):
            raise BusinessLogicError(
                "Document cannot be retried in its current state",
                context={
                    "document_id": document_id,
                    "status": document.status.value,
                    "retry_count": document.retry_count,
                    "max_retries": self.coordinator.policy.max_retries,
                },
            )

        logger.info("manual_retry_requested", document_id=document_id)
        return self.coordinator.submit(document_id)

    def retry_all_failed(self) -> int:
        """Queue every FAILED document that still has retries left."""
        document_ids = self.store.retryable_ids(self.coordinator.policy.max_retries)
        for document_id in document_ids:
            self.scheduler.schedule_retry(document_id, 0.0)
        logger.info("retry_all_failed_scheduled", count=len(document_ids))
        return len(document_ids)

    def check_status(self, document_id: int) -> DocumentStatus:
        """Ask the authority for the current decision on a document.

        Raises:
            BusinessLogicError: If the document has no access key yet
        """
        document = self.store.get(document_id)
        if not document.access_key:
            raise BusinessLogicError(
                "Document has no access key from the tax authority",
                context={"document_id": document_id, "status": document.status.value},
            )
        return self.coordinator.check_status(document_id)

    def download_pdf(self, document_id: int) -> Path:
        """Absolute path of the document PDF, generating it on demand.

        Raises:
            DocumentStateError: If the document is not AUTHORIZED
        """
        relative_path = self.artifacts.ensure_pdf(document_id)
        return self.artifacts.storage.absolute_path(relative_path)

    def list_undelivered(self) -> list[FiscalDocument]:
        return self.store.undelivered()

    def update_customer(
        self,
        document_id: int,
        *,
        name: str | None = None,
        id_number: str | None = None,
        email: str | None = None,
        address: str | None = None,
        phone: str | None = None,
    ) -> FiscalDocument:
        """Correct customer data on a document that is not authorized or in flight.

        Raises:
            DocumentStateError: If the document is authorized or being submitted
            ValidationError: If the new identification or email is invalid
        """
        document = self.store.get(document_id)
        if document.status not in CUSTOMER_EDITABLE:
            raise DocumentStateError(
                "Customer data can only change before authorization and outside a submission",
                document_id=document_id,
                current_state=document.status.value,
                attempted_action="update_customer",
            )

        fields: dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Customer name cannot be empty", field="name")
            fields["customer_name"] = name.strip()
        if id_number is not None:
            fields["customer_id_type"] = identification_type_for(id_number)
            fields["customer_id_number"] = id_number.strip()
        if email is not None:
            if not re.match(EMAIL_PATTERN, email):
                raise ValidationError("Invalid email address", field="email", value=email)
            fields["customer_email"] = email
        if address is not None:
            fields["customer_address"] = address
        if phone is not None:
            fields["customer_phone"] = phone

        if not fields:
            return document

        if not self.store.update_fields(document_id, tuple(CUSTOMER_EDITABLE), **fields):
            current = self.store.get(document_id)
            raise DocumentStateError(
                "Document changed state while updating customer data",
                document_id=document_id,
                current_state=current.status.value,
                attempted_action="update_customer",
            )
        logger.info("document_customer_updated", document_id=document_id, fields=sorted(fields))
        return self.store.get(document_id)

    def statistics(self) -> dict[str, Any]:
        """Counts per status plus authorization success rate."""
        counts = self.store.count_by_status()
        total = sum(counts.values())
        authorized = counts.get(DocumentStatus.AUTHORIZED, 0)
        in_flight = sum(counts.get(status, 0) for status in IN_FLIGHT)
        return {
            "total": total,
            "by_status": {status.value: counts.get(status, 0) for status in DocumentStatus},
            "authorized": authorized,
            "in_flight": in_flight,
            "failed": counts.get(DocumentStatus.FAILED, 0),
            "definitively_failed": counts.get(DocumentStatus.DEFINITIVELY_FAILED, 0),
            "pending_retries": len(
                self.store.retryable_ids(self.coordinator.policy.max_retries)
            ),
            "success_rate": round(authorized / total * 100, 2) if total else 0.0,
        }

    def monthly_report(self, year: int, month: int) -> dict[str, Any]:
        """Document counts and amounts for one calendar month."""
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12", field="month", value=month)
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])

        totals = self.store.totals_by_status(first, last)
        authorized_count, authorized_amount = totals.get(
            DocumentStatus.AUTHORIZED, (0, Decimal("0"))
        )
        return {
            "period": f"{year:04d}-{month:02d}",
            "documents": sum(count for count, _ in totals.values()),
            "authorized": authorized_count,
            "authorized_amount": to_money(authorized_amount),
            "by_status": {
                status.value: {"count": count, "amount": to_money(amount)}
                for status, (count, amount) in totals.items()
            },
        }
