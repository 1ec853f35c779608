"""Fiscal document lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass

from opensri.core.events.base import BaseEvent


@dataclass(frozen=True)
class DocumentGeneratedEvent(BaseEvent):
    """A new DRAFT document was persisted and is ready for submission."""

    document_id: int
    document_number: str
    kind: str
    source_order_id: int | None = None


@dataclass(frozen=True)
class DocumentAuthorizedEvent(BaseEvent):
    """The tax authority authorized the document.

    Triggers PDF generation and the customer email.
    """

    document_id: int
    document_number: str
    authorization_number: str | None = None
    access_key: str | None = None


@dataclass(frozen=True)
class DocumentRejectedEvent(BaseEvent):
    """The authority refused the document content (terminal)."""

    document_id: int
    document_number: str
    status: str
    message: str | None = None


@dataclass(frozen=True)
class DocumentDefinitivelyFailedEvent(BaseEvent):
    """Retries are exhausted; an operator has to step in."""

    document_id: int
    document_number: str
    retry_count: int
    last_error: str | None = None
