"""Event wiring for the fiscal document pipeline.

    OrderCompleted ──► DocumentFactory ──► DocumentGenerated ──► submit
                  └──► LedgerRecorder
    DocumentAuthorized ──► ensure_pdf ──► ensure_emailed
    retry timer ──► submit

Every handler is isolated: it logs its failure with the document or order id
and returns, so one stage never breaks another or the publisher.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from opensri.core.admin import AdminDocumentService
from opensri.core.artifacts import ArtifactPipeline, ArtifactStorage
from opensri.core.artifacts.pipeline import DocumentRenderer
from opensri.core.documents import DocumentFactory
from opensri.core.events import (
    DocumentAuthorizedEvent,
    DocumentGeneratedEvent,
    GlobalEventBus,
    OrderCompletedEvent,
    register_default_listeners,
)
from opensri.core.ledger import LedgerRecorder
from opensri.core.notifications import EmailSender, NotificationDispatcher, SMTPEmailSender
from opensri.core.submission import RetryScheduler, SubmissionCoordinator, ThreadingRetryScheduler
from opensri.exceptions import OpenSRIError
from opensri.services.pdf import DocumentPDFRenderer, PDFRendererConfig
from opensri.sri.client import HttpTaxAuthorityClient, TaxAuthorityClient
from opensri.storage.database.base import init_db
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.storage.orders import OrderRepository
from opensri.utils.config import Settings, get_settings
from opensri.utils.logging import get_logger
from opensri.utils.retry import RetryPolicy

logger = get_logger(__name__)


@contextmanager
def _guard(stage: str, **context: Any) -> Iterator[None]:
    try:
        yield
    except OpenSRIError as e:
        logger.error(
            f"{stage}_failed",
            error=e.message,
            error_type=type(e).__name__,
            error_context=e.context,
            **context,
        )
    except Exception as e:
        logger.error(
            f"{stage}_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
            **context,
        )


@dataclass
class FiscalPipeline:
    """The assembled pipeline: components plus their event subscriptions."""

    session_factory: sessionmaker[Session]
    event_bus: GlobalEventBus
    store: SQLAlchemyDocumentStore
    orders: OrderRepository
    factory: DocumentFactory
    coordinator: SubmissionCoordinator
    scheduler: RetryScheduler
    artifacts: ArtifactPipeline
    notifications: NotificationDispatcher
    ledger: LedgerRecorder
    admin: AdminDocumentService

    @classmethod
    def build(
        cls,
        session_factory: sessionmaker[Session],
        client: TaxAuthorityClient,
        sender: EmailSender,
        scheduler: RetryScheduler,
        archive_dir,
        renderer: DocumentRenderer | None = None,
        event_bus: GlobalEventBus | None = None,
        policy: RetryPolicy | None = None,
        from_address: str = "facturacion@opensri.local",
        issuer_name: str = "OpenSRI Marketplace",
        currency: str = "USD",
    ) -> FiscalPipeline:
        """Assemble components around explicit collaborators and wire the handlers."""
        event_bus = event_bus or GlobalEventBus()
        store = SQLAlchemyDocumentStore(session_factory)
        orders = OrderRepository(session_factory)
        storage = ArtifactStorage(archive_dir)

        factory = DocumentFactory(store, orders, currency=currency)
        coordinator = SubmissionCoordinator(
            store, client, scheduler, event_bus, policy or RetryPolicy()
        )
        artifacts = ArtifactPipeline(store, storage, renderer or DocumentPDFRenderer())
        notifications = NotificationDispatcher(
            store, storage, sender, from_address=from_address, issuer_name=issuer_name
        )
        ledger = LedgerRecorder(session_factory, orders)
        admin = AdminDocumentService(store, factory, coordinator, artifacts, scheduler, event_bus)

        pipeline = cls(
            session_factory=session_factory,
            event_bus=event_bus,
            store=store,
            orders=orders,
            factory=factory,
            coordinator=coordinator,
            scheduler=scheduler,
            artifacts=artifacts,
            notifications=notifications,
            ledger=ledger,
            admin=admin,
        )
        pipeline.wire()
        return pipeline

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        scheduler: RetryScheduler | None = None,
    ) -> FiscalPipeline:
        """Production assembly from settings; retries use timers unless ``scheduler`` is given."""
        settings = settings or get_settings()
        settings.ensure_directories()
        session_factory = init_db(str(settings.database_url))

        event_bus = GlobalEventBus()
        register_default_listeners(event_bus)

        return cls.build(
            session_factory=session_factory,
            client=HttpTaxAuthorityClient.from_settings(settings),
            sender=SMTPEmailSender.from_settings(settings),
            scheduler=scheduler or ThreadingRetryScheduler(),
            archive_dir=settings.archive_dir,
            renderer=DocumentPDFRenderer(PDFRendererConfig.from_settings(settings)),
            event_bus=event_bus,
            policy=RetryPolicy.from_settings(settings),
            from_address=settings.email_from,
            issuer_name=settings.issuer_name,
            currency=settings.currency,
        )

    def wire(self) -> None:
        """Subscribe the pipeline handlers and bind the retry scheduler."""
        subscriptions: list[tuple[type, Callable[[Any], None], int]] = [
            (OrderCompletedEvent, self.on_order_completed_issue_document, 10),
            (OrderCompletedEvent, self.on_order_completed_record_sale, 5),
            (DocumentGeneratedEvent, self.on_document_generated, 0),
            (DocumentAuthorizedEvent, self.on_document_authorized, 0),
        ]
        for event_type, handler, priority in subscriptions:
            if not self.event_bus.is_subscribed(event_type, handler):
                self.event_bus.subscribe(event_type, handler, priority=priority)
        self.scheduler.bind(self.deliver_retry)

    def order_completed(self, order_id: int) -> None:
        """Entry point for checkout: publish OrderCompleted for ``order_id``."""
        self.event_bus.publish(OrderCompletedEvent(order_id=order_id))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_order_completed_issue_document(self, event: OrderCompletedEvent) -> None:
        with _guard("document_issue", order_id=event.order_id):
            document, created = self.factory.from_order(event.order_id)
            if created:
                self.event_bus.publish(
                    DocumentGeneratedEvent(
                        document_id=document.id,
                        document_number=document.document_number,
                        kind=document.kind.value,
                        source_order_id=event.order_id,
                    )
                )

    def on_order_completed_record_sale(self, event: OrderCompletedEvent) -> None:
        with _guard("ledger_record", order_id=event.order_id):
            self.ledger.record(event.order_id)

    def on_document_generated(self, event: DocumentGeneratedEvent) -> None:
        with _guard("document_submit", document_id=event.document_id):
            self.coordinator.submit(event.document_id)

    def on_document_authorized(self, event: DocumentAuthorizedEvent) -> None:
        pdf_ready = False
        with _guard("document_pdf", document_id=event.document_id):
            self.artifacts.ensure_pdf(event.document_id)
            pdf_ready = True

        if not pdf_ready:
            # The email needs the attachment; the undelivered list shows it
            return

        with _guard("document_email", document_id=event.document_id):
            self.notifications.ensure_emailed(event.document_id)

    def deliver_retry(self, document_id: int) -> None:
        with _guard("document_retry", document_id=document_id):
            self.coordinator.submit(document_id)
