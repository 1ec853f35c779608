"""Exactly-once customer email for authorized documents."""

from __future__ import annotations

from email.message import EmailMessage

from opensri.core.artifacts.storage import ArtifactStorage
from opensri.core.notifications.email import EmailSender
from opensri.exceptions import ArtifactMissingError, DocumentStateError, NotificationError
from opensri.storage.database.models import DocumentKind, DocumentStatus, FiscalDocument
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

SUBJECTS = {
    DocumentKind.INVOICE: "Factura electrónica {number}",
    DocumentKind.CREDIT_NOTE: "Nota de crédito electrónica {number}",
}


class NotificationDispatcher:
    """Sends the authorized document PDF to the customer once.

    ``email_sent_at`` is the fence: it is checked before sending and set
    (compare-and-set from NULL) only after the transport accepted the message.
    """

    def __init__(
        self,
        store: SQLAlchemyDocumentStore,
        storage: ArtifactStorage,
        sender: EmailSender,
        from_address: str,
        issuer_name: str = "OpenSRI Marketplace",
    ):
        self.store = store
        self.storage = storage
        self.sender = sender
        self.from_address = from_address
        self.issuer_name = issuer_name

    def ensure_emailed(self, document_id: int) -> bool:
        """Email the document if it was not emailed yet.

        Returns:
            True if a message was sent by this call, False if already sent

        Raises:
            DocumentStateError: If the document is not AUTHORIZED
            ArtifactMissingError: If the PDF was not generated or is missing
            NotificationError: If the customer has no email or delivery failed
        """
        document = self.store.get(document_id)
        if document.email_sent_at is not None:
            logger.debug("document_already_emailed", document_id=document_id)
            return False

        if document.status is not DocumentStatus.AUTHORIZED:
            raise DocumentStateError(
                "Only authorized documents are emailed",
                document_id=document_id,
                current_state=document.status.value,
                attempted_action="ensure_emailed",
            )
        if not document.pdf_path or not self.storage.exists(document.pdf_path):
            raise ArtifactMissingError(
                "Document PDF is not available",
                context={"document_id": document_id, "pdf_path": document.pdf_path},
            )
        if not document.customer_email:
            raise NotificationError(
                "Customer has no email address", context={"document_id": document_id}
            )

        message = self._build_message(document)
        try:
            self.sender.send(message)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(
                f"Could not email document {document_id}",
                context={"document_id": document_id, "recipient": document.customer_email},
                original_error=e,
            ) from e

        if not self.store.mark_emailed(document_id):
            logger.warning("document_email_fence_already_set", document_id=document_id)
        logger.info(
            "document_emailed",
            document_id=document_id,
            recipient=document.customer_email,
        )
        return True

    def _build_message(self, document: FiscalDocument) -> EmailMessage:
        number = document.formatted_number
        message = EmailMessage()
        message["Subject"] = SUBJECTS[document.kind].format(number=number)
        message["From"] = self.from_address
        message["To"] = document.customer_email
        message.set_content(
            f"Estimado/a {document.customer_name},\n\n"
            f"Adjuntamos su documento electrónico {number} autorizado por el SRI.\n"
            f"Número de autorización: {document.authorization_number or '-'}\n"
            f"Total: {document.currency} {document.total_amount:.2f}\n\n"
            f"{self.issuer_name}\n"
        )
        message.add_attachment(
            self.storage.read_bytes(document.pdf_path),
            maintype="application",
            subtype="pdf",
            filename=f"{number}.pdf",
        )
        return message
