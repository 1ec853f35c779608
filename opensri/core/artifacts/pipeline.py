"""Exactly-once PDF generation for authorized documents."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from opensri.core.artifacts.storage import ArtifactStorage
from opensri.exceptions import ArtifactGenerationError, DocumentStateError
from opensri.storage.database.models import DocumentStatus, FiscalDocument
from opensri.storage.documents import SQLAlchemyDocumentStore
from opensri.utils.logging import LogPerformance, get_logger

logger = get_logger(__name__)


class DocumentRenderer(Protocol):
    def render(self, document: FiscalDocument, output_path: Path) -> Path: ...


def artifact_path_for(document: FiscalDocument) -> str:
    """Storage path of the document PDF, e.g. ``invoices/000000001.pdf``."""
    return f"{document.kind.storage_folder}/{document.document_number}.pdf"


class ArtifactPipeline:
    """Renders a document PDF once, no matter how many workers ask."""

    def __init__(
        self,
        store: SQLAlchemyDocumentStore,
        storage: ArtifactStorage,
        renderer: DocumentRenderer,
    ):
        self.store = store
        self.storage = storage
        self.renderer = renderer

    def ensure_pdf(self, document_id: int) -> str:
        """Return the stored PDF path, rendering it if needed.

        Concurrent callers all render to private temporary files. The first to
        publish its file keeps it, the others drop theirs. The file is in place
        before ``pdf_path`` is recorded, so a recorded path always points at a
        complete PDF unless the file was removed afterwards.

        Raises:
            DocumentStateError: If the document is not AUTHORIZED
            ArtifactGenerationError: If rendering fails (status is untouched)
        """
        document = self.store.get(document_id)
        if document.status is not DocumentStatus.AUTHORIZED:
            raise DocumentStateError(
                "Only authorized documents have a PDF",
                document_id=document_id,
                current_state=document.status.value,
                attempted_action="ensure_pdf",
            )

        if document.pdf_path and self.storage.exists(document.pdf_path):
            return document.pdf_path

        relative_path = document.pdf_path or artifact_path_for(document)
        if not self.storage.exists(relative_path):
            temporary = self.storage.temporary_path(relative_path)
            self._render(document, temporary)
            if self.storage.promote(temporary, relative_path) and document.pdf_path:
                logger.warning(
                    "document_pdf_regenerated",
                    document_id=document_id,
                    pdf_path=relative_path,
                )

        if document.pdf_path:
            return document.pdf_path

        if self.store.set_pdf_path(document_id, relative_path):
            logger.info("document_pdf_generated", document_id=document_id, pdf_path=relative_path)
            return relative_path

        stored = self.store.get(document_id).pdf_path
        logger.info(
            "document_pdf_already_generated",
            document_id=document_id,
            pdf_path=stored,
        )
        return stored or relative_path

    def _render(self, document: FiscalDocument, temporary: Path) -> None:
        try:
            with LogPerformance("pdf_render", logger, document_id=document.id):
                self.renderer.render(document, temporary)
        except Exception as e:
            self.storage.discard(temporary)
            raise ArtifactGenerationError(
                f"Could not render PDF for document {document.id}",
                context={"document_id": document.id},
                original_error=e,
            ) from e
