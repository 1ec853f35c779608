"""Operator tooling for fiscal documents."""

from .service import AdminDocumentService, DocumentPage

__all__ = ["AdminDocumentService", "DocumentPage"]
