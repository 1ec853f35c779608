"""PDF generation for fiscal documents."""

from .document_generator import DocumentPDFRenderer, PDFRendererConfig

__all__ = ["DocumentPDFRenderer", "PDFRendererConfig"]
