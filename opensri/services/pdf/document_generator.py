"""PDF rendering for authorized invoices and credit notes (RIDE)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen.canvas import Canvas

from opensri.storage.database.models import DocumentKind, FiscalDocument
from opensri.utils.config import Settings
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

TITLES = {
    DocumentKind.INVOICE: "FACTURA",
    DocumentKind.CREDIT_NOTE: "NOTA DE CRÉDITO",
}

ID_TYPE_LABELS = {"04": "RUC", "05": "Cédula", "06": "Pasaporte", "07": "Consumidor final"}


@dataclass
class PDFRendererConfig:
    """Issuer data printed on every document."""

    issuer_name: str = "OpenSRI Marketplace"
    issuer_ruc: str = ""
    issuer_address: str = ""
    currency_symbol: str = "$"
    primary_color: tuple[float, float, float] = (0.12, 0.27, 0.45)
    footer_text: str = "Documento generado electrónicamente"

    @classmethod
    def from_settings(cls, settings: Settings) -> PDFRendererConfig:
        return cls(
            issuer_name=settings.issuer_name,
            issuer_ruc=settings.issuer_ruc,
            issuer_address=settings.issuer_address,
        )


class DocumentPDFRenderer:
    """Draws one fiscal document on an A4 canvas.

    The layout follows the printed representation of an electronic document:
    issuer block, authorization block (access key and authorization number),
    customer block, line table and totals.
    """

    def __init__(self, config: PDFRendererConfig | None = None):
        self.config = config or PDFRendererConfig()

    def render(self, document: FiscalDocument, output_path: Path) -> Path:
        """Write the PDF for ``document`` to ``output_path``.

        Args:
            document: Authorized document with its lines loaded
            output_path: Destination file; parent directories are created

        Returns:
            The written path
        """
        data = self._document_to_dict(document)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        canvas = Canvas(str(output_path), pagesize=A4)
        canvas.setAuthor(self.config.issuer_name)
        canvas.setTitle(f"{data['title']} {data['number']}")
        canvas.setSubject(f"{data['title']} para {data['customer']['name']}")
        canvas.setCreator("OpenSRI")

        self._draw(canvas, data)
        canvas.save()

        logger.debug(
            "document_pdf_rendered",
            document_id=document.id,
            output_path=str(output_path),
            file_size=output_path.stat().st_size,
        )
        return output_path

    def _document_to_dict(self, document: FiscalDocument) -> dict[str, Any]:
        return {
            "title": TITLES[document.kind],
            "kind": document.kind,
            "number": document.formatted_number,
            "issue_date": document.issue_date.strftime("%d/%m/%Y"),
            "access_key": document.access_key or "",
            "authorization_number": document.authorization_number or "",
            "authorized_at": (
                document.authorized_at.strftime("%d/%m/%Y %H:%M:%S")
                if document.authorized_at
                else ""
            ),
            "reason": document.reason,
            "modified_document": document.modified_document_number,
            "customer": {
                "name": document.customer_name,
                "id_label": ID_TYPE_LABELS.get(document.customer_id_type, "Identificación"),
                "id_number": document.customer_id_number,
                "email": document.customer_email,
                "address": document.customer_address,
                "phone": document.customer_phone,
            },
            "lines": [
                {
                    "code": line.code,
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "discount": line.discount,
                    "subtotal": line.line_subtotal,
                }
                for line in document.lines
            ],
            "subtotal": document.subtotal,
            "tax_amount": document.tax_amount,
            "total": document.total_amount,
        }

    def _draw(self, canvas: Canvas, data: dict[str, Any]) -> None:
        _, page_height = A4
        y = page_height - 2 * cm

        y = self._draw_issuer(canvas, y)
        y -= 0.8 * cm
        y = self._draw_authorization(canvas, data, y)
        y -= 0.8 * cm
        y = self._draw_customer(canvas, data, y)
        y -= 0.8 * cm
        y = self._draw_lines(canvas, data["lines"], y)
        y -= 0.6 * cm
        self._draw_totals(canvas, data, y)
        self._draw_footer(canvas)

    def _draw_issuer(self, canvas: Canvas, y: float) -> float:
        canvas.setFont("Helvetica-Bold", 14)
        canvas.setFillColorRGB(*self.config.primary_color)
        canvas.drawString(2 * cm, y, self.config.issuer_name)
        canvas.setFillColorRGB(0, 0, 0)

        canvas.setFont("Helvetica", 9)
        if self.config.issuer_ruc:
            y -= 0.5 * cm
            canvas.drawString(2 * cm, y, f"RUC: {self.config.issuer_ruc}")
        if self.config.issuer_address:
            y -= 0.45 * cm
            canvas.drawString(2 * cm, y, self.config.issuer_address)
        return y

    def _draw_authorization(self, canvas: Canvas, data: dict[str, Any], y: float) -> float:
        canvas.setFont("Helvetica-Bold", 18)
        canvas.setFillColorRGB(*self.config.primary_color)
        canvas.drawString(2 * cm, y, data["title"])
        canvas.setFillColorRGB(0, 0, 0)

        y -= 0.7 * cm
        canvas.setFont("Helvetica-Bold", 11)
        canvas.drawString(2 * cm, y, f"No. {data['number']}")

        canvas.setFont("Helvetica", 9)
        y -= 0.5 * cm
        canvas.drawString(2 * cm, y, f"Fecha de emisión: {data['issue_date']}")

        y -= 0.5 * cm
        canvas.drawString(2 * cm, y, f"Número de autorización: {data['authorization_number']}")
        if data["authorized_at"]:
            y -= 0.45 * cm
            canvas.drawString(2 * cm, y, f"Fecha de autorización: {data['authorized_at']}")

        y -= 0.45 * cm
        canvas.drawString(2 * cm, y, "Clave de acceso:")
        y -= 0.45 * cm
        canvas.setFont("Courier", 8)
        canvas.drawString(2 * cm, y, data["access_key"])

        if data["kind"] is DocumentKind.CREDIT_NOTE:
            canvas.setFont("Helvetica", 9)
            y -= 0.55 * cm
            canvas.drawString(2 * cm, y, f"Documento modificado: {data['modified_document']}")
            if data["reason"]:
                y -= 0.45 * cm
                y = self._draw_wrapped(canvas, f"Motivo: {data['reason']}", y, size=9)
        return y

    def _draw_customer(self, canvas: Canvas, data: dict[str, Any], y: float) -> float:
        customer = data["customer"]
        canvas.setFont("Helvetica-Bold", 10)
        canvas.drawString(2 * cm, y, "Cliente:")

        canvas.setFont("Helvetica", 9)
        y -= 0.55 * cm
        canvas.drawString(2 * cm, y, customer["name"])
        y -= 0.45 * cm
        canvas.drawString(2 * cm, y, f"{customer['id_label']}: {customer['id_number']}")
        for key in ("address", "email", "phone"):
            if customer.get(key):
                y -= 0.45 * cm
                canvas.drawString(2 * cm, y, str(customer[key]))
        return y

    def _draw_lines(self, canvas: Canvas, lines: list[dict[str, Any]], y: float) -> float:
        page_width, _ = A4
        columns = [
            ("Código", 2 * cm),
            ("Descripción", 4.5 * cm),
            ("Cant.", 11.5 * cm),
            ("P. unit.", 13.5 * cm),
            ("Desc.", 15.5 * cm),
            ("Subtotal", page_width - 2 * cm),
        ]

        canvas.setFillColorRGB(*self.config.primary_color)
        canvas.rect(
            1.8 * cm, y - 0.15 * cm, page_width - 3.6 * cm, 0.6 * cm, fill=True, stroke=False
        )
        canvas.setFillColorRGB(1, 1, 1)
        canvas.setFont("Helvetica-Bold", 9)
        for label, x in columns[:-1]:
            canvas.drawString(x, y, label)
        canvas.drawRightString(columns[-1][1], y, columns[-1][0])
        canvas.setFillColorRGB(0, 0, 0)

        symbol = self.config.currency_symbol
        canvas.setFont("Helvetica", 9)
        for line in lines:
            y -= 0.55 * cm
            if y < 4 * cm:
                self._draw_footer(canvas)
                canvas.showPage()
                canvas.setFont("Helvetica", 9)
                _, page_height = A4
                y = page_height - 2 * cm
            canvas.drawString(columns[0][1], y, str(line["code"])[:14])
            description = self._truncate(canvas, line["description"], 6.7 * cm)
            canvas.drawString(columns[1][1], y, description)
            canvas.drawString(columns[2][1], y, f"{line['quantity']:g}")
            canvas.drawString(columns[3][1], y, f"{symbol}{line['unit_price']:.2f}")
            canvas.drawString(columns[4][1], y, f"{symbol}{line['discount']:.2f}")
            canvas.drawRightString(columns[5][1], y, f"{symbol}{line['subtotal']:.2f}")
        return y

    def _draw_totals(self, canvas: Canvas, data: dict[str, Any], y: float) -> float:
        page_width, _ = A4
        x_label = page_width - 8 * cm
        x_value = page_width - 2 * cm
        symbol = self.config.currency_symbol

        canvas.setStrokeColorRGB(0.8, 0.8, 0.8)
        canvas.setFillColorRGB(0.95, 0.95, 0.95)
        canvas.rect(x_label - 0.3 * cm, y - 2.2 * cm, 6.5 * cm, 2.5 * cm, fill=True, stroke=True)
        canvas.setFillColorRGB(0, 0, 0)

        canvas.setFont("Helvetica", 10)
        y -= 0.5 * cm
        canvas.drawString(x_label, y, "Subtotal:")
        canvas.drawRightString(x_value, y, f"{symbol}{data['subtotal']:.2f}")

        y -= 0.5 * cm
        canvas.drawString(x_label, y, "IVA:")
        canvas.drawRightString(x_value, y, f"{symbol}{data['tax_amount']:.2f}")

        y -= 0.7 * cm
        canvas.setFont("Helvetica-Bold", 12)
        canvas.drawString(x_label, y, "TOTAL:")
        canvas.drawRightString(x_value, y, f"{symbol}{data['total']:.2f}")
        return y

    def _draw_footer(self, canvas: Canvas) -> None:
        page_width, _ = A4
        canvas.setFont("Helvetica-Oblique", 8)
        canvas.setFillColorRGB(0.4, 0.4, 0.4)
        canvas.drawCentredString(page_width / 2, 1.5 * cm, self.config.footer_text)
        canvas.setFillColorRGB(0, 0, 0)

    @staticmethod
    def _truncate(canvas: Canvas, text: str, max_width: float, size: int = 9) -> str:
        if canvas.stringWidth(text, "Helvetica", size) <= max_width:
            return text
        while text and canvas.stringWidth(f"{text}…", "Helvetica", size) > max_width:
            text = text[:-1]
        return f"{text}…"

    @staticmethod
    def _draw_wrapped(canvas: Canvas, text: str, y: float, size: int = 9) -> float:
        max_width = 17 * cm
        line = ""
        for word in text.split():
            candidate = f"{line} {word}".strip()
            if canvas.stringWidth(candidate, "Helvetica", size) < max_width:
                line = candidate
            else:
                canvas.drawString(2 * cm, y, line)
                y -= 0.4 * cm
                line = word
        if line:
            canvas.drawString(2 * cm, y, line)
        return y
