"""Pydantic models for manually entered documents (admin payloads)."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from opensri.exceptions import ValidationError
from opensri.storage.database.models import DocumentKind
from opensri.utils.validators import IDENTIFICATION_PATTERN, format_document_number

# SRI IVA codes -> rate (%)
TAX_CODE_RATES: dict[str, Decimal] = {
    "0": Decimal("0"),
    "2": Decimal("12"),
    "3": Decimal("14"),
    "4": Decimal("15"),
    "5": Decimal("5"),
    "6": Decimal("0"),  # Not subject to IVA
    "7": Decimal("0"),  # Exempt
}

DEFAULT_TAX_CODE = "4"


def tax_code_for_rate(rate: Decimal) -> str:
    """Reverse lookup used for order lines, which carry a rate but no code."""
    for code, value in TAX_CODE_RATES.items():
        if value == Decimal(rate):
            return code
    return DEFAULT_TAX_CODE


class BuyerPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id_type: str | None = Field(default=None, description="Derived from id_number when omitted")
    id_number: str = Field(..., pattern=IDENTIFICATION_PATTERN.pattern)
    name: str = Field(..., min_length=1, max_length=300)
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: str | None = Field(default=None, max_length=500)
    phone: str | None = Field(default=None, max_length=20)


class LinePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., gt=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_code: str = Field(default=DEFAULT_TAX_CODE)

    @field_validator("tax_code")
    @classmethod
    def _known_tax_code(cls, value: str) -> str:
        if value not in TAX_CODE_RATES:
            raise ValueError(f"Unknown tax code {value!r}")
        return value

    @property
    def tax_rate(self) -> Decimal:
        return TAX_CODE_RATES[self.tax_code]


class ModifiedDocumentPayload(BaseModel):
    """Document a credit note amends."""

    type: str = Field(default="01", min_length=2, max_length=2)
    number: str
    issue_date: date

    @field_validator("number")
    @classmethod
    def _normalize_number(cls, value: str) -> str:
        try:
            return format_document_number(value)
        except ValidationError as e:
            raise ValueError(e.message) from e


class DocumentPayload(BaseModel):
    """Manually entered invoice or credit note."""

    kind: DocumentKind = DocumentKind.INVOICE
    issue_date: date = Field(default_factory=date.today)
    reason: str | None = Field(default=None, max_length=500)
    modified_document: ModifiedDocumentPayload | None = None
    buyer: BuyerPayload
    lines: list[LinePayload] = Field(..., min_length=1)
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @model_validator(mode="after")
    def _credit_note_requirements(self) -> DocumentPayload:
        if self.kind is DocumentKind.CREDIT_NOTE:
            if not self.reason or len(self.reason.strip()) < 5:
                raise ValueError("Credit notes require a reason of 5 to 500 characters")
            if self.modified_document is None:
                raise ValueError("Credit notes require the modified document")
        return self
