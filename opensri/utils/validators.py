"""Validators for Ecuadorian identification numbers and document numbers."""

import re

from opensri.exceptions import ValidationError

IDENTIFICATION_PATTERN = re.compile(r"^\d{10}(\d{3})?$")
DOCUMENT_NUMBER_PATTERN = re.compile(r"^(\d{3})-(\d{3})-(\d{1,9})$")

CEDULA_CODE = "05"
RUC_CODE = "04"


def identification_type_for(id_number: str | None) -> str:
    """Return the SRI identification type code for a cédula or RUC.

    - 10 digits: cédula ("05")
    - 13 digits ending in ``001``: RUC ("04")

    Raises:
        ValidationError: If the number is missing or malformed
    """
    value = (id_number or "").strip()
    if not value:
        raise ValidationError(
            "Customer identification is required", field="customer_id_number"
        )
    if not IDENTIFICATION_PATTERN.match(value):
        raise ValidationError(
            "Identification must be a 10-digit cédula or a 13-digit RUC",
            field="customer_id_number",
            value=value,
            constraint=IDENTIFICATION_PATTERN.pattern,
        )
    if len(value) == 10:
        return CEDULA_CODE
    if not value.endswith("001"):
        raise ValidationError(
            "RUC must end in 001",
            field="customer_id_number",
            value=value,
            constraint="ruc_suffix",
        )
    return RUC_CODE


def format_document_number(
    number: str | int, establishment: str = "001", emission_point: str = "001"
) -> str:
    """Normalize a document number to ``EEE-PPP-NNNNNNNNN``.

    Accepts a bare sequence (``123``, ``000000123``) or an already formatted
    number (``001-001-123``).

    Raises:
        ValidationError: If the value is not a valid document number
    """
    value = str(number).strip()
    match = DOCUMENT_NUMBER_PATTERN.match(value)
    if match:
        establishment, emission_point, sequence = match.groups()
    elif value.isdigit() and len(value) <= 9:
        sequence = value
    else:
        raise ValidationError(
            "Invalid document number",
            field="document_number",
            value=value,
            constraint="EEE-PPP-NNNNNNNNN",
        )
    if int(sequence) == 0:
        raise ValidationError("Document number must be positive", field="document_number")
    return f"{establishment}-{emission_point}-{sequence.zfill(9)}"
