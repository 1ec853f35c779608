"""Tests for identification and document number validators."""

import pytest

from opensri.exceptions import ValidationError
from opensri.utils.validators import (
    CEDULA_CODE,
    RUC_CODE,
    format_document_number,
    identification_type_for,
)


@pytest.mark.parametrize(
    "id_number, expected",
    [
        ("1712345678", CEDULA_CODE),
        ("1790012345001", RUC_CODE),
        ("  0912345678 ", CEDULA_CODE),
    ],
)
def test_identification_type(id_number, expected):
    assert identification_type_for(id_number) == expected


@pytest.mark.parametrize("id_number", [None, "", "12345", "17123456789", "abcdefghij"])
def test_invalid_identification(id_number):
    with pytest.raises(ValidationError) as exc_info:
        identification_type_for(id_number)

    assert exc_info.value.context["field"] == "customer_id_number"


def test_ruc_must_end_in_001():
    with pytest.raises(ValidationError) as exc_info:
        identification_type_for("1790012345002")

    assert exc_info.value.context["constraint"] == "ruc_suffix"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("123", "001-001-000000123"),
        (45, "001-001-000000045"),
        ("000000001", "001-001-000000001"),
        ("002-003-77", "002-003-000000077"),
    ],
)
def test_format_document_number(value, expected):
    assert format_document_number(value) == expected


@pytest.mark.parametrize("value", ["0", "001-001-000000000", "1234567890", "FAC-1", ""])
def test_invalid_document_number(value):
    with pytest.raises(ValidationError):
        format_document_number(value)
