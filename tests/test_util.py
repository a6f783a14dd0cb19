from __future__ import annotations

import re
from datetime import date

import pytest

from nhs_records_export.util.dates import find_uk_date, parse_uk_date, to_filename_date
from nhs_records_export.util.filenames import extension_from_hint, generate_document_filename
from nhs_records_export.util.nhs_number import format_nhs_number


ARABIC_INDIC_NHS_NUMBER = "\u0669\u0664\u0663\u0664\u0667\u0666\u0665\u0669\u0661\u0669"


@pytest.mark.parametrize("raw", ["9434765919", "943 476 5919", "943-476-5919", " 943476 5919 "])
def test_format_nhs_number(raw: str) -> None:
    assert format_nhs_number(raw) == "943 476 5919"


@pytest.mark.parametrize(
    "raw",
    ["", "943476591", "94347659190", "not a number", ARABIC_INDIC_NHS_NUMBER],
)
def test_format_nhs_number_rejects_wrong_length(raw: str) -> None:
    with pytest.raises(ValueError):
        format_nhs_number(raw)


def test_parse_uk_date_formats() -> None:
    assert parse_uk_date("21 July 2025") == date(2025, 7, 21)
    assert parse_uk_date("3 Jan 2024") == date(2024, 1, 3)
    assert parse_uk_date("03/01/2024") == date(2024, 1, 3)  # day first


def test_parse_uk_date_rejects_empty() -> None:
    with pytest.raises(ValueError):
        parse_uk_date("  ")


def test_find_uk_date() -> None:
    assert find_uk_date("Letter added on 21 July 2025") == "21 July 2025"
    assert find_uk_date("Scan (no date)") is None


def test_to_filename_date_falls_back_to_today() -> None:
    today = date(2024, 5, 6)
    assert to_filename_date("21 July 2025", today=today) == "2025-07-21"
    assert to_filename_date("Unknown", today=today) == "2024-05-06"
    assert to_filename_date(None, today=today) == "2024-05-06"


def test_generate_document_filename() -> None:
    name = generate_document_filename("2025-07-21", "Letter", "PDF")
    assert re.fullmatch(r"2025-07-21_letter_[0-9a-f]{8}\.pdf", name)

    assert generate_document_filename("2025-07-21", "Test Result", "", suffix="deadbeef") == (
        "2025-07-21_test-result_deadbeef.bin"
    )


def test_generate_document_filename_is_unique() -> None:
    names = {generate_document_filename("2025-07-21", "Letter", "pdf") for _ in range(20)}
    assert len(names) == 20


def test_extension_from_hint() -> None:
    assert extension_from_hint("(PDF)") == "pdf"
    assert extension_from_hint(" ( DOCX ) ") == "docx"
    assert extension_from_hint("") == ""
