from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from receiptscan.domain.ocr import OcrLine
from receiptscan.receipt.ocr_parser.common import find_price_tokens
from receiptscan.receipt.ocr_parser.fields_parser import (
    DATE_FORMATS,
    SummaryCandidate,
    expand_year,
    extract_date,
    extract_merchant,
    select_summary_fields,
)


def _lines(*texts: str, confidence: float = 1.0) -> tuple[OcrLine, ...]:
    return tuple(OcrLine.from_text(text, confidence) for text in texts)


def test_expand_year_pivot() -> None:
    assert expand_year(24) == 2024
    assert expand_year(69) == 2069
    assert expand_year(70) == 1970
    assert expand_year(2023) == 2023


def test_iso_date_is_most_specific() -> None:
    found = extract_date(_lines("STORE", "2024-03-15 14:02"), DATE_FORMATS)

    assert found is not None
    assert found.value == date(2024, 3, 15)
    assert found.pattern == "iso"
    assert found.confidence == 0.95
    assert found.source_line_index == 1


def test_month_name_dates() -> None:
    first = extract_date(_lines("Mar 5, 2024"), DATE_FORMATS)
    second = extract_date(_lines("05 MARCH 24"), DATE_FORMATS)

    assert first is not None and first.value == date(2024, 3, 5)
    assert second is not None and second.value == date(2024, 3, 5)
    assert first.pattern == "month_name"


def test_ambiguous_numeric_date_follows_format_order() -> None:
    mdy = extract_date(_lines("03/04/2024"), ("mdy", "dmy"))
    dmy = extract_date(_lines("03/04/2024"), ("dmy", "mdy"))

    assert mdy is not None and mdy.value == date(2024, 3, 4)
    assert dmy is not None and dmy.value == date(2024, 4, 3)
    assert mdy.pattern == "mdy:ambiguous"
    assert mdy.confidence == 0.5


def test_unambiguous_numeric_date_scores_higher() -> None:
    found = extract_date(_lines("12/25/23"), ("mdy", "dmy"))

    assert found is not None
    assert found.value == date(2023, 12, 25)
    assert found.pattern == "mdy:unambiguous"
    assert found.confidence == 0.8


def test_date_confidence_scales_with_line_confidence() -> None:
    found = extract_date(_lines("2024-03-15", confidence=0.5), DATE_FORMATS)

    assert found is not None
    assert found.confidence == pytest.approx(0.475)


def test_invalid_dates_are_skipped() -> None:
    assert extract_date(_lines("13/32/2024", "PHONE 555"), DATE_FORMATS) is None


def test_merchant_from_first_text_line() -> None:
    found = extract_merchant(_lines("** SAVE-ON-FOODS **", "123 MAIN ST", "BREAD 2.99"))

    assert found is not None
    assert found.value == "SAVE-ON-FOODS"
    assert found.pattern == "first_text_line"
    assert found.source_line_index == 0
    assert found.confidence == 0.9


def test_merchant_skips_prices_dates_and_keywords() -> None:
    found = extract_merchant(_lines("2024-01-02", "TEL 604-555-1234", "12.99", "CORNER MARKET"))

    assert found is not None
    assert found.value == "CORNER MARKET"
    assert found.confidence < 0.9


def test_known_merchant_outranks_first_line() -> None:
    found = extract_merchant(
        _lines("WELCOME TO", "Real Canadian Superstore #1520", "BREAD 2.99"),
        known_merchants=("SUPERSTORE", "REAL CANADIAN SUPERSTORE"),
    )

    assert found is not None
    assert found.value == "REAL CANADIAN SUPERSTORE"
    assert found.pattern == "known_merchant"
    assert found.confidence == 1.0


def test_merchant_search_is_bounded() -> None:
    lines = _lines("1.00", "2.00", "3.00", "LATE HEADER")

    assert extract_merchant(lines, search_lines=3) is None
    assert extract_merchant(lines, search_lines=4) is not None


def _candidate(kind: str, text: str, index: int) -> SummaryCandidate:
    return SummaryCandidate(kind, find_price_tokens(text)[-1], index, 1.0)  # type: ignore[arg-type]


def test_summary_fields_take_first_subtotal_and_last_total() -> None:
    candidates = [
        _candidate("subtotal", "SUBTOTAL 10.00", 3),
        _candidate("total", "TOTAL 11.30", 5),
        _candidate("tax", "GST 0.50", 4),
        _candidate("tax", "PST 0.80", 6),
        _candidate("total", "TOTAL $11", 8),
    ]

    subtotal, tax, total = select_summary_fields(candidates)

    assert subtotal is not None and subtotal.value == Decimal("10.00")
    assert tax is not None and tax.value == Decimal("0.50")
    assert total is not None and total.value == Decimal("11.00")
    assert total.confidence == 0.5
    assert total.source_line_index == 8


def test_summary_fields_missing() -> None:
    assert select_summary_fields([]) == (None, None, None)
