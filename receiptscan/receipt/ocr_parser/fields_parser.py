"""Merchant/date/summary amount extraction helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Literal, get_args

from receiptscan.domain.ocr import OcrLine
from receiptscan.domain.receipt import LineKind, ReceiptField

from .common import PriceToken, classify_keyword_line, find_price_tokens, has_letters

DateFormat = Literal["iso", "mdy", "dmy", "month_name"]
DATE_FORMATS: tuple[DateFormat, ...] = get_args(DateFormat)

# Specificity of each extraction pattern, scaled by the line's OCR confidence
KNOWN_MERCHANT_SPECIFICITY = 1.0
FIRST_LINE_MERCHANT_SPECIFICITY = 0.9
MERCHANT_LINE_DECAY = 0.1
DATE_SPECIFICITY = {
    "iso": 0.95,
    "month_name": 0.9,
    "numeric_unambiguous": 0.8,
    "numeric_ambiguous": 0.5,
}

MONTHS = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}

ISO_DATE_PATTERN = re.compile(r"(?<!\d)(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?!\d)")
NUMERIC_DATE_PATTERN = re.compile(r"(?<!\d)(\d{1,2})[-/.](\d{1,2})[-/.](\d{4}|\d{2})(?!\d)")
MONTH_FIRST_PATTERN = re.compile(
    r"\b(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)[A-Z]*\.?\s+(\d{1,2})(?:ST|ND|RD|TH)?,?\s+(\d{4}|\d{2})\b",
    re.IGNORECASE,
)
DAY_FIRST_PATTERN = re.compile(
    r"\b(\d{1,2})\s+(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)[A-Z]*\.?,?\s+(\d{4}|\d{2})\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SummaryCandidate:
    """An amount found on a subtotal/tax/total line."""

    kind: LineKind
    token: PriceToken
    line_index: int
    line_confidence: float


def expand_year(year: int) -> int:
    """Map two-digit years: 00-69 -> 2000s, 70-99 -> 1900s."""
    if year >= 100:
        return year
    return 2000 + year if year <= 69 else 1900 + year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(expand_year(year), month, day)
    except ValueError:
        return None


def _match_iso(text: str) -> tuple[date, str] | None:
    for match in ISO_DATE_PATTERN.finditer(text):
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed, "iso"
    return None


def _match_month_name(text: str) -> tuple[date, str] | None:
    for match in MONTH_FIRST_PATTERN.finditer(text):
        month = MONTHS[match.group(1).upper()[:3]]
        parsed = _safe_date(int(match.group(3)), month, int(match.group(2)))
        if parsed:
            return parsed, "month_name"
    for match in DAY_FIRST_PATTERN.finditer(text):
        month = MONTHS[match.group(2).upper()[:3]]
        parsed = _safe_date(int(match.group(3)), month, int(match.group(1)))
        if parsed:
            return parsed, "month_name"
    return None


def _match_numeric(text: str, fmt: DateFormat) -> tuple[date, str] | None:
    for match in NUMERIC_DATE_PATTERN.finditer(text):
        first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if fmt == "mdy":
            parsed, alternate = _safe_date(year, first, second), _safe_date(year, second, first)
        else:
            parsed, alternate = _safe_date(year, second, first), _safe_date(year, first, second)
        if parsed is None:
            continue
        ambiguous = alternate is not None and alternate != parsed
        return parsed, "numeric_ambiguous" if ambiguous else "numeric_unambiguous"
    return None


def _match_date(text: str, formats: tuple[DateFormat, ...]) -> tuple[date, str, DateFormat] | None:
    for fmt in formats:
        if fmt == "iso":
            found = _match_iso(text)
        elif fmt == "month_name":
            found = _match_month_name(text)
        else:
            found = _match_numeric(text, fmt)
        if found:
            return found[0], found[1], fmt
    return None


def extract_date(lines: tuple[OcrLine, ...], formats: tuple[DateFormat, ...]) -> ReceiptField[date] | None:
    """
    Find the purchase date anywhere in the document.

    Lines are scanned top to bottom; on each line the configured formats are
    tried in order. Confidence reflects how specific the matched pattern is.
    """
    for index, line in enumerate(lines):
        found = _match_date(line.text, formats)
        if found is None:
            continue
        parsed, shape, fmt = found
        pattern = fmt if shape in ("iso", "month_name") else f"{fmt}:{shape.removeprefix('numeric_')}"
        return ReceiptField(
            value=parsed,
            confidence=DATE_SPECIFICITY[shape] * line.confidence,
            pattern=pattern,
            source_line_index=index,
        )
    return None


def _clean_merchant(text: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[^\w\s&'-]", "", text)).strip()


def extract_merchant(
    lines: tuple[OcrLine, ...],
    known_merchants: tuple[str, ...] = (),
    search_lines: int = 5,
) -> ReceiptField[str] | None:
    """
    Extract the merchant name.

    Strategy order:
    1. Configured known merchants anywhere in the text (longest match first)
    2. First of the first ``search_lines`` non-empty lines that has letters and
       matches no price, date, or non-item keyword pattern
    """
    # Longer names first so "REAL CANADIAN SUPERSTORE" wins over "SUPERSTORE"
    for merchant in sorted(known_merchants, key=len, reverse=True):
        pattern = re.compile(r"\b" + re.escape(merchant.upper()) + r"\b")
        for index, line in enumerate(lines):
            if pattern.search(line.text.upper()):
                return ReceiptField(
                    value=merchant,
                    confidence=KNOWN_MERCHANT_SPECIFICITY * line.confidence,
                    pattern="known_merchant",
                    source_line_index=index,
                )

    position = 0
    for index, line in enumerate(lines):
        text = line.text.strip()
        if not text:
            continue
        if position >= search_lines:
            break
        position += 1

        if not has_letters(text) or find_price_tokens(text):
            continue
        if _match_date(text, DATE_FORMATS) or classify_keyword_line(text, has_price=False):
            continue
        cleaned = _clean_merchant(text)
        if len(cleaned) < 2:
            continue
        specificity = max(0.0, FIRST_LINE_MERCHANT_SPECIFICITY - MERCHANT_LINE_DECAY * (position - 1))
        return ReceiptField(
            value=cleaned,
            confidence=specificity * line.confidence,
            pattern="first_text_line",
            source_line_index=index,
        )
    return None


def select_summary_fields(
    candidates: list[SummaryCandidate],
) -> tuple[ReceiptField[Decimal] | None, ReceiptField[Decimal] | None, ReceiptField[Decimal] | None]:
    """
    Pick (subtotal, tax, total) from summary-line amounts.

    Subtotal and tax take the first matching line; total takes the last, since
    payment sections sometimes repeat an earlier running total.
    """

    def to_field(candidate: SummaryCandidate | None) -> ReceiptField[Decimal] | None:
        if candidate is None:
            return None
        return ReceiptField(
            value=candidate.token.value,
            confidence=candidate.token.strength * candidate.line_confidence,
            pattern=candidate.token.pattern,
            source_line_index=candidate.line_index,
        )

    subtotal = next((c for c in candidates if c.kind == "subtotal"), None)
    tax = next((c for c in candidates if c.kind == "tax"), None)
    total = next((c for c in reversed(candidates) if c.kind == "total"), None)
    return to_field(subtotal), to_field(tax), to_field(total)
