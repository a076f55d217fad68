"""Parse normalized OCR output into a ReceiptDocument.

This is a best-effort parser: it never raises on text content. Unreadable
input yields an empty, low-confidence document and the caller decides whether
to retry with different preprocessing or page segmentation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.domain.ocr import OcrResult
from receiptscan.domain.receipt import ReceiptDocument, ReceiptField, ReceiptWarning, ReconciliationResult

from .acceptance import AcceptancePolicy
from .ocr_parser import (
    DATE_FORMATS,
    DateFormat,
    ItemWeights,
    extract_date,
    extract_items,
    extract_merchant,
    select_summary_fields,
)

DEFAULT_RECONCILIATION_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ParserConfig:
    """Tunable parsing behaviour; weights are configuration, not constants."""

    merchant_search_lines: int = 5
    known_merchants: tuple[str, ...] = ()
    date_formats: tuple[DateFormat, ...] = ("iso", "mdy", "dmy", "month_name")
    ocr_weight: float = 0.4
    pattern_weight: float = 0.4
    name_weight: float = 0.2
    continuation_penalty: float = 0.1
    # Per-item tolerance when checking subtotal + tax against total
    reconciliation_tolerance: Decimal = DEFAULT_RECONCILIATION_TOLERANCE

    def __post_init__(self) -> None:
        if self.merchant_search_lines < 1:
            raise ConfigInvalid(f"merchant_search_lines must be at least 1, got {self.merchant_search_lines}")
        if not self.date_formats:
            raise ConfigInvalid("At least one date format is required")
        unknown = [fmt for fmt in self.date_formats if fmt not in DATE_FORMATS]
        if unknown:
            raise ConfigInvalid(f"Unknown date format(s) {unknown}; expected any of {', '.join(DATE_FORMATS)}")
        weights = (self.ocr_weight, self.pattern_weight, self.name_weight)
        if any(weight < 0 for weight in weights) or sum(weights) <= 0:
            raise ConfigInvalid("Item confidence weights must be non-negative with a positive sum")
        if not 0.0 <= self.continuation_penalty < 1.0:
            raise ConfigInvalid(f"continuation_penalty must be within [0, 1), got {self.continuation_penalty}")
        if self.reconciliation_tolerance < 0:
            raise ConfigInvalid("reconciliation_tolerance must not be negative")

    @property
    def item_weights(self) -> ItemWeights:
        return ItemWeights(
            ocr=self.ocr_weight,
            pattern=self.pattern_weight,
            name=self.name_weight,
            continuation_penalty=self.continuation_penalty,
        )


def reconcile_totals(
    subtotal: ReceiptField[Decimal] | None,
    tax: ReceiptField[Decimal] | None,
    total: ReceiptField[Decimal] | None,
    item_count: int,
    per_item_tolerance: Decimal = DEFAULT_RECONCILIATION_TOLERANCE,
) -> ReconciliationResult:
    """
    Check subtotal + tax against total.

    Tolerance is one cent per item (at least one cent) to absorb per-line
    rounding. Missing fields skip the check; a mismatch is reported, never raised.
    """
    if subtotal is None or tax is None or total is None:
        return ReconciliationResult(status="skipped")

    expected = subtotal.value + tax.value
    difference = abs(expected - total.value)
    tolerance = per_item_tolerance * max(1, item_count)
    return ReconciliationResult(
        status="matched" if difference <= tolerance else "mismatched",
        expected=expected,
        actual=total.value,
        difference=difference,
        tolerance=tolerance,
    )


def parse_receipt(
    ocr_result: OcrResult,
    config: ParserConfig | None = None,
    policy: AcceptancePolicy | None = None,
) -> ReceiptDocument:
    """
    Parse an OCR result into a ReceiptDocument.

    Args:
        ocr_result: Normalized OCR output (confidences already on [0, 1])
        config: Parsing options; defaults to ParserConfig()
        policy: Acceptance policy applied to the parsed document

    Returns:
        ReceiptDocument with accepted flags, overall confidence, review status
        and recommendations filled in
    """
    config = config or ParserConfig()
    lines = ocr_result.lines

    merchant = extract_merchant(lines, config.known_merchants, config.merchant_search_lines)
    purchase_date = extract_date(lines, config.date_formats)
    scan = extract_items(
        lines,
        config.item_weights,
        merchant_index=merchant.source_line_index if merchant else None,
        date_index=purchase_date.source_line_index if purchase_date else None,
    )
    subtotal, tax, total = select_summary_fields(scan.summary_candidates)

    warnings = list(scan.warnings)
    reconciliation = reconcile_totals(subtotal, tax, total, len(scan.items), config.reconciliation_tolerance)
    if reconciliation.is_mismatch:
        warnings.append(
            ReceiptWarning(
                f"Subtotal {subtotal.value if subtotal else None} + tax {tax.value if tax else None} "
                f"= {reconciliation.expected} does not match total {reconciliation.actual}",
                line_index=total.source_line_index if total else None,
            )
        )

    non_empty = [kind for line, kind in zip(lines, scan.line_kinds) if line.text.strip()]
    classified = sum(1 for kind in non_empty if kind != "unclassified")
    line_coverage = classified / len(non_empty) if non_empty else 0.0

    document = ReceiptDocument(
        items=tuple(scan.items),
        merchant_name=merchant,
        purchase_date=purchase_date,
        subtotal=subtotal,
        tax=tax,
        total=total,
        ocr_confidence=ocr_result.confidence,
        line_coverage=line_coverage,
        line_kinds=tuple(scan.line_kinds),
        reconciliation=reconciliation,
        warnings=tuple(warnings),
        page_seg_mode=ocr_result.page_seg_mode,
        engine_mode=ocr_result.engine_mode,
        raw_text=ocr_result.text,
    )
    return (policy or AcceptancePolicy()).apply(document)
