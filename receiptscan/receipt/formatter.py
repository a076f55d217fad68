"""Format ReceiptDocument data for human review."""

import json
from decimal import Decimal
from typing import Any

from receiptscan.domain.receipt import CandidateItem, ReceiptDocument, ReceiptField, ReceiptWarning


def _format_amount(amount: Decimal | None) -> str:
    return "-" if amount is None else f"{amount:.2f}"


def _format_field(label: str, receipt_field: ReceiptField[Any] | None) -> str:
    if receipt_field is None:
        return f"{label}: (not found)"
    value = receipt_field.value
    if isinstance(value, Decimal):
        value = _format_amount(value)
    elif hasattr(value, "isoformat"):
        value = value.isoformat()
    return f"{label}: {value}  [{receipt_field.confidence:.0%} {receipt_field.pattern}]"


def _format_rows_aligned(rows: list[tuple[str, str, str | None]], indent: str = "  ") -> list[str]:
    """
    Format item rows with aligned amounts and comments.

    Args:
        rows: List of (label, amount, comment_or_none) tuples
        indent: Indentation prefix for each line

    Returns:
        List of formatted lines with aligned amounts and comments
    """
    if not rows:
        return []

    max_label_len = max(len(label) for label, _, _ in rows)
    max_amount_len = max(len(amount) for _, amount, _ in rows)

    lines = []
    for label, amount, comment in rows:
        base = f"{indent}{label.ljust(max_label_len)}  {amount.rjust(max_amount_len)}"
        lines.append(f"{base}  ; {comment}" if comment else base)
    return lines


def _item_row(item: CandidateItem) -> tuple[str, str, str | None]:
    label = item.name if item.quantity == 1 else f"{item.quantity} x {item.name}"
    comment = f"{item.confidence:.0%}"
    if item.unit_price is not None and item.quantity > 1:
        comment += f", @ {_format_amount(item.unit_price)}"
    if not item.accepted:
        comment += ", low confidence"
    return label, _format_amount(item.price), comment


def _warnings_by_line(warnings: tuple[ReceiptWarning, ...]) -> dict[int | None, list[str]]:
    by_line: dict[int | None, list[str]] = {}
    for warning in warnings:
        by_line.setdefault(warning.line_index, []).append(warning.message)
    return by_line


def format_review(document: ReceiptDocument, show_low_confidence: bool = False) -> str:
    """
    Render a parsed receipt as plain text for review.

    Low-confidence items are hidden unless requested; the count of hidden
    items is always shown so nothing disappears silently.
    """
    lines = [
        f"Receipt review: {document.review_status} ({document.confidence:.0%} overall, "
        f"OCR {document.ocr_confidence:.0%}, coverage {document.line_coverage:.0%})",
        _format_field("Merchant", document.merchant_name),
        _format_field("Date", document.purchase_date),
        "",
        "Items:",
    ]

    items = document.items if show_low_confidence else document.visible_items
    warnings = _warnings_by_line(document.warnings)
    item_lines = _format_rows_aligned([_item_row(item) for item in items])
    for item, item_line in zip(items, item_lines):
        lines.append(item_line)
        for message in warnings.pop(item.source_line_index, []):
            lines.append(f"  ! {message}")
    if not items:
        lines.append("  (none)")

    hidden = len(document.low_confidence_items)
    if hidden and not show_low_confidence:
        lines.append(f"  ({hidden} low-confidence item(s) hidden)")

    lines.append("")
    lines.append(_format_field("Subtotal", document.subtotal))
    lines.append(_format_field("Tax", document.tax))
    lines.append(_format_field("Total", document.total))
    reconciliation = document.reconciliation
    if reconciliation.status != "skipped":
        lines.append(
            f"Reconciliation: {reconciliation.status} "
            f"(difference {_format_amount(reconciliation.difference)}, tolerance {_format_amount(reconciliation.tolerance)})"
        )

    remaining = [message for messages in warnings.values() for message in messages]
    if remaining:
        lines.append("")
        lines.extend(f"! {message}" for message in remaining)

    if document.recommendations:
        lines.append("")
        lines.append("Recommendations:")
        lines.extend(f"- {rec}" for rec in document.recommendations)

    return "\n".join(lines)


def format_json(document: ReceiptDocument, include_low_confidence: bool = True) -> str:
    """Serialize a document to indented JSON (amounts as strings)."""
    return json.dumps(document.to_dict(include_low_confidence=include_low_confidence), indent=2)
