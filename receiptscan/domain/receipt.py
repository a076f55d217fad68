"""Data models for parsed receipts and their candidate line items."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

MAX_ITEM_NAME_LENGTH = 200

LineKind = Literal[
    "item",
    "item_continuation",
    "quantity_modifier",
    "merchant",
    "date",
    "subtotal",
    "tax",
    "total",
    "summary_other",
    "tender",
    "change",
    "barcode",
    "contact",
    "footer",
    "unclassified",
]
ReconciliationStatus = Literal["matched", "mismatched", "skipped"]
ReviewStatus = Literal["excellent", "good", "fair", "poor"]


def _amount_to_json(amount: Decimal | None) -> str | None:
    return None if amount is None else str(amount)


@dataclass(frozen=True)
class ReceiptField(Generic[T]):
    """An extracted receipt-level value with the pattern that produced it."""

    value: T
    confidence: float
    pattern: str
    source_line_index: int | None = None


@dataclass(frozen=True)
class ReceiptWarning:
    """Parser warning, optionally anchored to an OCR line."""

    message: str
    line_index: int | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of checking subtotal + tax against total."""

    status: ReconciliationStatus
    expected: Decimal | None = None
    actual: Decimal | None = None
    difference: Decimal | None = None
    tolerance: Decimal | None = None

    @property
    def is_mismatch(self) -> bool:
        return self.status == "mismatched"


@dataclass(frozen=True)
class CandidateItem:
    """A machine-extracted line item pending human review.

    Items below the acceptance thresholds are still valid objects; filtering
    happens when the document is presented, never at construction.
    """

    name: str
    source_line_index: int
    confidence: float
    quantity: int = 1
    unit_price: Decimal | None = None
    line_total: Decimal | None = None
    ocr_confidence: float = 0.0
    price_confidence: float = 0.0
    name_confidence: float = 0.0
    price_pattern: str = "none"
    quantity_detected: bool = False
    raw_text: str = ""
    accepted: bool = False

    def __post_init__(self) -> None:
        trimmed = self.name.strip()
        if not trimmed:
            raise ValueError("Candidate item name must not be empty")
        if len(trimmed) > MAX_ITEM_NAME_LENGTH:
            raise ValueError(f"Candidate item name exceeds {MAX_ITEM_NAME_LENGTH} characters")
        if trimmed != self.name:
            object.__setattr__(self, "name", trimmed)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValueError(f"Candidate item quantity must be a positive integer, got {self.quantity!r}")
        for label in ("confidence", "ocr_confidence", "price_confidence", "name_confidence"):
            value = getattr(self, label)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{label} must be within [0, 1], got {value!r}")

    @property
    def price(self) -> Decimal | None:
        """Line total when known, else unit price."""
        return self.line_total if self.line_total is not None else self.unit_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "quantityDetected": self.quantity_detected,
            "unitPrice": _amount_to_json(self.unit_price),
            "lineTotal": _amount_to_json(self.line_total),
            "sourceLineIndex": self.source_line_index,
            "confidence": round(self.confidence, 4),
            "ocrConfidence": round(self.ocr_confidence, 4),
            "priceConfidence": round(self.price_confidence, 4),
            "nameConfidence": round(self.name_confidence, 4),
            "pricePattern": self.price_pattern,
            "accepted": self.accepted,
            "rawText": self.raw_text,
        }


def _field_to_json(receipt_field: ReceiptField[Any] | None) -> dict[str, Any]:
    if receipt_field is None:
        return {"value": None, "confidence": 0.0, "pattern": None, "sourceLineIndex": None}
    value = receipt_field.value
    if isinstance(value, Decimal):
        value = _amount_to_json(value)
    elif isinstance(value, date):
        value = value.isoformat()
    return {
        "value": value,
        "confidence": round(receipt_field.confidence, 4),
        "pattern": receipt_field.pattern,
        "sourceLineIndex": receipt_field.source_line_index,
    }


@dataclass(frozen=True)
class ReceiptDocument:
    """Parser output: receipt metadata plus ordered candidate items."""

    items: tuple[CandidateItem, ...] = ()
    merchant_name: ReceiptField[str] | None = None
    purchase_date: ReceiptField[date] | None = None
    subtotal: ReceiptField[Decimal] | None = None
    tax: ReceiptField[Decimal] | None = None
    total: ReceiptField[Decimal] | None = None
    confidence: float = 0.0
    ocr_confidence: float = 0.0
    line_coverage: float = 0.0
    line_kinds: tuple[LineKind, ...] = ()
    reconciliation: ReconciliationResult = field(default_factory=lambda: ReconciliationResult(status="skipped"))
    warnings: tuple[ReceiptWarning, ...] = ()
    review_status: ReviewStatus = "poor"
    recommendations: tuple[str, ...] = ()
    page_seg_mode: str | None = None
    engine_mode: str | None = None
    preprocessing_applied: tuple[str, ...] = ()
    raw_text: str = ""

    @property
    def visible_items(self) -> tuple[CandidateItem, ...]:
        """Items shown by default in review."""
        return tuple(item for item in self.items if item.accepted)

    @property
    def low_confidence_items(self) -> tuple[CandidateItem, ...]:
        """Items hidden behind the "show low-confidence" toggle."""
        return tuple(item for item in self.items if not item.accepted)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self, include_low_confidence: bool = True) -> dict[str, Any]:
        items = self.items if include_low_confidence else self.visible_items
        return {
            "merchantName": _field_to_json(self.merchant_name),
            "purchaseDate": _field_to_json(self.purchase_date),
            "subtotal": _field_to_json(self.subtotal),
            "tax": _field_to_json(self.tax),
            "total": _field_to_json(self.total),
            "items": [item.to_dict() for item in items],
            "hiddenItemCount": 0 if include_low_confidence else len(self.low_confidence_items),
            "confidence": round(self.confidence, 4),
            "ocrConfidence": round(self.ocr_confidence, 4),
            "lineCoverage": round(self.line_coverage, 4),
            "reviewStatus": self.review_status,
            "reconciliation": {
                "status": self.reconciliation.status,
                "expected": _amount_to_json(self.reconciliation.expected),
                "actual": _amount_to_json(self.reconciliation.actual),
                "difference": _amount_to_json(self.reconciliation.difference),
                "tolerance": _amount_to_json(self.reconciliation.tolerance),
            },
            "warnings": [{"message": w.message, "lineIndex": w.line_index} for w in self.warnings],
            "recommendations": list(self.recommendations),
            "lineKinds": list(self.line_kinds),
            "pageSegMode": self.page_seg_mode,
            "engineMode": self.engine_mode,
            "preprocessingApplied": list(self.preprocessing_applied),
        }
