"""Confidence scoring and acceptance policy for parsed receipts.

The policy decides which candidate items are visible by default and computes
the document-level confidence reported to callers:

    overall = ocr_weight * ocr_confidence
            + coverage_weight * line_coverage
            + item_weight * mean(item confidence)

normalized by the weight sum, minus a penalty when totals do not reconcile,
and scaled down hard when no items were found at all.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.domain.receipt import CandidateItem, ReceiptDocument, ReviewStatus

# Review status thresholds on the overall score
EXCELLENT_THRESHOLD = 0.9
GOOD_THRESHOLD = 0.75
FAIR_THRESHOLD = 0.6

# Below these, recommendations ask for a better photo
LOW_OCR_CONFIDENCE = 0.7
LOW_OVERALL_CONFIDENCE = 0.7
# Largest allowed multiplier for documents with no items
MAX_EMPTY_DOCUMENT_FACTOR = 0.1


@dataclass(frozen=True)
class PolicyConfig:
    """Tunable weights and thresholds of the acceptance policy."""

    ocr_weight: float = 0.4
    coverage_weight: float = 0.3
    item_weight: float = 0.3
    min_item_confidence: float = 0.6
    min_price_confidence: float = 0.7
    reconciliation_penalty: float = 0.15
    empty_document_factor: float = 0.1

    def __post_init__(self) -> None:
        weights = (self.ocr_weight, self.coverage_weight, self.item_weight)
        if any(weight < 0 for weight in weights):
            raise ConfigInvalid("Policy weights must be non-negative")
        if sum(weights) <= 0:
            raise ConfigInvalid("At least one policy weight must be positive")
        for label in ("min_item_confidence", "min_price_confidence", "reconciliation_penalty"):
            value = getattr(self, label)
            if not 0.0 <= value <= 1.0:
                raise ConfigInvalid(f"{label} must be within [0, 1], got {value!r}")
        if not 0.0 <= self.empty_document_factor <= MAX_EMPTY_DOCUMENT_FACTOR:
            raise ConfigInvalid(
                f"empty_document_factor must be within [0, {MAX_EMPTY_DOCUMENT_FACTOR}], "
                f"got {self.empty_document_factor!r}"
            )


def review_status_for(score: float) -> ReviewStatus:
    """Bucket an overall confidence into a review status."""
    if score >= EXCELLENT_THRESHOLD:
        return "excellent"
    if score >= GOOD_THRESHOLD:
        return "good"
    if score >= FAIR_THRESHOLD:
        return "fair"
    return "poor"


class AcceptancePolicy:
    """Applies item acceptance thresholds and document scoring."""

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self.config = config or PolicyConfig()

    def is_accepted(self, item: CandidateItem) -> bool:
        """Visible by default only if both the item and its price clear their thresholds."""
        return (
            item.confidence >= self.config.min_item_confidence
            and item.price_confidence >= self.config.min_price_confidence
        )

    def score(self, document: ReceiptDocument) -> float:
        cfg = self.config
        items = document.items
        mean_item = sum(item.confidence for item in items) / len(items) if items else 0.0
        total_weight = cfg.ocr_weight + cfg.coverage_weight + cfg.item_weight
        score = (
            cfg.ocr_weight * document.ocr_confidence
            + cfg.coverage_weight * document.line_coverage
            + cfg.item_weight * mean_item
        ) / total_weight

        if document.reconciliation.is_mismatch:
            score -= cfg.reconciliation_penalty
        if not items:
            score *= cfg.empty_document_factor
        return max(0.0, min(1.0, score))

    def recommendations(self, document: ReceiptDocument, score: float) -> tuple[str, ...]:
        recs: list[str] = []
        if document.ocr_confidence < LOW_OCR_CONFIDENCE:
            recs.append("Low OCR confidence detected. Consider retaking the photo with better lighting and focus.")
        if not document.items:
            recs.append(
                "No items were extracted. Retry with a different preprocessing preset or page segmentation mode."
            )
        elif document.low_confidence_items:
            recs.append(
                f"{len(document.low_confidence_items)} item(s) fall below the confidence thresholds; review them manually."
            )
        if document.total is None:
            recs.append("Total amount not found. Make sure the total is clearly visible in the image.")
        if document.purchase_date is None:
            recs.append("Purchase date not found. Include the date section of the receipt in the image.")
        if document.merchant_name is None:
            recs.append("Merchant name not detected. Include the store name/header in the image.")
        if document.reconciliation.is_mismatch:
            recs.append("Subtotal plus tax does not match the total. Check the summary amounts.")
        if score < LOW_OVERALL_CONFIDENCE:
            recs.append(
                "Overall confidence is low. For best results: use good lighting, hold the camera steady, "
                "and keep the receipt flat and fully visible."
            )
        return tuple(recs)

    def apply(self, document: ReceiptDocument) -> ReceiptDocument:
        """Return a new document with acceptance flags, score, status and recommendations set."""
        items = tuple(replace(item, accepted=self.is_accepted(item)) for item in document.items)
        flagged = replace(document, items=items)
        score = self.score(flagged)
        return replace(
            flagged,
            confidence=score,
            review_status=review_status_for(score),
            recommendations=self.recommendations(flagged, score),
        )
