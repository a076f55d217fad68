"""Text-line based receipt item extraction."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from receiptscan.domain.ocr import OcrLine
from receiptscan.domain.receipt import MAX_ITEM_NAME_LENGTH, CandidateItem, LineKind, ReceiptWarning

from .common import (
    CENTS,
    SUMMARY_KINDS,
    PriceToken,
    QuantityPrefix,
    classify_keyword_line,
    clean_item_name,
    find_price_tokens,
    has_letters,
    name_plausibility,
    parse_leading_quantity,
    strip_price_tokens,
    validate_quantity_price,
)
from .fields_parser import SummaryCandidate


@dataclass(frozen=True)
class ItemWeights:
    """Relative weights of the item confidence components."""

    ocr: float = 0.4
    pattern: float = 0.4
    name: float = 0.2
    continuation_penalty: float = 0.1


@dataclass
class _ItemDraft:
    name: str
    line_index: int
    ocr_confidence: float
    price: PriceToken | None
    quantity: int = 1
    quantity_detected: bool = False
    unit_price: Decimal | None = None
    continuation: bool = False
    raw_text: str = ""
    # Last OCR line folded into this item; modifiers may only follow it directly
    last_line_index: int = -1

    def __post_init__(self) -> None:
        if self.last_line_index < 0:
            self.last_line_index = self.line_index


@dataclass
class LineScan:
    """Everything one forward pass over the OCR lines produced."""

    items: list[CandidateItem] = field(default_factory=list)
    line_kinds: list[LineKind] = field(default_factory=list)
    summary_candidates: list[SummaryCandidate] = field(default_factory=list)
    warnings: list[ReceiptWarning] = field(default_factory=list)


@dataclass(frozen=True)
class _LineParts:
    prefix: QuantityPrefix | None
    tokens: list[PriceToken]
    name: str


def _split_line(text: str) -> _LineParts:
    prefix = parse_leading_quantity(text)
    body = prefix.remainder if prefix else text
    tokens = find_price_tokens(body)
    name = clean_item_name(strip_price_tokens(body, tokens))
    return _LineParts(prefix=prefix, tokens=tokens, name=name)


def _item_confidence(draft: _ItemDraft, weights: ItemWeights) -> tuple[float, float]:
    """Return (item confidence, name plausibility)."""
    plausibility = name_plausibility(draft.name)
    strength = draft.price.strength if draft.price else 0.0
    total_weight = weights.ocr + weights.pattern + weights.name
    score = (weights.ocr * draft.ocr_confidence + weights.pattern * strength + weights.name * plausibility) / total_weight
    if draft.continuation:
        score *= 1.0 - weights.continuation_penalty
    return max(0.0, min(1.0, score)), plausibility


def _finalize(draft: _ItemDraft, weights: ItemWeights) -> CandidateItem:
    confidence, plausibility = _item_confidence(draft, weights)
    line_total = draft.price.value if draft.price else None
    if line_total is None and draft.unit_price is not None:
        line_total = (draft.unit_price * draft.quantity).quantize(CENTS)
    return CandidateItem(
        name=draft.name[:MAX_ITEM_NAME_LENGTH],
        source_line_index=draft.line_index,
        confidence=confidence,
        quantity=draft.quantity,
        unit_price=draft.unit_price,
        line_total=line_total,
        ocr_confidence=max(0.0, min(1.0, draft.ocr_confidence)),
        price_confidence=draft.price.strength if draft.price else 0.0,
        name_confidence=plausibility,
        price_pattern=draft.price.pattern if draft.price else "none",
        quantity_detected=draft.quantity_detected,
        raw_text=draft.raw_text,
    )


def _apply_quantity(
    draft: _ItemDraft,
    prefix: QuantityPrefix,
    tokens: list[PriceToken],
    warnings: list[ReceiptWarning],
    line_index: int,
) -> None:
    """Fold a quantity expression and its prices into an item draft."""
    draft.quantity = prefix.quantity
    draft.quantity_detected = True
    if prefix.kind == "times":
        if len(tokens) >= 2:
            draft.unit_price = tokens[0].value
            draft.price = tokens[-1]
        elif tokens:
            draft.price = tokens[-1]
    elif prefix.kind in ("at", "weight_at"):
        if tokens:
            draft.unit_price = tokens[0].value
        if len(tokens) >= 2:
            draft.price = tokens[-1]
    elif prefix.kind == "multi_for" and tokens:
        # "2 /for 3.00": the deal price covers the whole quantity
        draft.unit_price = (tokens[0].value / prefix.quantity).quantize(CENTS)
        draft.price = tokens[-1]

    if (
        prefix.kind in ("times", "at")
        and draft.unit_price is not None
        and draft.price is not None
        and not validate_quantity_price(draft.quantity, draft.unit_price, draft.price.value)
    ):
        warnings.append(
            ReceiptWarning(
                f"Quantity {draft.quantity} x {draft.unit_price} does not match line total {draft.price.value}",
                line_index=line_index,
            )
        )


def extract_items(
    lines: tuple[OcrLine, ...],
    weights: ItemWeights,
    merchant_index: int | None = None,
    date_index: int | None = None,
) -> LineScan:
    """
    Classify every OCR line and extract candidate items in one forward pass.

    Lookback rules:
    - a name-only line followed by a price-only line forms one item
    - a summary keyword without an amount takes it from the next price-only line
    - a modifier-only line ("2 @ 1.99") updates the preceding item
    """
    scan = LineScan(line_kinds=["unclassified"] * len(lines))
    kinds = scan.line_kinds
    drafts: list[_ItemDraft] = []

    pending_name: tuple[int, _LineParts] | None = None
    pending_summary: int | None = None
    after_total = False
    skipped_after_total: list[int] = []

    for index, line in enumerate(lines):
        text = line.text.strip()
        if not text:
            pending_name = None
            continue

        if index == merchant_index:
            kinds[index] = "merchant"
            pending_name = pending_summary = None
            continue

        line_has_price = bool(find_price_tokens(text))
        if index == date_index and not line_has_price:
            kinds[index] = "date"
            pending_name = None
            continue

        parts = _split_line(text)
        tokens = parts.tokens

        keyword_kind = classify_keyword_line(text, has_price=line_has_price)
        if keyword_kind is not None:
            kinds[index] = keyword_kind
            pending_name = pending_summary = None
            if keyword_kind in SUMMARY_KINDS:
                line_tokens = find_price_tokens(text)
                if line_tokens:
                    scan.summary_candidates.append(
                        SummaryCandidate(keyword_kind, line_tokens[-1], index, line.confidence)
                    )
                    after_total = after_total or keyword_kind == "total"
                else:
                    pending_summary = index
            continue

        price_only = bool(tokens) and not has_letters(parts.name)

        if pending_summary is not None:
            summary_index, pending_summary = pending_summary, None
            if price_only and parts.prefix is None:
                summary_kind = kinds[summary_index]
                kinds[index] = summary_kind
                scan.summary_candidates.append(
                    SummaryCandidate(
                        summary_kind,
                        tokens[-1],
                        summary_index,
                        min(line.confidence, lines[summary_index].confidence),
                    )
                )
                after_total = after_total or summary_kind == "total"
                continue

        # Payment and footer sections follow the total
        if after_total:
            if tokens:
                skipped_after_total.append(index)
            pending_name = None
            continue

        if tokens and tokens[-1].is_negative:
            # Discounts and refunds are not inventory candidates
            kinds[index] = "summary_other"
            pending_name = None
            continue

        is_modifier = parts.prefix is not None and parts.prefix.kind != "times" and not has_letters(parts.name)

        if is_modifier or price_only:
            if pending_name is not None:
                name_index, name_parts = pending_name
                draft = _ItemDraft(
                    name=name_parts.name,
                    line_index=name_index,
                    ocr_confidence=min(line.confidence, lines[name_index].confidence),
                    price=None if is_modifier else tokens[-1],
                    continuation=True,
                    raw_text=f"{lines[name_index].text.strip()}\n{text}",
                )
                # "2 x MILK" on the name line, price below
                if name_parts.prefix is not None:
                    _apply_quantity(draft, name_parts.prefix, tokens, scan.warnings, index)
                if parts.prefix is not None:
                    _apply_quantity(draft, parts.prefix, tokens, scan.warnings, index)
                draft.last_line_index = index
                drafts.append(draft)
                kinds[name_index] = "item"
                kinds[index] = "quantity_modifier" if is_modifier else "item_continuation"
            elif (
                is_modifier
                and parts.prefix is not None
                and drafts
                and drafts[-1].last_line_index == index - 1
                and not drafts[-1].quantity_detected
            ):
                previous = drafts[-1]
                _apply_quantity(previous, parts.prefix, tokens, scan.warnings, index)
                previous.raw_text = f"{previous.raw_text}\n{text}"
                previous.last_line_index = index
                kinds[index] = "quantity_modifier"
            pending_name = None
            continue

        if tokens:
            draft = _ItemDraft(
                name=parts.name,
                line_index=index,
                ocr_confidence=line.confidence,
                price=tokens[-1],
                raw_text=text,
            )
            if parts.prefix is not None:
                _apply_quantity(draft, parts.prefix, tokens, scan.warnings, index)
            drafts.append(draft)
            kinds[index] = "item"
            pending_name = None
            continue

        # Name-only line: may pair with a price on the next line
        pending_name = (index, parts) if has_letters(parts.name) else None

    if skipped_after_total:
        scan.warnings.append(
            ReceiptWarning(
                f"{len(skipped_after_total)} priced line(s) after the total were not read as items",
                line_index=skipped_after_total[0],
            )
        )
    scan.items = [_finalize(draft, weights) for draft in drafts]
    return scan
