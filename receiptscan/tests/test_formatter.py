import json

from receiptscan.domain.ocr import OcrResult
from receiptscan.receipt.acceptance import AcceptancePolicy, PolicyConfig
from receiptscan.receipt.formatter import format_json, format_review
from receiptscan.receipt.ocr_result_parser import parse_receipt


def test_review_lists_items_with_aligned_amounts(walmart_text: str) -> None:
    document = parse_receipt(OcrResult.from_text(walmart_text))

    text = format_review(document)

    assert text.startswith("Receipt review: excellent")
    assert "Merchant: WALMART" in text
    assert "Date: (not found)" in text
    assert "2 x MILK 2%  3.49" in text
    assert "  BREAD        2.99" in text
    assert "Total: 7.00" in text
    assert "Reconciliation: matched" in text


def test_review_hides_low_confidence_items_but_counts_them(walmart_text: str) -> None:
    policy = AcceptancePolicy(PolicyConfig(min_item_confidence=1.0))
    document = parse_receipt(OcrResult.from_text(walmart_text), policy=policy)

    hidden = format_review(document)
    shown = format_review(document, show_low_confidence=True)

    assert "(none)" in hidden
    assert "(2 low-confidence item(s) hidden)" in hidden
    assert "BREAD" in shown
    assert "low confidence" in shown
    assert "hidden" not in shown


def test_review_of_empty_document_has_recommendations() -> None:
    text = format_review(parse_receipt(OcrResult.from_text("")))

    assert "(none)" in text
    assert "Recommendations:" in text
    assert "- No items were extracted" in text


def test_json_output_uses_string_amounts(walmart_text: str) -> None:
    document = parse_receipt(OcrResult.from_text(walmart_text))

    payload = json.loads(format_json(document))

    assert payload["total"]["value"] == "7.00"
    assert payload["items"][1]["lineTotal"] == "2.99"
    assert payload["reconciliation"]["status"] == "matched"
