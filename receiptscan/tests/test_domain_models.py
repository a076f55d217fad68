from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from receiptscan.domain.errors import OcrEngineError
from receiptscan.domain.ocr import OcrResult
from receiptscan.domain.receipt import CandidateItem, ReceiptDocument, ReceiptField


def test_candidate_item_trims_name() -> None:
    item = CandidateItem(name="  BREAD ", source_line_index=3, confidence=0.9)

    assert item.name == "BREAD"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "   "},
        {"name": "X" * 201},
        {"quantity": 0},
        {"quantity": True},
        {"confidence": 1.2},
        {"price_confidence": -0.5},
    ],
)
def test_candidate_item_rejects_invalid_values(kwargs: dict) -> None:
    values = {"name": "BREAD", "source_line_index": 0, "confidence": 0.9}
    values.update(kwargs)

    with pytest.raises(ValueError):
        CandidateItem(**values)


def test_price_prefers_line_total() -> None:
    both = CandidateItem("MILK", 0, 0.9, quantity=2, unit_price=Decimal("1.50"), line_total=Decimal("3.00"))
    unit_only = CandidateItem("MILK", 0, 0.9, unit_price=Decimal("1.50"))

    assert both.price == Decimal("3.00")
    assert unit_only.price == Decimal("1.50")


def test_document_to_dict_hides_low_confidence_items() -> None:
    document = ReceiptDocument(
        items=(
            CandidateItem("MILK", 0, 0.9, line_total=Decimal("3.49"), accepted=True),
            CandidateItem("SMUDGE", 1, 0.2, line_total=Decimal("0.10")),
        ),
        purchase_date=ReceiptField(date(2024, 3, 15), 0.95, "iso", 2),
        total=ReceiptField(Decimal("3.59"), 1.0, "two_decimal", 3),
    )

    hidden = document.to_dict(include_low_confidence=False)
    shown = document.to_dict()

    assert [item["name"] for item in hidden["items"]] == ["MILK"]
    assert hidden["hiddenItemCount"] == 1
    assert [item["name"] for item in shown["items"]] == ["MILK", "SMUDGE"]
    assert shown["hiddenItemCount"] == 0
    assert hidden["purchaseDate"]["value"] == "2024-03-15"
    assert hidden["total"]["value"] == "3.59"
    assert hidden["merchantName"] == {"value": None, "confidence": 0.0, "pattern": None, "sourceLineIndex": None}
    assert hidden["items"][0]["lineTotal"] == "3.49"


def test_ocr_result_from_text_drops_blank_lines() -> None:
    result = OcrResult.from_text("STORE\n\n  \nBREAD 2.99\n", confidence=0.8)

    assert [line.text for line in result.lines] == ["STORE", "BREAD 2.99"]
    assert result.confidence == 0.8
    assert OcrResult.from_text("").confidence == 0.0


def test_ocr_engine_error_kind() -> None:
    error = OcrEngineError("timeout", "took too long")

    assert error.is_timeout
    assert str(error) == "took too long"
    assert not OcrEngineError("engine_failure", "boom").is_timeout
