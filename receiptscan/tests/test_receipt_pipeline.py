from __future__ import annotations

import json

import pytest

from receiptscan.domain.errors import OcrEngineError
from receiptscan.domain.image import ProcessedImage
from receiptscan.domain.ocr import OcrOptions, OcrResult
from receiptscan.runtime.receipt_pipeline import (
    FALLBACK_PAGE_SEG_MODES,
    fallback_page_seg_mode,
    run_ocr,
    run_ocr_modes,
    save_ocr_json,
    select_best_result,
)


@pytest.fixture
def processed() -> ProcessedImage:
    return ProcessedImage(
        data=b"png",
        mime_type="image/png",
        width=800,
        height=600,
        original_width=800,
        original_height=600,
        preset="minimal",
    )


def test_run_ocr_returns_engine_result(processed: ProcessedImage, make_pool, walmart_text: str) -> None:
    pool = make_pool()

    result = run_ocr(processed, OcrOptions(), pool, timeout=5)

    assert result.text == walmart_text
    assert result.page_seg_mode == "single_column"
    assert pool.idle_count == 1


def test_run_ocr_with_expired_deadline_times_out(processed: ProcessedImage, make_pool) -> None:
    calls: list[str] = []
    pool = make_pool(calls=calls)

    with pytest.raises(OcrEngineError) as excinfo:
        run_ocr(processed, OcrOptions(), pool, timeout=0)

    assert excinfo.value.kind == "timeout"
    assert calls == []


def test_run_ocr_modes_skips_duplicates(processed: ProcessedImage, make_pool) -> None:
    calls: list[str] = []
    pool = make_pool(calls=calls)

    results = run_ocr_modes(processed, OcrOptions(), ["single_column", "uniform_block", "uniform_block"], pool)

    assert calls == ["single_column", "uniform_block"]
    assert [result.page_seg_mode for result in results] == ["single_column", "uniform_block"]


def test_run_ocr_modes_skips_failing_mode(processed: ProcessedImage, make_pool) -> None:
    calls: list[str] = []
    pool = make_pool(outcomes={"single_column": OcrEngineError("engine_failure", "crashed")}, calls=calls)

    results = run_ocr_modes(processed, OcrOptions(), ["uniform_block"], pool, timeout=5)

    assert [result.page_seg_mode for result in results] == ["uniform_block"]
    assert calls == ["single_column", "uniform_block"]


def test_run_ocr_modes_raises_first_error_when_all_fail(processed: ProcessedImage, make_pool) -> None:
    pool = make_pool(
        outcomes={
            "single_column": OcrEngineError("engine_failure", "first"),
            "raw_line": OcrEngineError("unreadable_image", "second"),
        }
    )

    with pytest.raises(OcrEngineError, match="first"):
        run_ocr_modes(processed, OcrOptions(), ["raw_line"], pool)


def test_select_best_result_prefers_confidence_then_lines() -> None:
    low = OcrResult.from_text("A\nB\nC", confidence=0.5)
    high = OcrResult.from_text("A", confidence=0.9)
    high_more_lines = OcrResult.from_text("A\nB", confidence=0.9)
    tie = OcrResult.from_text("A\nB", confidence=0.9, page_seg_mode="uniform_block")

    assert select_best_result([low, high]) is high
    assert select_best_result([high, high_more_lines]) is high_more_lines
    assert select_best_result([high_more_lines, tie]) is high_more_lines


def test_select_best_result_requires_results() -> None:
    with pytest.raises(ValueError):
        select_best_result([])


def test_every_mode_has_a_different_fallback() -> None:
    for mode in FALLBACK_PAGE_SEG_MODES:
        assert fallback_page_seg_mode(mode) != mode


def test_save_ocr_json(tmp_path, walmart_text: str) -> None:
    result = OcrResult.from_text(walmart_text, confidence=0.8)

    path = save_ocr_json(result, tmp_path / "debug" / "ocr.json")

    payload = json.loads(path.read_text())
    assert payload["confidence"] == 0.8
    assert payload["lines"][0]["text"] == "WALMART"
    assert payload["lines"][2]["tokens"][0] == {"text": "2", "confidence": 0.8}
