"""Runtime helpers for the receipt OCR pipeline (non-HTTP)."""

from __future__ import annotations

import dataclasses
import json
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from receiptscan.domain.errors import OcrEngineError
from receiptscan.domain.image import ProcessedImage
from receiptscan.domain.ocr import OcrOptions, OcrResult, PageSegMode
from receiptscan.runtime.engine_pool import EnginePool
from receiptscan.runtime.logging import get_logger

logger = get_logger(__name__)

# Mode tried once by the caller when the requested one fails
FALLBACK_PAGE_SEG_MODES: dict[PageSegMode, PageSegMode] = {
    "single_column": "uniform_block",
    "uniform_block": "single_column",
    "raw_line": "single_column",
    "fully_automatic": "uniform_block",
}


def fallback_page_seg_mode(mode: PageSegMode) -> PageSegMode:
    return FALLBACK_PAGE_SEG_MODES[mode]


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def run_ocr(
    image: ProcessedImage,
    options: OcrOptions,
    pool: EnginePool,
    timeout: float | None = None,
) -> OcrResult:
    """
    Run one OCR invocation on a pooled engine.

    The timeout bounds both waiting for an engine and the engine call itself.

    Raises:
        OcrEngineError: engine failure, or kind "timeout" when the deadline passes
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    return _run_with_deadline(image, options, pool, deadline)


def _run_with_deadline(
    image: ProcessedImage,
    options: OcrOptions,
    pool: EnginePool,
    deadline: float | None,
) -> OcrResult:
    remaining = _remaining(deadline)
    if remaining is not None and remaining <= 0:
        raise OcrEngineError("timeout", "Deadline expired before OCR started")

    start_time = time.time()
    with pool.engine(remaining) as engine:
        result = engine.recognize(image, options, timeout=_remaining(deadline))
    logger.debug(
        "OCR (%s, psm=%s) returned %d line(s) at %.2f confidence in %.2f seconds",
        result.engine,
        options.page_seg_mode,
        len(result.lines),
        result.confidence,
        time.time() - start_time,
    )
    return result


def _unique_modes(first: PageSegMode, modes: Iterable[PageSegMode]) -> list[PageSegMode]:
    ordered: list[PageSegMode] = []
    for mode in (first, *modes):
        if mode not in ordered:
            ordered.append(mode)
    return ordered


def run_ocr_modes(
    image: ProcessedImage,
    options: OcrOptions,
    modes: Iterable[PageSegMode],
    pool: EnginePool,
    timeout: float | None = None,
) -> list[OcrResult]:
    """
    Run the same image through ``options.page_seg_mode`` plus each of ``modes``.

    All runs share one deadline. A failing mode is logged and skipped; if
    every mode fails, the first error is raised.

    Returns:
        Results in the order the modes were tried
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    results: list[OcrResult] = []
    first_error: OcrEngineError | None = None

    for mode in _unique_modes(options.page_seg_mode, modes):
        mode_options = dataclasses.replace(options, page_seg_mode=mode)
        try:
            results.append(_run_with_deadline(image, mode_options, pool, deadline))
        except OcrEngineError as e:
            logger.warning("OCR with page segmentation mode %s failed (%s): %s", mode, e.kind, e)
            if first_error is None:
                first_error = e
            if e.is_timeout:
                break

    if not results:
        assert first_error is not None
        raise first_error
    return results


def select_best_result(results: Sequence[OcrResult]) -> OcrResult:
    """Pick the result with the highest confidence; ties go to more lines, then earlier order."""
    if not results:
        raise ValueError("No OCR results to choose from")
    best = results[0]
    for result in results[1:]:
        if (result.confidence, len(result.lines)) > (best.confidence, len(best.lines)):
            best = result
    return best


def ocr_result_to_dict(result: OcrResult) -> dict[str, Any]:
    """Serialize an OCR result for debugging dumps."""
    return {
        "engine": result.engine,
        "language": result.language,
        "page_seg_mode": result.page_seg_mode,
        "engine_mode": result.engine_mode,
        "confidence": result.confidence,
        "lines": [
            {
                "text": line.text,
                "confidence": line.confidence,
                "tokens": [{"text": token.text, "confidence": token.confidence} for token in line.tokens],
            }
            for line in result.lines
        ],
        "metadata": result.metadata,
    }


def save_ocr_json(result: OcrResult, output_path: Path) -> Path:
    """Save an OCR result as JSON for debugging."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(ocr_result_to_dict(result), indent=2, default=str))
    logger.debug("OCR JSON saved to: %s", output_path)
    return output_path
