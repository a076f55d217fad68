"""Receipt processing workflow orchestration.

raw image -> preprocessing -> OCR (pooled engines) -> parser -> acceptance policy
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from pathlib import Path

from receiptscan.domain.errors import ConfigInvalid, OcrEngineError
from receiptscan.domain.image import ProcessedImage, RawImage
from receiptscan.domain.ocr import EngineMode, OcrOptions, OcrResult, PageSegMode
from receiptscan.domain.receipt import ReceiptDocument, ReceiptWarning
from receiptscan.receipt.acceptance import AcceptancePolicy
from receiptscan.receipt.image_quality import assess_image_quality, sniff_mime_type
from receiptscan.receipt.ocr_result_parser import parse_receipt
from receiptscan.receipt.preprocessing import PRESET_NAMES, PreprocessConfig, preprocess_image
from receiptscan.runtime.config import Settings, get_settings
from receiptscan.runtime.engine_pool import EnginePool
from receiptscan.runtime.logging import get_logger
from receiptscan.runtime.ocr_engines import create_engine_factory
from receiptscan.runtime.receipt_pipeline import (
    fallback_page_seg_mode,
    run_ocr_modes,
    save_ocr_json,
    select_best_result,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReceiptProcessOptions:
    """Caller options for one receipt; validated at construction."""

    preprocess_preset: str = "minimal"
    page_seg_mode: PageSegMode = "single_column"
    min_item_confidence: float = 0.6
    min_price_confidence: float = 0.7
    engine_mode: EngineMode = "neural_only"
    language: str = "eng"
    alternate_page_seg_modes: tuple[PageSegMode, ...] = ()
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.preprocess_preset not in PRESET_NAMES:
            raise ConfigInvalid(
                f"Unknown preprocessing preset {self.preprocess_preset!r}; expected one of {', '.join(PRESET_NAMES)}"
            )
        for label in ("min_item_confidence", "min_price_confidence"):
            value = getattr(self, label)
            if not 0.0 <= value <= 1.0:
                raise ConfigInvalid(f"{label} must be within [0, 1], got {value!r}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigInvalid(f"timeout must be positive, got {self.timeout}")
        self.ocr_options()
        for mode in self.alternate_page_seg_modes:
            self.ocr_options(mode)

    def ocr_options(self, page_seg_mode: PageSegMode | None = None) -> OcrOptions:
        return OcrOptions(
            language=self.language,
            page_seg_mode=page_seg_mode or self.page_seg_mode,
            engine_mode=self.engine_mode,
        )

    def preprocess_config(self, settings: Settings | None = None) -> PreprocessConfig:
        resize = settings.preprocess.resize_options() if settings else None
        return PreprocessConfig.from_preset(self.preprocess_preset, resize=resize)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> ReceiptProcessOptions:
        """Defaults taken from configuration, with explicit overrides applied on top."""
        values: dict[str, object] = {
            "preprocess_preset": settings.preprocess.preset,
            "page_seg_mode": settings.ocr.page_seg_mode,
            "engine_mode": settings.ocr.engine_mode,
            "language": settings.ocr.language,
            "alternate_page_seg_modes": settings.ocr.alternate_page_seg_modes,
            "min_item_confidence": settings.policy.min_item_confidence,
            "min_price_confidence": settings.policy.min_price_confidence,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]


def _run_modes(
    processed: ProcessedImage,
    ocr_options: OcrOptions,
    modes: tuple[PageSegMode, ...],
    pool: EnginePool,
    deadline: float,
) -> OcrResult:
    results = run_ocr_modes(processed, ocr_options, modes, pool, timeout=deadline - time.monotonic())
    return select_best_result(results)


def _recognize(
    processed: ProcessedImage,
    options: ReceiptProcessOptions,
    pool: EnginePool,
    deadline: float,
) -> OcrResult:
    """Run OCR, retrying once with the fallback page segmentation mode."""
    try:
        return _run_modes(processed, options.ocr_options(), options.alternate_page_seg_modes, pool, deadline)
    except OcrEngineError as e:
        fallback = fallback_page_seg_mode(options.page_seg_mode)
        if fallback == options.page_seg_mode or fallback in options.alternate_page_seg_modes:
            raise
        if deadline <= time.monotonic():
            raise
        logger.warning("OCR failed (%s); retrying once with page segmentation mode %s", e.kind, fallback)
        return _run_modes(processed, options.ocr_options(fallback), (), pool, deadline)


def process_receipt(
    image_bytes: bytes,
    options: ReceiptProcessOptions | None = None,
    *,
    mime_type: str | None = None,
    pool: EnginePool | None = None,
    settings: Settings | None = None,
    ocr_json_path: Path | None = None,
) -> ReceiptDocument:
    """
    Turn a receipt photo into a reviewed ReceiptDocument.

    Args:
        image_bytes: Encoded JPEG, PNG or WebP image; never modified
        options: Per-call options; defaults come from settings
        mime_type: Declared MIME type; sniffed from the bytes when omitted
        pool: Shared engine pool; a private pool is created and closed if omitted
        settings: Runtime settings; defaults to get_settings()
        ocr_json_path: Where to write the selected OCR result as JSON, if anywhere

    Raises:
        InvalidImage: the buffer is empty, undecodable or not an allowed type
        OcrEngineError: OCR failed after the single fallback retry
    """
    settings = settings or get_settings()
    options = options or ReceiptProcessOptions.from_settings(settings)
    timeout = options.timeout if options.timeout is not None else settings.ocr.timeout
    deadline = time.monotonic() + timeout

    raw = RawImage(data=image_bytes, mime_type=mime_type or sniff_mime_type(image_bytes))
    quality = assess_image_quality(raw)
    processed = preprocess_image(raw, options.preprocess_config(settings))

    own_pool = pool is None
    if pool is None:
        pool = EnginePool(create_engine_factory(settings.ocr), max_size=settings.ocr.max_engines)

    try:
        ocr_result = _recognize(processed, options, pool, deadline)
    finally:
        if own_pool:
            pool.close()

    if ocr_json_path is not None:
        save_ocr_json(ocr_result, ocr_json_path)

    policy = AcceptancePolicy(
        dataclasses.replace(
            settings.policy,
            min_item_confidence=options.min_item_confidence,
            min_price_confidence=options.min_price_confidence,
        )
    )
    document = parse_receipt(ocr_result, settings.parser, policy)

    extra_warnings = [ReceiptWarning(message) for message in quality.warnings]
    extra_warnings.extend(
        ReceiptWarning(f"Preprocessing step {step!r} is not fully supported") for step in processed.unsupported
    )
    logger.info(
        "Processed receipt: %d item(s), %s (%.2f)",
        len(document.items),
        document.review_status,
        document.confidence,
    )
    return dataclasses.replace(
        document,
        preprocessing_applied=processed.applied,
        warnings=document.warnings + tuple(extra_warnings),
    )


async def process_receipt_async(
    image_bytes: bytes,
    options: ReceiptProcessOptions | None = None,
    *,
    mime_type: str | None = None,
    pool: EnginePool | None = None,
    settings: Settings | None = None,
    ocr_json_path: Path | None = None,
) -> ReceiptDocument:
    """Run process_receipt in a worker thread so the event loop stays free."""
    return await asyncio.to_thread(
        process_receipt,
        image_bytes,
        options,
        mime_type=mime_type,
        pool=pool,
        settings=settings,
        ocr_json_path=ocr_json_path,
    )
