"""Runtime infrastructure for receipt scanning.

This package provides process/runtime services including:
- Logging setup via get_logger()
- Settings resolution via get_settings(), load_settings()
- OCR engines, the engine pool and the OCR adapter helpers

Usage:
    from receiptscan.runtime import get_logger, get_settings

    logger = get_logger(__name__)
    settings = get_settings()
    print(settings.ocr.backend, settings.preprocess.preset)
"""

from receiptscan.runtime.config import (
    OcrSettings,
    PreprocessSettings,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)
from receiptscan.runtime.engine_pool import EnginePool
from receiptscan.runtime.logging import (
    DEFAULT_LOG_LEVEL,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
    configure_logging,
    get_logger,
    set_log_level,
)
from receiptscan.runtime.ocr_engines import OcrEngine, OcrServiceEngine, TesseractEngine, create_engine_factory
from receiptscan.runtime.receipt_pipeline import (
    fallback_page_seg_mode,
    run_ocr,
    run_ocr_modes,
    select_best_result,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "set_log_level",
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FORMAT_DEBUG",
    # Settings
    "Settings",
    "OcrSettings",
    "PreprocessSettings",
    "get_settings",
    "load_settings",
    "reset_settings",
    # OCR
    "OcrEngine",
    "TesseractEngine",
    "OcrServiceEngine",
    "create_engine_factory",
    "EnginePool",
    "run_ocr",
    "run_ocr_modes",
    "select_best_result",
    "fallback_page_seg_mode",
]
