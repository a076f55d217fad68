"""Core domain models for receipt scanning.

This module provides the data models shared by every pipeline stage:
- RawImage, ProcessedImage: image buffers before and after preprocessing
- OcrOptions, OcrResult, OcrLine, OcrToken: normalized OCR input/output
- ReceiptDocument, CandidateItem, ReceiptField: parser output
- ReceiptScanError and subclasses: the error taxonomy

Usage:
    from receiptscan.domain import ReceiptDocument, CandidateItem
"""

from receiptscan.domain.errors import ConfigInvalid, InvalidImage, OcrEngineError, ReceiptScanError
from receiptscan.domain.image import SUPPORTED_MIME_TYPES, ProcessedImage, RawImage
from receiptscan.domain.ocr import (
    ENGINE_MODES,
    PAGE_SEG_MODES,
    EngineMode,
    OcrLine,
    OcrOptions,
    OcrResult,
    OcrToken,
    PageSegMode,
)
from receiptscan.domain.receipt import (
    CandidateItem,
    LineKind,
    ReceiptDocument,
    ReceiptField,
    ReceiptWarning,
    ReconciliationResult,
)

__all__ = [
    # Errors
    "ReceiptScanError",
    "InvalidImage",
    "OcrEngineError",
    "ConfigInvalid",
    # Images
    "RawImage",
    "ProcessedImage",
    "SUPPORTED_MIME_TYPES",
    # OCR
    "OcrOptions",
    "OcrResult",
    "OcrLine",
    "OcrToken",
    "PageSegMode",
    "EngineMode",
    "PAGE_SEG_MODES",
    "ENGINE_MODES",
    # Receipts
    "CandidateItem",
    "LineKind",
    "ReceiptDocument",
    "ReceiptField",
    "ReceiptWarning",
    "ReconciliationResult",
]
