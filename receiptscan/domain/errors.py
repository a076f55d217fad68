"""Error taxonomy for receipt scanning.

Only three failures are exceptional:

- InvalidImage: the buffer cannot be decoded or its type is not allowed.
- OcrEngineError: the recognition engine failed to start, crashed, or timed out.
- ConfigInvalid: options are contradictory or out of range.

Unparseable receipt text is not an error. The parser always returns a
(possibly empty) low-confidence document instead.
"""

from __future__ import annotations

from typing import Literal

OcrFailureKind = Literal["initialization", "timeout", "engine_failure", "unreadable_image"]


class ReceiptScanError(Exception):
    """Base class for all receipt scanning failures."""


class InvalidImage(ReceiptScanError):
    """Raised when an image buffer is empty, undecodable, or of a disallowed type."""


class ConfigInvalid(ReceiptScanError, ValueError):
    """Raised at construction time when configuration values are rejected."""


class OcrEngineError(ReceiptScanError):
    """Raised when the OCR engine cannot produce a result."""

    def __init__(self, kind: OcrFailureKind, message: str) -> None:
        super().__init__(message)
        self.kind: OcrFailureKind = kind

    @property
    def is_timeout(self) -> bool:
        return self.kind == "timeout"
