"""OCR engine backends.

Every engine normalizes its output to an OcrResult with confidences on the
[0, 1] scale, so the parser never sees engine-specific scores:

- TesseractEngine: local tesseract via pytesseract (word conf 0-100)
- OcrServiceEngine: remote OCR service returning PaddleOCR-style
  ``detections`` (conf already 0-1)
"""

from __future__ import annotations

import io
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

import httpx

from receiptscan.domain.errors import OcrEngineError
from receiptscan.domain.image import ProcessedImage
from receiptscan.domain.ocr import EngineMode, OcrOptions, OcrResult, PageSegMode
from receiptscan.receipt.ocr_helpers import lines_from_detections, lines_from_tesseract_data, overall_confidence
from receiptscan.runtime.logging import get_logger

if TYPE_CHECKING:
    from receiptscan.runtime.config import OcrSettings

logger = get_logger(__name__)

# Tesseract --psm values
PSM_CODES: dict[PageSegMode, int] = {
    "fully_automatic": 3,
    "single_column": 4,
    "uniform_block": 6,
    "raw_line": 13,
}

# Tesseract --oem values
OEM_CODES: dict[EngineMode, int] = {
    "legacy_only": 0,
    "neural_only": 1,
    "combined": 2,
}

DEFAULT_SERVICE_TIMEOUT = 60.0


class OcrEngine(Protocol):
    """A recognition engine checked out of the pool for one call at a time."""

    name: str

    def recognize(self, image: ProcessedImage, options: OcrOptions, timeout: float | None = None) -> OcrResult: ...

    def close(self) -> None: ...


def tesseract_config(options: OcrOptions) -> str:
    """Build the tesseract command-line config for the given options."""
    return f"--oem {OEM_CODES[options.engine_mode]} --psm {PSM_CODES[options.page_seg_mode]}"


class TesseractEngine:
    """Local tesseract engine driven through pytesseract."""

    name = "tesseract"

    def __init__(self, tesseract_cmd: str | None = None) -> None:
        import pytesseract

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            raise OcrEngineError("initialization", f"Tesseract is not installed or not on PATH: {e}") from e
        logger.debug("Initialized tesseract %s", self.version)

    def recognize(self, image: ProcessedImage, options: OcrOptions, timeout: float | None = None) -> OcrResult:
        import pytesseract
        from PIL import Image, UnidentifiedImageError

        try:
            img = Image.open(io.BytesIO(image.data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise OcrEngineError("unreadable_image", f"Engine could not read image: {e}") from e

        config = tesseract_config(options)
        try:
            data = pytesseract.image_to_data(
                img,
                lang=options.language,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=timeout or 0,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise OcrEngineError("initialization", f"Tesseract binary disappeared: {e}") from e
        except pytesseract.TesseractError as e:
            raise OcrEngineError("engine_failure", f"Tesseract failed: {e.message}") from e
        except RuntimeError as e:
            # pytesseract signals a killed process with a bare RuntimeError
            if "timeout" in str(e).lower():
                raise OcrEngineError("timeout", f"Tesseract timed out after {timeout}s") from e
            raise OcrEngineError("engine_failure", f"Tesseract failed: {e}") from e

        lines = lines_from_tesseract_data(data)
        return OcrResult(
            lines=lines,
            confidence=overall_confidence(lines),
            page_seg_mode=options.page_seg_mode,
            engine_mode=options.engine_mode,
            language=options.language,
            engine=self.name,
            metadata={"tesseract_config": config},
        )

    def close(self) -> None:
        """Tesseract runs one subprocess per call; nothing to release."""


class OcrServiceEngine:
    """Client for a remote OCR service exposing ``POST /ocr``."""

    name = "ocr-service"

    def __init__(
        self,
        base_url: str,
        default_timeout: float = DEFAULT_SERVICE_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_timeout = default_timeout
        self._client = client or httpx.Client()

    def recognize(self, image: ProcessedImage, options: OcrOptions, timeout: float | None = None) -> OcrResult:
        logger.info("Sending receipt to OCR service at %s...", self.base_url)
        start_time = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/ocr",
                files={"file": ("receipt", image.data, image.mime_type)},
                data={
                    "language": options.language,
                    "page_seg_mode": options.page_seg_mode,
                    "engine_mode": options.engine_mode,
                },
                timeout=timeout if timeout is not None else self.default_timeout,
            )
        except httpx.TimeoutException as e:
            raise OcrEngineError("timeout", f"OCR service timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error("Failed to connect to OCR service: %s", e)
            raise OcrEngineError("engine_failure", f"Failed to connect to OCR service: {e}") from e
        logger.info("OCR service returned in %.2f seconds", time.time() - start_time)

        if response.status_code in (400, 415, 422):
            raise OcrEngineError("unreadable_image", f"OCR service rejected the image: {response.status_code}")
        if response.status_code != 200:
            # Response bodies can echo receipt text; log the status only
            logger.error("OCR service error: %s", response.status_code)
            raise OcrEngineError("engine_failure", f"OCR service error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise OcrEngineError("engine_failure", "OCR service returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise OcrEngineError("engine_failure", "OCR service returned an unexpected payload")

        try:
            lines = lines_from_detections(payload.get("detections", []))
        except (TypeError, ValueError, IndexError, KeyError) as e:
            raise OcrEngineError("engine_failure", f"Malformed OCR service detections: {e}") from e

        return OcrResult(
            lines=lines,
            confidence=overall_confidence(lines),
            page_seg_mode=options.page_seg_mode,
            engine_mode=options.engine_mode,
            language=options.language,
            engine=self.name,
            metadata={"image_width": payload.get("image_width"), "image_height": payload.get("image_height")},
        )

    def close(self) -> None:
        self._client.close()


def create_engine_factory(settings: OcrSettings) -> Callable[[], OcrEngine]:
    """Return a zero-argument factory building engines for the configured backend."""
    if settings.backend == "service":
        return lambda: OcrServiceEngine(settings.service_url, default_timeout=settings.timeout)
    return lambda: TesseractEngine(tesseract_cmd=settings.tesseract_cmd)
