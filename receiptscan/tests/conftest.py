"""Shared pytest fixtures for receiptscan tests.

Images are generated in memory with Pillow and OCR engines are fakes, so no
test needs tesseract, an OCR service or real receipt photos.
"""

from __future__ import annotations

import io
from collections.abc import Callable, Iterator

import pytest
from PIL import Image, ImageDraw

from receiptscan.domain.errors import OcrEngineError
from receiptscan.domain.image import ProcessedImage
from receiptscan.domain.ocr import OcrOptions, OcrResult
from receiptscan.runtime.config import reset_settings
from receiptscan.runtime.engine_pool import EnginePool

WALMART_TEXT = "\n".join(
    [
        "WALMART",
        "832-772-9978",
        "2 x MILK 2% 3.49",
        "BREAD 2.99",
        "SUBTOTAL 6.48",
        "TAX 0.52",
        "TOTAL 7.00",
    ]
)


class FakeEngine:
    """Engine returning canned text per page segmentation mode.

    ``outcomes`` maps a mode to either the text to return or an exception to
    raise; modes not listed return ``default_text``.
    """

    name = "fake"

    def __init__(
        self,
        default_text: str = WALMART_TEXT,
        outcomes: dict[str, str | Exception] | None = None,
        confidence: float = 0.95,
        calls: list[str] | None = None,
    ) -> None:
        self.default_text = default_text
        self.outcomes = outcomes or {}
        self.confidence = confidence
        self.calls = calls if calls is not None else []
        self.closed = False

    def recognize(self, image: ProcessedImage, options: OcrOptions, timeout: float | None = None) -> OcrResult:
        self.calls.append(options.page_seg_mode)
        outcome = self.outcomes.get(options.page_seg_mode, self.default_text)
        if isinstance(outcome, Exception):
            raise outcome
        return OcrResult.from_text(
            outcome,
            confidence=self.confidence,
            page_seg_mode=options.page_seg_mode,
            engine_mode=options.engine_mode,
            engine=self.name,
        )

    def close(self) -> None:
        self.closed = True


def make_image_bytes(
    size: tuple[int, int] = (800, 600),
    mode: str = "RGB",
    fmt: str = "PNG",
    color: object = "white",
    exif: Image.Exif | None = None,
) -> bytes:
    """Render a receipt-like test image: light background with dark text bars."""
    img = Image.new(mode, size, color)
    draw = ImageDraw.Draw(img)
    width, height = size
    ink = (0, 0, 0, 255) if mode == "RGBA" else (0 if mode == "L" else (0, 0, 0))
    for row in range(height // 10, height - height // 10, max(4, height // 12)):
        draw.rectangle([width // 10, row, width - width // 10, row + max(2, height // 20)], fill=ink)
    buffer = io.BytesIO()
    if exif is not None:
        img.save(buffer, format=fmt, exif=exif)
    else:
        img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    return make_image_bytes


@pytest.fixture
def walmart_text() -> str:
    return WALMART_TEXT


@pytest.fixture
def receipt_png() -> bytes:
    return make_image_bytes()


@pytest.fixture
def fake_engine() -> type[FakeEngine]:
    return FakeEngine


@pytest.fixture
def make_pool() -> Iterator[Callable[..., EnginePool]]:
    """Build pools of FakeEngines; every pool is closed after the test."""
    pools: list[EnginePool] = []

    def build(
        default_text: str = WALMART_TEXT,
        outcomes: dict[str, str | OcrEngineError] | None = None,
        max_size: int = 2,
        calls: list[str] | None = None,
        confidence: float = 0.95,
    ) -> EnginePool:
        shared_calls = calls if calls is not None else []
        pool = EnginePool(
            lambda: FakeEngine(default_text, outcomes, confidence=confidence, calls=shared_calls),
            max_size=max_size,
        )
        pools.append(pool)
        return pool

    yield build
    for pool in pools:
        pool.close()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the developer's receiptscan.toml and environment out of tests."""
    for name in (
        "RECEIPTSCAN_CONFIG",
        "RECEIPTSCAN_OCR_BACKEND",
        "RECEIPTSCAN_OCR_URL",
        "RECEIPTSCAN_OCR_TIMEOUT",
        "RECEIPTSCAN_MAX_ENGINES",
        "RECEIPTSCAN_TESSERACT_CMD",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
