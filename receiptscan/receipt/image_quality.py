"""Image validation and quality metrics for OCR input."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

from PIL import Image, ImageFilter, ImageStat, UnidentifiedImageError

from receiptscan.domain.errors import InvalidImage
from receiptscan.domain.image import PIL_FORMAT_MIME_TYPES, SUPPORTED_MIME_TYPES, RawImage

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024

# Quality thresholds
MIN_WIDTH = 600
MIN_HEIGHT = 400
MIN_SHARPNESS = 10.0  # Edge-response variance
MIN_CONTRAST = 30.0  # Luminance standard deviation
MIN_BRIGHTNESS = 50.0
MAX_BRIGHTNESS = 200.0


@dataclass(frozen=True)
class ImageQualityReport:
    """Non-fatal quality measurements of a receipt photo."""

    width: int
    height: int
    brightness: float
    contrast: float
    sharpness: float
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_acceptable(self) -> bool:
        return not self.warnings


def decode_image(raw: RawImage, max_bytes: int = MAX_IMAGE_BYTES) -> Image.Image:
    """
    Validate a raw image buffer and decode it fully.

    Args:
        raw: Caller-supplied image bytes and declared MIME type
        max_bytes: Largest accepted buffer size

    Returns:
        Loaded Pillow image

    Raises:
        InvalidImage: empty/oversized buffer, disallowed MIME type, or decode failure
    """
    if raw.mime_type not in SUPPORTED_MIME_TYPES:
        raise InvalidImage(f"Unsupported image type {raw.mime_type!r}; expected JPEG, PNG, or WebP")
    if not raw.data:
        raise InvalidImage("Image buffer is empty")
    if len(raw.data) > max_bytes:
        raise InvalidImage(f"Image is {len(raw.data)} bytes; maximum is {max_bytes}")

    try:
        img = Image.open(io.BytesIO(raw.data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise InvalidImage(f"Could not decode image: {exc}") from exc

    detected = PIL_FORMAT_MIME_TYPES.get(img.format or "")
    if detected is None:
        raise InvalidImage(f"Decoded image format {img.format!r} is not supported")
    if detected != raw.mime_type:
        logger.warning("Declared MIME type %s does not match decoded format %s", raw.mime_type, detected)
    return img


def sniff_mime_type(data: bytes) -> str:
    """Detect the MIME type of an image buffer, raising InvalidImage if unknown."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format or ""
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidImage(f"Could not identify image: {exc}") from exc
    mime_type = PIL_FORMAT_MIME_TYPES.get(fmt)
    if mime_type is None:
        raise InvalidImage(f"Image format {fmt!r} is not supported")
    return mime_type


def validate_raw_image(raw: RawImage, max_bytes: int = MAX_IMAGE_BYTES) -> tuple[int, int]:
    """Validate a raw image and return its (width, height)."""
    img = decode_image(raw, max_bytes=max_bytes)
    return img.size


def _sharpness(gray: Image.Image) -> float:
    """Variance of the edge response; low values indicate blur."""
    edges = gray.filter(ImageFilter.FIND_EDGES)
    return float(ImageStat.Stat(edges).var[0])


def assess_image_quality(raw: RawImage, max_bytes: int = MAX_IMAGE_BYTES) -> ImageQualityReport:
    """
    Measure brightness, contrast and sharpness of a receipt photo.

    Problems are reported as warnings only; the caller decides whether to
    continue (OCR usually still works on marginal images).
    """
    img = decode_image(raw, max_bytes=max_bytes)
    width, height = img.size
    gray = img.convert("L")
    stat = ImageStat.Stat(gray)
    brightness = float(stat.mean[0])
    contrast = float(stat.stddev[0])
    sharpness = _sharpness(gray)

    warnings: list[str] = []
    if width < MIN_WIDTH or height < MIN_HEIGHT:
        warnings.append(f"Image resolution is low ({width}x{height}); at least {MIN_WIDTH}x{MIN_HEIGHT} recommended")
    if sharpness < MIN_SHARPNESS:
        warnings.append(f"Image looks blurry (sharpness {sharpness:.2f}); hold the camera steady")
    if contrast < MIN_CONTRAST:
        warnings.append(f"Image has low contrast ({contrast:.2f}); better lighting may help")
    if brightness < MIN_BRIGHTNESS:
        warnings.append(f"Image is too dark (brightness {brightness:.2f})")
    elif brightness > MAX_BRIGHTNESS:
        warnings.append(f"Image is overexposed (brightness {brightness:.2f})")

    return ImageQualityReport(
        width=width,
        height=height,
        brightness=brightness,
        contrast=contrast,
        sharpness=sharpness,
        warnings=tuple(warnings),
    )
