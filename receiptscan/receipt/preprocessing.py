"""Image preprocessing pipeline that prepares receipt photos for OCR.

Steps run in a fixed order, each independently enabled:

    grayscale -> resize -> deskew -> noise reduction -> contrast -> sharpen

Grayscale must be enabled whenever any other step runs. Contrast is a single
stage with a method parameter, so it can never be applied twice.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, assert_never, get_args

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.domain.image import ProcessedImage, RawImage
from receiptscan.receipt.image_quality import MAX_IMAGE_BYTES, decode_image

if TYPE_CHECKING:
    from PIL import Image

logger = logging.getLogger(__name__)

PreprocessPreset = Literal["raw", "minimal", "standard", "aggressive"]
ContrastMethod = Literal["none", "linear_stretch", "adaptive_equalization"]
PreprocessStep = Literal["grayscale", "resize", "deskew", "noise_reduction", "contrast", "sharpen"]

PRESET_NAMES: tuple[PreprocessPreset, ...] = get_args(PreprocessPreset)
CONTRAST_METHODS: tuple[ContrastMethod, ...] = get_args(ContrastMethod)
DEFAULT_PRESET: PreprocessPreset = "minimal"

PRESET_DESCRIPTIONS: dict[PreprocessPreset, str] = {
    "raw": "No transforms; the original bytes are sent to OCR",
    "minimal": "Grayscale plus downscale of oversized photos (default)",
    "standard": "Minimal plus one linear contrast stretch",
    "aggressive": "Every transform; often lowers OCR accuracy on clean receipts",
}

# EXIF orientation tag value -> Pillow transpose method name
_EXIF_ORIENTATION_TAG = 0x0112
_ORIENTATION_TRANSPOSE = {
    2: "FLIP_LEFT_RIGHT",
    3: "ROTATE_180",
    4: "FLIP_TOP_BOTTOM",
    5: "TRANSPOSE",
    6: "ROTATE_270",
    7: "TRANSVERSE",
    8: "ROTATE_90",
}

CLAHE_CLIP_LIMIT = 2.0
CLAHE_TILE_GRID = (8, 8)
MEDIAN_FILTER_SIZE = 3
UNSHARP_RADIUS = 2
UNSHARP_THRESHOLD = 3
MAX_SHARPEN_PERCENT = 300


@dataclass(frozen=True)
class ResizeOptions:
    """Conditional downscale of oversized photos."""

    enabled: bool = True
    threshold_px: int = 2000
    scale_factor: float = 0.5

    def __post_init__(self) -> None:
        if self.threshold_px <= 0:
            raise ConfigInvalid(f"Resize threshold must be positive, got {self.threshold_px}")
        if not 0.0 < self.scale_factor < 1.0:
            raise ConfigInvalid(f"Resize scale factor must be in (0, 1), got {self.scale_factor}")


@dataclass(frozen=True)
class PreprocessConfig:
    """Fully resolved preprocessing settings.

    Build one from a named preset with ``from_preset`` or set the flags
    directly; invalid combinations raise ConfigInvalid at construction.
    """

    preset: str = "custom"
    grayscale: bool = True
    resize: ResizeOptions = field(default_factory=ResizeOptions)
    deskew: bool = False
    noise_reduction: bool = False
    contrast: ContrastMethod = "none"
    sharpen: bool = False
    sharpen_percent: int = 80
    max_bytes: int = MAX_IMAGE_BYTES

    def __post_init__(self) -> None:
        if self.contrast not in CONTRAST_METHODS:
            raise ConfigInvalid(
                f"Unknown contrast method {self.contrast!r}; expected one of {', '.join(CONTRAST_METHODS)}"
            )
        if not 0 < self.sharpen_percent <= MAX_SHARPEN_PERCENT:
            raise ConfigInvalid(f"Sharpen percent must be in (0, {MAX_SHARPEN_PERCENT}], got {self.sharpen_percent}")
        if self.max_bytes <= 0:
            raise ConfigInvalid(f"Maximum image size must be positive, got {self.max_bytes}")
        dependent = [step for step in self.steps() if step != "grayscale"]
        if dependent and not self.grayscale:
            raise ConfigInvalid(f"Grayscale must be enabled when running {', '.join(dependent)}")

    @classmethod
    def from_preset(cls, preset: str, resize: ResizeOptions | None = None) -> PreprocessConfig:
        """Resolve a named preset into a concrete configuration."""
        if preset not in PRESET_NAMES:
            raise ConfigInvalid(f"Unknown preprocessing preset {preset!r}; expected one of {', '.join(PRESET_NAMES)}")
        return _resolve_preset(preset, resize or ResizeOptions())  # type: ignore[arg-type]

    def steps(self) -> tuple[PreprocessStep, ...]:
        """Names of the steps this config runs, in execution order."""
        steps: list[PreprocessStep] = []
        if self.grayscale:
            steps.append("grayscale")
        if self.resize.enabled:
            steps.append("resize")
        if self.deskew:
            steps.append("deskew")
        if self.noise_reduction:
            steps.append("noise_reduction")
        if self.contrast != "none":
            steps.append("contrast")
        if self.sharpen:
            steps.append("sharpen")
        return tuple(steps)


def _resolve_preset(preset: PreprocessPreset, resize: ResizeOptions) -> PreprocessConfig:
    match preset:
        case "raw":
            return PreprocessConfig(preset="raw", grayscale=False, resize=ResizeOptions(enabled=False))
        case "minimal":
            return PreprocessConfig(preset="minimal", resize=resize)
        case "standard":
            return PreprocessConfig(preset="standard", resize=resize, contrast="linear_stretch")
        case "aggressive":
            return PreprocessConfig(
                preset="aggressive",
                resize=resize,
                deskew=True,
                noise_reduction=True,
                contrast="adaptive_equalization",
                sharpen=True,
            )
        case _:
            assert_never(preset)


def _flatten_to_grayscale(img: Image.Image) -> Image.Image:
    from PIL import Image

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        background.alpha_composite(rgba)
        img = background
    return img.convert("L")


def _downscale(img: Image.Image, options: ResizeOptions) -> Image.Image:
    from PIL import Image

    width, height = img.size
    if max(width, height) <= options.threshold_px:
        return img
    new_size = (max(1, round(width * options.scale_factor)), max(1, round(height * options.scale_factor)))
    logger.debug("Downscaling %sx%s -> %sx%s", width, height, *new_size)
    return img.resize(new_size, Image.Resampling.LANCZOS)


def _apply_orientation(img: Image.Image, orientation: int) -> Image.Image:
    from PIL import Image

    method = _ORIENTATION_TRANSPOSE.get(orientation)
    if method is None:
        return img
    return img.transpose(Image.Transpose[method])


def _equalize_adaptive(img: Image.Image) -> Image.Image:
    import cv2
    import numpy as np
    from PIL import Image

    pixels = np.asarray(img, dtype=np.uint8)
    clahe = cv2.createCLAHE(clipLimit=CLAHE_CLIP_LIMIT, tileGridSize=CLAHE_TILE_GRID)
    return Image.fromarray(clahe.apply(pixels))


def _apply_contrast(img: Image.Image, method: ContrastMethod) -> Image.Image:
    from PIL import ImageOps

    match method:
        case "none":
            return img
        case "linear_stretch":
            return ImageOps.autocontrast(img, cutoff=0)
        case "adaptive_equalization":
            return _equalize_adaptive(img)
        case _:
            assert_never(method)


def preprocess_image(raw: RawImage, config: PreprocessConfig | None = None) -> ProcessedImage:
    """
    Run the configured preprocessing steps over a raw receipt image.

    Args:
        raw: Caller-owned image bytes; never modified
        config: Resolved settings; defaults to the ``minimal`` preset

    Returns:
        ProcessedImage holding a new PNG buffer (or the original bytes when
        no step is enabled)

    Raises:
        InvalidImage: If the buffer cannot be decoded or is not an allowed type
    """
    from PIL import ImageFilter

    if config is None:
        config = PreprocessConfig.from_preset(DEFAULT_PRESET)

    img = decode_image(raw, max_bytes=config.max_bytes)
    original_width, original_height = img.size
    steps = config.steps()

    if not steps:
        return ProcessedImage(
            data=raw.data,
            mime_type=raw.mime_type,
            width=original_width,
            height=original_height,
            original_width=original_width,
            original_height=original_height,
            preset=config.preset,
        )

    orientation = img.getexif().get(_EXIF_ORIENTATION_TAG, 1)
    applied: list[str] = []
    unsupported: list[str] = []

    if config.grayscale:
        img = _flatten_to_grayscale(img)
        applied.append("grayscale")
    if config.resize.enabled:
        img = _downscale(img, config.resize)
        applied.append("resize")
    if config.deskew:
        img = _apply_orientation(img, orientation)
        applied.append("deskew")
        # Only EXIF orientation is corrected; arbitrary skew angles are not.
        unsupported.append("deskew")
        logger.info("Skew-angle correction is not supported; applied EXIF orientation only")
    if config.noise_reduction:
        img = img.filter(ImageFilter.MedianFilter(size=MEDIAN_FILTER_SIZE))
        applied.append("noise_reduction")
    if config.contrast != "none":
        img = _apply_contrast(img, config.contrast)
        applied.append(f"contrast:{config.contrast}")
    if config.sharpen:
        img = img.filter(
            ImageFilter.UnsharpMask(
                radius=UNSHARP_RADIUS,
                percent=config.sharpen_percent,
                threshold=UNSHARP_THRESHOLD,
            )
        )
        applied.append("sharpen")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    width, height = img.size
    logger.debug("Preprocessed with preset %s: %s", config.preset, ", ".join(applied))

    return ProcessedImage(
        data=buffer.getvalue(),
        mime_type="image/png",
        width=width,
        height=height,
        original_width=original_width,
        original_height=original_height,
        preset=config.preset,
        applied=tuple(applied),
        unsupported=tuple(unsupported),
    )
