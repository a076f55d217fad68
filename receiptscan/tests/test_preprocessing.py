"""Tests for the image preprocessing pipeline."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from receiptscan.domain.errors import ConfigInvalid, InvalidImage
from receiptscan.domain.image import RawImage
from receiptscan.receipt.preprocessing import (
    PRESET_DESCRIPTIONS,
    PRESET_NAMES,
    PreprocessConfig,
    ResizeOptions,
    preprocess_image,
)


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_default_preset_is_minimal_grayscale_and_resize(image_bytes) -> None:
    raw = RawImage(image_bytes((3000, 1200)), "image/png")

    processed = preprocess_image(raw)

    assert processed.preset == "minimal"
    assert processed.applied == ("grayscale", "resize")
    assert (processed.original_width, processed.original_height) == (3000, 1200)
    assert (processed.width, processed.height) == (1500, 600)
    assert processed.mime_type == "image/png"
    assert _open(processed.data).mode == "L"


def test_resize_never_upscales_small_images(image_bytes) -> None:
    raw = RawImage(image_bytes((640, 480)), "image/png")

    processed = preprocess_image(raw, PreprocessConfig.from_preset("minimal"))

    assert (processed.width, processed.height) == (640, 480)


def test_resize_threshold_applies_to_longer_edge(image_bytes) -> None:
    raw = RawImage(image_bytes((900, 2400)), "image/png")
    config = PreprocessConfig.from_preset("minimal", resize=ResizeOptions(threshold_px=2000, scale_factor=0.25))

    processed = preprocess_image(raw, config)

    assert (processed.width, processed.height) == (225, 600)


def test_raw_preset_returns_original_bytes(receipt_png: bytes) -> None:
    raw = RawImage(receipt_png, "image/png")

    processed = preprocess_image(raw, PreprocessConfig.from_preset("raw"))

    assert processed.data == receipt_png
    assert processed.applied == ()
    assert processed.mime_type == "image/png"


def test_preprocessing_is_deterministic(receipt_png: bytes) -> None:
    raw = RawImage(receipt_png, "image/png")
    config = PreprocessConfig.from_preset("aggressive")

    first = preprocess_image(raw, config)
    second = preprocess_image(raw, config)

    assert first.data == second.data
    assert first.applied == second.applied


def test_contrast_is_applied_exactly_once(receipt_png: bytes) -> None:
    raw = RawImage(receipt_png, "image/png")

    for preset in PRESET_NAMES:
        processed = preprocess_image(raw, PreprocessConfig.from_preset(preset))
        contrast_steps = [step for step in processed.applied if step.startswith("contrast")]
        assert len(contrast_steps) <= 1, preset


def test_standard_preset_stretches_contrast(image_bytes) -> None:
    raw = RawImage(image_bytes((800, 600), mode="L", color=120), "image/png")

    processed = preprocess_image(raw, PreprocessConfig.from_preset("standard"))

    assert processed.applied == ("grayscale", "resize", "contrast:linear_stretch")
    low, high = _open(processed.data).getextrema()
    assert (low, high) == (0, 255)


def test_aggressive_preset_runs_every_step_in_order(receipt_png: bytes) -> None:
    raw = RawImage(receipt_png, "image/png")

    processed = preprocess_image(raw, PreprocessConfig.from_preset("aggressive"))

    assert processed.applied == (
        "grayscale",
        "resize",
        "deskew",
        "noise_reduction",
        "contrast:adaptive_equalization",
        "sharpen",
    )
    assert processed.unsupported == ("deskew",)


def test_deskew_applies_exif_orientation(image_bytes) -> None:
    exif = Image.Exif()
    exif[0x0112] = 6
    raw = RawImage(image_bytes((800, 600), fmt="JPEG", exif=exif), "image/jpeg")

    processed = preprocess_image(raw, PreprocessConfig(deskew=True))

    assert (processed.width, processed.height) == (600, 800)


def test_transparent_pixels_flatten_to_white(image_bytes) -> None:
    raw = RawImage(image_bytes((200, 100), mode="RGBA", color=(0, 0, 0, 0)), "image/png")

    processed = preprocess_image(raw, PreprocessConfig(resize=ResizeOptions(enabled=False)))

    img = _open(processed.data)
    assert img.mode == "L"
    assert img.getpixel((0, 0)) == 255


def test_input_buffer_is_not_modified(receipt_png: bytes) -> None:
    original = bytes(receipt_png)
    raw = RawImage(receipt_png, "image/png")

    preprocess_image(raw, PreprocessConfig.from_preset("aggressive"))

    assert raw.data == original


def test_every_preset_has_a_description() -> None:
    assert set(PRESET_DESCRIPTIONS) == set(PRESET_NAMES)


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(ConfigInvalid):
        PreprocessConfig.from_preset("ultra")


def test_steps_without_grayscale_are_rejected() -> None:
    with pytest.raises(ConfigInvalid):
        PreprocessConfig(grayscale=False, resize=ResizeOptions(enabled=False), sharpen=True)
    with pytest.raises(ConfigInvalid):
        PreprocessConfig(grayscale=False)


def test_out_of_range_values_are_rejected() -> None:
    with pytest.raises(ConfigInvalid):
        PreprocessConfig(sharpen=True, sharpen_percent=500)
    with pytest.raises(ConfigInvalid):
        PreprocessConfig(contrast="histogram")  # type: ignore[arg-type]
    with pytest.raises(ConfigInvalid):
        ResizeOptions(scale_factor=1.5)
    with pytest.raises(ConfigInvalid):
        ResizeOptions(threshold_px=0)


def test_undecodable_buffer_raises_invalid_image() -> None:
    with pytest.raises(InvalidImage):
        preprocess_image(RawImage(b"definitely not an image", "image/png"))


def test_disallowed_mime_type_raises_invalid_image(receipt_png: bytes) -> None:
    with pytest.raises(InvalidImage):
        preprocess_image(RawImage(receipt_png, "image/gif"))
