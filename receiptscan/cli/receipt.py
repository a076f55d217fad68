"""Receipt command handlers used by the unified CLI."""

import argparse
from pathlib import Path

from receiptscan.domain.errors import ConfigInvalid, InvalidImage, OcrEngineError
from receiptscan.runtime import get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_INVALID_INPUT = 2
EXIT_OCR_FAILED = 3


def _read_image(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except OSError as e:
        logger.error("Cannot read %s: %s", path, e)
        print(f"Error: cannot read image {path}: {e.strerror or e}")
        return None


def cmd_scan(args: argparse.Namespace) -> int:
    """OCR and parse a receipt image, then print it for review."""
    from receiptscan.application.receipts.process import ReceiptProcessOptions, process_receipt
    from receiptscan.receipt.formatter import format_json, format_review
    from receiptscan.runtime import get_settings

    image_bytes = _read_image(Path(args.image))
    if image_bytes is None:
        return EXIT_INVALID_INPUT

    try:
        settings = get_settings()
        options = ReceiptProcessOptions.from_settings(
            settings,
            preprocess_preset=args.preset,
            page_seg_mode=args.psm,
            alternate_page_seg_modes=tuple(args.alt_psm) if args.alt_psm else None,
            min_item_confidence=args.min_item_confidence,
            min_price_confidence=args.min_price_confidence,
            timeout=args.timeout,
        )
        ocr_json_path = Path(args.save_ocr) if args.save_ocr else None
        document = process_receipt(image_bytes, options, settings=settings, ocr_json_path=ocr_json_path)
    except ConfigInvalid as e:
        print(f"Invalid options: {e}")
        return EXIT_INVALID_INPUT
    except InvalidImage as e:
        print(f"Invalid image: {e}")
        return EXIT_INVALID_INPUT
    except OcrEngineError as e:
        logger.error("OCR failed (%s): %s", e.kind, e)
        print(f"OCR failed ({e.kind}): {e}")
        if e.kind == "initialization":
            print("Make sure tesseract is installed or the OCR service is running before scanning receipts.")
        return EXIT_OCR_FAILED

    if args.json:
        print(format_json(document, include_low_confidence=args.show_low_confidence))
    else:
        print("=" * 60)
        print(format_review(document, show_low_confidence=args.show_low_confidence))
        print("=" * 60)
    if args.text:
        print("\nOCR text:")
        print(document.raw_text)
    return EXIT_OK


def cmd_preprocess(args: argparse.Namespace) -> int:
    """Write the preprocessed image so presets can be compared by eye or by OCR."""
    from receiptscan.domain.image import RawImage
    from receiptscan.receipt.image_quality import assess_image_quality, sniff_mime_type
    from receiptscan.receipt.preprocessing import PreprocessConfig, preprocess_image
    from receiptscan.runtime import get_settings

    image_bytes = _read_image(Path(args.image))
    if image_bytes is None:
        return EXIT_INVALID_INPUT

    try:
        settings = get_settings()
        config = PreprocessConfig.from_preset(
            args.preset or settings.preprocess.preset,
            resize=settings.preprocess.resize_options(),
        )
        raw = RawImage(data=image_bytes, mime_type=sniff_mime_type(image_bytes))
        quality = assess_image_quality(raw)
        processed = preprocess_image(raw, config)
    except ConfigInvalid as e:
        print(f"Invalid options: {e}")
        return EXIT_INVALID_INPUT
    except InvalidImage as e:
        print(f"Invalid image: {e}")
        return EXIT_INVALID_INPUT

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(processed.data)

    print(f"Preset: {processed.preset}")
    print(f"Steps: {', '.join(processed.applied) or '(none)'}")
    print(f"Size: {processed.original_width}x{processed.original_height} -> {processed.width}x{processed.height}")
    print(
        f"Quality: brightness {quality.brightness:.1f}, contrast {quality.contrast:.1f}, "
        f"sharpness {quality.sharpness:.1f}"
    )
    for warning in quality.warnings:
        print(f"! {warning}")
    for step in processed.unsupported:
        print(f"! Step {step!r} is only partially supported")
    print(f"Saved to: {output}")
    return EXIT_OK


def cmd_presets(args: argparse.Namespace) -> int:
    """List preprocessing presets and what they do."""
    from receiptscan.receipt.preprocessing import DEFAULT_PRESET, PRESET_DESCRIPTIONS, PRESET_NAMES, PreprocessConfig

    for name in PRESET_NAMES:
        marker = "*" if name == DEFAULT_PRESET else " "
        steps = ", ".join(PreprocessConfig.from_preset(name).steps()) or "(none)"
        print(f"{marker} {name:<10} {PRESET_DESCRIPTIONS[name]}")
        print(f"  {'':<10} steps: {steps}")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the FastAPI server for receipt uploads."""
    import uvicorn

    from receiptscan.runtime import receipt_server as server

    print(f"Starting receipt server on {args.host}:{args.port}")
    print(f"Upload endpoint: http://{args.host}:{args.port}/receipts/process")
    print("Press Ctrl+C to stop")

    uvicorn.run(server.app, host=args.host, port=args.port)
    return EXIT_OK
