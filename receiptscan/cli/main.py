#!/usr/bin/env python3

import argparse
import logging
from collections.abc import Sequence

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.domain.ocr import PAGE_SEG_MODES
from receiptscan.receipt.preprocessing import PRESET_NAMES


def _print_error(error: str) -> None:
    for line in error.splitlines():
        print(line)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Receipt scanning CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  scan <image>               OCR a receipt and print candidate items for review
  preprocess <image> <out>   Write the preprocessed image for a preset
  presets                    List preprocessing presets
  serve [--host] [--port]    Start the receipt upload server

Notes:
  Settings come from receiptscan.toml (or $RECEIPTSCAN_CONFIG).
  Low-confidence items are hidden unless --show-low-confidence is given.
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Scan a receipt image")
    scan_parser.add_argument("image", help="Path to receipt image")
    scan_parser.add_argument("--preset", choices=PRESET_NAMES, help="Preprocessing preset (default: from config)")
    scan_parser.add_argument("--psm", choices=PAGE_SEG_MODES, help="Page segmentation mode (default: from config)")
    scan_parser.add_argument(
        "--alt-psm",
        action="append",
        choices=PAGE_SEG_MODES,
        help="Also try this page segmentation mode and keep the best result (repeatable)",
    )
    scan_parser.add_argument("--min-item-confidence", type=float, help="Hide items below this confidence")
    scan_parser.add_argument("--min-price-confidence", type=float, help="Hide items whose price match is weaker")
    scan_parser.add_argument("--timeout", type=float, help="Overall OCR deadline in seconds")
    scan_parser.add_argument("--json", action="store_true", help="Print the document as JSON")
    scan_parser.add_argument("--show-low-confidence", action="store_true", help="Include low-confidence items")
    scan_parser.add_argument("--text", action="store_true", help="Also print the raw OCR text")
    scan_parser.add_argument("--save-ocr", metavar="PATH", help="Write the selected OCR result as JSON")

    # preprocess command
    preprocess_parser = subparsers.add_parser("preprocess", help="Write a preprocessed image")
    preprocess_parser.add_argument("image", help="Path to receipt image")
    preprocess_parser.add_argument("output", help="Where to write the processed image")
    preprocess_parser.add_argument("--preset", choices=PRESET_NAMES, help="Preprocessing preset (default: from config)")

    subparsers.add_parser("presets", help="List preprocessing presets")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start receipt upload server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")

    args = parser.parse_args(argv)

    if args.verbose:
        from receiptscan.runtime import set_log_level

        set_log_level(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 1

    from receiptscan.cli import receipt

    handlers = {
        "scan": receipt.cmd_scan,
        "preprocess": receipt.cmd_preprocess,
        "presets": receipt.cmd_presets,
        "serve": receipt.cmd_serve,
    }
    try:
        return handlers[args.command](args)
    except ConfigInvalid as e:
        # Raised while loading receiptscan.toml
        _print_error(f"Invalid configuration: {e}")
        return receipt.EXIT_INVALID_INPUT


if __name__ == "__main__":
    raise SystemExit(main())
