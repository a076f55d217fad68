"""Command-line interface for receipt scanning.

Usage:
    receiptscan scan <image>
    receiptscan scan <image> --json --show-low-confidence
    receiptscan preprocess <image> <out> [--preset standard]
    receiptscan presets
    receiptscan serve [--host] [--port]
"""
