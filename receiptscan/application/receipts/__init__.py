"""Receipt workflows."""

from receiptscan.application.receipts.process import (
    ReceiptProcessOptions,
    process_receipt,
    process_receipt_async,
)

__all__ = [
    "ReceiptProcessOptions",
    "process_receipt",
    "process_receipt_async",
]
