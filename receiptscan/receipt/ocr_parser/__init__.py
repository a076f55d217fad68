"""Composable OCR receipt parser components."""

from .common import (
    PriceToken,
    QuantityPrefix,
    classify_keyword_line,
    clean_item_name,
    find_price_tokens,
    name_plausibility,
    parse_leading_quantity,
)
from .fields_parser import DATE_FORMATS, DateFormat, extract_date, extract_merchant, select_summary_fields
from .items_text_parser import ItemWeights, LineScan, extract_items

__all__ = [
    "DATE_FORMATS",
    "DateFormat",
    "ItemWeights",
    "LineScan",
    "PriceToken",
    "QuantityPrefix",
    "classify_keyword_line",
    "clean_item_name",
    "extract_date",
    "extract_items",
    "extract_merchant",
    "find_price_tokens",
    "name_plausibility",
    "parse_leading_quantity",
    "select_summary_fields",
]
