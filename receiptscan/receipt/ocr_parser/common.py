"""Shared tokenizers and line patterns for OCR receipt parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Literal

from receiptscan.domain.receipt import LineKind

CENTS = Decimal("0.01")

PricePattern = Literal["two_decimal", "one_decimal", "symbol_integer"]
QuantityKind = Literal["times", "at", "weight_at", "multi_for"]

# Pattern strength per price shape
PRICE_PATTERN_STRENGTH: dict[PricePattern, float] = {
    "two_decimal": 1.0,
    "one_decimal": 0.6,
    "symbol_integer": 0.5,
}

# Candidate amounts: optional sign, currency symbol, digits with separators,
# optional trailing minus and a single tax-flag letter ("8.00 H", "8.00H").
PRICE_CANDIDATE = re.compile(
    r"(?<![\w.,$%-])"
    r"(?P<lead_minus>-\s?)?"
    r"(?P<symbol>[$€£])?\s?"
    r"(?P<symbol_minus>-)?"
    r"(?P<number>\d+(?:[.,]\d+)*)"
    r"(?P<trail_minus>-)?"
    r"(?:\s?(?P<flag>[A-Za-z])(?![A-Za-z]))?"
    r"(?![\w.,%:])"
)

_PLAIN_INTEGER = re.compile(r"\d+")
_SIMPLE_DECIMAL = re.compile(r"(?P<int>\d+)[.,](?P<frac>\d{1,2})")
_GROUPED_DOT_DECIMAL = re.compile(r"(?P<int>\d{1,3}(?:,\d{3})+)(?:\.(?P<frac>\d{1,2}))?")
_GROUPED_COMMA_DECIMAL = re.compile(r"(?P<int>\d{1,3}(?:\.\d{3})+)(?:,(?P<frac>\d{1,2}))?")

# Leading quantity prefixes
_TIMES_PREFIX = re.compile(r"^\s*(?P<qty>\d{1,3})\s*[xX](?![A-Za-z])\s*")
_AT_PREFIX = re.compile(r"^\s*(?P<qty>\d{1,3})\s*@\s*")
# "1.22 lb @ $2.99/lb", including OCR variants (lk=lb, k9=kg, 1b=lb)
_WEIGHT_AT_PREFIX = re.compile(r"^\s*(?P<weight>\d+(?:\.\d+)?)\s*(?:lbs?|lk|kg|k9|1b)\s*@\s*", re.IGNORECASE)
# "2 /for $3.00" or "(2 /for $3.00)"
_MULTI_FOR_PREFIX = re.compile(r"^\s*\(?(?P<qty>\d{1,3})\s*/\s*for\s+", re.IGNORECASE)

# Non-item keyword patterns, matched against upper-cased text with
# punctuation collapsed to single spaces ("SUB-TOTAL:" -> "SUB TOTAL").
SUBTOTAL_PATTERN = re.compile(r"\bSUB ?TOTAL\b")
SUMMARY_OTHER_PATTERN = re.compile(
    r"\bTOTAL (?:SAVINGS|SAVED|DISCOUNTS?|NUMBER|ITEMS?)\b|\bYOU SAVED\b|\bSAVINGS\b|"
    r"\bITEM COUNT\b|\bNUMBER OF ITEMS\b|\bDISCOUNT\b|\bCOUPON\b|\bPOINTS\b"
)
TOTAL_AFTER_TAX_PATTERN = re.compile(r"\bTOTAL AFTER TAX\b")
TAX_PATTERN = re.compile(r"\b(?:TAX|HST|GST|PST|QST|VAT)\b")
TOTAL_PATTERN = re.compile(r"\b(?:GRAND )?TOTAL\b|\b(?:AMOUNT|BALANCE|TOTAL) DUE\b")
CHANGE_PATTERN = re.compile(r"\bCHANGE(?: DUE)?\b")
TENDER_PATTERN = re.compile(
    r"\b(?:CASH|VISA|MASTERCARD|MASTER CARD|AMEX|AMERICAN EXPRESS|DEBIT|CREDIT|INTERAC|"
    r"TENDER(?:ED)?|PAYMENT|APPROVED|AUTH(?:ORIZATION)?|ACCT|GIFT CARD)\b|^CARD\b"
)
MASKED_CARD_PATTERN = re.compile(r"[X*]{4,}")
FOOTER_PATTERN = re.compile(
    r"\b(?:THANK YOU|THANKS|WELCOME|RETURN POLICY|RETURNS?|CUSTOMER COPY|SIGNATURE|CASHIER|SERVED BY|"
    r"TRANSACTION|RECEIPT|MEMBER|REWARDS|SURVEY|FEEDBACK|TERMINAL|REGISTER|TILL|OPERATOR|INVOICE)\b"
)

# Words allowed beside a keyword on a label line ("VISA TEND", "TOTAL DUE").
# Any other word marks a product or store name that merely contains the keyword.
_TOTAL_LABEL_WORDS = frozenset(
    {"TOTAL", "GRAND", "DUE", "AMOUNT", "AMT", "BALANCE", "SALE", "SALES", "ORDER", "FINAL", "PURCHASE", "PAYABLE"}
    | {"USD", "CAD", "EUR", "GBP"}
)
_PAYMENT_LABEL_WORDS = frozenset(
    {"CASH", "VISA", "MASTERCARD", "MASTER", "CARD", "AMEX", "AMERICAN", "EXPRESS", "DEBIT", "CREDIT", "INTERAC"}
    | {"TENDER", "TENDERED", "TEND", "PAYMENT", "PAID", "APPROVED", "AUTH", "AUTHORIZATION", "ACCT", "ACCOUNT"}
    | {"GIFT", "CHIP", "TAP", "CONTACTLESS", "BACK", "AMOUNT", "AMT", "REF", "CODE", "NUMBER", "CHANGE", "DUE"}
    | {"GIVEN", "RECEIVED", "PURCHASE", "SALE", "USD", "CAD", "EUR", "GBP"}
)
_FOOTER_LABEL_WORDS = frozenset(
    {"THANK", "YOU", "THANKS", "WELCOME", "RETURN", "RETURNS", "POLICY", "CUSTOMER", "COPY", "SIGNATURE"}
    | {"CASHIER", "SERVED", "TRANSACTION", "RECEIPT", "MEMBER", "REWARDS", "SURVEY", "FEEDBACK", "TERMINAL"}
    | {"REGISTER", "TILL", "OPERATOR", "INVOICE", "FOR", "YOUR", "THE", "AND", "CODE", "NUMBER", "EARNED"}
)

PHONE_PATTERN =re.compile(r"(?:\+?1[\s.-]?)?\(?\b\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b")
EMAIL_PATTERN = re.compile(r"[A-Za-z][\w.+-]*@[A-Za-z][\w-]*\.[A-Za-z]{2,}")
WEB_PATTERN = re.compile(r"\bWWW\.|\bHTTPS?:|\.COM\b|\.CA\b|\.ORG\b", re.IGNORECASE)
CONTACT_WORD_PATTERN = re.compile(r"\b(?:TEL|PHONE|FAX)\b")
ADDRESS_PATTERN = re.compile(
    r"^\d+\s+\w+.*\b(?:AVE|AVENUE|ST|STREET|RD|ROAD|BLVD|BOULEVARD|DR|DRIVE|HWY|HIGHWAY|WAY|LN|LANE|PKWY)\b"
)
BARCODE_PATTERN = re.compile(r"[\d\s-]+")
MIN_BARCODE_DIGITS = 8

SUMMARY_KINDS: tuple[LineKind, ...] = ("subtotal", "tax", "total", "summary_other")


@dataclass(frozen=True)
class PriceToken:
    """A currency amount found in a line of OCR text."""

    value: Decimal
    strength: float
    pattern: PricePattern
    start: int
    end: int
    tax_flag: str | None = None

    @property
    def is_negative(self) -> bool:
        return self.value < 0


@dataclass(frozen=True)
class QuantityPrefix:
    """A leading quantity expression stripped from an item line."""

    quantity: int
    kind: QuantityKind
    remainder: str
    weight: Decimal | None = None


def _parse_number(number: str) -> tuple[Decimal, int] | None:
    """Return (amount, fraction digit count) or None if the digits are not an amount."""
    if _PLAIN_INTEGER.fullmatch(number):
        return Decimal(number), 0

    match = _SIMPLE_DECIMAL.fullmatch(number)
    if match:
        integer, fraction = match.group("int"), match.group("frac")
    else:
        match = _GROUPED_DOT_DECIMAL.fullmatch(number) or _GROUPED_COMMA_DECIMAL.fullmatch(number)
        if not match:
            return None
        integer = re.sub(r"[.,]", "", match.group("int"))
        fraction = match.group("frac") or ""

    try:
        value = Decimal(f"{integer}.{fraction}" if fraction else integer)
    except InvalidOperation:
        return None
    return value, len(fraction)


def find_price_tokens(text: str) -> list[PriceToken]:
    """
    Find every currency amount in a line, in order of appearance.

    Two fraction digits score 1.0, one fraction digit 0.6, and a currency
    symbol with an integer ("$12") 0.5. Bare integers are never prices.
    """
    tokens: list[PriceToken] = []
    for match in PRICE_CANDIDATE.finditer(text):
        parsed = _parse_number(match.group("number"))
        if parsed is None:
            continue
        value, fraction_digits = parsed
        symbol = match.group("symbol")

        pattern: PricePattern
        if fraction_digits == 2:
            pattern = "two_decimal"
        elif fraction_digits == 1:
            pattern = "one_decimal"
        elif symbol:
            pattern = "symbol_integer"
        else:
            continue

        if match.group("lead_minus") or match.group("symbol_minus") or match.group("trail_minus"):
            value = -value
        flag = match.group("flag")
        tokens.append(
            PriceToken(
                value=value.quantize(CENTS),
                strength=PRICE_PATTERN_STRENGTH[pattern],
                pattern=pattern,
                start=match.start(),
                end=match.end(),
                tax_flag=flag.upper() if flag else None,
            )
        )
    return tokens


def strip_price_tokens(text: str, tokens: list[PriceToken]) -> str:
    """Remove matched price spans from text."""
    pieces: list[str] = []
    cursor = 0
    for token in tokens:
        pieces.append(text[cursor : token.start])
        cursor = token.end
    pieces.append(text[cursor:])
    return " ".join(piece.strip() for piece in pieces if piece.strip())


def parse_leading_quantity(text: str) -> QuantityPrefix | None:
    """
    Parse a leading quantity expression.

    Recognizes ``3 x NAME``, ``2 @ 1.99``, ``1.22 lb @ 2.99`` and
    ``2 /for 3.00``. Zero quantities are ignored.
    """
    match = _WEIGHT_AT_PREFIX.match(text)
    if match:
        return QuantityPrefix(
            quantity=1,
            kind="weight_at",
            remainder=text[match.end() :].strip(),
            weight=Decimal(match.group("weight")),
        )

    for pattern, kind in ((_TIMES_PREFIX, "times"), (_AT_PREFIX, "at"), (_MULTI_FOR_PREFIX, "multi_for")):
        match = pattern.match(text)
        if match:
            quantity = int(match.group("qty"))
            if quantity < 1:
                return None
            return QuantityPrefix(quantity=quantity, kind=kind, remainder=text[match.end() :].strip())  # type: ignore[arg-type]
    return None


def validate_quantity_price(
    quantity: int, unit_price: Decimal, line_total: Decimal, tolerance: Decimal = Decimal("0.02")
) -> bool:
    """Check that quantity x unit_price is within tolerance of the line total."""
    return abs(quantity * unit_price - line_total) <= tolerance


def normalize_keyword_text(text: str) -> str:
    """Upper-case text and collapse punctuation so keywords match regardless of it."""
    return re.sub(r"[^A-Z0-9%]+", " ", text.upper()).strip()


def has_letters(text: str) -> bool:
    return any(ch.isalpha() for ch in text)


def _looks_like_contact(text: str, normalized: str) -> bool:
    if PHONE_PATTERN.search(text) or EMAIL_PATTERN.search(text) or WEB_PATTERN.search(text):
        return True
    if CONTACT_WORD_PATTERN.search(normalized):
        return True
    return ADDRESS_PATTERN.search(normalized) is not None


def _looks_like_barcode(text: str) -> bool:
    stripped = text.strip()
    if not BARCODE_PATTERN.fullmatch(stripped):
        return False
    return sum(ch.isdigit() for ch in stripped) >= MIN_BARCODE_DIGITS


def _extra_label_words(normalized: str, pattern: re.Pattern[str], allowed: frozenset[str]) -> list[str]:
    """Words left on a keyword line once keywords, label words and numbers are removed."""
    return [
        word
        for word in pattern.sub(" ", normalized).split()
        if len(word) >= 3
        and word not in allowed
        and not any(ch.isdigit() for ch in word)
        and not MASKED_CARD_PATTERN.fullmatch(word)
    ]


def _is_label(normalized: str, pattern: re.Pattern[str], allowed: frozenset[str], strict: bool) -> bool:
    if not pattern.search(normalized):
        return False
    return not strict or not _extra_label_words(normalized, pattern, allowed)


def classify_keyword_line(text: str, has_price: bool) -> LineKind | None:
    """
    Route a line matching a known non-item pattern to its kind.

    Returns None when the line matches no keyword and may be an item. A total
    label must hold only total words, so "TOTAL WINE & MORE" is not a total.
    Priced lines are payment or footer lines only when no other name words
    remain ("GIFT CARD HOLDER 2.99" is an item).
    """
    normalized = normalize_keyword_text(text)
    if not normalized:
        return None

    if SUBTOTAL_PATTERN.search(normalized):
        return "subtotal"
    if SUMMARY_OTHER_PATTERN.search(normalized):
        return "summary_other"
    if TOTAL_AFTER_TAX_PATTERN.search(normalized):
        return "total"
    if TAX_PATTERN.search(normalized):
        return "tax"
    if _is_label(normalized, TOTAL_PATTERN, _TOTAL_LABEL_WORDS, strict=True):
        return "total"
    if _is_label(normalized, CHANGE_PATTERN, _PAYMENT_LABEL_WORDS, strict=has_price):
        return "change"
    if _is_label(normalized, TENDER_PATTERN, _PAYMENT_LABEL_WORDS, strict=has_price):
        return "tender"
    if MASKED_CARD_PATTERN.search(text.upper()):
        return "tender"
    if not has_price:
        if _looks_like_contact(text, normalized):
            return "contact"
        if _looks_like_barcode(text):
            return "barcode"
    if _is_label(normalized, FOOTER_PATTERN, _FOOTER_LABEL_WORDS, strict=has_price):
        return "footer"
    return None


def clean_item_name(text: str) -> str:
    """Clean an item name left after quantity and price tokens are stripped."""
    name = text
    # Leading quantity marker like "(2)" and long SKU codes
    name = re.sub(r"^\(\d+\)\s*", "", name)
    name = re.sub(r"^\d{6,}\s*", "", name)
    name = re.sub(r"\s\d{6,}$", "", name)
    # Sale markers
    name = re.sub(r"\(SALE\)\s*", "", name, flags=re.IGNORECASE)
    # Multi-buy and per-unit fragments like "@2/$2.97" or "$8.80/KG"
    name = re.sub(r"@?\d+/[A-Za-z]?\$?\d+\.\d{2}", "", name)
    name = re.sub(r"\$\d+\.\d+/\w+", "", name)
    name = re.sub(r"/\s*(?:lb|kg|ea)\b", "", name, flags=re.IGNORECASE)
    # Leading/trailing special chars and extra spaces
    name = re.sub(r"^[^A-Za-z0-9(]+", "", name)
    name = re.sub(r"[^A-Za-z0-9)%]+$", "", name)
    name = re.sub(r"\s+", " ", name)
    return name.strip()


def name_plausibility(name: str) -> float:
    """
    Score how much a string looks like a product name.

    0.0 for empty, 0.1 with no letters, 0.2 under two characters, 0.6 when
    fewer than half the non-space characters are letters, otherwise 1.0.
    """
    stripped = name.strip()
    if not stripped:
        return 0.0
    if not has_letters(stripped):
        return 0.1
    if len(stripped) < 2:
        return 0.2
    compact = [ch for ch in stripped if not ch.isspace()]
    letters = sum(ch.isalpha() for ch in compact)
    if letters / len(compact) < 0.5:
        return 0.6
    return 1.0
