"""
Holdings extraction from free-form text.

Two extraction modes are offered:

* parse_assets() - the broker-statement asset detector. Text (usually OCR
  output of a brokerage app screenshot) is normalized line by line and each
  line is tried against an ordered table of layout templates, most specific
  first. The first template that matches a line decides how that line is
  read. Candidates are filtered through the ticker allow-list and
  de-duplicated (first occurrence wins). If nothing at all is found, a
  token-pair scan recovers "SYMBOL number" pairs from degraded text.

* extract_holdings_fields() - the generic extractor returning ISINs,
  share quantities and currency-prefixed prices found anywhere in the text.

Both are pure functions of their input and never raise for string input.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Tuple

from symbols import DEFAULT_SYMBOLS, is_known_symbol

logger = logging.getLogger('portfolio_tracker.parser')

MANUAL_CONFIDENCE = 1.0
OCR_CONFIDENCE = 0.8

_DISALLOWED_CHARS = re.compile(r'[^A-Za-z0-9\s.,+\-$%()\[\]{}:;]')
_WHITESPACE = re.compile(r'\s+')

# Template building blocks. Lines are normalized first, so a single space
# separates tokens.
_SYMBOL = r'(?P<symbol>[A-Z]{1,5}(?:\.[A-Z])?)'
_SYMBOL_START = r'(?<![A-Za-z0-9.])'
_EXCHANGE = r'[A-Za-z]+'
_NUMBER = r'\$?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?'
_SIGNED = r'[+-]?' + _NUMBER
_TIME = r'\d{1,2}:\d{2}'
# OCR renders an empty quantity cell as a short garbage word ("al")
_PLACEHOLDER = r'[A-Za-z]{1,3}'
_PRICE = r'(?P<price>' + _NUMBER + r')'
_QUANTITY = r'(?P<quantity>' + _NUMBER + r')'
_NUMBER_END = r'(?!\d)'

_LEADING_NUMBER = re.compile(r'^\$?(\d[\d,]*(?:\.\d+)?)')

_ISIN_PATTERN = re.compile(r'\b[A-Z]{2}[A-Z0-9]{9}\d\b')
_QUANTITY_PATTERN = re.compile(r'(\d+(?:\.\d+)?)\s*(?:shares?|units?|pcs?|pieces?)\b', re.IGNORECASE)
_PRICE_PATTERN = re.compile(r'(?:[$€£]|\b(?:USD|EUR|GBP)\b)\s*(\d+(?:\.\d+)?)')


@dataclass
class CandidateAsset:
    """An asset recovered from text, not yet persisted."""
    symbol: str
    quantity: float
    purchase_price: float
    name: str = ''

    def __post_init__(self):
        if not self.name:
            self.name = f'{self.symbol} Inc.'

    def to_dict(self):
        return {
            'symbol': self.symbol,
            'name': self.name,
            'quantity': self.quantity,
            'purchasePrice': self.purchase_price,
        }


@dataclass
class HoldingsExtraction:
    """Result of the generic ISIN / quantity / price extraction."""
    text: str
    confidence: float
    isins: List[str] = field(default_factory=list)
    quantities: List[float] = field(default_factory=list)
    prices: List[float] = field(default_factory=list)

    def to_dict(self):
        return {
            'isins': self.isins,
            'quantities': self.quantities,
            'prices': self.prices,
            'confidence': self.confidence,
            'text': self.text,
        }


# (symbol, quantity, price) as read from one template match
RawRecord = Tuple[str, float, float]


@dataclass(frozen=True)
class LineTemplate:
    """
    One known statement layout.

    mode 'line' requires the whole normalized line to match; mode 'scan'
    reads every non-overlapping occurrence inside the line.
    """
    name: str
    pattern: Pattern
    extractor: Callable[[re.Match, frozenset], Optional[RawRecord]]
    mode: str = 'line'

    def matches(self, line):
        if self.mode == 'line':
            match = self.pattern.fullmatch(line)
            return [match] if match else []
        return list(self.pattern.finditer(line))


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_line(line):
    """Strip characters OCR tends to invent and collapse whitespace."""
    cleaned = _DISALLOWED_CHARS.sub('', line)
    return _WHITESPACE.sub(' ', cleaned).strip()


def normalize_text(text):
    """Split text into normalized, non-empty lines."""
    if not isinstance(text, str):
        return []
    lines = (normalize_line(line) for line in text.splitlines())
    return [line for line in lines if line]


def parse_number(value):
    """Parse '1,234.50' or '$27.50' into a float. Returns None if unparseable."""
    if value is None:
        return None
    cleaned = value.replace('$', '').replace(',', '')
    try:
        return float(cleaned)
    except ValueError:
        return None


# =============================================================================
# TEMPLATE EXTRACTORS
# =============================================================================

def _with_quantity(match, symbols):
    return match.group('symbol'), parse_number(match.group('quantity')), parse_number(match.group('price'))


def _default_quantity(match, symbols):
    return match.group('symbol'), 1.0, parse_number(match.group('price'))


def _without_price(match, symbols):
    return match.group('symbol'), parse_number(match.group('quantity')), 0.0


def resolve_glued_symbol(token, symbols):
    """
    Split a symbol fused to its exchange label ("STLANYSE" -> "STLA").

    The whole token wins if it is itself a known symbol. Otherwise the
    longest known uppercase prefix is used, provided the remainder starts
    with an uppercase letter the way exchange labels do.
    """
    if token in symbols:
        return token

    for length in range(min(5, len(token) - 1), 0, -1):
        prefix = token[:length]
        if not prefix.isupper():
            continue
        if prefix in symbols and token[length].isupper():
            return prefix

    return None


def _glued_with_quantity(match, symbols):
    symbol = resolve_glued_symbol(match.group('glued'), symbols)
    if symbol is None:
        return None
    return symbol, parse_number(match.group('quantity')), parse_number(match.group('price'))


def _compile(*parts):
    return re.compile(''.join(parts))


# Ordered most specific first. The first template matching a line decides
# how that line is read.
LINE_TEMPLATES = (
    # SCHD Arca 27.50 +0.03 10 0.30
    LineTemplate(
        'exchange_quantity_change',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE, ' ', _SIGNED, ' ', _QUANTITY, ' ', _SIGNED),
        _with_quantity,
    ),
    # SPYI ATs 52.44 +0.12 3 0:33
    LineTemplate(
        'exchange_quantity_time',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE, ' ', _SIGNED, ' ', _QUANTITY, ' ', _TIME),
        _with_quantity,
    ),
    # STLANYSE 9.90 +0.22 5 1.50
    LineTemplate(
        'glued_exchange_quantity',
        _compile(r'(?P<glued>[A-Z]{1,5}[A-Za-z]+)', ' ', _PRICE, ' ', _SIGNED, ' ', _QUANTITY, ' ', _SIGNED),
        _glued_with_quantity,
    ),
    # GOOGL woos 252.38 +2.85 al 2:91
    LineTemplate(
        'exchange_placeholder_time',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE, ' ', _SIGNED, ' ', _PLACEHOLDER, ' ', _TIME),
        _default_quantity,
    ),
    # EWZ Arca 30.84 -0.10 al -0.10
    LineTemplate(
        'exchange_placeholder_change',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE, ' ', _SIGNED, ' ', _PLACEHOLDER, ' ', _SIGNED),
        _default_quantity,
    ),
    # NKE nyse 72.16 -0.15
    LineTemplate(
        'exchange_change',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE, ' ', _SIGNED),
        _default_quantity,
    ),
    # NKE nyse 72.16
    LineTemplate(
        'exchange_price',
        _compile(_SYMBOL, ' ', _EXCHANGE, ' ', _PRICE),
        _default_quantity,
    ),
    # AAPL 10 150.00
    LineTemplate(
        'quantity_price',
        _compile(_SYMBOL_START, _SYMBOL, ' ', _QUANTITY, ' ', _PRICE, _NUMBER_END),
        _with_quantity,
        mode='scan',
    ),
    # AAPL - 10 / AAPL: 10
    LineTemplate(
        'separated_quantity',
        _compile(_SYMBOL_START, _SYMBOL, r' ?[-:] ?', _QUANTITY, _NUMBER_END),
        _without_price,
        mode='scan',
    ),
    # AAPL 10
    LineTemplate(
        'quantity_only',
        _compile(_SYMBOL_START, _SYMBOL, ' ', _QUANTITY, _NUMBER_END),
        _without_price,
        mode='scan',
    ),
)


def _is_valid_record(quantity, price):
    if quantity is None or price is None:
        return False
    if not (math.isfinite(quantity) and math.isfinite(price)):
        return False
    return quantity > 0 and price >= 0


def match_line(line, symbols=None, templates=LINE_TEMPLATES):
    """
    Read one normalized line with the first template that matches it.

    Returns (template_name, records). template_name is None when no
    template matched. Records failing the quantity/price sanity checks are
    dropped; the allow-list is not applied here.
    """
    allowed = DEFAULT_SYMBOLS if symbols is None else symbols

    for template in templates:
        matches = template.matches(line)
        if not matches:
            continue

        records = []
        for match in matches:
            record = template.extractor(match, allowed)
            if record is None:
                continue
            symbol, quantity, price = record
            if _is_valid_record(quantity, price):
                records.append((symbol.upper(), quantity, price))
        return template.name, records

    return None, []


# =============================================================================
# ASSET DETECTION
# =============================================================================

def _fallback_scan(lines, symbols):
    """Pair an allow-listed token with the positive number following it."""
    assets = []
    seen = set()
    tokens = ' '.join(lines).split()

    for word, next_word in zip(tokens, tokens[1:]):
        symbol = word.rstrip(':,;').upper()
        if symbol in seen or not is_known_symbol(symbol, symbols):
            continue
        number = _LEADING_NUMBER.match(next_word)
        if not number:
            continue
        quantity = parse_number(number.group(1))
        if quantity is None or not math.isfinite(quantity) or quantity <= 0:
            continue
        seen.add(symbol)
        assets.append(CandidateAsset(symbol=symbol, quantity=quantity, purchase_price=0.0))

    return assets


def parse_assets(text, symbols=None):
    """
    Detect candidate assets in statement text.

    Returns a list of CandidateAsset with unique symbols, in order of first
    appearance. Unknown tickers are dropped silently; unparseable text
    yields an empty list.
    """
    if not isinstance(text, str) or not text.strip():
        return []

    allowed = DEFAULT_SYMBOLS if symbols is None else symbols
    lines = normalize_text(text)
    assets = []
    seen = set()

    for line in lines:
        template_name, records = match_line(line, allowed)
        if template_name is None:
            continue
        logger.debug("Line %r matched template %s", line, template_name)

        for symbol, quantity, price in records:
            if not is_known_symbol(symbol, allowed):
                logger.debug("Dropping unknown symbol %s", symbol)
                continue
            if symbol in seen:
                continue
            seen.add(symbol)
            assets.append(CandidateAsset(symbol=symbol, quantity=quantity, purchase_price=price))

    if not assets:
        assets = _fallback_scan(lines, allowed)
        if assets:
            logger.debug("Fallback scan recovered %d assets", len(assets))

    logger.info("Detected %d assets in %d lines", len(assets), len(lines))
    return assets


# =============================================================================
# GENERIC ISIN / QUANTITY / PRICE EXTRACTION
# =============================================================================

def extract_holdings_fields(text, confidence=MANUAL_CONFIDENCE):
    """
    Pull ISINs, share quantities and currency-prefixed prices out of text.

    confidence is a provenance label: MANUAL_CONFIDENCE for typed text,
    OCR_CONFIDENCE for OCR output.
    """
    if not isinstance(text, str):
        text = ''

    isins = list(dict.fromkeys(_ISIN_PATTERN.findall(text)))
    quantities = [float(value) for value in _QUANTITY_PATTERN.findall(text)]
    prices = [float(value) for value in _PRICE_PATTERN.findall(text)]

    return HoldingsExtraction(
        text=text,
        confidence=confidence,
        isins=isins,
        quantities=quantities,
        prices=prices,
    )
