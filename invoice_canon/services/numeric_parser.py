"""
Numeric parser for OCR-extracted invoice values.

Handles money cells as captured by document OCR:
- Currency: $1,234.56, €1.234,56, AUD 12.00
- Negative: (12.50), -12.50
- Separators: US (1,234.56) and EU (1.234,56) grouping
- Precision: unit prices up to 4dp, other money fields up to 2dp

Values that cannot be read unambiguously are rejected with a reason code
instead of being guessed. Those reasons feed the quality gate.
"""
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


class MoneyKind(str, Enum):
    """Which money field is being parsed; drives precision rules."""
    LINE_TOTAL = "LINE_TOTAL"
    UNIT_PRICE = "UNIT_PRICE"
    TAX = "TAX"
    OTHER = "OTHER"


INVALID_MONEY_FORMAT = "INVALID_MONEY_FORMAT"
AMBIGUOUS_DECIMAL_SEPARATOR = "AMBIGUOUS_DECIMAL_SEPARATOR"


@dataclass
class ParsedMoney:
    """Result of parsing a money value."""

    value: Optional[Decimal]
    raw_value: str
    confidence: float
    was_normalized: bool = False
    reason: Optional[str] = None

    @property
    def failed(self) -> bool:
        """True when a value was present but could not be read."""
        return self.reason is not None


class NumericParser:
    """
    Parser for invoice money and quantity values.

    Mixed separators take the rightmost one as the decimal mark and must form
    a valid US or EU grouping. A lone comma is a decimal comma only with two
    digits after it, and a thousands comma only with three. A lone dot with
    three digits after it is ambiguous for money totals.
    """

    UNIT_PRICE_MAX_REASONABLE_3DP = Decimal("100")

    CURRENCY_SYMBOLS_PATTERN = re.compile(r"[$€£¥]")
    LETTERS_PATTERN = re.compile(r"[A-Za-z]")
    WHITESPACE_PATTERN = re.compile(r"\s+")
    PARENTHESES_PATTERN = re.compile(r"^\((.*)\)$")
    CLEANED_PATTERN = re.compile(r"^-?[0-9.,]+$")
    US_MIXED_PATTERN = re.compile(r"^-?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
    EU_MIXED_PATTERN = re.compile(r"^-?\d{1,3}(?:\.\d{3})+(?:,\d+)?$")
    US_THOUSANDS_PATTERN = re.compile(r"^-?\d{1,3}(?:,\d{3})+$")
    QUANTITY_PATTERN = re.compile(r"-?\d+(?:[.,]\d+)?")

    def parse_money(self, value: Any, kind: MoneyKind = MoneyKind.OTHER) -> ParsedMoney:
        """
        Parse a money value.

        Args:
            value: Raw cell value (string, number or None).
            kind: Field kind, which sets the allowed precision.

        Returns:
            ParsedMoney. ``value`` is None and ``reason`` is set when the
            input was present but unreadable; both are None for empty input.
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            return ParsedMoney(value=None, raw_value="" if value is None else value, confidence=0.0)

        if isinstance(value, bool):
            return self._invalid(str(value), False)

        if isinstance(value, (int, float, Decimal)):
            try:
                number = Decimal(str(value))
            except InvalidOperation:
                return self._invalid(str(value), False)
            if not number.is_finite():
                return self._invalid(str(value), False)
            return self._finalize(number, str(number), str(value), kind, False, 1.0)

        if not isinstance(value, str):
            return self._invalid(str(value), False)

        original = value
        text = value.replace("\u00a0", " ").strip()

        was_normalized = False
        paren_match = self.PARENTHESES_PATTERN.match(text)
        if paren_match and re.search(r"\d", paren_match.group(1)):
            text = "-" + paren_match.group(1)
            was_normalized = True

        cleaned = self.LETTERS_PATTERN.sub("", text)
        cleaned = self.CURRENCY_SYMBOLS_PATTERN.sub("", cleaned)
        cleaned = self.WHITESPACE_PATTERN.sub("", cleaned)
        # Keep only a leading minus
        if cleaned:
            cleaned = cleaned[0] + cleaned[1:].replace("-", "")
        was_normalized = was_normalized or cleaned != text

        if not self.CLEANED_PATTERN.match(cleaned) or not re.search(r"\d", cleaned):
            return self._invalid(original, was_normalized)

        has_dot = "." in cleaned
        has_comma = "," in cleaned

        if has_dot and has_comma:
            decimal_is_dot = cleaned.rfind(".") > cleaned.rfind(",")
            pattern = self.US_MIXED_PATTERN if decimal_is_dot else self.EU_MIXED_PATTERN
            if not pattern.match(cleaned):
                return self._ambiguous(original)
            if decimal_is_dot:
                normalized = cleaned.replace(",", "")
            else:
                normalized = cleaned.replace(".", "").replace(",", ".")
            return self._from_text(normalized, original, kind, True, 1.0)

        if has_comma:
            parts = cleaned.split(",")
            if len(parts) > 2:
                if self.US_THOUSANDS_PATTERN.match(cleaned):
                    return self._from_text(cleaned.replace(",", ""), original, kind, True, 1.0)
                return self._ambiguous(original)

            lhs, rhs = parts
            if len(rhs) == 2:
                return self._from_text(f"{lhs}.{rhs}", original, kind, True, 0.85)
            if len(rhs) == 3 and re.match(r"^\d{1,3}$", lhs.lstrip("-")):
                return self._from_text(f"{lhs}{rhs}", original, kind, True, 1.0)
            return self._ambiguous(original)

        if has_dot:
            parts = cleaned.split(".")
            if len(parts) != 2:
                return self._invalid(original, was_normalized)
            rhs = parts[1]
            if len(rhs) in (3, 4):
                number = self._to_decimal(cleaned)
                if number is None:
                    return self._invalid(original, was_normalized)
                if kind == MoneyKind.UNIT_PRICE:
                    if len(rhs) == 4 or abs(number) <= self.UNIT_PRICE_MAX_REASONABLE_3DP:
                        return self._finalize(number, cleaned, original, kind, was_normalized, 1.0)
                    return self._ambiguous(original)
                if len(rhs) == 4:
                    return self._invalid(original, was_normalized)
                return self._ambiguous(original)

        confidence = 0.85 if was_normalized and not has_dot else 1.0
        return self._from_text(cleaned, original, kind, was_normalized, confidence)

    def parse_quantity_loose(self, value: Any) -> Optional[Decimal]:
        """
        Read a quantity from a cell such as "8.42 KILO" or "2 UNIT".

        Quantities are not money: unit tokens and stray characters are
        dropped and the first number wins.

        Returns:
            Decimal quantity, or None if there is no number.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float, Decimal)):
            try:
                number = Decimal(str(value))
            except InvalidOperation:
                return None
            return number if number.is_finite() else None
        match = self.QUANTITY_PATTERN.search(str(value))
        if not match:
            return None
        return self._to_decimal(match.group(0).replace(",", "."))

    def _from_text(
        self,
        normalized: str,
        original: str,
        kind: MoneyKind,
        was_normalized: bool,
        confidence: float,
    ) -> ParsedMoney:
        number = self._to_decimal(normalized)
        if number is None:
            return self._invalid(original, was_normalized)
        return self._finalize(number, normalized, original, kind, was_normalized, confidence)

    def _finalize(
        self,
        number: Decimal,
        normalized: str,
        original: str,
        kind: MoneyKind,
        was_normalized: bool,
        confidence: float,
    ) -> ParsedMoney:
        max_decimals = self._max_decimals(kind)
        fraction_digits = len(normalized.split(".", 1)[1]) if "." in normalized else 0
        if fraction_digits > max_decimals:
            return self._invalid(original, was_normalized)

        if kind != MoneyKind.UNIT_PRICE:
            rounded = number.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            was_normalized = was_normalized or rounded != number
            number = rounded

        return ParsedMoney(
            value=number,
            raw_value=original,
            confidence=confidence,
            was_normalized=was_normalized,
        )

    @staticmethod
    def _max_decimals(kind: MoneyKind) -> int:
        return 4 if kind == MoneyKind.UNIT_PRICE else 2

    @staticmethod
    def _to_decimal(text: str) -> Optional[Decimal]:
        try:
            number = Decimal(text)
        except (InvalidOperation, ValueError):
            logger.warning("numeric_parse_failed", value=text)
            return None
        return number if number.is_finite() else None

    @staticmethod
    def _invalid(original: str, was_normalized: bool) -> ParsedMoney:
        return ParsedMoney(
            value=None,
            raw_value=original,
            confidence=0.0,
            was_normalized=was_normalized,
            reason=INVALID_MONEY_FORMAT,
        )

    @staticmethod
    def _ambiguous(original: str) -> ParsedMoney:
        return ParsedMoney(
            value=None,
            raw_value=original,
            confidence=0.0,
            was_normalized=True,
            reason=AMBIGUOUS_DECIMAL_SEPARATOR,
        )


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
