"""
Currency code resolution.

Normalization and validity are kept separate: a code that is present but
malformed ("AU$") is a different state from a missing one, and the quality
gate treats them differently.
"""
import re
from typing import Optional

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


def normalize_currency_code(currency_code: Optional[str]) -> Optional[str]:
    """Trim and upper-case a currency code; empty becomes None."""
    value = (currency_code or "").strip().upper()
    return value or None


def is_valid_currency_code(currency_code: Optional[str]) -> bool:
    """Check for exactly three upper-case letters after normalization."""
    value = normalize_currency_code(currency_code)
    if not value:
        return False
    return bool(CURRENCY_CODE_PATTERN.match(value))
