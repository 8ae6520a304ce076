"""
Unit canonicalization for invoice lines.

Resolves a canonical unit label either from an explicit label or, failing
that, from a bounded scan of the description, then maps it to a coarse
UnitCategory.

Extraction policy (normalization version "v1"): pack notation such as
"2 x 2.5kg" or "4x5KG" is excluded outright and yields no unit. Multi-pack
quantities are left unresolved rather than guessed.
"""
import re
from types import MappingProxyType
from typing import Mapping, Optional

from invoice_canon.models.canonical import UnitCategory
from invoice_canon.services.canonical.normalize import normalize_unit_label

NORMALIZATION_VERSION = "v1"

WEIGHT_UNITS = frozenset({"KG", "KILO", "G", "GM", "GRAM", "GRAMS", "KILOGRAM", "KILOGRAMS"})
VOLUME_UNITS = frozenset({"L", "LT", "LITRE", "LITER", "ML", "MILLILITRE", "MILLILITER"})

UNIT_SYNONYMS: Mapping[str, str] = MappingProxyType({
    "KILOS": "KG",
    "KILO": "KG",
    "KGS": "KG",
    "KILOGRAM": "KG",
    "KILOGRAMS": "KG",
    "GR": "G",
    "GM": "G",
    "GRAM": "G",
    "GRAMS": "G",
    "LT": "L",
    "LTR": "L",
    "LITRE": "L",
    "LITRES": "L",
    "LITER": "L",
    "LITERS": "L",
    "MILLILITRE": "ML",
    "MILLILITRES": "ML",
    "MILLILITER": "ML",
    "MILLILITERS": "ML",
    "EACH": "EACH",
    "EA": "EACH",
    "UNITS": "UNIT",
})

# Tokens accepted when reading a unit out of an OCR quantity/size cell
CELL_UNIT_ALLOW = frozenset(
    WEIGHT_UNITS
    | VOLUME_UNITS
    | {"KILOS", "KGS", "GR", "LTR", "LITRES", "LITERS", "MILLILITRES", "MILLILITERS"}
    | {"EA", "EACH", "UNIT", "UNITS", "CTN", "CRTN", "CARTON", "BOX", "PK", "PKT", "PACK", "DOZ", "BAG", "TRAY", "BTL", "CASE"}
)

_UNIT_ALTERNATION = (
    "KGS|KG|KILOGRAMS|KILOGRAM|KILOS|KILO|GRAMS|GRAM|GM|G|"
    "LTR|LT|LITRES|LITRE|LITERS|LITER|L|"
    "MILLILITRES|MILLILITRE|MILLILITERS|MILLILITER|ML"
)

# Numeric token immediately followed (optionally one space) by a unit: "2kg", "500 ml", "12KILO"
UNIT_TOKEN_IN_DESCRIPTION = re.compile(
    r"\d+(?:\.\d+)?\s?(" + _UNIT_ALTERNATION + r")\b",
    re.IGNORECASE,
)

# "<int> x <number><unit>": "2 x 2.5kg", "4x5KG", "6 × 500ml", "2 x 2,5kg", "Box10x2kg"
PACK_NOTATION = re.compile(
    r"(?<![\d.,])\d+\s*[x×]\s*\d+(?:[.,]\d+)?\s?(?:" + _UNIT_ALTERNATION + r")\b",
    re.IGNORECASE,
)

CELL_UNIT_TOKEN = re.compile(r"^\s*\d+(?:[.,]\d+)?\s*([A-Za-z]{1,10})\s*$")


def _apply_synonym(label: str) -> str:
    return UNIT_SYNONYMS.get(label, label)


def extract_unit_label_from_description(description: Optional[str]) -> Optional[str]:
    """
    Extract a unit label from free-text description.

    Only a number followed by a weight or volume token counts. Descriptions
    in pack notation never yield a unit.
    """
    text = str(description or "")
    if not text or PACK_NOTATION.search(text):
        return None
    match = UNIT_TOKEN_IN_DESCRIPTION.search(text)
    if not match:
        return None
    return normalize_unit_label(match.group(1))


def extract_unit_label_from_text(text: Optional[str]) -> Optional[str]:
    """
    Extract a unit token from a short OCR cell such as "8.42 KILO" or "2 UNIT".

    Returns the raw (uncanonicalized) upper-cased token when it is in the
    allow-list, otherwise None.
    """
    if not text:
        return None
    match = CELL_UNIT_TOKEN.match(text)
    if not match:
        return None
    token = match.group(1).upper()
    return token if token in CELL_UNIT_ALLOW else None


def canonicalize_unit_label(
    unit_label: Optional[str],
    description_for_fallback: Optional[str] = None,
) -> Optional[str]:
    """
    Resolve the canonical unit label for a line.

    An explicit label wins and is mapped through the synonym table. Without
    one, the description is scanned.

    Args:
        unit_label: Unit label supplied by the source, if any.
        description_for_fallback: Raw description to scan when no label is given.

    Returns:
        Canonical label (e.g. "KG", "ML", "EACH") or None.
    """
    normalized = normalize_unit_label(unit_label)
    if normalized:
        return _apply_synonym(normalized)
    if description_for_fallback:
        extracted = extract_unit_label_from_description(description_for_fallback)
        if extracted:
            return _apply_synonym(extracted)
    return None


def map_unit_category(unit_label: Optional[str]) -> UnitCategory:
    """Map a unit label to WEIGHT, VOLUME, UNIT or UNKNOWN. Never raises."""
    label = normalize_unit_label(unit_label)
    if not label:
        return UnitCategory.UNKNOWN
    mapped = _apply_synonym(label)
    if mapped in WEIGHT_UNITS:
        return UnitCategory.WEIGHT
    if mapped in VOLUME_UNITS:
        return UnitCategory.VOLUME
    return UnitCategory.UNIT
