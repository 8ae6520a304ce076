"""
Text normalization for canonical line descriptions and unit labels.
"""
import re
from typing import Optional

WHITESPACE_PATTERN = re.compile(r"\s+")
LIGHT_PUNCTUATION_PATTERN = re.compile(r"[.,;:(){}\[\]<>|]")


def normalize_description(raw: Optional[str]) -> str:
    """
    Normalize a line description for grouping and matching.

    Trims, lower-cases, collapses whitespace runs and strips light
    punctuation. Never fails, and normalizing twice is a no-op.

    Args:
        raw: Description as captured from the source.

    Returns:
        Normalized description ("" for empty input).
    """
    text = str(raw or "").strip().lower()
    text = WHITESPACE_PATTERN.sub(" ", text)
    text = LIGHT_PUNCTUATION_PATTERN.sub("", text)
    # Stripping punctuation can leave double spaces ("a . b" -> "a  b")
    text = WHITESPACE_PATTERN.sub(" ", text)
    return text.strip()


def normalize_unit_label(raw: Optional[str]) -> Optional[str]:
    """Upper-case and collapse whitespace in a unit label; empty becomes None."""
    text = (raw or "").strip()
    if not text:
        return None
    return WHITESPACE_PATTERN.sub(" ", text.upper()).strip()
