"""
Canonical line rules.

Description normalization, unit canonicalization, currency resolution and
the quality gate, composed by canonicalize_line.
"""
from invoice_canon.services.canonical.compiler import (
    CanonicalLineInput,
    CanonicalLineOutput,
    canonicalize_line,
)
from invoice_canon.services.canonical.currency import is_valid_currency_code, normalize_currency_code
from invoice_canon.services.canonical.legacy_link import (
    LegacySource,
    OcrLegacySource,
    XeroLegacySource,
    assert_canonical_invoice_legacy_link,
)
from invoice_canon.services.canonical.normalize import normalize_description, normalize_unit_label
from invoice_canon.services.canonical.quality import (
    QualityInput,
    QualityResult,
    WarnReason,
    compute_quality_status,
)
from invoice_canon.services.canonical.units import (
    NORMALIZATION_VERSION,
    canonicalize_unit_label,
    extract_unit_label_from_description,
    extract_unit_label_from_text,
    map_unit_category,
)

__all__ = [
    "CanonicalLineInput",
    "CanonicalLineOutput",
    "canonicalize_line",
    "normalize_description",
    "normalize_unit_label",
    "normalize_currency_code",
    "is_valid_currency_code",
    "QualityInput",
    "QualityResult",
    "WarnReason",
    "compute_quality_status",
    "NORMALIZATION_VERSION",
    "canonicalize_unit_label",
    "extract_unit_label_from_description",
    "extract_unit_label_from_text",
    "map_unit_category",
    "LegacySource",
    "OcrLegacySource",
    "XeroLegacySource",
    "assert_canonical_invoice_legacy_link",
]
