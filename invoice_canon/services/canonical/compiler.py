"""
Canonical line compiler.

Single entry point that turns one source line into its canonical form. The
live write path and the backfill executor both go through canonicalize_line,
so a line means the same thing wherever it was written from.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple, Union

from invoice_canon.models.canonical import AdjustmentStatus, CanonicalSource, QualityStatus, UnitCategory
from invoice_canon.services.canonical.currency import normalize_currency_code
from invoice_canon.services.canonical.normalize import normalize_description
from invoice_canon.services.canonical.quality import QualityInput, compute_quality_status
from invoice_canon.services.canonical.units import canonicalize_unit_label, map_unit_category

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class CanonicalLineInput:
    """One source line as handed to the compiler."""

    source: CanonicalSource
    raw_description: Optional[str]
    product_code: Optional[str] = None
    quantity: Optional[Number] = None
    unit_label: Optional[str] = None
    unit_price: Optional[Number] = None
    line_total: Optional[Number] = None
    tax_amount: Optional[Number] = None
    currency_code: Optional[str] = None
    header_currency_code: Optional[str] = None
    adjustment_status: Optional[AdjustmentStatus] = None
    confidence_score: Optional[float] = None
    numeric_parse_failed: bool = False
    numeric_parse_warn_reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CanonicalLineOutput:
    """Derived canonical fields for one line."""

    raw_description: str
    normalized_description: str
    unit_label: Optional[str]
    unit_category: UnitCategory
    currency_code: Optional[str]
    adjustment_status: AdjustmentStatus
    quality_status: QualityStatus
    quality_warn_reasons: Tuple[str, ...]


def canonicalize_line(line: CanonicalLineInput) -> CanonicalLineOutput:
    """
    Canonicalize a single line.

    Pure: the same input always gives an equal output.

    Args:
        line: Source line values.

    Returns:
        CanonicalLineOutput with normalized text, unit, currency and quality.
    """
    raw_description = str(line.raw_description or "")
    normalized_description = normalize_description(raw_description)

    unit_label = canonicalize_unit_label(line.unit_label, raw_description)
    unit_category = map_unit_category(unit_label)

    currency_code = normalize_currency_code(line.currency_code)
    header_currency_code = normalize_currency_code(line.header_currency_code)

    adjustment_status = line.adjustment_status or AdjustmentStatus.NONE

    quality = compute_quality_status(QualityInput(
        unit_category=unit_category,
        adjustment_status=adjustment_status,
        quantity=line.quantity,
        unit_price=line.unit_price,
        line_total=line.line_total,
        currency_code=currency_code,
        header_currency_code=header_currency_code,
        numeric_parse_failed=line.numeric_parse_failed,
        numeric_parse_warn_reasons=tuple(line.numeric_parse_warn_reasons or ()),
    ))

    return CanonicalLineOutput(
        raw_description=raw_description,
        normalized_description=normalized_description,
        unit_label=unit_label,
        unit_category=unit_category,
        currency_code=currency_code,
        adjustment_status=adjustment_status,
        quality_status=quality.quality_status,
        quality_warn_reasons=quality.warn_reasons,
    )
