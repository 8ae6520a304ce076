"""
Deterministic quality gate for canonical lines.

Each rule is independent. A line is OK only when no rule fires; otherwise it
is WARN and carries every fired reason, de-duplicated, in rule order.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from invoice_canon.models.canonical import AdjustmentStatus, QualityStatus, UnitCategory
from invoice_canon.services.canonical.currency import is_valid_currency_code

Number = Union[int, float, Decimal]


class WarnReason(str, Enum):
    """Reason codes emitted by the quality gate."""
    FAILED_NUMERIC_PARSE = "FAILED_NUMERIC_PARSE"
    MISSING_QUANTITY = "MISSING_QUANTITY"
    NON_POSITIVE_QUANTITY = "NON_POSITIVE_QUANTITY"
    NEGATIVE_LINE_TOTAL_NOT_CREDITED = "NEGATIVE_LINE_TOTAL_NOT_CREDITED"
    UNKNOWN_UNIT_CATEGORY = "UNKNOWN_UNIT_CATEGORY"
    INVALID_CURRENCY_CODE = "INVALID_CURRENCY_CODE"
    MISSING_CURRENCY_CODE = "MISSING_CURRENCY_CODE"
    UNIT_PRICE_WITHOUT_QUANTITY = "UNIT_PRICE_WITHOUT_QUANTITY"
    MISSING_PRICE_FIELDS = "MISSING_PRICE_FIELDS"


@dataclass(frozen=True)
class QualityInput:
    """Everything the gate looks at for one line."""

    unit_category: UnitCategory
    adjustment_status: AdjustmentStatus = AdjustmentStatus.NONE
    quantity: Optional[Number] = None
    unit_price: Optional[Number] = None
    line_total: Optional[Number] = None
    currency_code: Optional[str] = None
    header_currency_code: Optional[str] = None
    numeric_parse_failed: bool = False
    numeric_parse_warn_reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QualityResult:
    """Gate outcome."""

    quality_status: QualityStatus
    warn_reasons: Tuple[str, ...] = field(default_factory=tuple)


def _add(reasons: List[str], reason: str) -> None:
    if reason and reason not in reasons:
        reasons.append(reason)


def compute_quality_status(data: QualityInput) -> QualityResult:
    """
    Classify a line as OK or WARN.

    Args:
        data: Line values after unit and currency resolution.

    Returns:
        QualityResult with status and the fired reason codes.
    """
    reasons: List[str] = []

    qty = data.quantity
    line_total = data.line_total
    unit_price = data.unit_price
    credited = data.adjustment_status == AdjustmentStatus.CREDITED

    parse_warns: Sequence[str] = [r for r in (data.numeric_parse_warn_reasons or ()) if r]
    if data.numeric_parse_failed or parse_warns:
        _add(reasons, WarnReason.FAILED_NUMERIC_PARSE.value)
    for reason in parse_warns:
        _add(reasons, str(reason))

    # Credit lines often carry a total without a meaningful quantity
    if qty is None and not credited:
        _add(reasons, WarnReason.MISSING_QUANTITY.value)
    elif qty is not None and qty <= 0:
        _add(reasons, WarnReason.NON_POSITIVE_QUANTITY.value)

    if line_total is not None and line_total < 0 and not credited:
        _add(reasons, WarnReason.NEGATIVE_LINE_TOTAL_NOT_CREDITED.value)

    qty_value = qty if qty is not None else 0
    if qty_value > 0 and data.unit_category == UnitCategory.UNKNOWN:
        _add(reasons, WarnReason.UNKNOWN_UNIT_CATEGORY.value)

    if data.currency_code and not is_valid_currency_code(data.currency_code):
        _add(reasons, WarnReason.INVALID_CURRENCY_CODE.value)
    if not data.currency_code and not data.header_currency_code:
        _add(reasons, WarnReason.MISSING_CURRENCY_CODE.value)

    if unit_price is not None and qty_value <= 0:
        _add(reasons, WarnReason.UNIT_PRICE_WITHOUT_QUANTITY.value)
    if qty_value > 0 and unit_price is None and line_total is None:
        _add(reasons, WarnReason.MISSING_PRICE_FIELDS.value)

    status = QualityStatus.WARN if reasons else QualityStatus.OK
    return QualityResult(quality_status=status, warn_reasons=tuple(reasons))
