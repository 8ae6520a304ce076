"""
Extracted-document payload parsing.

The OCR ingestion pipeline stores its per-invoice result as a JSON payload:

    {
        "currency": "AUD",
        "lineItems": [
            {
                "description": "Beef Mince 5kg",
                "quantity": "2.00 KILO",
                "delivered": "2",
                "size": "5KG",
                "unit": "KG",
                "unitPrice": "$12.50",
                "lineTotal": "25.00",
                "productCode": "BM5",
                "confidence": 91.5
            }
        ]
    }

Every line field except ``description`` is optional. Money fields may be
strings or numbers and are read with NumericParser; quantities are read
loosely so unit-bearing cells ("8.42 KILO") still yield a number.
"""
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import structlog

from invoice_canon.exceptions import ExtractedDocumentError
from invoice_canon.services.canonical.units import extract_unit_label_from_text
from invoice_canon.services.numeric_parser import MoneyKind, get_numeric_parser

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExtractedLineItem:
    """One line read from an extracted-document payload."""

    position: int
    description: str
    raw_quantity_text: Optional[str] = None
    raw_unit_text: Optional[str] = None
    raw_delivered_text: Optional[str] = None
    raw_size_text: Optional[str] = None
    unit_label: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    line_total: Optional[Decimal] = None
    product_code: Optional[str] = None
    confidence_score: Optional[float] = None
    numeric_parse_warn_reasons: Tuple[str, ...] = ()


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _load_payload(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ExtractedDocumentError(
                "Extracted document payload is not valid JSON",
                details={"error": str(e)},
            )
    if not isinstance(raw, dict):
        raise ExtractedDocumentError(
            "Extracted document payload must be an object",
            details={"type": type(raw).__name__},
        )
    return raw


def extracted_document_currency(raw: Any) -> Optional[str]:
    """Return the document-level currency of a payload, if any."""
    if raw is None:
        return None
    return _text(_load_payload(raw).get("currency"))


def parse_extracted_document(raw: Any) -> List[ExtractedLineItem]:
    """
    Parse the line items of an extracted-document payload.

    Args:
        raw: Payload as a dict or JSON string. None means no payload.

    Returns:
        Ordered line items. Items without a description are dropped.

    Raises:
        ExtractedDocumentError: if the payload or its line list is malformed.
    """
    if raw is None:
        return []

    payload = _load_payload(raw)
    items = payload.get("lineItems") or []
    if not isinstance(items, list):
        raise ExtractedDocumentError(
            "Extracted document lineItems must be a list",
            details={"type": type(items).__name__},
        )

    parser = get_numeric_parser()
    lines: List[ExtractedLineItem] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("extracted_line_not_an_object", position=index)
            continue

        description = _text(item.get("description"))
        if not description:
            continue

        raw_quantity = _text(item.get("quantity"))
        raw_delivered = _text(item.get("delivered"))
        raw_size = _text(item.get("size"))
        raw_unit = _text(item.get("unit"))

        unit_label = (
            raw_unit
            or extract_unit_label_from_text(raw_quantity)
            or extract_unit_label_from_text(raw_delivered)
            or extract_unit_label_from_text(raw_size)
        )

        unit_price = parser.parse_money(item.get("unitPrice"), MoneyKind.UNIT_PRICE)
        line_total = parser.parse_money(item.get("lineTotal"), MoneyKind.LINE_TOTAL)
        warn_reasons = tuple(r.reason for r in (unit_price, line_total) if r.reason)

        confidence = item.get("confidence")
        confidence_score = float(confidence) if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else None

        lines.append(ExtractedLineItem(
            position=index,
            description=description,
            raw_quantity_text=raw_quantity,
            raw_unit_text=raw_unit,
            raw_delivered_text=raw_delivered,
            raw_size_text=raw_size,
            unit_label=unit_label,
            quantity=parser.parse_quantity_loose(raw_quantity or raw_delivered),
            unit_price=unit_price.value,
            line_total=line_total.value,
            product_code=_text(item.get("productCode")),
            confidence_score=confidence_score,
            numeric_parse_warn_reasons=warn_reasons,
        ))

    return lines
