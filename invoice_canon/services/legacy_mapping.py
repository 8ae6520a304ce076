"""
Source-specific mapping from legacy invoices to canonical inputs.

OCR-origin invoices take their lines from the extracted-document payload,
unless a person has verified or edited the invoice, in which case the manual
line records win and the header is classified MANUAL. Xero invoices take
their lines straight from the synced records and also carry tax per line.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from invoice_canon.models.canonical import AdjustmentStatus, CanonicalSource
from invoice_canon.models.legacy import Invoice, XeroInvoice
from invoice_canon.services.canonical.compiler import CanonicalLineInput
from invoice_canon.services.canonical.legacy_link import LegacySource, OcrLegacySource, XeroLegacySource
from invoice_canon.services.extracted_document import extracted_document_currency, parse_extracted_document

XERO_CREDIT_NOTE_TYPES = frozenset({"ACCPAYCREDIT", "ACCRECCREDIT"})


@dataclass(frozen=True)
class MappedLine:
    """A source line ready for the compiler, plus its raw audit texts."""

    source_line_ref: str
    line: CanonicalLineInput
    raw_quantity_text: Optional[str] = None
    raw_unit_text: Optional[str] = None
    raw_delivered_text: Optional[str] = None
    raw_size_text: Optional[str] = None


@dataclass(frozen=True)
class MappedInvoice:
    """Header values and lines derived from one legacy invoice."""

    legacy: LegacySource
    source: CanonicalSource
    organisation_id: str
    location_id: Optional[str]
    supplier_id: Optional[str]
    date: Optional[datetime]
    currency_code: Optional[str]
    deleted_at: Optional[datetime]
    lines: List[MappedLine] = field(default_factory=list)


def map_ocr_invoice(invoice: Invoice) -> MappedInvoice:
    """Map an OCR-origin invoice and its manual or extracted lines."""
    legacy = OcrLegacySource(invoice_id=invoice.id)
    payload = invoice.ocr_result_json
    currency_code = invoice.currency_code or extracted_document_currency(payload)

    source = CanonicalSource.MANUAL if (invoice.line_items or invoice.is_verified) else CanonicalSource.OCR

    lines: List[MappedLine] = []
    if invoice.line_items:
        for item in invoice.line_items:
            lines.append(MappedLine(
                source_line_ref=f"{legacy.source_invoice_ref}:manual:{item.id}",
                raw_unit_text=item.unit_label,
                line=CanonicalLineInput(
                    source=source,
                    raw_description=item.description,
                    product_code=item.product_code,
                    quantity=item.quantity,
                    unit_label=item.unit_label,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    currency_code=currency_code,
                    header_currency_code=currency_code,
                    confidence_score=item.confidence_score,
                ),
            ))
    else:
        for item in parse_extracted_document(payload):
            lines.append(MappedLine(
                source_line_ref=f"{legacy.source_invoice_ref}:ocr:{item.position}",
                raw_quantity_text=item.raw_quantity_text,
                raw_unit_text=item.raw_unit_text,
                raw_delivered_text=item.raw_delivered_text,
                raw_size_text=item.raw_size_text,
                line=CanonicalLineInput(
                    source=source,
                    raw_description=item.description,
                    product_code=item.product_code,
                    quantity=item.quantity,
                    unit_label=item.unit_label,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    currency_code=currency_code,
                    header_currency_code=currency_code,
                    confidence_score=item.confidence_score,
                    numeric_parse_warn_reasons=item.numeric_parse_warn_reasons,
                ),
            ))

    return MappedInvoice(
        legacy=legacy,
        source=source,
        organisation_id=invoice.organisation_id,
        location_id=invoice.location_id,
        supplier_id=invoice.supplier_id,
        date=invoice.date,
        currency_code=currency_code,
        deleted_at=invoice.deleted_at,
        lines=lines,
    )


def map_xero_invoice(invoice: XeroInvoice) -> MappedInvoice:
    """Map a synced Xero invoice and its line items."""
    legacy = XeroLegacySource(xero_invoice_id=invoice.id)
    currency_code = invoice.currency_code
    credited = (invoice.type or "").upper() in XERO_CREDIT_NOTE_TYPES
    adjustment_status = AdjustmentStatus.CREDITED if credited else AdjustmentStatus.NONE

    lines = [
        MappedLine(
            source_line_ref=f"{legacy.source_invoice_ref}:line:{item.id}",
            line=CanonicalLineInput(
                source=CanonicalSource.XERO,
                raw_description=item.description,
                product_code=item.item_code,
                quantity=item.quantity,
                unit_price=item.unit_amount,
                line_total=item.line_amount,
                tax_amount=item.tax_amount,
                currency_code=currency_code,
                header_currency_code=currency_code,
                adjustment_status=adjustment_status,
            ),
        )
        for item in invoice.line_items
    ]

    return MappedInvoice(
        legacy=legacy,
        source=CanonicalSource.XERO,
        organisation_id=invoice.organisation_id,
        location_id=invoice.location_id,
        supplier_id=invoice.supplier_id,
        date=invoice.date,
        currency_code=currency_code,
        deleted_at=invoice.deleted_at,
        lines=lines,
    )
