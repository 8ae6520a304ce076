"""Models package."""
from invoice_canon.models.canonical import (
    AdjustmentStatus,
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    CanonicalSource,
    QualityStatus,
    UnitCategory,
)
from invoice_canon.models.job import BackfillJob, JobStatus
from invoice_canon.models.legacy import Invoice, InvoiceLineItem, XeroInvoice, XeroInvoiceLineItem

__all__ = [
    "CanonicalInvoice", "CanonicalInvoiceLineItem",
    "CanonicalSource", "UnitCategory", "AdjustmentStatus", "QualityStatus",
    "Invoice", "InvoiceLineItem", "XeroInvoice", "XeroInvoiceLineItem",
    "BackfillJob", "JobStatus",
]
