"""
Legacy-link invariant for canonical headers.

A canonical header points at exactly one legacy invoice: either an OCR-origin
Invoice or a XeroInvoice. LegacySource models that choice as a sum type;
assert_canonical_invoice_legacy_link is the runtime check every header write
goes through.
"""
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from invoice_canon.exceptions import LegacyLinkError
from invoice_canon.models.canonical import CanonicalSource


@dataclass(frozen=True)
class OcrLegacySource:
    """Header derived from an OCR-origin Invoice."""

    invoice_id: str

    @property
    def pointers(self) -> Tuple[Optional[str], Optional[str]]:
        return self.invoice_id, None

    @property
    def source_invoice_ref(self) -> str:
        return f"invoiceId:{self.invoice_id}"


@dataclass(frozen=True)
class XeroLegacySource:
    """Header derived from a synced XeroInvoice."""

    xero_invoice_id: str

    @property
    def pointers(self) -> Tuple[Optional[str], Optional[str]]:
        return None, self.xero_invoice_id

    @property
    def source_invoice_ref(self) -> str:
        return f"xeroInvoiceId:{self.xero_invoice_id}"


LegacySource = Union[OcrLegacySource, XeroLegacySource]


def assert_canonical_invoice_legacy_link(
    source: CanonicalSource,
    legacy_invoice_id: Optional[str] = None,
    legacy_xero_invoice_id: Optional[str] = None,
) -> None:
    """
    Ensure exactly one legacy pointer is set.

    Raises:
        LegacyLinkError: if neither or both pointers are populated.
    """
    linked = (1 if legacy_invoice_id else 0) + (1 if legacy_xero_invoice_id else 0)
    if linked != 1:
        raise LegacyLinkError(
            source=getattr(source, "value", str(source)),
            legacy_invoice_id=legacy_invoice_id,
            legacy_xero_invoice_id=legacy_xero_invoice_id,
        )
