"""
Legacy invoice read-models.

These tables are owned by the ingestion pipelines (document OCR and the
Xero sync). This package only reads them to build canonical records.
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from invoice_canon.database import Base


class Invoice(Base):
    """OCR-origin invoice captured from an uploaded or emailed document."""

    __tablename__ = "invoices"

    id = Column(String(64), primary_key=True)
    organisation_id = Column(String(64), nullable=False, index=True)
    location_id = Column(String(64), nullable=True, index=True)
    supplier_id = Column(String(64), nullable=True)
    invoice_number = Column(String(255), nullable=True)
    date = Column(DateTime, nullable=True)
    currency_code = Column(String(16), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Raw extracted-document payload, see services.extracted_document
    ocr_result_json = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
    )

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number='{self.invoice_number}')>"


class InvoiceLineItem(Base):
    """Manually verified or edited line of an OCR-origin invoice."""

    __tablename__ = "invoice_line_items"

    id = Column(String(64), primary_key=True)
    invoice_id = Column(String(64), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)
    description = Column(Text, nullable=False)
    product_code = Column(String(255), nullable=True)
    quantity = Column(Numeric(precision=19, scale=4), nullable=True)
    unit_label = Column(String(32), nullable=True)
    unit_price = Column(Numeric(precision=19, scale=4), nullable=True)
    line_total = Column(Numeric(precision=19, scale=4), nullable=True)
    confidence_score = Column(Float, nullable=True)

    invoice = relationship("Invoice", back_populates="line_items")


class XeroInvoice(Base):
    """Invoice synced from the Xero accounting system."""

    __tablename__ = "xero_invoices"

    id = Column(String(64), primary_key=True)
    organisation_id = Column(String(64), nullable=False, index=True)
    location_id = Column(String(64), nullable=True, index=True)
    supplier_id = Column(String(64), nullable=True)
    xero_invoice_id = Column(String(64), unique=True, nullable=False)
    invoice_number = Column(String(255), nullable=True)
    type = Column(String(32), nullable=True)  # ACCPAY, ACCPAYCREDIT, ...
    date = Column(DateTime, nullable=True)
    currency_code = Column(String(16), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    line_items = relationship(
        "XeroInvoiceLineItem",
        back_populates="invoice",
        order_by="XeroInvoiceLineItem.position",
    )

    def __repr__(self) -> str:
        return f"<XeroInvoice(id={self.id}, xero_invoice_id='{self.xero_invoice_id}')>"


class XeroInvoiceLineItem(Base):
    """Line item as synced from Xero."""

    __tablename__ = "xero_invoice_line_items"

    id = Column(String(64), primary_key=True)
    invoice_id = Column(String(64), ForeignKey("xero_invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(precision=19, scale=4), nullable=True)
    unit_amount = Column(Numeric(precision=19, scale=4), nullable=True)
    line_amount = Column(Numeric(precision=19, scale=4), nullable=True)
    tax_amount = Column(Numeric(precision=19, scale=4), nullable=True)
    item_code = Column(String(255), nullable=True)
    account_code = Column(String(32), nullable=True)

    invoice = relationship("XeroInvoice", back_populates="line_items")
