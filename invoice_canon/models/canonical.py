"""
Canonical invoice models.

A CanonicalInvoice is the unified header for one legacy invoice, whichever
pipeline produced it. Its CanonicalInvoiceLineItem rows are always replaced
as a whole, so every line of a header carries the same normalization version.
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from invoice_canon.database import Base
from invoice_canon.models.types import UUID, StringList


class CanonicalSource(str, Enum):
    """Pipeline a canonical record was derived from."""
    OCR = "OCR"
    XERO = "XERO"
    MANUAL = "MANUAL"  # OCR invoice whose lines were verified/edited by a person


class UnitCategory(str, Enum):
    """Coarse unit class used by price analytics."""
    WEIGHT = "WEIGHT"
    VOLUME = "VOLUME"
    UNIT = "UNIT"
    UNKNOWN = "UNKNOWN"


class AdjustmentStatus(str, Enum):
    """Whether a line is a normal charge, a manual modification or a credit."""
    NONE = "NONE"
    MODIFIED = "MODIFIED"
    CREDITED = "CREDITED"


class QualityStatus(str, Enum):
    """Outcome of the quality gate."""
    OK = "OK"
    WARN = "WARN"


class CanonicalInvoice(Base):
    """
    Canonical invoice header.

    Exactly one of legacy_invoice_id / legacy_xero_invoice_id is populated;
    each pointer is unique on its own, giving one header per legacy invoice.
    """

    __tablename__ = "canonical_invoices"
    __table_args__ = (
        CheckConstraint(
            "(legacy_invoice_id IS NULL) <> (legacy_xero_invoice_id IS NULL)",
            name="ck_canonical_invoices_one_legacy_pointer",
        ),
        Index("ix_canonical_invoices_org_loc", "organisation_id", "location_id"),
        Index("ix_canonical_invoices_org_loc_supplier", "organisation_id", "location_id", "supplier_id"),
    )

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)

    organisation_id = Column(String(64), nullable=False)
    location_id = Column(String(64), nullable=False)
    supplier_id = Column(String(64), nullable=True)

    source = Column(SQLEnum(CanonicalSource, name="canonicalsource"), nullable=False)
    legacy_invoice_id = Column(String(64), unique=True, nullable=True)
    legacy_xero_invoice_id = Column(String(64), unique=True, nullable=True)
    source_invoice_ref = Column(String(255), nullable=False)

    date = Column(DateTime, nullable=True)
    currency_code = Column(String(16), nullable=True)
    deleted_at = Column(DateTime, nullable=True, index=True)

    # Lines the legacy source yielded at the last write; NULL for headers not written by a backfill
    source_line_count = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    line_items = relationship(
        "CanonicalInvoiceLineItem",
        back_populates="canonical_invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CanonicalInvoiceLineItem.source_line_ref",
    )

    def __repr__(self) -> str:
        return f"<CanonicalInvoice(id={self.id}, source={self.source}, ref='{self.source_invoice_ref}')>"


class CanonicalInvoiceLineItem(Base):
    """Canonical invoice line with raw captured text and derived fields."""

    __tablename__ = "canonical_invoice_line_items"
    __table_args__ = (
        UniqueConstraint("canonical_invoice_id", "source_line_ref", name="uq_canonical_line_source_ref"),
        Index("ix_canonical_lines_org_loc_quality", "organisation_id", "location_id", "quality_status"),
        Index(
            "ix_canonical_lines_org_loc_unit_quality",
            "organisation_id", "location_id", "unit_category", "quality_status",
        ),
        Index("ix_canonical_lines_org_loc_version", "organisation_id", "location_id", "normalization_version"),
    )

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    canonical_invoice_id = Column(
        UUID(),
        ForeignKey("canonical_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    organisation_id = Column(String(64), nullable=False)
    location_id = Column(String(64), nullable=False)
    supplier_id = Column(String(64), nullable=True)
    source = Column(SQLEnum(CanonicalSource, name="canonicalsource"), nullable=False)
    source_line_ref = Column(String(255), nullable=False)
    normalization_version = Column(String(32), nullable=False)

    # Verbatim captured text
    raw_description = Column(Text, nullable=False)
    raw_quantity_text = Column(Text, nullable=True)
    raw_unit_text = Column(Text, nullable=True)
    raw_delivered_text = Column(Text, nullable=True)
    raw_size_text = Column(Text, nullable=True)
    product_code = Column(String(255), nullable=True)

    quantity = Column(Numeric(precision=19, scale=4), nullable=True)
    unit_price = Column(Numeric(precision=19, scale=4), nullable=True)
    line_total = Column(Numeric(precision=19, scale=4), nullable=True)
    tax_amount = Column(Numeric(precision=19, scale=4), nullable=True)

    # Derived
    normalized_description = Column(Text, nullable=False)
    unit_label = Column(String(32), nullable=True)
    unit_category = Column(SQLEnum(UnitCategory, name="unitcategory"), nullable=False)
    currency_code = Column(String(16), nullable=True)
    adjustment_status = Column(
        SQLEnum(AdjustmentStatus, name="adjustmentstatus"),
        default=AdjustmentStatus.NONE,
        nullable=False,
    )
    quality_status = Column(
        SQLEnum(QualityStatus, name="qualitystatus"),
        default=QualityStatus.OK,
        nullable=False,
    )
    warn_reasons = Column(StringList(), default=list, nullable=False)
    confidence_score = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    canonical_invoice = relationship("CanonicalInvoice", back_populates="line_items")

    def __repr__(self) -> str:
        return (
            f"<CanonicalInvoiceLineItem(id={self.id}, ref='{self.source_line_ref}', "
            f"quality={self.quality_status})>"
        )
