"""
Read-only diagnostics over canonical records.

Used to watch quality after a backfill and to collect WARN lines whose unit
could not be categorized, as input for tuning the unit rules.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog
from sqlalchemy import Text, cast, func
from sqlalchemy.orm import Session

from invoice_canon.models.canonical import (
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    QualityStatus,
    UnitCategory,
)
from invoice_canon.services.canonical.quality import WarnReason

logger = structlog.get_logger(__name__)


@dataclass
class CanonicalQualitySnapshot:
    """Quality counts for one organisation + location."""

    invoices: int = 0
    lines: int = 0
    ok_lines: int = 0
    warn_lines: int = 0
    warn_reasons: Dict[str, int] = field(default_factory=dict)

    @property
    def warn_rate(self) -> float:
        scored = self.ok_lines + self.warn_lines
        return self.warn_lines / scored if scored else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoices": self.invoices,
            "lines": self.lines,
            "okLines": self.ok_lines,
            "warnLines": self.warn_lines,
            "warnRate": self.warn_rate,
            "warnReasons": dict(self.warn_reasons),
        }


def _live_lines(db: Session, organisation_id: str, location_id: str):
    return (
        db.query(CanonicalInvoiceLineItem)
        .join(CanonicalInvoice, CanonicalInvoice.id == CanonicalInvoiceLineItem.canonical_invoice_id)
        .filter(
            CanonicalInvoice.organisation_id == organisation_id,
            CanonicalInvoice.location_id == location_id,
            CanonicalInvoice.deleted_at.is_(None),
        )
    )


def canonical_quality_snapshot(db: Session, organisation_id: str, location_id: str) -> CanonicalQualitySnapshot:
    """
    Count live canonical invoices and lines by quality.

    Soft-deleted headers and their lines are excluded.
    """
    snapshot = CanonicalQualitySnapshot()

    snapshot.invoices = (
        db.query(func.count(CanonicalInvoice.id))
        .filter(
            CanonicalInvoice.organisation_id == organisation_id,
            CanonicalInvoice.location_id == location_id,
            CanonicalInvoice.deleted_at.is_(None),
        )
        .scalar()
    ) or 0

    status_counts = (
        _live_lines(db, organisation_id, location_id)
        .with_entities(CanonicalInvoiceLineItem.quality_status, func.count(CanonicalInvoiceLineItem.id))
        .group_by(CanonicalInvoiceLineItem.quality_status)
        .all()
    )
    for status, count in status_counts:
        if status == QualityStatus.WARN:
            snapshot.warn_lines += count
        else:
            snapshot.ok_lines += count
    snapshot.lines = snapshot.ok_lines + snapshot.warn_lines

    # Reason lists are aggregated here so JSON and ARRAY storage behave alike
    reasons: Counter = Counter()
    warn_rows = (
        _live_lines(db, organisation_id, location_id)
        .filter(CanonicalInvoiceLineItem.quality_status == QualityStatus.WARN)
        .with_entities(CanonicalInvoiceLineItem.warn_reasons)
        .all()
    )
    for (row_reasons,) in warn_rows:
        reasons.update(row_reasons or [])
    snapshot.warn_reasons = dict(reasons.most_common())

    logger.info(
        "canonical_quality_snapshot",
        organisation_id=organisation_id,
        location_id=location_id,
        invoices=snapshot.invoices,
        lines=snapshot.lines,
        warn_lines=snapshot.warn_lines,
    )
    return snapshot


def unknown_unit_category_samples(
    db: Session,
    organisation_id: str,
    location_id: str,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """List recent WARN lines flagged UNKNOWN_UNIT_CATEGORY, newest first."""
    rows = (
        _live_lines(db, organisation_id, location_id)
        .filter(
            CanonicalInvoiceLineItem.quality_status == QualityStatus.WARN,
            CanonicalInvoiceLineItem.unit_category == UnitCategory.UNKNOWN,
            cast(CanonicalInvoiceLineItem.warn_reasons, Text).like(
                f"%{WarnReason.UNKNOWN_UNIT_CATEGORY.value}%"
            ),
        )
        .order_by(CanonicalInvoiceLineItem.created_at.desc(), CanonicalInvoiceLineItem.source_line_ref.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "canonicalInvoiceId": str(row.canonical_invoice_id),
            "sourceLineRef": row.source_line_ref,
            "source": row.source.value,
            "rawDescription": row.raw_description,
            "rawQuantityText": row.raw_quantity_text,
            "rawUnitText": row.raw_unit_text,
            "rawDeliveredText": row.raw_delivered_text,
            "rawSizeText": row.raw_size_text,
            "unitLabel": row.unit_label,
            "quantity": str(row.quantity) if row.quantity is not None else None,
            "warnReasons": list(row.warn_reasons or []),
        }
        for row in rows
    ]
