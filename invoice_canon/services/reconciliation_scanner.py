"""
Reconciliation scanner for canonical backfill.

Finds legacy invoices whose canonical projection needs (re)writing:

- NEW:     no canonical header exists yet.
- REPAIR:  a live header exists but has no lines (left by a partial write).
           A header whose legacy invoice yielded no lines at its last write
           is complete and is only repaired once legacy line rows appear.
- REBUILD: a header has a WARN line flagged UNKNOWN_UNIT_CATEGORY, which an
           improved unit rule may now resolve.

Each legacy source is scanned on its own, joined through its own legacy
pointer column. NEW and REPAIR candidates come ahead of REBUILD ones, each
group oldest first, so lines no rule can resolve yet never hold back the
backlog of unwritten invoices.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import Text, and_, case, cast, func, or_
from sqlalchemy.orm import Session

from invoice_canon.models.canonical import (
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    CanonicalSource,
    QualityStatus,
    UnitCategory,
)
from invoice_canon.models.legacy import Invoice, InvoiceLineItem, XeroInvoice, XeroInvoiceLineItem
from invoice_canon.services.canonical.quality import WarnReason

logger = structlog.get_logger(__name__)


class CandidateReason(str, Enum):
    """Why a legacy invoice was selected."""
    NEW = "NEW"
    REPAIR = "REPAIR"
    REBUILD = "REBUILD"


@dataclass(frozen=True)
class ReconciliationCandidate:
    """A legacy invoice selected for backfill."""

    source: CanonicalSource
    legacy_invoice_id: str
    reason: CandidateReason
    created_at: datetime
    canonical_invoice_id: Optional[uuid.UUID] = None


class ReconciliationScanner:
    """
    Scanner for backfill candidates.

    Candidate sets are a point-in-time read; callers must not run two
    backfills for the same organisation and location at once.
    """

    LEGACY_MODELS = {
        CanonicalSource.OCR: (Invoice, InvoiceLineItem, CanonicalInvoice.legacy_invoice_id),
        CanonicalSource.XERO: (XeroInvoice, XeroInvoiceLineItem, CanonicalInvoice.legacy_xero_invoice_id),
    }
    REASONS_BY_RANK = (CandidateReason.NEW, CandidateReason.REPAIR, CandidateReason.REBUILD)

    def __init__(self, db: Session):
        """
        Initialize the scanner.

        Args:
            db: Database session
        """
        self.db = db

    def scan(
        self,
        organisation_id: str,
        location_id: str,
        sources: Sequence[CanonicalSource],
        limit: int,
    ) -> Dict[CanonicalSource, List[ReconciliationCandidate]]:
        """
        Find candidates for every requested source.

        Args:
            organisation_id: Organisation to scan
            location_id: Location to scan
            sources: Legacy sources (OCR and/or XERO)
            limit: Maximum candidates per source

        Returns:
            Candidates keyed by source, each list oldest first.
        """
        return {
            source: self.scan_source(organisation_id, location_id, source, limit)
            for source in sources
        }

    def scan_source(
        self,
        organisation_id: str,
        location_id: str,
        source: CanonicalSource,
        limit: int,
    ) -> List[ReconciliationCandidate]:
        """Find up to ``limit`` candidates for one legacy source."""
        if source not in self.LEGACY_MODELS:
            raise ValueError(f"Unsupported legacy source: {source}")

        legacy_model, legacy_line_model, pointer_column = self.LEGACY_MODELS[source]

        line_count = (
            self.db.query(func.count(CanonicalInvoiceLineItem.id))
            .filter(CanonicalInvoiceLineItem.canonical_invoice_id == CanonicalInvoice.id)
            .correlate(CanonicalInvoice)
            .scalar_subquery()
        )
        unknown_unit_warn_count = (
            self.db.query(func.count(CanonicalInvoiceLineItem.id))
            .filter(
                CanonicalInvoiceLineItem.canonical_invoice_id == CanonicalInvoice.id,
                CanonicalInvoiceLineItem.quality_status == QualityStatus.WARN,
                CanonicalInvoiceLineItem.unit_category == UnitCategory.UNKNOWN,
                cast(CanonicalInvoiceLineItem.warn_reasons, Text).like(
                    f"%{WarnReason.UNKNOWN_UNIT_CATEGORY.value}%"
                ),
            )
            .correlate(CanonicalInvoice)
            .scalar_subquery()
        )
        legacy_lines_exist = (
            self.db.query(legacy_line_model.id)
            .filter(legacy_line_model.invoice_id == legacy_model.id)
            .correlate(legacy_model)
            .exists()
        )

        repair = and_(
            CanonicalInvoice.deleted_at.is_(None),
            line_count == 0,
            or_(
                CanonicalInvoice.source_line_count.is_(None),
                CanonicalInvoice.source_line_count > 0,
                legacy_lines_exist,
            ),
        )
        reason_rank = case(
            (CanonicalInvoice.id.is_(None), 0),
            (repair, 1),
            else_=2,
        )

        rows = (
            self.db.query(
                legacy_model.id,
                legacy_model.created_at,
                CanonicalInvoice.id.label("canonical_invoice_id"),
                reason_rank.label("reason_rank"),
            )
            .outerjoin(CanonicalInvoice, pointer_column == legacy_model.id)
            .filter(
                legacy_model.organisation_id == organisation_id,
                legacy_model.location_id == location_id,
            )
            .filter(
                or_(
                    CanonicalInvoice.id.is_(None),
                    repair,
                    unknown_unit_warn_count > 0,
                )
            )
            .order_by(
                case((reason_rank == 2, 1), else_=0),
                legacy_model.created_at.asc(),
                legacy_model.id.asc(),
            )
            .limit(limit)
            .all()
        )

        candidates = [
            ReconciliationCandidate(
                source=source,
                legacy_invoice_id=row.id,
                reason=self._classify(row),
                created_at=row.created_at,
                canonical_invoice_id=row.canonical_invoice_id,
            )
            for row in rows
        ]

        logger.info(
            "canonical_scan_completed",
            organisation_id=organisation_id,
            location_id=location_id,
            source=source.value,
            limit=limit,
            candidates=len(candidates),
            new=sum(1 for c in candidates if c.reason == CandidateReason.NEW),
            repair=sum(1 for c in candidates if c.reason == CandidateReason.REPAIR),
            rebuild=sum(1 for c in candidates if c.reason == CandidateReason.REBUILD),
        )
        return candidates

    @classmethod
    def _classify(cls, row) -> CandidateReason:
        return cls.REASONS_BY_RANK[row.reason_rank]
