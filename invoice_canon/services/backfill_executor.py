"""
Canonical backfill executor.

Writes canonical headers and lines for the candidates found by the
reconciliation scanner. Every invoice is handled in its own transaction:

1. check the legacy-link invariant for the header about to be written,
2. upsert the header keyed by its legacy pointer,
3. delete all of the header's lines and recreate them through the compiler.

Lines are always replaced as a whole, never patched, so re-running a
backfill (including a REBUILD after a rule change) converges on the same
rows. Invoices are processed one after another; a failing invoice is rolled
back on its own and the rest of the batch still runs.
"""
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoice_canon.exceptions import BackfillBatchError, CanonicalError, DatabaseError
from invoice_canon.models.canonical import (
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    CanonicalSource,
    QualityStatus,
)
from invoice_canon.models.legacy import Invoice, XeroInvoice
from invoice_canon.schemas.backfill import BackfillRequest
from invoice_canon.services.backfill_result import BackfillResult
from invoice_canon.services.canonical.compiler import canonicalize_line
from invoice_canon.services.canonical.legacy_link import assert_canonical_invoice_legacy_link
from invoice_canon.services.canonical.units import NORMALIZATION_VERSION
from invoice_canon.services.legacy_mapping import MappedInvoice, map_ocr_invoice, map_xero_invoice
from invoice_canon.services.reconciliation_scanner import ReconciliationCandidate, ReconciliationScanner

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


class BackfillExecutor:
    """
    Service that reconciles canonical records with legacy invoices.

    Features:
    - Sequential, one transaction per invoice
    - Header upsert by legacy pointer, full line replacement
    - Error isolation (one failure doesn't stop the batch)
    - Run-level counters and progress checkpoints
    """

    def __init__(self, db: Session, scanner: Optional[ReconciliationScanner] = None):
        """
        Initialize the executor.

        Args:
            db: Database session used for scanning and writing
            scanner: Candidate scanner (defaults to one bound to ``db``)
        """
        self.db = db
        self.scanner = scanner or ReconciliationScanner(db)

    def run(
        self,
        request: BackfillRequest,
        progress: Optional[ProgressCallback] = None,
    ) -> BackfillResult:
        """
        Run a backfill for one organisation and location.

        Args:
            request: Target, sources and per-source limit.
            progress: Optional callback receiving (stage, data) at checkpoints.

        Returns:
            BackfillResult with run counters.

        Raises:
            BackfillBatchError: after the whole batch ran, if any invoice failed.
        """
        sources = request.source.canonical_sources()
        result = BackfillResult()

        logger.info(
            "canonical_backfill_started",
            organisation_id=request.organisation_id,
            location_id=request.location_id,
            source=request.source.value,
            limit=request.limit,
        )
        self._report(progress, "scan_started", {
            "organisationId": request.organisation_id,
            "locationId": request.location_id,
            "sources": [s.value for s in sources],
            "limit": request.limit,
        })

        candidates_by_source = self.scanner.scan(
            request.organisation_id,
            request.location_id,
            sources,
            request.limit,
        )
        self._report(progress, "scan_completed", {
            "candidates": {s.value: len(c) for s, c in candidates_by_source.items()},
        })

        for source in sources:
            candidates = candidates_by_source.get(source, [])
            self._report(progress, "source_started", {"source": source.value, "candidates": len(candidates)})
            self.execute(candidates, result)
            self._report(progress, "source_completed", {"source": source.value, **result.to_dict()})

        if result.failures:
            logger.error(
                "canonical_backfill_failed",
                organisation_id=request.organisation_id,
                location_id=request.location_id,
                **result.to_dict(),
            )
            raise BackfillBatchError(result, result.failures)

        logger.info(
            "canonical_backfill_completed",
            organisation_id=request.organisation_id,
            location_id=request.location_id,
            **result.to_dict(),
        )
        self._report(progress, "completed", result.to_dict())
        return result

    def execute(
        self,
        candidates: Sequence[ReconciliationCandidate],
        result: Optional[BackfillResult] = None,
    ) -> BackfillResult:
        """
        Process candidates in order, one transaction each.

        Args:
            candidates: Candidates from the scanner.
            result: Counters to accumulate into (a new one if omitted).

        Returns:
            The accumulated BackfillResult. Failures are recorded on it,
            not raised.
        """
        result = result if result is not None else BackfillResult()

        for candidate in candidates:
            try:
                statuses = self.process_candidate(candidate)
                self.db.commit()
            except CanonicalError as e:
                self.db.rollback()
                self._record_failure(result, candidate, e)
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                self._record_failure(result, candidate, DatabaseError(str(e)))
                continue

            if statuses is None:
                result.record_skip()
            else:
                result.record_invoice(statuses)

        return result

    def process_candidate(self, candidate: ReconciliationCandidate) -> Optional[List[QualityStatus]]:
        """
        Write one candidate's header and lines without committing.

        Returns:
            Quality status of each written line, or None if the invoice was skipped.
        """
        mapped = self._load_mapped(candidate)
        if mapped is None:
            return None

        header = self._upsert_header(mapped)
        statuses = self._replace_lines(header, mapped)

        logger.debug(
            "canonical_invoice_written",
            canonical_invoice_id=str(header.id),
            legacy_invoice_id=candidate.legacy_invoice_id,
            reason=candidate.reason.value,
            lines=len(statuses),
        )
        return statuses

    def _load_mapped(self, candidate: ReconciliationCandidate) -> Optional[MappedInvoice]:
        if candidate.source == CanonicalSource.XERO:
            legacy = self.db.query(XeroInvoice).filter(XeroInvoice.id == candidate.legacy_invoice_id).first()
            mapper = map_xero_invoice
        else:
            legacy = self.db.query(Invoice).filter(Invoice.id == candidate.legacy_invoice_id).first()
            mapper = map_ocr_invoice

        if legacy is None or not legacy.location_id:
            logger.info(
                "canonical_invoice_skipped",
                source=candidate.source.value,
                legacy_invoice_id=candidate.legacy_invoice_id,
                missing="invoice" if legacy is None else "location",
            )
            return None

        return mapper(legacy)

    def _upsert_header(self, mapped: MappedInvoice) -> CanonicalInvoice:
        legacy_invoice_id, legacy_xero_invoice_id = mapped.legacy.pointers
        assert_canonical_invoice_legacy_link(mapped.source, legacy_invoice_id, legacy_xero_invoice_id)

        query = self.db.query(CanonicalInvoice)
        if legacy_invoice_id:
            header = query.filter(CanonicalInvoice.legacy_invoice_id == legacy_invoice_id).first()
        else:
            header = query.filter(CanonicalInvoice.legacy_xero_invoice_id == legacy_xero_invoice_id).first()

        if header is None:
            header = CanonicalInvoice(
                id=uuid.uuid4(),
                organisation_id=mapped.organisation_id,
                location_id=mapped.location_id,
                supplier_id=mapped.supplier_id,
                source=mapped.source,
                legacy_invoice_id=legacy_invoice_id,
                legacy_xero_invoice_id=legacy_xero_invoice_id,
                source_invoice_ref=mapped.legacy.source_invoice_ref,
                date=mapped.date,
                currency_code=mapped.currency_code,
                deleted_at=mapped.deleted_at,
                source_line_count=len(mapped.lines),
            )
            self.db.add(header)
        else:
            # The legacy pointer never moves
            header.supplier_id = mapped.supplier_id
            header.source = mapped.source
            header.date = mapped.date
            header.deleted_at = mapped.deleted_at
            header.source_line_count = len(mapped.lines)

        self.db.flush()
        return header

    def _replace_lines(self, header: CanonicalInvoice, mapped: MappedInvoice) -> List[QualityStatus]:
        self.db.query(CanonicalInvoiceLineItem).filter(
            CanonicalInvoiceLineItem.canonical_invoice_id == header.id
        ).delete(synchronize_session=False)

        statuses: List[QualityStatus] = []
        for mapped_line in mapped.lines:
            line = mapped_line.line
            output = canonicalize_line(line)
            self.db.add(CanonicalInvoiceLineItem(
                id=uuid.uuid4(),
                canonical_invoice_id=header.id,
                organisation_id=header.organisation_id,
                location_id=header.location_id,
                supplier_id=header.supplier_id,
                source=line.source,
                source_line_ref=mapped_line.source_line_ref,
                normalization_version=NORMALIZATION_VERSION,
                raw_description=output.raw_description,
                raw_quantity_text=mapped_line.raw_quantity_text,
                raw_unit_text=mapped_line.raw_unit_text,
                raw_delivered_text=mapped_line.raw_delivered_text,
                raw_size_text=mapped_line.raw_size_text,
                product_code=line.product_code,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                tax_amount=line.tax_amount,
                normalized_description=output.normalized_description,
                unit_label=output.unit_label,
                unit_category=output.unit_category,
                currency_code=output.currency_code,
                adjustment_status=output.adjustment_status,
                quality_status=output.quality_status,
                warn_reasons=list(output.quality_warn_reasons),
                confidence_score=line.confidence_score,
            ))
            statuses.append(output.quality_status)

        self.db.flush()
        self.db.expire(header, ["line_items"])
        return statuses

    def _record_failure(self, result: BackfillResult, candidate: ReconciliationCandidate, error: CanonicalError) -> None:
        failure = {
            "source": candidate.source.value,
            "legacyInvoiceId": candidate.legacy_invoice_id,
            "reason": candidate.reason.value,
            **error.to_dict(),
        }
        logger.warning(
            "canonical_invoice_failed",
            source=candidate.source.value,
            legacy_invoice_id=candidate.legacy_invoice_id,
            error_code=error.error_code,
            error=error.message,
        )
        result.record_failure(failure)

    @staticmethod
    def _report(progress: Optional[ProgressCallback], stage: str, data: Dict[str, Any]) -> None:
        if progress is not None:
            progress(stage, data)


def run_canonical_backfill(
    db: Session,
    request: BackfillRequest,
    progress: Optional[ProgressCallback] = None,
) -> BackfillResult:
    """Run a canonical backfill with a fresh executor."""
    return BackfillExecutor(db).run(request, progress=progress)
