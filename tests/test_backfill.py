"""
Tests for the reconciliation scanner and backfill executor.
"""
import dataclasses
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from invoice_canon.exceptions import BackfillBatchError
from invoice_canon.models.canonical import (
    AdjustmentStatus,
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    CanonicalSource,
    QualityStatus,
    UnitCategory,
)
from invoice_canon.models.legacy import InvoiceLineItem
from invoice_canon.schemas.backfill import BackfillRequest
from invoice_canon.services import backfill_executor
from invoice_canon.services.backfill_executor import BackfillExecutor
from invoice_canon.services.canonical.units import NORMALIZATION_VERSION
from invoice_canon.services.reconciliation_scanner import (
    CandidateReason,
    ReconciliationCandidate,
    ReconciliationScanner,
)

ORG = "org-1"
LOC = "loc-1"

PACK_LINE = {"description": "Chicken 2 x 2.5kg", "quantity": "2", "lineTotal": "20.00"}


def _candidate(invoice, source=CanonicalSource.OCR, reason=CandidateReason.NEW):
    return ReconciliationCandidate(
        source=source,
        legacy_invoice_id=invoice.id,
        reason=reason,
        created_at=invoice.created_at,
    )


def _orphan_header(db, invoice):
    header = CanonicalInvoice(
        id=uuid.uuid4(),
        organisation_id=invoice.organisation_id,
        location_id=invoice.location_id,
        source=CanonicalSource.OCR,
        legacy_invoice_id=invoice.id,
        source_invoice_ref=f"invoiceId:{invoice.id}",
    )
    db.add(header)
    db.commit()
    return header


def _line_snapshot(db):
    """Line contents without surrogate ids and timestamps."""
    rows = (
        db.query(CanonicalInvoiceLineItem)
        .order_by(CanonicalInvoiceLineItem.source_line_ref)
        .all()
    )
    return [
        (
            row.source_line_ref, row.source, row.normalization_version, row.raw_description,
            row.normalized_description, row.unit_label, row.unit_category, row.currency_code,
            row.adjustment_status, row.quality_status, tuple(row.warn_reasons),
            row.quantity, row.unit_price, row.line_total, row.tax_amount,
        )
        for row in rows
    ]


def _request(source="ALL", limit=10):
    return BackfillRequest(organisationId=ORG, locationId=LOC, source=source, limit=limit)


class TestReconciliationScanner:
    """Tests for candidate selection."""

    def test_classifies_new_repair_and_rebuild(self, db_session, make_ocr_invoice, ham_line):
        new = make_ocr_invoice(lines=[ham_line])
        orphan = make_ocr_invoice(lines=[ham_line])
        clean = make_ocr_invoice(lines=[ham_line])
        stale = make_ocr_invoice(lines=[PACK_LINE])

        _orphan_header(db_session, orphan)
        BackfillExecutor(db_session).execute([_candidate(clean), _candidate(stale)])

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10)

        assert [(c.legacy_invoice_id, c.reason) for c in candidates] == [
            (new.id, CandidateReason.NEW),
            (orphan.id, CandidateReason.REPAIR),
            (stale.id, CandidateReason.REBUILD),
        ]
        assert candidates[0].canonical_invoice_id is None
        assert candidates[1].canonical_invoice_id is not None

    def test_oldest_first_and_limited(self, db_session, make_ocr_invoice, ham_line):
        make_ocr_invoice(lines=[ham_line], minutes=30, id="late")
        make_ocr_invoice(lines=[ham_line], minutes=10, id="early")
        make_ocr_invoice(lines=[ham_line], minutes=20, id="middle")

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=2)

        assert [c.legacy_invoice_id for c in candidates] == ["early", "middle"]

    def test_scoped_to_organisation_and_location(self, db_session, make_ocr_invoice, ham_line):
        make_ocr_invoice(lines=[ham_line], organisation_id="org-2")
        make_ocr_invoice(lines=[ham_line], location_id="loc-2")
        make_ocr_invoice(lines=[ham_line], location_id=None)
        mine = make_ocr_invoice(lines=[ham_line])

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10)

        assert [c.legacy_invoice_id for c in candidates] == [mine.id]

    def test_deleted_empty_header_is_not_repaired(self, db_session, make_ocr_invoice, ham_line):
        invoice = make_ocr_invoice(lines=[ham_line])
        header = _orphan_header(db_session, invoice)
        header.deleted_at = datetime(2025, 2, 1)
        db_session.commit()

        assert ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10) == []

    def test_sources_scanned_independently(self, db_session, make_ocr_invoice, make_xero_invoice, ham_line):
        ocr = make_ocr_invoice(lines=[ham_line])
        xero = make_xero_invoice(lines=[{"description": "Cream 2L", "quantity": Decimal("1"),
                                         "line_amount": Decimal("4")}])

        result = ReconciliationScanner(db_session).scan(
            ORG, LOC, [CanonicalSource.OCR, CanonicalSource.XERO], limit=10,
        )

        assert [c.legacy_invoice_id for c in result[CanonicalSource.OCR]] == [ocr.id]
        assert [c.legacy_invoice_id for c in result[CanonicalSource.XERO]] == [xero.id]
        assert result[CanonicalSource.XERO][0].source == CanonicalSource.XERO

    def test_invoice_without_lines_is_not_repaired(self, db_session, make_ocr_invoice, make_xero_invoice):
        make_ocr_invoice(lines=[])
        make_xero_invoice(lines=[])

        result = BackfillExecutor(db_session).run(_request(limit=10))

        assert result.invoices_processed == 2
        assert [h.source_line_count for h in db_session.query(CanonicalInvoice).all()] == [0, 0]
        rescan = ReconciliationScanner(db_session).scan(
            ORG, LOC, [CanonicalSource.OCR, CanonicalSource.XERO], limit=10,
        )
        assert rescan == {CanonicalSource.OCR: [], CanonicalSource.XERO: []}

    def test_empty_header_repaired_once_lines_appear(self, db_session, make_ocr_invoice):
        invoice = make_ocr_invoice(lines=[])
        BackfillExecutor(db_session).run(_request(source="OCR"))

        db_session.add(InvoiceLineItem(
            id="manual-1",
            invoice_id=invoice.id,
            position=0,
            description="Ham Leg 2kg",
            quantity=Decimal("1"),
            line_total=Decimal("10"),
        ))
        db_session.commit()

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10)
        assert [(c.legacy_invoice_id, c.reason) for c in candidates] == [(invoice.id, CandidateReason.REPAIR)]

        BackfillExecutor(db_session).run(_request(source="OCR"))

        header = db_session.query(CanonicalInvoice).one()
        assert header.source == CanonicalSource.MANUAL
        assert header.source_line_count == 1
        assert len(header.line_items) == 1
        assert ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10) == []

    def test_unwritten_invoices_ahead_of_unresolved_rebuilds(self, db_session, make_ocr_invoice, ham_line):
        make_ocr_invoice(lines=[{"description": "Milk", "quantity": "1", "lineTotal": "3.00"}], id="old")
        make_ocr_invoice(lines=[ham_line], id="new")
        executor = BackfillExecutor(db_session)

        executor.run(_request(source="OCR", limit=1))
        executor.run(_request(source="OCR", limit=1))

        written = {h.legacy_invoice_id for h in db_session.query(CanonicalInvoice).all()}
        assert written == {"old", "new"}

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=1)
        assert [(c.legacy_invoice_id, c.reason) for c in candidates] == [("old", CandidateReason.REBUILD)]

    def test_unsupported_source(self, db_session):
        with pytest.raises(ValueError):
            ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.MANUAL, limit=1)


class TestBackfillExecutor:
    """Tests for BackfillExecutor.run / execute."""

    def test_end_to_end_three_invoices(self, db_session, make_ocr_invoice, ham_line):
        never = make_ocr_invoice(lines=[ham_line])
        orphan = make_ocr_invoice(lines=[ham_line])
        clean = make_ocr_invoice(lines=[ham_line])
        BackfillExecutor(db_session).execute([_candidate(clean)])
        _orphan_header(db_session, orphan)

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10)
        assert [c.legacy_invoice_id for c in candidates] == [never.id, orphan.id]

        result = BackfillExecutor(db_session).run(_request(source="OCR", limit=10))

        assert result.invoices_processed == 2
        assert result.skipped == 0
        assert result.lines_processed == 2
        assert result.ok_lines == 2
        assert result.warn_rate == 0.0
        assert db_session.query(CanonicalInvoice).count() == 3
        assert db_session.query(CanonicalInvoiceLineItem).count() == 3

    def test_written_header_and_lines(self, db_session, make_ocr_invoice):
        invoice = make_ocr_invoice(lines=[
            {"description": "  Ham Leg 2kg ", "quantity": "1", "unitPrice": "10.00", "lineTotal": "10.00",
             "productCode": "HL2", "confidence": 88},
            PACK_LINE,
        ], currency_code="aud")

        BackfillExecutor(db_session).run(_request(source="OCR"))

        header = db_session.query(CanonicalInvoice).one()
        assert header.legacy_invoice_id == invoice.id
        assert header.legacy_xero_invoice_id is None
        assert header.source == CanonicalSource.OCR
        assert header.source_invoice_ref == f"invoiceId:{invoice.id}"
        assert header.organisation_id == ORG
        assert header.location_id == LOC

        ham, chicken = header.line_items
        assert ham.source_line_ref == f"invoiceId:{invoice.id}:ocr:0"
        assert ham.raw_description == "Ham Leg 2kg"
        assert ham.normalized_description == "ham leg 2kg"
        assert ham.unit_label == "KG"
        assert ham.unit_category == UnitCategory.WEIGHT
        assert ham.currency_code == "AUD"
        assert ham.quality_status == QualityStatus.OK
        assert ham.warn_reasons == []
        assert ham.product_code == "HL2"
        assert ham.confidence_score == 88.0
        assert ham.normalization_version == NORMALIZATION_VERSION
        assert ham.line_total == Decimal("10")

        assert chicken.unit_category == UnitCategory.UNKNOWN
        assert chicken.quality_status == QualityStatus.WARN
        assert "UNKNOWN_UNIT_CATEGORY" in chicken.warn_reasons

    def test_idempotent_rerun(self, db_session, make_ocr_invoice, make_xero_invoice, ham_line):
        make_ocr_invoice(lines=[ham_line, PACK_LINE])
        make_ocr_invoice(lines=[ham_line])
        make_xero_invoice(lines=[{"description": "Cream 2L", "quantity": Decimal("1"),
                                  "unit_amount": Decimal("4"), "line_amount": Decimal("4")}])

        BackfillExecutor(db_session).run(_request())
        first = _line_snapshot(db_session)
        headers = db_session.query(CanonicalInvoice).count()

        scanner = ReconciliationScanner(db_session)
        rescan = scanner.scan(ORG, LOC, [CanonicalSource.OCR, CanonicalSource.XERO], limit=10)
        reasons = {c.reason for candidates in rescan.values() for c in candidates}
        assert CandidateReason.NEW not in reasons
        assert CandidateReason.REPAIR not in reasons

        BackfillExecutor(db_session).run(_request())

        assert _line_snapshot(db_session) == first
        assert db_session.query(CanonicalInvoice).count() == headers

    def test_rebuild_picks_up_improved_unit(self, db_session, make_ocr_invoice):
        invoice = make_ocr_invoice(manual_lines=[{
            "description": "Chicken 2 x 2.5kg",
            "quantity": Decimal("2"),
            "line_total": Decimal("20"),
        }])
        BackfillExecutor(db_session).run(_request(source="OCR"))
        header = db_session.query(CanonicalInvoice).one()
        header_id = header.id
        assert header.source == CanonicalSource.MANUAL
        assert header.line_items[0].quality_status == QualityStatus.WARN

        line = db_session.query(InvoiceLineItem).filter(InvoiceLineItem.invoice_id == invoice.id).one()
        line.unit_label = "kg"
        db_session.commit()

        candidates = ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10)
        assert [c.reason for c in candidates] == [CandidateReason.REBUILD]

        result = BackfillExecutor(db_session).run(_request(source="OCR"))

        assert result.invoices_processed == 1
        header = db_session.query(CanonicalInvoice).one()
        assert header.id == header_id
        assert [li.unit_category for li in header.line_items] == [UnitCategory.WEIGHT]
        assert ReconciliationScanner(db_session).scan_source(ORG, LOC, CanonicalSource.OCR, limit=10) == []

    def test_header_refresh_keeps_pointer(self, db_session, make_ocr_invoice, ham_line):
        invoice = make_ocr_invoice(lines=[ham_line])
        executor = BackfillExecutor(db_session)
        executor.execute([_candidate(invoice)])
        header = db_session.query(CanonicalInvoice).one()
        header_id, created_ref = header.id, header.source_invoice_ref

        invoice.supplier_id = "sup-9"
        invoice.deleted_at = datetime(2025, 3, 1)
        invoice.currency_code = "NZD"
        db_session.commit()

        executor.execute([_candidate(invoice, reason=CandidateReason.REBUILD)])

        header = db_session.query(CanonicalInvoice).one()
        assert header.id == header_id
        assert header.legacy_invoice_id == invoice.id
        assert header.source_invoice_ref == created_ref
        assert header.supplier_id == "sup-9"
        assert header.deleted_at == datetime(2025, 3, 1)
        assert header.currency_code == "AUD"

    def test_xero_credit_note(self, db_session, make_xero_invoice):
        invoice = make_xero_invoice(invoice_type="ACCPAYCREDIT", lines=[{
            "description": "Credit note adjustment",
            "line_amount": Decimal("-5"),
            "tax_amount": Decimal("-0.50"),
        }])

        result = BackfillExecutor(db_session).run(_request(source="XERO"))

        assert result.invoices_processed == 1
        header = db_session.query(CanonicalInvoice).one()
        assert header.legacy_xero_invoice_id == invoice.id
        assert header.legacy_invoice_id is None
        assert header.source == CanonicalSource.XERO
        line = header.line_items[0]
        assert line.adjustment_status == AdjustmentStatus.CREDITED
        assert line.quality_status == QualityStatus.OK
        assert line.tax_amount == Decimal("-0.5")

    def test_skips_missing_invoice_and_location(self, db_session, make_ocr_invoice, ham_line):
        invoice = make_ocr_invoice(lines=[ham_line])
        candidate = _candidate(invoice)
        invoice.location_id = None
        db_session.commit()

        gone = ReconciliationCandidate(
            source=CanonicalSource.OCR,
            legacy_invoice_id="does-not-exist",
            reason=CandidateReason.NEW,
            created_at=datetime(2025, 1, 1),
        )
        result = BackfillExecutor(db_session).execute([candidate, gone])

        assert result.skipped == 2
        assert result.invoices_processed == 0
        assert result.failed == 0
        assert db_session.query(CanonicalInvoice).count() == 0

    def test_failure_is_isolated(self, db_session, make_ocr_invoice, ham_line):
        broken = make_ocr_invoice(payload="not json")
        good = make_ocr_invoice(lines=[ham_line])

        with pytest.raises(BackfillBatchError) as exc_info:
            BackfillExecutor(db_session).run(_request(source="OCR"))

        error = exc_info.value
        assert error.error_code == "CAN-301"
        assert error.result.invoices_processed == 1
        assert error.result.failed == 1
        assert error.failures[0]["legacyInvoiceId"] == broken.id
        assert error.failures[0]["error_code"] == "CAN-200"

        headers = db_session.query(CanonicalInvoice).all()
        assert [h.legacy_invoice_id for h in headers] == [good.id]

    def test_legacy_link_violation_rolls_back_invoice(self, db_session, make_ocr_invoice, ham_line, monkeypatch):
        invoice = make_ocr_invoice(lines=[ham_line])

        @dataclasses.dataclass(frozen=True)
        class DoubleLinked:
            pointers = (invoice.id, "xero-1")
            source_invoice_ref = f"invoiceId:{invoice.id}"

        real_map = backfill_executor.map_ocr_invoice
        monkeypatch.setattr(
            backfill_executor,
            "map_ocr_invoice",
            lambda inv: dataclasses.replace(real_map(inv), legacy=DoubleLinked()),
        )

        result = BackfillExecutor(db_session).execute([_candidate(invoice)])

        assert result.failed == 1
        assert result.failures[0]["error_code"] == "CAN-100"
        assert db_session.query(CanonicalInvoice).count() == 0

    def test_database_error_is_recorded(self, db_session, make_ocr_invoice, ham_line, monkeypatch):
        first = make_ocr_invoice(lines=[ham_line])
        second = make_ocr_invoice(lines=[ham_line])
        real_replace = BackfillExecutor._replace_lines

        def flaky_replace(self, header, mapped):
            if header.legacy_invoice_id == first.id:
                raise SQLAlchemyError("connection reset")
            return real_replace(self, header, mapped)

        monkeypatch.setattr(BackfillExecutor, "_replace_lines", flaky_replace)

        result = BackfillExecutor(db_session).execute([_candidate(first), _candidate(second)])

        assert result.failed == 1
        assert result.failures[0]["error_code"] == "CAN-800"
        assert result.invoices_processed == 1
        # The first header was flushed before the failure and must be gone
        assert [h.legacy_invoice_id for h in db_session.query(CanonicalInvoice).all()] == [second.id]

    def test_progress_checkpoints(self, db_session, make_ocr_invoice, ham_line):
        make_ocr_invoice(lines=[ham_line])
        events = []

        BackfillExecutor(db_session).run(_request(), progress=lambda stage, data: events.append((stage, data)))

        assert [stage for stage, _ in events] == [
            "scan_started",
            "scan_completed",
            "source_started",
            "source_completed",
            "source_started",
            "source_completed",
            "completed",
        ]
        assert events[1][1]["candidates"] == {"OCR": 1, "XERO": 0}
        assert events[-1][1]["invoicesProcessed"] == 1
