"""
Unit tests for run-level backfill counters.
"""
import pytest

from invoice_canon.models.canonical import QualityStatus
from invoice_canon.services.backfill_result import BackfillResult


class TestBackfillResult:
    """Tests for BackfillResult."""

    def test_empty_run(self):
        result = BackfillResult()
        assert result.warn_rate == 0.0
        assert result.to_dict() == {
            "invoicesProcessed": 0,
            "linesProcessed": 0,
            "skipped": 0,
            "okLines": 0,
            "warnLines": 0,
            "warnRate": 0.0,
            "failed": 0,
        }

    def test_counts_lines_by_status(self):
        result = BackfillResult()
        result.record_invoice([QualityStatus.OK, QualityStatus.WARN, QualityStatus.OK])
        result.record_invoice([QualityStatus.WARN])
        result.record_invoice([])
        result.record_skip()

        assert result.invoices_processed == 3
        assert result.lines_processed == 4
        assert result.ok_lines == 2
        assert result.warn_lines == 2
        assert result.skipped == 1
        assert result.warn_rate == pytest.approx(0.5)

    def test_failures(self):
        result = BackfillResult()
        result.record_failure({"legacyInvoiceId": "inv-1"})

        assert result.failed == 1
        assert result.failures == [{"legacyInvoiceId": "inv-1"}]
        assert result.to_dict()["failed"] == 1
        assert "failures" not in result.to_dict()

    def test_response_model(self):
        result = BackfillResult()
        result.record_invoice([QualityStatus.WARN])
        response = result.to_response()

        assert response.warn_rate == 1.0
        assert response.model_dump()["invoices_processed"] == 1
