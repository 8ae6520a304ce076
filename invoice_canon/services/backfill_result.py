"""
Run-level counters for a canonical backfill.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from invoice_canon.models.canonical import QualityStatus
from invoice_canon.schemas.backfill import BackfillResponse


@dataclass
class BackfillResult:
    """Accumulated outcome of a backfill run."""

    invoices_processed: int = 0
    lines_processed: int = 0
    skipped: int = 0
    ok_lines: int = 0
    warn_lines: int = 0
    failed: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def warn_rate(self) -> float:
        """Share of scored lines that are WARN; 0.0 when nothing was scored."""
        scored = self.ok_lines + self.warn_lines
        if scored == 0:
            return 0.0
        return self.warn_lines / scored

    def record_invoice(self, quality_statuses: List[QualityStatus]) -> None:
        """Count one written invoice and the quality of its lines."""
        self.invoices_processed += 1
        self.lines_processed += len(quality_statuses)
        for status in quality_statuses:
            if status == QualityStatus.WARN:
                self.warn_lines += 1
            else:
                self.ok_lines += 1

    def record_skip(self) -> None:
        self.skipped += 1

    def record_failure(self, failure: Dict[str, Any]) -> None:
        self.failed += 1
        self.failures.append(failure)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the job layer reports."""
        return self.to_response().model_dump(by_alias=True)

    def to_response(self) -> BackfillResponse:
        return BackfillResponse(
            invoices_processed=self.invoices_processed,
            lines_processed=self.lines_processed,
            skipped=self.skipped,
            ok_lines=self.ok_lines,
            warn_lines=self.warn_lines,
            warn_rate=self.warn_rate,
            failed=self.failed,
        )
