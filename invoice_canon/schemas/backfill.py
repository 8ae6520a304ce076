"""
Pydantic schemas for canonical backfill invocation.

Defines the request accepted from the job layer and the result it gets back.
"""
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from invoice_canon.models.canonical import CanonicalSource


class BackfillSource(str, Enum):
    """Which legacy pipelines a run covers."""
    OCR = "OCR"
    XERO = "XERO"
    ALL = "ALL"

    def canonical_sources(self) -> List[CanonicalSource]:
        """Legacy sources to scan, in scan order."""
        if self == BackfillSource.ALL:
            return [CanonicalSource.OCR, CanonicalSource.XERO]
        return [CanonicalSource(self.value)]


class BackfillRequest(BaseModel):
    """Request model for a canonical backfill run."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    organisation_id: str = Field(..., min_length=1, alias="organisationId", description="Organisation to backfill")
    location_id: str = Field(..., min_length=1, alias="locationId", description="Location to backfill")
    source: BackfillSource = Field(BackfillSource.ALL, description="Legacy source(s) to scan")
    limit: int = Field(200, ge=1, le=2000, description="Maximum invoices per source")


class BackfillResponse(BaseModel):
    """Response model for a finished backfill run."""

    model_config = ConfigDict(populate_by_name=True)

    invoices_processed: int = Field(..., alias="invoicesProcessed")
    lines_processed: int = Field(..., alias="linesProcessed")
    skipped: int = Field(...)
    ok_lines: int = Field(..., alias="okLines")
    warn_lines: int = Field(..., alias="warnLines")
    warn_rate: float = Field(..., alias="warnRate", description="WARN / (OK + WARN), 0 when no lines")
    failed: int = Field(0)
