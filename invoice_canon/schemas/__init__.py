"""Pydantic schemas."""
from invoice_canon.schemas.backfill import BackfillRequest, BackfillResponse, BackfillSource

__all__ = ["BackfillRequest", "BackfillResponse", "BackfillSource"]
