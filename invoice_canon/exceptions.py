"""
Custom exceptions for invoice canonicalization.

Provides a hierarchy of exceptions with error codes for consistent error handling.
"""
from typing import Any, Dict, List, Optional


class CanonicalError(Exception):
    """
    Base exception for all canonicalization errors.

    Attributes:
        error_code: Unique error code (e.g., CAN-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "CAN-000"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for job results and logs."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Canonical Record Errors (CAN-1XX)
class LegacyLinkError(CanonicalError):
    """A canonical header would not point at exactly one legacy invoice."""
    error_code = "CAN-100"

    def __init__(
        self,
        source: str,
        legacy_invoice_id: Optional[str] = None,
        legacy_xero_invoice_id: Optional[str] = None,
        **kwargs,
    ):
        message = (
            f"Invalid legacy linkage for source={source}: expected exactly one of "
            "legacy_invoice_id or legacy_xero_invoice_id"
        )
        super().__init__(
            message,
            details={
                "source": source,
                "legacy_invoice_id": legacy_invoice_id,
                "legacy_xero_invoice_id": legacy_xero_invoice_id,
            },
            **kwargs,
        )


# Ingestion Payload Errors (CAN-2XX)
class ExtractedDocumentError(CanonicalError):
    """Raw extracted-document payload could not be read."""
    error_code = "CAN-200"

    def __init__(self, message: str = "Malformed extracted document payload", **kwargs):
        super().__init__(message, **kwargs)


# Backfill Errors (CAN-3XX)
class BackfillRequestError(CanonicalError):
    """Backfill invocation parameters are invalid."""
    error_code = "CAN-300"

    def __init__(self, message: str = "Invalid backfill request", errors: list = None, **kwargs):
        details = kwargs.pop("details", {})
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)


class BackfillBatchError(CanonicalError):
    """
    One or more invoices failed during a backfill run.

    Raised after the whole batch has been attempted, so every invoice that
    could be written has been committed. ``result`` holds the run counters.
    """
    error_code = "CAN-301"

    def __init__(self, result: Any, failures: List[Dict[str, Any]], **kwargs):
        self.result = result
        self.failures = failures
        message = f"Canonical backfill finished with {len(failures)} failed invoice(s)"
        super().__init__(message, details={"failures": failures}, **kwargs)


# Database Errors (CAN-8XX)
class DatabaseError(CanonicalError):
    """Database operation failed."""
    error_code = "CAN-800"

    def __init__(self, message: str = "Database operation failed", **kwargs):
        super().__init__(message, **kwargs)
