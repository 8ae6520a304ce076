"""
Invoice line canonicalization and reconciliation.

Projects OCR-processed and Xero-synced invoices into one canonical schema,
scores every line with a quality gate, and backfills missing or stale
canonical records idempotently.
"""
__version__ = "0.1.0"
