"""Canonicalization, reconciliation and backfill services."""
