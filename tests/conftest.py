"""
Pytest configuration and fixtures.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_canon.database import Base
from invoice_canon.models import (  # noqa: F401  (registers tables on Base)
    BackfillJob,
    CanonicalInvoice,
    CanonicalInvoiceLineItem,
    Invoice,
    InvoiceLineItem,
    XeroInvoice,
    XeroInvoiceLineItem,
)


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

ORG_ID = "org-1"
LOCATION_ID = "loc-1"
BASE_TIME = datetime(2025, 1, 1, 9, 0, 0)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    # Create tables
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # Drop tables after test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_ocr_invoice(db_session: Session):
    """Factory for OCR-origin invoices with an extracted-document payload."""
    counter = {"n": 0}

    def _make(
        lines: Optional[List[Dict[str, Any]]] = None,
        manual_lines: Optional[List[Dict[str, Any]]] = None,
        organisation_id: str = ORG_ID,
        location_id: Optional[str] = LOCATION_ID,
        currency_code: Optional[str] = "AUD",
        is_verified: bool = False,
        payload: Any = None,
        minutes: Optional[int] = None,
        **fields,
    ) -> Invoice:
        counter["n"] += 1
        offset = counter["n"] if minutes is None else minutes
        if payload is None and lines is not None:
            payload = {"lineItems": lines}

        invoice = Invoice(
            id=fields.pop("id", f"inv-{counter['n']}"),
            organisation_id=organisation_id,
            location_id=location_id,
            supplier_id=fields.pop("supplier_id", "sup-1"),
            invoice_number=f"INV-{counter['n']:04d}",
            date=BASE_TIME,
            currency_code=currency_code,
            is_verified=is_verified,
            ocr_result_json=payload,
            created_at=BASE_TIME + timedelta(minutes=offset),
            **fields,
        )
        db_session.add(invoice)

        for position, line in enumerate(manual_lines or []):
            db_session.add(InvoiceLineItem(
                id=line.pop("id", f"{invoice.id}-line-{position}"),
                invoice_id=invoice.id,
                position=position,
                **line,
            ))

        db_session.commit()
        return invoice

    return _make


@pytest.fixture
def make_xero_invoice(db_session: Session):
    """Factory for synced Xero invoices."""
    counter = {"n": 0}

    def _make(
        lines: Optional[List[Dict[str, Any]]] = None,
        organisation_id: str = ORG_ID,
        location_id: Optional[str] = LOCATION_ID,
        invoice_type: str = "ACCPAY",
        currency_code: Optional[str] = "AUD",
        minutes: Optional[int] = None,
    ) -> XeroInvoice:
        counter["n"] += 1
        offset = counter["n"] if minutes is None else minutes
        invoice = XeroInvoice(
            id=f"xero-{counter['n']}",
            organisation_id=organisation_id,
            location_id=location_id,
            supplier_id="sup-2",
            xero_invoice_id=str(uuid.uuid4()),
            invoice_number=f"XI-{counter['n']:04d}",
            type=invoice_type,
            date=BASE_TIME,
            currency_code=currency_code,
            created_at=BASE_TIME + timedelta(minutes=offset),
        )
        db_session.add(invoice)

        for position, line in enumerate(lines or []):
            db_session.add(XeroInvoiceLineItem(
                id=line.pop("id", f"{invoice.id}-line-{position}"),
                invoice_id=invoice.id,
                position=position,
                **line,
            ))

        db_session.commit()
        return invoice

    return _make


@pytest.fixture
def ham_line() -> Dict[str, Any]:
    """An extracted line that canonicalizes cleanly to OK."""
    return {"description": "Ham Leg 2kg", "quantity": "1", "unitPrice": "10.00", "lineTotal": "10.00"}
