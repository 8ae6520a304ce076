"""
Database configuration and session management.

Provides SQLAlchemy engine, session factory, and a session dependency.
"""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from invoice_canon.config import get_settings

settings = get_settings()

# SQLite doesn't support pool_size/max_overflow
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Provide a database session.

    Yields:
        Database session that is automatically closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables."""
    # Import models to ensure they're registered with Base
    from invoice_canon.models import canonical  # noqa: F401
    from invoice_canon.models import legacy  # noqa: F401
    from invoice_canon.models import job  # noqa: F401

    Base.metadata.create_all(bind=engine)
