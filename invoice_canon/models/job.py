"""
BackfillJob model for tracking canonical backfill runs.

Stores job status, progress, and results for the Celery backfill task.
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, Integer, JSON, String, Text

from invoice_canon.database import Base
from invoice_canon.models.types import UUID


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"        # Job created, waiting for worker
    PROCESSING = "processing"  # Worker picked up the job
    COMPLETED = "completed"    # Job finished successfully
    FAILED = "failed"          # Job failed with error
    RETRYING = "retrying"      # Job is being retried


class BackfillJob(Base):
    """Canonical backfill run for one organisation + location."""

    __tablename__ = "canonical_backfill_jobs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)

    celery_task_id = Column(String(255), unique=True, nullable=True, index=True)
    status = Column(SQLEnum(JobStatus), default=JobStatus.PENDING, nullable=False)

    # Target
    organisation_id = Column(String(64), nullable=False, index=True)
    location_id = Column(String(64), nullable=False)
    triggered_by = Column(String(64), nullable=True)

    # Progress tracking
    progress = Column(Float, default=0.0, nullable=False)  # 0.0 to 1.0
    current_step = Column(String(255), nullable=True)

    # Input/Output
    input_data = Column(JSON, nullable=True)
    result_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # Retry tracking
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<BackfillJob {self.id} status={self.status}>"

    def update_progress(self, progress: float, current_step: str = None) -> None:
        """Update job progress."""
        self.progress = min(max(progress, 0.0), 1.0)
        if current_step:
            self.current_step = current_step
        self.updated_at = datetime.utcnow()

    def mark_processing(self) -> None:
        """Mark job as processing."""
        self.status = JobStatus.PROCESSING
        self.started_at = datetime.utcnow()

    def mark_completed(self, result_data: dict = None) -> None:
        """Mark job as completed."""
        self.status = JobStatus.COMPLETED
        self.progress = 1.0
        self.completed_at = datetime.utcnow()
        if result_data:
            self.result_data = result_data

    def mark_failed(self, error_message: str, result_data: dict = None) -> None:
        """Mark job as failed, keeping any partial result."""
        self.status = JobStatus.FAILED
        self.error_message = error_message
        self.completed_at = datetime.utcnow()
        if result_data:
            self.result_data = result_data

    def should_retry(self) -> bool:
        """Check if job should be retried."""
        return self.retry_count < self.max_retries

    def increment_retry(self) -> None:
        """Increment retry counter."""
        self.retry_count += 1
        self.status = JobStatus.RETRYING
