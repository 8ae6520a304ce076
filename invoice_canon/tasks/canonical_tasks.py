"""
Canonical backfill background tasks.

Celery task that runs a backfill for one organisation + location and keeps a
BackfillJob row up to date, plus the helper the job layer uses to enqueue it.
"""
import uuid
from typing import Any, Dict, Optional

import redis
import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from invoice_canon.celery_app import celery_app
from invoice_canon.config import get_settings
from invoice_canon.database import SessionLocal
from invoice_canon.exceptions import BackfillBatchError, BackfillRequestError
from invoice_canon.models.job import BackfillJob, JobStatus
from invoice_canon.schemas.backfill import BackfillRequest
from invoice_canon.services.backfill_executor import BackfillExecutor

logger = structlog.get_logger(__name__)

# Fraction of the job reached at each fixed checkpoint
SCAN_STARTED_PROGRESS = 0.05
SCAN_COMPLETED_PROGRESS = 0.1


def get_db_session() -> Session:
    """Get a database session for use in Celery tasks."""
    return SessionLocal()


def backfill_cooldown_key(organisation_id: str, location_id: str) -> str:
    """Redis key guarding against overlapping backfills for one target."""
    return f"canonical-backfill:cooldown:{organisation_id}:{location_id}"


def claim_backfill_cooldown(
    organisation_id: str,
    location_id: str,
    client: Optional[Any] = None,
    seconds: Optional[int] = None,
) -> bool:
    """
    Claim the cooldown slot for a target.

    Returns:
        True if no backfill was started for the target within the cooldown window.
    """
    settings = get_settings()
    client = client or redis.from_url(settings.redis_url)
    ttl = seconds if seconds is not None else settings.backfill_cooldown_seconds
    claimed = client.set(backfill_cooldown_key(organisation_id, location_id), "1", nx=True, ex=ttl)
    return bool(claimed)


def build_backfill_request(
    organisation_id: str,
    location_id: str,
    source: str = "ALL",
    limit: Optional[int] = None,
) -> BackfillRequest:
    """Validate invocation parameters into a BackfillRequest."""
    settings = get_settings()
    limit = settings.backfill_default_limit if limit is None else limit
    if limit > settings.backfill_max_limit:
        raise BackfillRequestError(
            errors=[{"field": "limit", "message": f"must be <= {settings.backfill_max_limit}"}],
        )
    try:
        return BackfillRequest(
            organisation_id=organisation_id,
            location_id=location_id,
            source=source,
            limit=limit,
        )
    except ValidationError as e:
        raise BackfillRequestError(
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        ) from e


def enqueue_canonical_backfill(
    db: Session,
    organisation_id: str,
    location_id: str,
    source: str = "ALL",
    limit: Optional[int] = None,
    triggered_by: Optional[str] = None,
    cooldown_client: Optional[Any] = None,
) -> Optional[BackfillJob]:
    """
    Create a BackfillJob and queue the task for it.

    Returns:
        The new job, or None if the target is still cooling down.

    Raises:
        BackfillRequestError: if the parameters are invalid.
    """
    request = build_backfill_request(organisation_id, location_id, source, limit)

    if not claim_backfill_cooldown(organisation_id, location_id, client=cooldown_client):
        logger.info(
            "canonical_backfill_cooldown_active",
            organisation_id=organisation_id,
            location_id=location_id,
        )
        return None

    job = BackfillJob(
        id=uuid.uuid4(),
        organisation_id=request.organisation_id,
        location_id=request.location_id,
        triggered_by=triggered_by,
        input_data=request.model_dump(mode="json"),
    )
    db.add(job)
    db.commit()

    async_result = run_canonical_backfill.delay(
        str(job.id),
        request.organisation_id,
        request.location_id,
        request.source.value,
        request.limit,
    )
    job.celery_task_id = async_result.id
    db.commit()

    logger.info(
        "canonical_backfill_enqueued",
        job_id=str(job.id),
        task_id=async_result.id,
        organisation_id=organisation_id,
        location_id=location_id,
    )
    return job


def make_job_progress_callback(db: Session, job: BackfillJob, request: BackfillRequest):
    """Build a progress callback that writes executor checkpoints onto the job row."""
    sources = [s.value for s in request.source.canonical_sources()]
    share = (1.0 - SCAN_COMPLETED_PROGRESS) / len(sources)

    def progress(stage: str, data: Dict[str, Any]) -> None:
        if stage == "scan_started":
            value, step = SCAN_STARTED_PROGRESS, "Scanning for candidates"
        elif stage == "scan_completed":
            counts = ", ".join(f"{k}={v}" for k, v in data.get("candidates", {}).items())
            value, step = SCAN_COMPLETED_PROGRESS, f"Found candidates ({counts})"
        elif stage == "source_started":
            index = sources.index(data["source"])
            value = SCAN_COMPLETED_PROGRESS + share * index
            step = f"Backfilling {data['source']} ({data['candidates']} invoices)"
        elif stage == "source_completed":
            index = sources.index(data["source"])
            value = SCAN_COMPLETED_PROGRESS + share * (index + 1)
            step = f"Finished {data['source']}"
        elif stage == "completed":
            value, step = 1.0, "Completed"
        else:
            return

        try:
            job.update_progress(value, step)
            db.commit()
        except Exception as e:
            logger.error("failed_to_update_job_progress", job_id=str(job.id), stage=stage, error=str(e))
            db.rollback()

    return progress


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def run_canonical_backfill(
    self,
    job_id: Optional[str],
    organisation_id: str,
    location_id: str,
    source: str = "ALL",
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Run a canonical backfill for one organisation + location.

    Args:
        job_id: UUID of the BackfillJob record (created here if None)
        organisation_id: Organisation to backfill
        location_id: Location to backfill
        source: OCR, XERO or ALL
        limit: Maximum invoices per source

    Returns:
        Dict with the run counters
    """
    db = get_db_session()
    job = None
    structlog.contextvars.bind_contextvars(job_id=job_id, task_id=self.request.id)

    try:
        if job_id:
            job = db.query(BackfillJob).filter(BackfillJob.id == uuid.UUID(job_id)).first()
            if not job:
                raise ValueError(f"Job {job_id} not found")
        else:
            job = BackfillJob(id=uuid.uuid4(), organisation_id=organisation_id, location_id=location_id)
            db.add(job)
            structlog.contextvars.bind_contextvars(job_id=str(job.id))

        job.celery_task_id = self.request.id
        job.mark_processing()
        db.commit()

        request = build_backfill_request(organisation_id, location_id, source, limit)
        job.input_data = request.model_dump(mode="json")
        db.commit()

        executor = BackfillExecutor(db)
        result = executor.run(request, progress=make_job_progress_callback(db, job, request))

        result_data = result.to_dict()
        job.mark_completed(result_data)
        db.commit()
        return result_data

    except BackfillRequestError as e:
        logger.error("canonical_backfill_rejected", error=e.message, details=e.details)
        if job is not None:
            job.mark_failed(e.message, result_data=e.to_dict())
            db.commit()
        raise

    except BackfillBatchError as e:
        db.rollback()
        job.mark_failed(e.message, result_data={**e.result.to_dict(), "failures": e.failures})
        db.commit()
        raise

    except Exception as e:
        logger.error("canonical_backfill_task_failed", error=str(e))
        db.rollback()
        if job is not None and job.status != JobStatus.COMPLETED:
            if job.should_retry():
                job.increment_retry()
                db.commit()
                raise self.retry(exc=e)
            job.mark_failed(str(e))
            db.commit()
        raise

    finally:
        structlog.contextvars.clear_contextvars()
        db.close()
