"""
job_queue.py — the worker's only door into the jobs table.

Four operations drive a job through its life (claim, progress, complete,
fail) plus the append-only audit log. All methods are synchronous; the
async worker calls them through run_in_executor.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from database import AuditLog, Job
from job_types import get_job_type
from models import JobError, JobRecord

logger = logging.getLogger("job-queue")

FailOutcome = Literal["failed", "requeued"]


def _dumps(payload: Any) -> str:
    # Null bytes (escaped by json.dumps as \u0000) break PostgreSQL JSON casts
    return json.dumps(payload, default=str, ensure_ascii=False).replace("\\u0000", "")


def _loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored JSON payload is not valid JSON — ignoring it")
        return None


def to_record(row: Job) -> JobRecord:
    error = _loads(row.error_json)
    return JobRecord(
        id=row.id,
        client_id=row.client_id,
        created_by=row.created_by,
        job_type=row.job_type,
        status=row.status,
        params=_loads(row.params_json) or {},
        progress=row.progress or 0,
        progress_message=row.progress_message,
        result=_loads(row.result_json),
        error=JobError(**error) if isinstance(error, dict) else None,
        retry_count=row.retry_count or 0,
        claimed_by=row.claimed_by,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        timeout_at=row.timeout_at,
    )


class JobQueue:
    """Queue contract over a SQLAlchemy session factory."""

    CLAIM_ATTEMPTS = 3

    def __init__(self, session_factory, worker_id: str = "worker"):
        self.session_factory = session_factory
        self.worker_id = worker_id

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim_next_job(self) -> Optional[JobRecord]:
        """
        Atomically claim the oldest queued job.

        The candidate is selected FOR UPDATE SKIP LOCKED (Postgres; SQLite
        ignores the hint) and then flipped with a conditional UPDATE. Only the
        session whose UPDATE hits exactly one still-queued row owns the job.
        Returns None when the queue is empty or the store is unavailable.
        """
        for _ in range(self.CLAIM_ATTEMPTS):
            db = self.session_factory()
            try:
                candidate_id = db.execute(
                    select(Job.id)
                    .where(Job.status == "queued")
                    .order_by(Job.created_at.asc(), Job.id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar_one_or_none()
                if candidate_id is None:
                    db.rollback()
                    return None

                claimed = db.execute(
                    update(Job)
                    .where(Job.id == candidate_id, Job.status == "queued")
                    .values(
                        status="running",
                        started_at=datetime.utcnow(),
                        claimed_by=self.worker_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    # Another worker won the race; try the next candidate
                    db.rollback()
                    continue

                db.commit()
                row = db.get(Job, candidate_id, populate_existing=True)
                record = to_record(row)
                logger.info(f"[{record.id}] Job claimed from queue (type={record.job_type}, worker={self.worker_id})")
                return record
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to poll for job: {type(e).__name__}: {e}")
                return None
            finally:
                db.close()
        return None

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def update_progress(self, job_id: str, progress: int, message: Optional[str]) -> None:
        """
        Best effort: progress is advisory, so failures are logged only.

        Only running jobs are touched. A heartbeat write still in flight when
        the job completes or is requeued becomes a no-op.
        """
        db = self.session_factory()
        try:
            db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == "running")
                .values(progress=progress, progress_message=message)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[{job_id}] Failed to update progress: {type(e).__name__}: {e}")
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def complete_job(self, job_id: str, result: dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            db.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(
                    status="completed",
                    progress=100,
                    progress_message="Dokončeno",
                    result_json=_dumps(result),
                    completed_at=datetime.utcnow(),
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[{job_id}] Failed to complete job: {type(e).__name__}: {e}", exc_info=True)
        finally:
            db.close()

    def fail_job(
        self,
        job_id: str,
        error: JobError,
        retry_count: int,
        max_retries: int,
    ) -> FailOutcome:
        """
        Requeue the job while retries remain, otherwise fail it for good.

        Returns "requeued" or "failed" so the caller can log and audit the
        two outcomes separately.
        """
        requeue = retry_count < max_retries
        if requeue:
            values = dict(
                status="queued",
                progress=0,
                progress_message=f"Retry {retry_count + 1}/{max_retries}",
                error_json=_dumps(error.model_dump(exclude_none=True)),
                retry_count=retry_count + 1,
                started_at=None,
                claimed_by=None,
            )
        else:
            values = dict(
                status="failed",
                progress_message="Selhalo po maximálním počtu pokusů",
                error_json=_dumps(error.model_dump(exclude_none=True)),
                completed_at=datetime.utcnow(),
            )

        db = self.session_factory()
        try:
            db.execute(update(Job).where(Job.id == job_id).values(**values))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            action = "requeue job for retry" if requeue else "mark job as failed"
            logger.error(f"[{job_id}] Failed to {action}: {type(e).__name__}: {e}", exc_info=True)
        finally:
            db.close()

        return "requeued" if requeue else "failed"

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def write_audit_log(
        self,
        user_id: str,
        client_id: str,
        action: str,
        metadata: dict[str, Any],
    ) -> None:
        db = self.session_factory()
        try:
            db.add(AuditLog(
                user_id=user_id,
                client_id=client_id,
                action=action,
                metadata_json=_dumps(metadata),
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write audit log ({action}): {type(e).__name__}: {e}")
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Producer side / polling
    # ------------------------------------------------------------------

    def enqueue_job(
        self,
        client_id: str,
        created_by: str,
        job_type: str,
        params: dict[str, Any],
    ) -> JobRecord:
        """Insert a queued job. timeout_at is fixed at creation from the type default."""
        config = get_job_type(job_type)
        if config is None:
            raise ValueError(f"Unknown job type: {job_type}")

        now = datetime.utcnow()
        row = Job(
            id=str(uuid.uuid4()),
            client_id=client_id,
            created_by=created_by,
            job_type=job_type,
            status="queued",
            params_json=_dumps(params),
            progress=0,
            retry_count=0,
            created_at=now,
            timeout_at=now + timedelta(seconds=config.default_timeout_s),
        )
        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
            db.refresh(row)
            record = to_record(row)
        finally:
            db.close()

        logger.info(f"[{record.id}] Job queued (type={job_type}, client={client_id})")
        return record

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        db = self.session_factory()
        try:
            row = db.get(Job, job_id)
            return to_record(row) if row else None
        finally:
            db.close()

    def list_audit_log(self, client_id: Optional[str] = None) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            query = select(AuditLog).order_by(AuditLog.id.asc())
            if client_id:
                query = query.where(AuditLog.client_id == client_id)
            return [
                {
                    "user_id": row.user_id,
                    "client_id": row.client_id,
                    "action": row.action,
                    "metadata": _loads(row.metadata_json) or {},
                    "created_at": row.created_at,
                }
                for row in db.execute(query).scalars()
            ]
        finally:
            db.close()
