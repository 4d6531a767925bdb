# =============================================================================
# SEO Audit Worker — job runner
# =============================================================================
#
# Polls the jobs table, claims one job at a time and runs its handler under a
# per-job deadline with a progress heartbeat. Every terminal transition is
# written to the audit log.
#
# Run:     python worker.py run
# Enqueue: python worker.py enqueue --client-id c1 --created-by u1 --domain example.com
# =============================================================================

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import traceback
from datetime import datetime
from functools import partial
from typing import Any, Optional

from config import JOB_HEARTBEAT_INTERVAL_S, JOB_POLL_INTERVAL_S, WORKER_ID, setup_logging, warn_missing_keys
from database import SessionLocal, init_db
from job_queue import FailOutcome, JobQueue
from job_types import (
    TECHNICAL_AUDIT,
    HandlerRegistry,
    JobTimeoutError,
    build_handler_registry,
    get_job_type,
)
from models import JobError, JobRecord, TechnicalAuditParams

logger = logging.getLogger("audit-worker")

DEFAULT_TIMEOUT_S = 900.0


class _JobState:
    """Mutable per-job state shared by the handler, the timer and the heartbeat."""

    def __init__(self, job: JobRecord):
        self.timed_out = False
        self.progress = job.progress
        self.message = job.progress_message


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        poll_interval: float = JOB_POLL_INTERVAL_S,
        heartbeat_interval: float = JOB_HEARTBEAT_INTERVAL_S,
    ):
        self.queue = queue
        self.registry = registry
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.shutting_down = False

    async def _call(self, fn, *args) -> Any:
        """Run a blocking JobQueue method on the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def request_shutdown(self, signum=None, frame=None) -> None:
        logger.info(f"Signal {signum} received — finishing current job, then shutting down")
        self.shutting_down = True

    async def run_once(self) -> bool:
        """Claim and process at most one job. Returns True when a job was processed."""
        job = await self._call(self.queue.claim_next_job)
        if job is None:
            return False
        await self.process_job(job)
        return True

    async def run(self) -> None:
        logger.info(f"Worker {self.queue.worker_id} started — polling every {self.poll_interval:g} s")
        while not self.shutting_down:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Unhandled error in poll loop: {type(e).__name__}: {e}", exc_info=True)
            if self.shutting_down:
                break
            await asyncio.sleep(self.poll_interval)
        logger.info("Worker stopped gracefully")

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    async def process_job(self, job: JobRecord) -> None:
        logger.info(f"[{job.id}] Processing job (type={job.job_type}, retry={job.retry_count})")

        # ── Resolve handler ───────────────────────────────────────
        handler = self.registry.get(job.job_type)
        if handler is None:
            logger.error(f"[{job.id}] No handler registered for job type {job.job_type}")
            error = JobError(message=f"No handler for job type: {job.job_type}", code="NO_HANDLER")
            outcome = await self._call(self.queue.fail_job, job.id, error, job.retry_count, 0)
            await self._audit_failure(job, error, outcome)
            return

        config = get_job_type(job.job_type)
        max_retries = config.max_retries if config else 0
        default_timeout = config.default_timeout_s if config else DEFAULT_TIMEOUT_S

        # ── Timeout pre-check ─────────────────────────────────────
        now = datetime.utcnow()
        if job.timeout_at and job.timeout_at <= now:
            logger.warning(f"[{job.id}] Job already past its timeout ({job.timeout_at.isoformat()})")
            error = JobError(message="Job timed out before processing started", code="TIMEOUT")
            outcome = await self._call(self.queue.fail_job, job.id, error, job.retry_count, max_retries)
            await self._audit_failure(job, error, outcome)
            return

        # ── Timeout watchdog ──────────────────────────────────────
        state = _JobState(job)
        timeout_s = (
            max(0.0, (job.timeout_at - now).total_seconds()) if job.timeout_at else default_timeout
        )

        def trip_timeout() -> None:
            state.timed_out = True
            logger.warning(f"[{job.id}] Job timeout triggered after {timeout_s:.0f} s")

        loop = asyncio.get_running_loop()
        timer = loop.call_later(timeout_s, trip_timeout)

        # ── Progress heartbeat ────────────────────────────────────
        async def heartbeat() -> None:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                if state.timed_out or self.shutting_down:
                    continue
                await self._call(self.queue.update_progress, job.id, state.progress, state.message)

        heartbeat_task = asyncio.create_task(heartbeat())

        async def tracked_progress(progress: int, message: Optional[str] = None) -> None:
            if state.timed_out:
                raise JobTimeoutError("Job timed out")
            # Stored progress never moves backwards
            state.progress = max(state.progress, progress)
            state.message = message
            await self._call(self.queue.update_progress, job.id, state.progress, message)

        # ── Execute handler ───────────────────────────────────────
        try:
            try:
                result = await handler(job, tracked_progress)
            finally:
                timer.cancel()
                await self._stop_heartbeat(heartbeat_task)
            if state.timed_out:
                raise JobTimeoutError("Job timed out")

            await self._call(self.queue.complete_job, job.id, result)
            logger.info(f"[{job.id}] Job completed successfully")
            await self._call(
                self.queue.write_audit_log,
                job.created_by,
                job.client_id,
                "job.completed",
                {"job_id": job.id, "job_type": job.job_type},
            )
        except Exception as e:
            code = "TIMEOUT" if state.timed_out else "HANDLER_ERROR"
            error = JobError(message=str(e) or type(e).__name__, code=code, stack=traceback.format_exc())
            logger.error(f"[{job.id}] Job failed ({code}): {error.message}")

            outcome = await self._call(self.queue.fail_job, job.id, error, job.retry_count, max_retries)
            if outcome == "requeued":
                logger.info(f"[{job.id}] Job requeued for retry {job.retry_count + 1}/{max_retries}")
            else:
                logger.info(f"[{job.id}] Job permanently failed")
            await self._audit_failure(job, error, outcome)

    async def _stop_heartbeat(self, task: asyncio.Task) -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _audit_failure(self, job: JobRecord, error: JobError, outcome: FailOutcome) -> None:
        await self._call(
            self.queue.write_audit_log,
            job.created_by,
            job.client_id,
            "job.failed",
            {
                "job_id": job.id,
                "job_type": job.job_type,
                "error": error.message,
                "outcome": outcome,
            },
        )


# =============================================================================
# Entry point
# =============================================================================

def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Technical SEO audit job runner.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Poll the queue and process jobs until SIGINT/SIGTERM")

    enqueue = sub.add_parser("enqueue", help="Queue a technical audit job")
    enqueue.add_argument("--client-id", required=True)
    enqueue.add_argument("--created-by", required=True)
    enqueue.add_argument("--domain", required=True, help="Bare domain, e.g. example.com")
    enqueue.add_argument("--crawl-depth", type=int, default=3)
    enqueue.add_argument("--max-pages", type=int, default=100)
    enqueue.add_argument("--instructions", default=None, help="Custom instructions for the AI report")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
    return args


def main(argv=None) -> None:
    setup_logging()
    args = _parse_args(argv)
    init_db()
    queue = JobQueue(SessionLocal, worker_id=WORKER_ID)

    if args.command == "enqueue":
        params = TechnicalAuditParams(
            domain=args.domain,
            crawl_depth=args.crawl_depth,
            max_pages=args.max_pages,
            custom_instructions=args.instructions,
        )
        record = queue.enqueue_job(
            args.client_id, args.created_by, TECHNICAL_AUDIT, params.model_dump(exclude_none=True)
        )
        print(json.dumps({"id": record.id, "status": record.status}))
        return

    warn_missing_keys()
    worker = Worker(queue, build_handler_registry())
    signal.signal(signal.SIGINT, worker.request_shutdown)
    signal.signal(signal.SIGTERM, worker.request_shutdown)
    asyncio.run(worker.run())


if __name__ == "__main__":
    main()
