"""JobQueue contract tests on in-memory SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from database import Job
from job_queue import JobQueue
from job_types import KEYWORD_ANALYSIS, TECHNICAL_AUDIT
from models import JobError

PARAMS = {"domain": "example.com", "crawl_depth": 2, "max_pages": 50}


def test_enqueue_sets_timeout_from_type(queue):
    before = datetime.utcnow()
    job = queue.enqueue_job("client-1", "user-1", TECHNICAL_AUDIT, PARAMS)

    assert job.status == "queued"
    assert job.params == PARAMS
    assert job.retry_count == 0
    assert before + timedelta(seconds=899) <= job.timeout_at <= datetime.utcnow() + timedelta(seconds=900)


def test_enqueue_unknown_type(queue):
    with pytest.raises(ValueError):
        queue.enqueue_job("client-1", "user-1", "seo.nope", {})


def test_claim_oldest_first_and_exclusive(queue, session_factory):
    first = queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)
    second = queue.enqueue_job("c", "u", KEYWORD_ANALYSIS, {})
    db = session_factory()
    db.execute(update(Job).where(Job.id == first.id).values(created_at=datetime.utcnow() - timedelta(minutes=5)))
    db.commit()
    db.close()

    other_worker = JobQueue(session_factory, worker_id="other")
    claimed_a = queue.claim_next_job()
    claimed_b = other_worker.claim_next_job()

    assert claimed_a.id == first.id
    assert claimed_a.status == "running"
    assert claimed_a.claimed_by == "test-worker"
    assert claimed_a.started_at is not None
    assert claimed_b.id == second.id
    assert queue.claim_next_job() is None


def test_progress_and_complete(queue):
    job = queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)
    queue.claim_next_job()

    queue.update_progress(job.id, 42, "Crawling... 10/50 stránek")
    running = queue.get_job(job.id)
    assert (running.progress, running.progress_message) == (42, "Crawling... 10/50 stránek")

    queue.complete_job(job.id, {"summary": {"overall_score": 80}})
    done = queue.get_job(job.id)
    assert done.status == "completed"
    assert done.progress == 100
    assert done.progress_message == "Dokončeno"
    assert done.result == {"summary": {"overall_score": 80}}
    assert done.completed_at is not None


def test_fail_requeues_until_retries_exhausted(queue):
    job = queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)
    error = JobError(message="boom", code="HANDLER_ERROR")

    for attempt in range(3):
        claimed = queue.claim_next_job()
        assert claimed.retry_count == attempt
        outcome = queue.fail_job(job.id, error, claimed.retry_count, 3)
        assert outcome == "requeued"
        requeued = queue.get_job(job.id)
        assert requeued.status == "queued"
        assert requeued.retry_count == attempt + 1
        assert requeued.progress == 0
        assert requeued.progress_message == f"Retry {attempt + 1}/3"
        assert requeued.claimed_by is None

    claimed = queue.claim_next_job()
    assert queue.fail_job(job.id, error, claimed.retry_count, 3) == "failed"
    failed = queue.get_job(job.id)
    assert failed.status == "failed"
    assert failed.retry_count == 3
    assert failed.error == error
    assert failed.progress_message == "Selhalo po maximálním počtu pokusů"


def test_audit_log(queue):
    queue.write_audit_log("u1", "c1", "job.completed", {"job_id": "j1"})
    queue.write_audit_log("u1", "c2", "job.failed", {"job_id": "j2", "outcome": "failed"})

    entries = queue.list_audit_log("c2")
    assert len(entries) == 1
    assert entries[0]["action"] == "job.failed"
    assert entries[0]["metadata"] == {"job_id": "j2", "outcome": "failed"}
    assert len(queue.list_audit_log()) == 2


def test_payloads_strip_nul_bytes(queue):
    job = queue.enqueue_job("c", "u", TECHNICAL_AUDIT, {"domain": "exa\x00mple.com"})
    assert queue.get_job(job.id).params == {"domain": "example.com"}


def test_progress_writes_only_touch_running_jobs(queue):
    job = queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)
    queue.update_progress(job.id, 30, "Crawling...")
    assert queue.get_job(job.id).progress == 0

    queue.claim_next_job()
    queue.complete_job(job.id, {})
    queue.update_progress(job.id, 30, "Crawling...")

    done = queue.get_job(job.id)
    assert (done.progress, done.progress_message) == (100, "Dokončeno")
