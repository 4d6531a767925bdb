# =============================================================================
# SEO Audit Worker — status API
# =============================================================================
#
# The polling caller's view of the queue: submit a job, read its progress and
# result. It never touches a running job; the worker owns those rows.
#
# Run:  python api.py
# Test: curl http://localhost:8000/health
# =============================================================================

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from config import ANTHROPIC_API_KEY, CLAUDE_MODEL, PAGESPEED_ENABLED, PORT, setup_logging
from database import SessionLocal, init_db
from job_queue import JobQueue
from job_types import JOB_TYPE_REGISTRY, TECHNICAL_AUDIT
from models import JobError, JobStatus, TechnicalAuditParams

logger = logging.getLogger("audit-api")

# Per-type parameter schemas checked before a job is queued
PARAMS_SCHEMAS = {
    TECHNICAL_AUDIT: TechnicalAuditParams,
}

app = FastAPI(
    title="SEO Audit Worker API",
    version="1.0.0",
    description="Queue and poll technical SEO audits",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    init_db()


def get_queue() -> JobQueue:
    return JobQueue(SessionLocal, worker_id="api")


# =============================================================================
# Request / response models
# =============================================================================

class JobCreateRequest(BaseModel):
    client_id: str
    created_by: str
    job_type: str = TECHNICAL_AUDIT
    params: dict[str, Any] = {}


class JobCreatedResponse(BaseModel):
    id: str
    status: JobStatus


class JobStatusResponse(BaseModel):
    id: str
    job_type: str
    status: JobStatus
    progress: int
    progress_message: Optional[str] = None
    retry_count: int
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# =============================================================================
# Jobs
# =============================================================================

@app.post("/jobs", status_code=202, response_model=JobCreatedResponse)
def create_job(request: JobCreateRequest, queue: JobQueue = Depends(get_queue)):
    if request.job_type not in JOB_TYPE_REGISTRY:
        raise HTTPException(status_code=400, detail=f"Unknown job type: {request.job_type}")

    params = request.params
    schema = PARAMS_SCHEMAS.get(request.job_type)
    if schema is not None:
        try:
            params = schema.model_validate(params).model_dump(exclude_none=True)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    record = queue.enqueue_job(request.client_id, request.created_by, request.job_type, params)
    return JobCreatedResponse(id=record.id, status=record.status)


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    record = queue.get_job(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**record.model_dump(include=set(JobStatusResponse.model_fields)))


# =============================================================================
# Health & info
# =============================================================================

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "api_key_set": bool(ANTHROPIC_API_KEY),
        "pagespeed_enabled": PAGESPEED_ENABLED,
        "model": CLAUDE_MODEL,
    }


# =============================================================================
# Run
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=PORT)
