"""
job_types.py — per-type job settings and the handler dispatch table.

The handler table is a plain dict built once by the process entry point
(build_handler_registry) and handed to the worker. Nothing registers itself
at import time.
"""

from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from models import JobRecord

ProgressFn = Callable[[int, Optional[str]], Awaitable[None]]
JobHandler = Callable[[JobRecord, ProgressFn], Awaitable[dict[str, Any]]]
HandlerRegistry = dict[str, JobHandler]


class JobTimeoutError(Exception):
    """Raised from a progress write once the job ran past its deadline."""


TECHNICAL_AUDIT = "seo.technical-audit"
KEYWORD_ANALYSIS = "seo.keyword-analysis"


class JobTypeConfig(BaseModel):
    type: str
    label: str
    default_timeout_s: float
    max_retries: int


JOB_TYPE_REGISTRY: dict[str, JobTypeConfig] = {
    TECHNICAL_AUDIT: JobTypeConfig(
        type=TECHNICAL_AUDIT,
        label="Technická SEO analýza",
        default_timeout_s=900.0,   # 15 min
        max_retries=3,
    ),
    KEYWORD_ANALYSIS: JobTypeConfig(
        type=KEYWORD_ANALYSIS,
        label="Analýza klíčových slov",
        default_timeout_s=600.0,   # 10 min
        max_retries=3,
    ),
}


def get_job_type(job_type: str) -> Optional[JobTypeConfig]:
    return JOB_TYPE_REGISTRY.get(job_type)


def build_handler_registry() -> HandlerRegistry:
    """Map job types to their handlers. Called once at process start."""
    from technical_audit import handle_technical_audit

    return {
        TECHNICAL_AUDIT: handle_technical_audit,
    }
