"""
models.py — pydantic models shared by the worker, the analyzers and the API.

Crawl-side models are frozen: a crawl snapshot is built once and then only
read. Collections on frozen models are tuples so analyzers cannot append to
them by accident.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["critical", "warning", "info"]
JobStatus = Literal["queued", "running", "completed", "failed", "cancelled"]
Strategy = Literal["mobile", "desktop"]
Quadrant = Literal["quick_win", "major_project", "fill_in", "time_waster"]


# =============================================================================
# Jobs
# =============================================================================

class JobError(BaseModel):
    message: str
    code: Optional[str] = None
    stack: Optional[str] = None


class JobRecord(BaseModel):
    """Read-only snapshot of a jobs row. Writes go through JobQueue."""

    id: str
    client_id: str
    created_by: str
    job_type: str
    status: JobStatus
    params: dict[str, Any] = Field(default_factory=dict)
    progress: int = 0
    progress_message: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    retry_count: int = 0
    claimed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None


class TechnicalAuditParams(BaseModel):
    domain: str
    crawl_depth: int = Field(default=3, ge=1, le=5)
    max_pages: int = Field(default=100, ge=10, le=500)
    custom_instructions: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def domain_valid(cls, v: str) -> str:
        d = v.strip().lower()
        d = d.removeprefix("http://").removeprefix("https://").rstrip("/")
        if not d:
            raise ValueError("domain must not be empty")
        if "/" in d or " " in d:
            raise ValueError("domain must be a bare host name, e.g. example.com")
        return d

    @field_validator("custom_instructions")
    @classmethod
    def instructions_trimmed(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


# =============================================================================
# Crawl snapshot
# =============================================================================

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class RedirectHop(_Frozen):
    from_url: str = Field(alias="from")
    to_url: str = Field(alias="to")
    status_code: int


class HreflangEntry(_Frozen):
    lang: str
    href: str


class LinkData(_Frozen):
    href: str
    anchor_text: str = ""
    is_nofollow: bool = False


class ImageData(_Frozen):
    src: str
    alt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    size_kb: Optional[float] = None
    format: Optional[str] = None


class CrawledPage(_Frozen):
    url: str
    final_url: str
    status_code: int
    redirect_chain: tuple[RedirectHop, ...] = ()
    response_time_ms: int = 0
    content_type: str = "text/html"
    content_length: int = 0

    # Head
    title: Optional[str] = None
    meta_description: Optional[str] = None
    canonical: Optional[str] = None
    meta_robots: Optional[str] = None
    x_robots_tag: Optional[str] = None
    viewport: Optional[str] = None
    hreflang: tuple[HreflangEntry, ...] = ()
    max_image_preview: Optional[str] = None

    # Content
    h1: tuple[str, ...] = ()
    h2: tuple[str, ...] = ()
    h3: tuple[str, ...] = ()
    word_count: int = 0
    raw_html_length: int = 0

    # Links & media
    internal_links: tuple[LinkData, ...] = ()
    external_links: tuple[LinkData, ...] = ()
    images: tuple[ImageData, ...] = ()

    # Structured data
    json_ld: tuple[dict[str, Any], ...] = ()
    microdata: tuple[dict[str, Any], ...] = ()
    tech_stack: tuple[str, ...] = ()     # CMS / framework markers

    crawled_at: datetime = Field(default_factory=datetime.utcnow)
    crawl_depth: int = 0


class PageSpeedResult(_Frozen):
    url: str
    strategy: Strategy
    performance_score: Optional[int] = None   # 0-100
    lcp: Optional[float] = None               # ms
    inp: Optional[float] = None               # ms (field) or TBT as lab proxy
    cls: Optional[float] = None               # unitless
    ttfb: Optional[float] = None              # ms
    source: Literal["field", "lab"] = "lab"


class AnalyzerInput(_Frozen):
    pages: tuple[CrawledPage, ...]
    robots_txt: Optional[str] = None
    sitemap_urls: tuple[str, ...] = ()
    pagespeed_results: tuple[PageSpeedResult, ...] = ()
    llms_txt_found: Optional[bool] = None


# =============================================================================
# Findings & report
# =============================================================================

class Issue(_Frozen):
    severity: Severity
    title: str
    description: str
    recommendation: str
    affected_urls: tuple[str, ...] = ()


class ScoredIssue(BaseModel):
    title: str
    severity: Severity
    impact: int = Field(ge=1, le=5)
    effort: int = Field(ge=1, le=5)
    quadrant: Quadrant
    recommendation: str


class ActionPlan(BaseModel):
    sprint_1: list[str]
    sprint_2: list[str]
    backlog: list[str]


class AiReport(BaseModel):
    executive_summary: str
    scored_issues: list[ScoredIssue]
    action_plan: ActionPlan
    recommendations_text: str


class CategoryResult(BaseModel):
    score: int = Field(ge=0, le=100)
    issues: list[Issue]


class PageResult(BaseModel):
    url: str
    status_code: int
    title: str
    meta_description: str
    h1: list[str]
    load_time_ms: int
    content_length: int
    issues: list[Issue]


class AuditSummary(BaseModel):
    total_pages_crawled: int
    total_issues: int
    critical_count: int
    warning_count: int
    info_count: int
    overall_score: int = Field(ge=0, le=100)
    crawl_duration_ms: int


class AuditCategories(BaseModel):
    performance: CategoryResult
    indexability: CategoryResult
    meta_tags: CategoryResult
    structured_data: CategoryResult
    mobile_friendliness: CategoryResult
    core_web_vitals: CategoryResult
    internal_linking: CategoryResult
    broken_links: CategoryResult
    redirects: CategoryResult
    sitemap_robots: CategoryResult
    security: CategoryResult


class TechnicalAuditResult(BaseModel):
    summary: AuditSummary
    categories: AuditCategories
    pages: list[PageResult]
    ai_recommendations: str
