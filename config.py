# =============================================================================
# SEO Audit Worker — Configuration
# =============================================================================
#
# All runtime settings come from the environment (.env is loaded first).
# Analyzer thresholds are business rules and live next to the analyzers.
# =============================================================================

import logging
import os
import socket

from dotenv import load_dotenv

load_dotenv()                       # reads .env into os.environ

logger = logging.getLogger("audit-worker")

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./seo_audit_jobs.db")

# Railway (and some other hosts) expose postgres:// but SQLAlchemy requires postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# ---------------------------------------------------------------------------
# External APIs
# ---------------------------------------------------------------------------

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
PAGESPEED_API_KEY = os.getenv("PAGESPEED_API_KEY", "")
PAGESPEED_ENABLED = os.getenv("PAGESPEED_ENABLED", "1").strip().lower() not in {
    "0",
    "false",
    "no",
    "off",
}

# ---------------------------------------------------------------------------
# Worker loop
# ---------------------------------------------------------------------------

JOB_POLL_INTERVAL_S = float(os.getenv("JOB_POLL_INTERVAL_S", "5"))
JOB_HEARTBEAT_INTERVAL_S = float(os.getenv("JOB_HEARTBEAT_INTERVAL_S", "30"))
WORKER_ID = os.getenv("WORKER_ID", f"{socket.gethostname()}-{os.getpid()}")
CRAWLER_USER_AGENT = os.getenv(
    "CRAWLER_USER_AGENT", "SEOAuditBot/1.0 (+https://example.com/bot)"
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))


def setup_logging() -> None:
    """Configure root logging once per process (worker or API entry point)."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )


def warn_missing_keys() -> None:
    if not ANTHROPIC_API_KEY:
        logger.warning("⚠️  ANTHROPIC_API_KEY is not set — AI reports will fall back to findings only")
    if PAGESPEED_ENABLED and not PAGESPEED_API_KEY:
        logger.warning("⚠️  PAGESPEED_API_KEY is not set — PageSpeed calls run unauthenticated")
