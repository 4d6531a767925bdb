"""
database.py — SQLAlchemy models and session management for the job store.

Uses PostgreSQL in production (via DATABASE_URL env var).
Falls back to SQLite locally so you can develop without Postgres.
"""

import logging
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import DATABASE_URL

logger = logging.getLogger("job-queue")

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

engine = create_engine(
    DATABASE_URL,
    # SQLite needs this flag; ignored by Postgres
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    pool_pre_ping=True,   # drop stale connections before use
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class Job(Base):
    __tablename__ = "jobs"

    id               = Column(String(36), primary_key=True)
    client_id        = Column(String(36), nullable=False, index=True)
    created_by       = Column(String(36), nullable=False)
    job_type         = Column(String(64), nullable=False, index=True)
    status           = Column(String(20), nullable=False, default="queued", index=True)
    # JSON payloads as text; avoids a JSON column type that behaves
    # differently across SQLite and Postgres.
    params_json      = Column(Text, nullable=False, default="{}")
    progress         = Column(Integer, nullable=False, default=0)
    progress_message = Column(Text, nullable=True)
    result_json      = Column(Text, nullable=True)
    error_json       = Column(Text, nullable=True)
    retry_count      = Column(Integer, nullable=False, default=0)
    claimed_by       = Column(String(128), nullable=True)
    created_at       = Column(DateTime, default=datetime.utcnow, index=True)
    started_at       = Column(DateTime, nullable=True)
    completed_at     = Column(DateTime, nullable=True)
    timeout_at       = Column(DateTime, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id               = Column(Integer, primary_key=True, autoincrement=True)
    user_id          = Column(String(36), index=True)
    client_id        = Column(String(36), index=True)
    action           = Column(String(64), nullable=False)
    metadata_json    = Column(Text, nullable=False, default="{}")
    created_at       = Column(DateTime, default=datetime.utcnow, index=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def init_db(bind=None) -> None:
    """Create all tables. Safe to call on every startup."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ready")
