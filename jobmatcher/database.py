"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for jobs, the candidate profile, matcher
settings, match sessions and per-job match logs.
"""

from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

SESSION_STATUSES = ("pending", "in_progress", "completed", "failed")
ACTIVE_SESSION_STATUSES = ("pending", "in_progress")
TRIGGER_SOURCES = ("manual", "scheduler", "company_refresh", "match_unmatched")


class Job(Base):
    """Job posting with its latest match result."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)  # may contain HTML
    company_id = Column(Integer, nullable=True)
    url = Column(String, nullable=True)
    match_score = Column(Float, nullable=True)
    match_reasons = Column(Text, nullable=True)  # JSON list
    matched_skills = Column(Text, nullable=True)  # JSON list
    missing_skills = Column(Text, nullable=True)  # JSON list
    recommendations = Column(Text, nullable=True)  # JSON list
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Profile(Base):
    """Candidate profile used to build matching prompts."""

    __tablename__ = "profile"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=True)
    summary = Column(Text, nullable=True)


class Skill(Base):
    __tablename__ = "skills"

    id = Column(Integer, primary_key=True)
    profile_id = Column(Integer, ForeignKey("profile.id"), nullable=False)
    name = Column(String, nullable=False)
    proficiency = Column(Integer, nullable=False, default=3)  # 1..5
    category = Column(String, nullable=True)
    years_of_experience = Column(Float, nullable=True)


class Experience(Base):
    __tablename__ = "experience"

    id = Column(Integer, primary_key=True)
    profile_id = Column(Integer, ForeignKey("profile.id"), nullable=False)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(String, nullable=True)  # YYYY-MM
    end_date = Column(String, nullable=True)  # None = current


class Education(Base):
    __tablename__ = "education"

    id = Column(Integer, primary_key=True)
    profile_id = Column(Integer, ForeignKey("profile.id"), nullable=False)
    institution = Column(String, nullable=False)
    degree = Column(String, nullable=False)
    field = Column(String, nullable=True)


class Setting(Base):
    """Key/value application settings (matcher_* keys configure the engine)."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class MatchSession(Base):
    """One record per match batch invocation."""

    __tablename__ = "match_sessions"

    id = Column(String, primary_key=True)
    trigger_source = Column(String, nullable=False)
    company_id = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="pending")
    jobs_total = Column(Integer, nullable=False, default=0)
    jobs_completed = Column(Integer, nullable=False, default=0)
    jobs_succeeded = Column(Integer, nullable=False, default=0)
    jobs_failed = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=False, default=datetime.now)
    completed_at = Column(DateTime, nullable=True)


class MatchLog(Base):
    """One immutable record per job processed in a session."""

    __tablename__ = "match_logs"
    __table_args__ = (UniqueConstraint("session_id", "job_id", name="uq_match_logs_session_job"),)

    id = Column(Integer, primary_key=True)
    session_id = Column(String, ForeignKey("match_sessions.id"), nullable=False)
    job_id = Column(Integer, nullable=False)
    status = Column(String, nullable=False)  # succeeded | failed
    score = Column(Float, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    error_type = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    model_used = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=False, default=datetime.now)


def _engine_for(db_path: Path):
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = _engine_for(db_path)
    Base.metadata.create_all(engine)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = _engine_for(db_path)
    Session = sessionmaker(bind=engine)
    return Session()
