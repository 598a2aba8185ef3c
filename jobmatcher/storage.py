"""
Persistence for jobs, the candidate profile, settings and match sessions.

Every public method opens a short-lived SQLAlchemy session, so the store can
be shared freely between coroutines of one process.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy.orm import sessionmaker

from .database import (
    ACTIVE_SESSION_STATUSES,
    Education,
    Experience,
    Job,
    MatchLog,
    MatchSession,
    Profile,
    Setting,
    Skill,
    _engine_for,
    init_database,
)
from .models import (
    CandidateProfile,
    EducationEntry,
    ExperienceEntry,
    MatchResult,
    SkillEntry,
)

SESSION_FIELDS = (
    "id",
    "trigger_source",
    "company_id",
    "status",
    "jobs_total",
    "jobs_completed",
    "jobs_succeeded",
    "jobs_failed",
    "error_count",
    "started_at",
    "completed_at",
)

LOG_FIELDS = (
    "id",
    "session_id",
    "job_id",
    "status",
    "score",
    "attempt_count",
    "error_type",
    "error_message",
    "duration_ms",
    "model_used",
    "completed_at",
)


def _row_to_dict(row: Any, names: Iterable[str]) -> Dict[str, Any]:
    return {name: getattr(row, name) for name in names}


class MatchStore:
    """SQLite-backed store used by the engine and its trackers."""

    def __init__(self, db_path: Path, create: bool = True):
        self.db_path = Path(db_path)
        if create:
            init_database(self.db_path)
        self._engine = _engine_for(self.db_path)
        self._Session = sessionmaker(bind=self._engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Transactional scope: commit on success, roll back on error."""
        db = self._Session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Jobs

    def add_job(
        self,
        title: str,
        description: Optional[str] = None,
        company_id: Optional[int] = None,
        url: Optional[str] = None,
        job_id: Optional[int] = None,
    ) -> int:
        with self.session() as db:
            job = Job(id=job_id, title=title, description=description, company_id=company_id, url=url)
            db.add(job)
            db.flush()
            return job.id

    def fetch_jobs(self, job_ids: List[int]) -> Dict[int, Dict[str, Any]]:
        """Jobs by id; ids that do not exist are simply absent from the result."""
        if not job_ids:
            return {}
        with self.session() as db:
            rows = db.query(Job).filter(Job.id.in_(job_ids)).all()
            return {
                row.id: {
                    "id": row.id,
                    "title": row.title,
                    "description": row.description,
                    "company_id": row.company_id,
                }
                for row in rows
            }

    def get_job_match(self, job_id: int) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            row = db.get(Job, job_id)
            if row is None:
                return None
            return {
                "score": row.match_score,
                "reasons": json.loads(row.match_reasons) if row.match_reasons else [],
                "matched_skills": json.loads(row.matched_skills) if row.matched_skills else [],
                "missing_skills": json.loads(row.missing_skills) if row.missing_skills else [],
                "recommendations": json.loads(row.recommendations) if row.recommendations else [],
            }

    def update_job_with_match_result(self, job_id: int, result: MatchResult) -> None:
        with self.session() as db:
            db.query(Job).filter(Job.id == job_id).update(
                {
                    Job.match_score: result.score,
                    Job.match_reasons: json.dumps(result.reasons),
                    Job.matched_skills: json.dumps(result.matched_skills),
                    Job.missing_skills: json.dumps(result.missing_skills),
                    Job.recommendations: json.dumps(result.recommendations),
                    Job.updated_at: datetime.now(),
                },
                synchronize_session=False,
            )

    def get_unmatched_job_ids(self) -> List[int]:
        with self.session() as db:
            rows = db.query(Job.id).filter(Job.match_score.is_(None)).order_by(Job.id).all()
            return [row.id for row in rows]

    # Candidate profile

    def save_profile(self, profile: CandidateProfile, name: Optional[str] = None) -> int:
        """Replace the stored candidate profile."""
        with self.session() as db:
            for model in (Skill, Experience, Education, Profile):
                db.query(model).delete()
            row = Profile(name=name, summary=profile.summary)
            db.add(row)
            db.flush()
            for s in profile.skills:
                db.add(Skill(
                    profile_id=row.id,
                    name=s.name,
                    proficiency=s.proficiency,
                    category=s.category,
                    years_of_experience=s.years_of_experience,
                ))
            for e in profile.experience:
                db.add(Experience(
                    profile_id=row.id,
                    title=e.title,
                    company=e.company,
                    description=e.description,
                    start_date=e.start_date,
                    end_date=e.end_date,
                ))
            for ed in profile.education:
                db.add(Education(
                    profile_id=row.id,
                    institution=ed.institution,
                    degree=ed.degree,
                    field=ed.field,
                ))
            return row.id

    def fetch_profile(self) -> Optional[CandidateProfile]:
        with self.session() as db:
            row = db.query(Profile).order_by(Profile.id).first()
            if row is None:
                return None
            skills = db.query(Skill).filter(Skill.profile_id == row.id).all()
            experience = db.query(Experience).filter(Experience.profile_id == row.id).all()
            education = db.query(Education).filter(Education.profile_id == row.id).all()
            return CandidateProfile(
                summary=row.summary or None,
                skills=[
                    SkillEntry(
                        name=s.name,
                        proficiency=s.proficiency,
                        category=s.category or None,
                        years_of_experience=s.years_of_experience,
                    )
                    for s in skills
                ],
                experience=[
                    ExperienceEntry(
                        title=e.title,
                        company=e.company,
                        description=e.description or None,
                        start_date=e.start_date,
                        end_date=e.end_date,
                    )
                    for e in experience
                ],
                education=[
                    EducationEntry(institution=ed.institution, degree=ed.degree, field=ed.field or None)
                    for ed in education
                ],
            )

    # Settings

    def get_settings(self, keys: List[str]) -> Dict[str, str]:
        with self.session() as db:
            rows = db.query(Setting).filter(Setting.key.in_(keys)).all()
            return {row.key: row.value for row in rows if row.value is not None}

    def set_setting(self, key: str, value: str) -> None:
        with self.session() as db:
            row = db.get(Setting, key)
            if row is None:
                db.add(Setting(key=key, value=value))
            else:
                row.value = value

    # Match sessions

    def insert_session(
        self,
        jobs_total: int,
        trigger_source: str,
        company_id: Optional[int] = None,
        status: str = "in_progress",
    ) -> str:
        session_id = uuid.uuid4().hex
        with self.session() as db:
            db.add(MatchSession(
                id=session_id,
                trigger_source=trigger_source,
                company_id=company_id,
                status=status,
                jobs_total=jobs_total,
                jobs_completed=0,
                jobs_succeeded=0,
                jobs_failed=0,
                error_count=0,
                started_at=datetime.now(),
            ))
        return session_id

    def update_session_if_active(self, session_id: str, values: Dict[str, Any]) -> bool:
        """
        Conditionally update a session that is still pending or in progress.

        The status check and the write happen in one UPDATE statement, so a
        concurrent stop cannot be overwritten.

        Returns:
            True if a row was updated
        """
        columns = {getattr(MatchSession, name): value for name, value in values.items()}
        with self.session() as db:
            updated = (
                db.query(MatchSession)
                .filter(MatchSession.id == session_id)
                .filter(MatchSession.status.in_(ACTIVE_SESSION_STATUSES))
                .update(columns, synchronize_session=False)
            )
            return updated > 0

    def get_session_row(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            row = db.get(MatchSession, session_id)
            return _row_to_dict(row, SESSION_FIELDS) if row is not None else None

    def list_sessions(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(MatchSession)
                .order_by(MatchSession.started_at.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [_row_to_dict(row, SESSION_FIELDS) for row in rows]

    # Match logs

    def insert_log(self, **values: Any) -> None:
        with self.session() as db:
            db.add(MatchLog(completed_at=datetime.now(), **values))

    def list_logs(self, session_id: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(MatchLog)
                .filter(MatchLog.session_id == session_id)
                .order_by(MatchLog.completed_at.desc(), MatchLog.id.desc())
                .all()
            )
            return [_row_to_dict(row, LOG_FIELDS) for row in rows]
