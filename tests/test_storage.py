"""
Tests for database.py and storage.py - SQLite persistence.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import match_result
from jobmatcher.database import Job, MatchLog, MatchSession, get_session, init_database
from jobmatcher.models import CandidateProfile, EducationEntry, SkillEntry
from jobmatcher.storage import MatchStore


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        assert session.query(Job).count() == 0
        assert session.query(MatchSession).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        MatchStore(db_path)

        assert db_path.exists()


class TestJobs:
    """Test job rows and match results."""

    def test_add_and_fetch(self, store):
        job_id = store.add_job("Backend Engineer", description="<p>APIs</p>", company_id=4)

        jobs = store.fetch_jobs([job_id, 999])

        assert list(jobs) == [job_id]
        assert jobs[job_id]["title"] == "Backend Engineer"
        assert jobs[job_id]["company_id"] == 4

    def test_fetch_nothing(self, store):
        assert store.fetch_jobs([]) == {}

    def test_explicit_id(self, store):
        assert store.add_job("Data Engineer", job_id=42) == 42

    def test_match_result_round_trip(self, store):
        job_id = store.add_job("Backend Engineer")
        assert store.get_job_match(job_id)["score"] is None

        store.update_job_with_match_result(job_id, match_result(88))

        match = store.get_job_match(job_id)
        assert match["score"] == 88
        assert match["reasons"] == ["Strong Python background"]
        assert match["missing_skills"] == ["Go"]
        assert store.get_job_match(12345) is None

    def test_unmatched_ids(self, store):
        ids = [store.add_job(f"Job {i}") for i in range(4)]
        store.update_job_with_match_result(ids[1], match_result())

        assert store.get_unmatched_job_ids() == [ids[0], ids[2], ids[3]]


class TestProfile:
    """Test candidate profile persistence."""

    def test_missing_profile(self, store):
        assert store.fetch_profile() is None

    def test_save_and_fetch(self, store, candidate_profile):
        store.save_profile(candidate_profile, name="Jane")

        profile = store.fetch_profile()

        assert profile.summary == candidate_profile.summary
        assert [s.name for s in profile.skills] == ["Python", "SQL"]
        assert profile.skills[0].proficiency == 5
        assert profile.skills[0].years_of_experience == 6
        assert profile.experience[0].company == "Acme"

    def test_save_replaces(self, store, candidate_profile):
        store.save_profile(candidate_profile)
        store.save_profile(CandidateProfile(
            summary="Data scientist",
            skills=[SkillEntry(name="R")],
            education=[EducationEntry(institution="MIT", degree="PhD", field="Statistics")],
        ))

        profile = store.fetch_profile()

        assert profile.summary == "Data scientist"
        assert [s.name for s in profile.skills] == ["R"]
        assert profile.experience == []
        assert profile.education[0].field == "Statistics"


class TestSettings:
    """Test key/value settings."""

    def test_set_and_get(self, store):
        store.set_setting("matcher_batch_size", "3")
        store.set_setting("matcher_batch_size", "4")

        assert store.get_settings(["matcher_batch_size", "matcher_model"]) == {"matcher_batch_size": "4"}


class TestSessionsAndLogs:
    """Test session rows and the conditional update."""

    def test_insert_session_defaults(self, store):
        session_id = store.insert_session(jobs_total=5, trigger_source="scheduler")
        row = store.get_session_row(session_id)

        assert len(session_id) == 32
        assert row["status"] == "in_progress"
        assert row["jobs_total"] == 5
        assert row["error_count"] == 0
        assert row["started_at"] is not None

    def test_conditional_update(self, store):
        session_id = store.insert_session(jobs_total=2, trigger_source="manual")

        assert store.update_session_if_active(session_id, {"status": "completed"})
        assert not store.update_session_if_active(session_id, {"jobs_completed": 2})
        assert not store.update_session_if_active("unknown", {"jobs_completed": 2})

        assert store.get_session_row(session_id)["jobs_completed"] == 0

    def test_one_log_per_job_and_session(self, store):
        session_id = store.insert_session(jobs_total=1, trigger_source="manual")
        store.insert_log(session_id=session_id, job_id=1, status="succeeded", score=60, attempt_count=1, duration_ms=5)

        with pytest.raises(IntegrityError):
            store.insert_log(session_id=session_id, job_id=1, status="failed", attempt_count=1, duration_ms=5)

        logs = store.list_logs(session_id)
        assert len(logs) == 1
        assert logs[0]["status"] == "succeeded"

    def test_list_sessions_paginates(self, store):
        for _ in range(3):
            store.insert_session(jobs_total=1, trigger_source="manual")

        assert len(store.list_sessions(limit=2)) == 2
        assert len(store.list_sessions(limit=2, offset=2)) == 1

    def test_session_scope_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.session() as db:
                db.add(MatchLog(session_id="x", job_id=1, status="failed"))
                raise RuntimeError("abort")

        assert store.list_logs("x") == []
