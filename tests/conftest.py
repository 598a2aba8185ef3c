"""
Pytest configuration and shared fixtures.
"""

import os

os.environ.setdefault("JOBMATCHER_LOG_TO_FILE", "false")
os.environ.setdefault("JOBMATCHER_LOG_LEVEL", "WARNING")

import asyncio
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from jobmatcher.config import MatcherConfig
from jobmatcher.logger import get_logger
from jobmatcher.models import (
    BulkMatchResponse,
    CandidateProfile,
    ExperienceEntry,
    MatchResult,
    SkillEntry,
)
from jobmatcher.provider import GenerationResult
from jobmatcher.queue import reset_queue
from jobmatcher.storage import MatchStore

SINGLE_JOB_RE = re.compile(r"\*\*Title:\*\* Job (\d+)")
BULK_JOB_RE = re.compile(r"### Job ID: (\d+)")


def match_result(score: float = 80) -> MatchResult:
    return MatchResult(
        score=score,
        reasons=["Strong Python background"],
        matched_skills=["Python"],
        missing_skills=["Go"],
        recommendations=["Mention async experience"],
    )


def bulk_response(job_ids: List[int], score: float = 75) -> BulkMatchResponse:
    return BulkMatchResponse.model_validate({
        "results": [
            {
                "jobId": job_id,
                "score": score,
                "reasons": ["Relevant experience"],
                "matchedSkills": ["Python"],
                "missingSkills": [],
                "recommendations": [],
            }
            for job_id in job_ids
        ]
    })


class FakeProvider:
    """
    Scripted structured-output provider.

    ``handler(job_ids, schema)`` returns the data for a call or raises. The
    default handler succeeds for every job. Concurrency is tracked so tests
    can assert on in-flight limits.
    """

    def __init__(
        self,
        handler: Optional[Callable[[List[int], Any], Any]] = None,
        delay: float = 0.0,
    ):
        self.handler = handler or self._succeed
        self.delay = delay
        self.calls: List[List[int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @staticmethod
    def _succeed(job_ids: List[int], schema: Any) -> Any:
        if schema is BulkMatchResponse:
            return bulk_response(job_ids)
        return match_result()

    @staticmethod
    def job_ids_from_prompt(prompt: str) -> List[int]:
        ids = BULK_JOB_RE.findall(prompt) or SINGLE_JOB_RE.findall(prompt)
        return [int(i) for i in ids]

    def calls_for(self, job_id: int) -> int:
        return sum(1 for ids in self.calls if job_id in ids)

    async def generate_structured(
        self,
        model: str,
        schema: Any,
        system_prompt: str,
        user_prompt: str,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        job_ids = self.job_ids_from_prompt(user_prompt)
        self.calls.append(job_ids)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return GenerationResult(data=self.handler(job_ids, schema))
        finally:
            self.in_flight -= 1


@pytest.fixture(autouse=True)
def clean_runtime_state():
    """Fresh operation queue and metrics for every test."""
    reset_queue()
    get_logger().reset_metrics()
    yield
    reset_queue()


@pytest.fixture
def fast_config() -> MatcherConfig:
    """Config with near-zero backoff so retry paths stay fast."""
    return MatcherConfig(
        bulk_enabled=False,
        max_retries=3,
        concurrency_limit=3,
        timeout_ms=5000,
        backoff_base_delay_ms=1,
        backoff_max_delay_ms=5,
        backoff_jitter_ms=0,
    )


@pytest.fixture
def store(tmp_path) -> MatchStore:
    """Empty store backed by a temporary SQLite file."""
    return MatchStore(tmp_path / "test.db")


@pytest.fixture
def candidate_profile() -> CandidateProfile:
    return CandidateProfile(
        summary="Backend engineer focused on Python services.",
        skills=[
            SkillEntry(name="Python", proficiency=5, category="Languages", years_of_experience=6),
            SkillEntry(name="SQL", proficiency=4),
        ],
        experience=[
            ExperienceEntry(
                title="Senior Engineer",
                company="Acme",
                description="Built data pipelines",
                start_date="2019-01",
            ),
        ],
    )


@pytest.fixture
def seeded_store(store, candidate_profile) -> MatchStore:
    """Store with jobs 1..20 and a candidate profile."""
    for i in range(1, 21):
        store.add_job(
            job_id=i,
            title=f"Job {i}",
            description=f"<p>Role number {i}</p><ul><li>Python</li><li>SQL</li></ul>",
            company_id=1,
        )
    store.save_profile(candidate_profile, name="Test Candidate")
    return store


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "cli.db"
