"""
Domain models for job matching.

Pydantic models describe the structured output expected from the AI
provider; dataclasses carry values between the engine's layers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MatchResult(BaseModel):
    """Validated match analysis for one job."""

    model_config = ConfigDict(populate_by_name=True)

    score: float = Field(ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    matched_skills: List[str] = Field(default_factory=list, alias="matchedSkills")
    missing_skills: List[str] = Field(default_factory=list, alias="missingSkills")
    recommendations: List[str] = Field(default_factory=list)


class BulkMatchItem(MatchResult):
    job_id: int = Field(alias="jobId")

    def to_result(self) -> MatchResult:
        return MatchResult(**self.model_dump(exclude={"job_id"}))


class BulkMatchResponse(BaseModel):
    results: List[BulkMatchItem]


@dataclass
class MatchJob:
    id: int
    title: str
    description: str = ""
    requirements: List[str] = field(default_factory=list)


@dataclass
class SkillEntry:
    name: str
    proficiency: int = 3
    category: Optional[str] = None
    years_of_experience: Optional[float] = None


@dataclass
class ExperienceEntry:
    title: str
    company: str
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass
class EducationEntry:
    institution: str
    degree: str
    field: Optional[str] = None


@dataclass
class CandidateProfile:
    summary: Optional[str] = None
    skills: List[SkillEntry] = field(default_factory=list)
    experience: List[ExperienceEntry] = field(default_factory=list)
    education: List[EducationEntry] = field(default_factory=list)


@dataclass
class StrategyResultItem:
    """Outcome of one job inside a strategy run: a result or an error."""

    result: Optional[MatchResult] = None
    error: Optional[BaseException] = None
    duration_ms: int = 0
    attempt_count: int = 1

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class MatchSessionResult:
    session_id: str
    total: int
    succeeded: int
    failed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


@dataclass
class MatchProgress:
    phase: str
    queue_position: int
    completed: int
    total: int
    succeeded: int
    failed: int
