"""Prompt templates for single-job and batched job matching."""

from typing import List, Sequence

from .models import CandidateProfile, MatchJob

PROFICIENCY_LABELS = ["Beginner", "Elementary", "Intermediate", "Advanced", "Expert"]

_SCORING_RULES = """Scoring rules (be strict and realistic):

Years of experience matter most:
- Missing 1-2 required years: deduct 15-20 points
- Missing 3+ required years: deduct 25-35 points
- An unmet experience requirement caps the score at 50

Seniority mismatches:
- Junior candidate for a senior role: at most 45
- Mid-level candidate for a staff or principal role: at most 55
- Entry-level candidate for a role asking 5+ years: at most 35

Score bands:
- 85-100: meets every requirement, including experience
- 70-84: meets most requirements, experience within 1-2 years
- 55-69: relevant skills with a noticeable experience gap
- 40-54: significant gaps in experience or key skills
- below 40: major deficiencies

Do not inflate scores."""

SINGLE_MATCH_SYSTEM_PROMPT = f"""You are an expert job matching assistant. Compare one job posting against a candidate profile.

For the job:
1. Identify its key requirements
2. Match them against the candidate's profile
3. Give a match score from 0 to 100
4. Explain the score with specific reasons
5. List matched and missing skills
6. Give actionable recommendations

{_SCORING_RULES}"""

BULK_MATCH_SYSTEM_PROMPT = f"""You are an expert job matching assistant. Compare SEVERAL job postings, each with a numeric ID, against one candidate profile.

For EACH job:
1. Identify its key requirements
2. Match them against the candidate's profile
3. Give a match score from 0 to 100
4. Explain the score with specific reasons
5. List matched and missing skills
6. Give actionable recommendations

{_SCORING_RULES}

Return one result per job inside a "results" array and use the exact job IDs you were given."""


def _format_skills(profile: CandidateProfile) -> str:
    if not profile.skills:
        return "No skills listed"
    lines = []
    for s in profile.skills:
        level = PROFICIENCY_LABELS[min(max(s.proficiency, 1), 5) - 1]
        detail = f"{level}, {s.category}" if s.category else level
        lines.append(f"- {s.name} ({detail})")
    return "\n".join(lines)


def _format_experience(profile: CandidateProfile) -> str:
    if not profile.experience:
        return "No experience listed"
    lines = []
    for e in profile.experience:
        line = f"- {e.title} at {e.company}"
        if e.description:
            line += f": {e.description}"
        lines.append(line)
    return "\n".join(lines)


def _format_profile(profile: CandidateProfile) -> str:
    return (
        "## Candidate Profile\n\n"
        f"**Summary:**\n{profile.summary or 'No summary provided'}\n\n"
        f"**Skills:**\n{_format_skills(profile)}\n\n"
        f"**Experience:**\n{_format_experience(profile)}"
    )


def build_single_match_prompt(
    title: str,
    description: str,
    requirements: List[str],
    profile: CandidateProfile,
) -> str:
    if requirements:
        req_text = "\n".join(f"- {r}" for r in requirements)
    else:
        req_text = "No specific requirements listed"

    return (
        "## Job Details\n\n"
        f"**Title:** {title}\n\n"
        f"**Description:**\n{description or 'No description provided'}\n\n"
        f"**Requirements:**\n{req_text}\n\n"
        f"{_format_profile(profile)}\n\n"
        "Analyze how well this candidate matches the job and give your assessment."
    )


def build_bulk_match_prompt(jobs: Sequence[MatchJob], profile: CandidateProfile) -> str:
    job_blocks = []
    for job in jobs:
        reqs = ", ".join(job.requirements) if job.requirements else "None specified"
        job_blocks.append(
            f"### Job ID: {job.id}\n"
            f"**Title:** {job.title}\n"
            f"**Description:** {job.description or 'No description provided'}\n"
            f"**Requirements:** {reqs}\n"
        )

    return (
        f"{_format_profile(profile)}\n\n---\n\n"
        "## Jobs to Analyze\n\n"
        + "\n".join(job_blocks)
        + "\n---\n\n"
        'Respond with a JSON object of the form {"results": [{"jobId": <number>, '
        '"score": <0-100>, "reasons": [...], "matchedSkills": [...], '
        '"missingSkills": [...], "recommendations": [...]}]}.'
    )
