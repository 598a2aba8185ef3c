"""
Tests for description normalization, requirement extraction and prompts.
"""

import pytest

from jobmatcher.executor import build_match_jobs
from jobmatcher.models import MatchJob
from jobmatcher.normalize import chunk_list, extract_requirements, html_to_text, normalize_text
from jobmatcher.prompts import build_bulk_match_prompt, build_single_match_prompt


class TestNormalizeText:
    """Test basic text normalization."""

    def test_collapses_whitespace_and_case(self):
        assert normalize_text("  Senior   Python\tEngineer ") == "senior python engineer"


class TestHtmlToText:
    """Test HTML description conversion."""

    def test_empty(self):
        assert html_to_text(None) == ""
        assert html_to_text("") == ""

    def test_plain_text_passes_through(self):
        assert html_to_text("Build APIs") == "Build APIs"

    def test_list_items_become_bullets(self):
        text = html_to_text("<p>About us</p><ul><li>5+ years Python</li><li>SQL</li></ul>")

        assert "About us" in text
        assert "• 5+ years Python" in text
        assert "• SQL" in text
        assert "<" not in text

    def test_line_breaks(self):
        assert html_to_text("first<br>second") == "first\nsecond"


class TestExtractRequirements:
    """Test bullet-line extraction."""

    def test_bullet_styles(self):
        description = "Intro line\n- Python\n* Docker\n• Kubernetes\n1. SQL\n2) Go"
        assert extract_requirements(description) == ["Python", "Docker", "Kubernetes", "SQL", "Go"]

    def test_deduplicates_case_insensitively(self):
        assert extract_requirements("- Python\n- python\n-  PYTHON ") == ["Python"]

    def test_no_bullets(self):
        assert extract_requirements("Just a paragraph.") == []
        assert extract_requirements(None) == []


class TestChunkList:
    """Test batching helper."""

    def test_chunks(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert chunk_list([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_list([1], 0)


class TestBuildMatchJobs:
    """Test turning stored jobs into match inputs."""

    def test_request_order_and_requirements(self):
        jobs_by_id = {
            2: {"id": 2, "title": "Data Engineer", "description": "<ul><li>Spark</li></ul>"},
            1: {"id": 1, "title": "Backend Engineer", "description": None},
        }

        jobs = build_match_jobs(jobs_by_id, [1, 2, 3])

        assert [job.id for job in jobs] == [1, 2]
        assert jobs[0].description == ""
        assert jobs[0].requirements == []
        assert jobs[1].requirements == ["Spark"]
        assert "<li>" not in jobs[1].description


class TestPrompts:
    """Test prompt construction."""

    def test_single_prompt(self, candidate_profile):
        prompt = build_single_match_prompt("Backend Engineer", "Build APIs", ["Python"], candidate_profile)

        assert "**Title:** Backend Engineer" in prompt
        assert "- Python" in prompt
        assert "Python (Expert, Languages)" in prompt
        assert "Senior Engineer at Acme" in prompt

    def test_single_prompt_without_requirements(self, candidate_profile):
        prompt = build_single_match_prompt("Role", "", [], candidate_profile)

        assert "No specific requirements listed" in prompt
        assert "No description provided" in prompt

    def test_bulk_prompt_lists_every_job(self, candidate_profile):
        jobs = [MatchJob(id=11, title="A"), MatchJob(id=12, title="B", requirements=["Go", "gRPC"])]

        prompt = build_bulk_match_prompt(jobs, candidate_profile)

        assert "### Job ID: 11" in prompt
        assert "### Job ID: 12" in prompt
        assert "**Requirements:** Go, gRPC" in prompt
        assert '"jobId"' in prompt
