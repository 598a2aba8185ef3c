"""
Tests for the HTTP structured-output provider.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from jobmatcher.errors import ErrorKind, MatchError
from jobmatcher.logger import get_logger
from jobmatcher.models import BulkMatchResponse, MatchResult
from jobmatcher.provider import HTTPStructuredProvider, create_provider


def _response(content=None, status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        http_response = requests.Response()
        http_response.status_code = status
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status} error", response=http_response
        )
    else:
        resp.raise_for_status.return_value = None
    if body is None:
        body = {"choices": [{"message": {"content": content}}]}
    resp.json.return_value = body
    return resp


@pytest.fixture
def provider():
    return HTTPStructuredProvider("https://llm.example.com/v1/", api_key="sk-test", timeout=10)


async def _generate(provider, schema=MatchResult, options=None):
    return await provider.generate_structured(
        model="gpt-4o-mini",
        schema=schema,
        system_prompt="Score the job.",
        user_prompt="Job details",
        provider_options=options,
    )


class TestGenerateStructured:
    """Test request building and response handling."""

    @pytest.mark.asyncio
    async def test_valid_response(self, provider):
        content = json.dumps({"score": 72, "reasons": ["Good fit"], "matchedSkills": ["Python"]})

        with patch("jobmatcher.provider.requests.post", return_value=_response(content)) as mock_post:
            result = await _generate(provider, options={"reasoning_effort": "low"})

        assert isinstance(result.data, MatchResult)
        assert result.data.score == 72
        assert result.data.matched_skills == ["Python"]

        args, kwargs = mock_post.call_args
        assert args[0] == "https://llm.example.com/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["timeout"] == 10
        payload = kwargs["json"]
        assert payload["model"] == "gpt-4o-mini"
        assert payload["reasoning_effort"] == "low"
        assert payload["response_format"] == {"type": "json_object"}
        assert "matchedSkills" in payload["messages"][0]["content"]
        assert get_logger().get_metrics()["provider_calls"] == 1

    @pytest.mark.asyncio
    async def test_bulk_schema(self, provider):
        content = json.dumps({"results": [{"jobId": 3, "score": 55}]})

        with patch("jobmatcher.provider.requests.post", return_value=_response(content)):
            result = await _generate(provider, schema=BulkMatchResponse)

        assert result.data.results[0].job_id == 3

    @pytest.mark.asyncio
    async def test_empty_content_is_no_object(self, provider):
        with patch("jobmatcher.provider.requests.post", return_value=_response("")):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.NO_OBJECT

    @pytest.mark.asyncio
    async def test_missing_choices_is_no_object(self, provider):
        with patch("jobmatcher.provider.requests.post", return_value=_response(body={"error": "?"})):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.NO_OBJECT

    @pytest.mark.asyncio
    async def test_malformed_json_is_json_parse(self, provider):
        with patch("jobmatcher.provider.requests.post", return_value=_response("{score: ")):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.JSON_PARSE
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_validation(self, provider):
        with patch("jobmatcher.provider.requests.post", return_value=_response(json.dumps({"score": 180}))):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [
        (429, ErrorKind.RATE_LIMIT),
        (503, ErrorKind.RATE_LIMIT),
        (400, ErrorKind.UNKNOWN),
    ])
    async def test_http_errors(self, provider, status, kind):
        with patch("jobmatcher.provider.requests.post", return_value=_response(status=status)):
            with pytest.raises(MatchError, match=f"status {status}") as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == kind

    @pytest.mark.asyncio
    async def test_transport_errors(self, provider):
        with patch("jobmatcher.provider.requests.post", side_effect=requests.exceptions.ReadTimeout("slow")):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.TIMEOUT

        with patch("jobmatcher.provider.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_non_json_body(self, provider):
        resp = _response("ignored")
        resp.json.side_effect = ValueError("not json")

        with patch("jobmatcher.provider.requests.post", return_value=resp):
            with pytest.raises(MatchError) as exc_info:
                await _generate(provider)
        assert exc_info.value.kind == ErrorKind.JSON_PARSE


class TestCreateProvider:
    """Test provider construction from settings."""

    def test_from_settings(self):
        provider = create_provider({"base_url": "http://localhost:8080/v1", "api_key": None}, timeout=30)

        assert provider.base_url == "http://localhost:8080/v1"
        assert provider.timeout == 30
        assert "Authorization" not in provider._headers()
