"""
AI provider boundary.

The engine only depends on ``StructuredProvider``: an object with an async
``generate_structured`` method returning data validated against a pydantic
schema. ``HTTPStructuredProvider`` implements it for OpenAI-compatible chat
completion endpoints.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Type

import requests
from pydantic import BaseModel, ValidationError

from .errors import ErrorKind, MatchError, classify_error
from .logger import get_logger

logger = get_logger()


@dataclass
class GenerationResult:
    data: Any


class StructuredProvider(Protocol):
    async def generate_structured(
        self,
        model: str,
        schema: Type[BaseModel],
        system_prompt: str,
        user_prompt: str,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        ...


class HTTPStructuredProvider:
    """
    Structured generation over an OpenAI-compatible ``/chat/completions`` API.

    The blocking ``requests`` call runs in a worker thread so it can be
    bounded by ``with_timeout`` on the event loop.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_payload(
        self,
        model: str,
        schema: Type[BaseModel],
        system_prompt: str,
        user_prompt: str,
        provider_options: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        system = (
            f"{system_prompt}\n\nRespond with ONLY a JSON object matching this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema(by_alias=True))}"
        )
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        if provider_options:
            payload.update(provider_options)
        return payload

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        try:
            resp = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            logger.warning("Provider request failed", url=url, status=status)
            raise MatchError(f"Provider request failed (status {status})", kind=classify_error(e), cause=e) from e
        except requests.exceptions.Timeout as e:
            raise MatchError("Provider request timed out", kind=ErrorKind.TIMEOUT, cause=e) from e
        except requests.exceptions.ConnectionError as e:
            raise MatchError(f"Provider connection error: {e}", kind=ErrorKind.NETWORK, cause=e) from e

        try:
            return resp.json()
        except ValueError as e:
            raise MatchError("Provider returned a non-JSON body", kind=ErrorKind.JSON_PARSE, cause=e) from e

    async def generate_structured(
        self,
        model: str,
        schema: Type[BaseModel],
        system_prompt: str,
        user_prompt: str,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        """
        Ask the provider for a JSON object and validate it against ``schema``.

        Raises:
            MatchError: classified as no_object, json_parse, validation or
                whatever the transport failure maps to
        """
        logger.record_provider_call()
        payload = self._build_payload(model, schema, system_prompt, user_prompt, provider_options)
        body = await asyncio.to_thread(self._post, payload)

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise MatchError(
                "No object generated: provider response had no message content",
                kind=ErrorKind.NO_OBJECT,
            )

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise MatchError(f"Failed to parse provider JSON: {e}", kind=ErrorKind.JSON_PARSE, cause=e) from e

        try:
            data = schema.model_validate(raw)
        except ValidationError as e:
            raise MatchError(
                f"Provider output failed schema validation: {e.error_count()} error(s)",
                kind=ErrorKind.VALIDATION,
                cause=e,
            ) from e

        return GenerationResult(data=data)


def create_provider(settings: Dict[str, Any], timeout: float = 120.0) -> HTTPStructuredProvider:
    """Build the HTTP provider from ``env.provider_settings()`` output."""
    return HTTPStructuredProvider(
        base_url=settings["base_url"],
        api_key=settings.get("api_key"),
        timeout=timeout,
    )
