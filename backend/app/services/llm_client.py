"""
OpenRouter upstream client.

Uses OpenRouter's OpenAI-compatible /chat/completions API via httpx and
translates between that and the proxy's Gemini-style wire format:

  request:  contents[].parts[].text  → one user message
            routed instruction (+ caller systemInstruction) → system message
  response: choices[0].message.content → candidates[0].content.parts[0].text
            usage.prompt_tokens / completion_tokens
                → usage.promptTokenCount / candidatesTokenCount

Configuration:
  OPENROUTER_API_KEY — server-side only (never exposed to clients)

No retries here; retry policy belongs to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import UpstreamError, UpstreamResponseInvalid, UpstreamUnavailable
from app.schemas.proxy import GenerateRequest, GenerateResponse
from app.services.model_router import Route

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
MAX_TOKENS_CEILING = 4000

_STATUS_MESSAGES = {
    401: "Upstream authorization failed. Check the OpenRouter API key and account balance.",
    402: "Insufficient funds on the upstream account. Top up the OpenRouter balance.",
    429: "Upstream rate limit exceeded. Please try again later.",
}
_SERVER_ERROR_MESSAGE = "Upstream internal server error. Please try again later."
_GENERIC_ERROR_MESSAGE = "Upstream API error"


@dataclass(frozen=True, slots=True)
class UpstreamResult:
    """Normalized upstream answer.

    has_usage is False when the provider sent no usage block; the usage
    recorder skips those calls.
    """

    text: str
    prompt_tokens: int
    completion_tokens: int
    has_usage: bool

    def to_response(self) -> GenerateResponse:
        return GenerateResponse.from_text(self.text, self.prompt_tokens, self.completion_tokens)


def build_payload(request: GenerateRequest, route: Route) -> dict[str, Any]:
    """Translate a validated proxy request into a chat-completions body."""
    system_content = route.system_instruction
    if request.system_instruction:
        system_content = f"{system_content}\n\n{request.system_instruction}"

    config = request.generation_config
    temperature = DEFAULT_TEMPERATURE
    max_tokens = MAX_TOKENS_CEILING
    if config is not None:
        if config.temperature is not None:
            temperature = config.temperature
        if config.max_tokens is not None:
            max_tokens = min(config.max_tokens, MAX_TOKENS_CEILING)

    return {
        "model": route.model,
        "messages": [
            {"role": "system", "content": system_content},
            {"role": "user", "content": request.flattened_text()},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def error_message_for(status_code: int) -> str:
    if status_code in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status_code]
    if status_code >= 500:
        return _SERVER_ERROR_MESSAGE
    return _GENERIC_ERROR_MESSAGE


def parse_completion(data: Any) -> UpstreamResult:
    """
    Pull text and usage out of a chat-completions body.

    Raises:
        UpstreamResponseInvalid: If the body is not a JSON object.
    """
    if not isinstance(data, dict):
        raise UpstreamResponseInvalid(details={"error": "upstream body is not a JSON object"})

    text = ""
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        if isinstance(message, dict):
            text = message.get("content") or ""

    usage = data.get("usage")
    if isinstance(usage, dict):
        return UpstreamResult(
            text=text,
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            has_usage=True,
        )
    return UpstreamResult(text=text, prompt_tokens=0, completion_tokens=0, has_usage=False)


class UpstreamClient:
    """
    Thin async wrapper around POST {base_url}/chat/completions.

    Pass http_client to share a connection pool (or a MockTransport in
    tests); otherwise a client is opened per call.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        *,
        timeout: float = 30.0,
        referer: str | None = None,
        title: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._timeout = timeout
        self._referer = referer
        self._title = title
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(
                self._url, json=payload, headers=self._headers(), timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._url, json=payload, headers=self._headers())

    async def complete(self, request: GenerateRequest, route: Route) -> UpstreamResult:
        """
        Call the upstream model.

        Raises:
            UpstreamUnavailable:     Transport failure, timeout, or no API key.
            UpstreamError:           Upstream returned non-2xx (status passed through).
            UpstreamResponseInvalid: 2xx with a body that is not a JSON object.
        """
        if not self._api_key:
            logger.error("OPENROUTER_API_KEY is not configured")
            raise UpstreamUnavailable(details={"error": "upstream API key is not configured"})

        payload = build_payload(request, route)

        try:
            response = await self._post(payload)
        except httpx.TransportError as exc:
            logger.error("OpenRouter transport error: %s", exc)
            raise UpstreamUnavailable(details={"error": type(exc).__name__}) from exc

        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": "Could not parse upstream error body"}
            logger.error(
                "OpenRouter API error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(
                error_message_for(response.status_code),
                details=error_data if isinstance(error_data, dict) else {"upstream": error_data},
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Failed to parse OpenRouter response: %s", exc)
            raise UpstreamResponseInvalid(details={"error": str(exc)}) from exc

        return parse_completion(data)
