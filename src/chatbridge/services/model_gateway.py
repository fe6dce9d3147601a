import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Sequence

import httpx

from ..errors import (
    ConfigurationError,
    ModelAPIError,
    ModelProtocolError,
    ModelTransportError,
    RateLimitExceededError,
)
from ..models import WEB_SEARCH_TOOL_NAME, Message, ModelResponse, ToolDefinition
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"
RATE_LIMIT_FALLBACK_STEP_SECONDS = 30


def web_search_tool(max_uses: int) -> Dict[str, Any]:
    """Provider-hosted web search tool definition."""
    return {
        "type": "web_search_20250305",
        "name": WEB_SEARCH_TOOL_NAME,
        "max_uses": max_uses,
    }


def rate_limit_wait_seconds(retry_after: str | None, attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based).

    Uses the server's retry-after (seconds, fraction dropped) when it parses,
    otherwise 30s, 60s, 90s, ... for successive retries.
    """
    if retry_after:
        try:
            return float(max(0, int(float(retry_after.strip()))))
        except (ValueError, OverflowError):
            logger.debug("Unparsable retry-after header: %r", retry_after)
    return float(attempt * RATE_LIMIT_FALLBACK_STEP_SECONDS)


class ModelGateway:
    """Sends message lists to the Anthropic Messages API with rate-limit retry."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    def _api_key(self) -> str:
        key = (self._settings.anthropic_api_key or "").strip()
        if not key:
            raise ConfigurationError("ANTHROPIC_API_KEY environment variable is required")
        return key

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.anthropic_base_url,
                timeout=self._settings.anthropic_timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _build_payload(
        self, messages: Sequence[Message], tools: Sequence[ToolDefinition]
    ) -> Dict[str, Any]:
        settings = self._settings
        payload: Dict[str, Any] = {
            "model": settings.event_handler_model,
            "max_tokens": settings.max_tokens,
            "messages": list(messages),
            "tools": [web_search_tool(settings.web_search_max_uses)]
            + [t.to_dict() for t in tools],
        }
        system_prompt = settings.load_system_prompt()
        if system_prompt:
            payload["system"] = system_prompt
        return payload

    async def call(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        retries: int | None = None,
    ) -> ModelResponse:
        """Send one request, retrying on 429 up to ``retries`` times.

        Raises:
            ConfigurationError: no API key configured (checked before any request).
            RateLimitExceededError: still rate limited after the last retry.
            ModelAPIError: any other non-success status.
            ModelTransportError: the endpoint could not be reached.
            ModelProtocolError: the body is not a valid Messages response.
        """
        api_key = self._api_key()
        max_retries = self._settings.anthropic_max_retries if retries is None else retries
        headers = {
            "content-type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": self._settings.anthropic_version,
            "anthropic-beta": self._settings.anthropic_beta,
        }
        payload = self._build_payload(messages, tools)
        client = self._get_client()

        attempt = 0
        while True:
            try:
                response = await client.post(MESSAGES_PATH, headers=headers, json=payload)
            except httpx.RequestError as e:
                logger.error("Model request failed: %s", e)
                raise ModelTransportError(f"Model request failed: {e}") from e
            if response.status_code != 429:
                break
            retries_left = max_retries - attempt
            if retries_left <= 0:
                logger.error("Rate limited and out of retries (%d attempts)", attempt + 1)
                raise RateLimitExceededError(response.status_code, response.text)
            attempt += 1
            wait = rate_limit_wait_seconds(response.headers.get("retry-after"), attempt)
            logger.warning(
                "Rate limited. Waiting %ss before retry (%d retries left)...",
                wait,
                retries_left,
            )
            await self._sleep(wait)

        if not response.is_success:
            logger.error("Model API error: %s %s", response.status_code, response.text[:500])
            raise ModelAPIError(response.status_code, response.text)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ModelProtocolError(f"Model response is not JSON: {e}") from e
        return ModelResponse.from_dict(data)
