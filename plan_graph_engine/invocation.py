"""
Model invocation service.

Calls an OpenAI-compatible chat completions endpoint (OpenRouter by default)
with a single required tool. Transport failures, 429 and 5xx responses are
retried with a linear backoff; any other 4xx is raised at once as a client
ProviderError so the controller can fall back to direct execution.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import Settings
from .errors import ProviderError, RunCancelled

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {408, 409, 429}


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "rationale": {"type": "string"},
                "notes": {"type": "string"},
            },
        }
    )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InvocationResult:
    model: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    text: str = ""
    usage: Dict[str, Any] = field(default_factory=dict)


class ModelInvocationService:
    """Thin async client for tool-calling model requests."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_backoff_ms: int = 500,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_ms = retry_backoff_ms
        self._sleep = sleep
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, api_key: Optional[str] = None
    ) -> "ModelInvocationService":
        return cls(
            api_key=api_key or settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout=settings.request_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff_ms=settings.retry_backoff_ms,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def invoke(
        self,
        model: str,
        system: str,
        prompt: str,
        tool: ToolDefinition,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> InvocationResult:
        """Ask the model to call one tool.

        Raises:
            ProviderError: On a non-retryable provider response, or once
                retries are exhausted (status None for transport failures)
            RunCancelled: If cancel_event is set between attempts
        """
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "tools": [tool.to_payload()],
            "tool_choice": "required",
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }

        last_error: Optional[ProviderError] = None
        for attempt in range(1, self.retry_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled("Run cancelled")

            try:
                response = await self.client.post(
                    f"{self.base_url}/chat/completions", json=payload
                )
            except httpx.TransportError as e:
                last_error = ProviderError(f"Model request failed: {e}")
                logger.warning(
                    f"Model request attempt {attempt}/{self.retry_attempts} failed: {e}"
                )
            else:
                if response.status_code < 400:
                    return self._parse(model, response.json())

                message = self._error_message(response)
                last_error = ProviderError(message, status=response.status_code)
                retryable = (
                    response.status_code >= 500
                    or response.status_code in RETRYABLE_STATUSES
                )
                if not retryable:
                    raise last_error
                logger.warning(
                    f"Model request attempt {attempt}/{self.retry_attempts} "
                    f"returned {response.status_code}: {message}"
                )

            if attempt < self.retry_attempts:
                await self._sleep(self.retry_backoff_ms * attempt / 1000)

        if last_error is None:
            raise ProviderError(f"No model request attempted for {model}")
        raise last_error

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.reason_phrase or f"HTTP {response.status_code}"

    def _parse(self, model: str, body: Dict[str, Any]) -> InvocationResult:
        choices = body.get("choices") or []
        message = choices[0].get("message", {}) if choices else {}

        tool_calls = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            raw_arguments = function.get("arguments") or "{}"
            try:
                arguments = (
                    json.loads(raw_arguments)
                    if isinstance(raw_arguments, str)
                    else dict(raw_arguments)
                )
            except ValueError:
                arguments = {"raw": raw_arguments}
            tool_calls.append(ToolCall(name=function.get("name", ""), arguments=arguments))

        return InvocationResult(
            model=body.get("model") or model,
            tool_calls=tool_calls,
            text=message.get("content") or "",
            usage=body.get("usage") or {},
        )
