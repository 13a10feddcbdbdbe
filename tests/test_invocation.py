"""Tests for the model invocation service."""

import asyncio
import json

import httpx
import pytest

from plan_graph_engine.config import Settings
from plan_graph_engine.errors import ProviderError, RunCancelled
from plan_graph_engine.invocation import ModelInvocationService, ToolDefinition

TOOL = ToolDefinition(name="node_write-solution", description="Write solution section")


def completion(tool_name="node_write-solution", arguments='{"notes": "done"}'):
    return {
        "model": "provider/model-1",
        "choices": [
            {
                "message": {
                    "content": "",
                    "tool_calls": [
                        {"type": "function", "function": {"name": tool_name, "arguments": arguments}}
                    ],
                }
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }


def make_service(handler, attempts=3):
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)

    service = ModelInvocationService(
        api_key="test-key",
        base_url="https://provider.test/api/v1/",
        retry_attempts=attempts,
        retry_backoff_ms=100,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=sleep,
    )
    return service, sleeps


async def invoke(service, **kwargs):
    return await service.invoke(
        model="provider/model-1", system="system", prompt="prompt", tool=TOOL, **kwargs
    )


class TestModelInvocationService:
    """Tests for request building, parsing and retries."""

    @pytest.mark.asyncio
    async def test_parses_tool_calls(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion())

        service, _ = make_service(handler)
        result = await invoke(service, temperature=0.4, max_output_tokens=512)

        assert result.model == "provider/model-1"
        assert result.tool_calls[0].name == "node_write-solution"
        assert result.tool_calls[0].arguments == {"notes": "done"}
        assert result.usage["prompt_tokens"] == 10

        sent = json.loads(requests[0].content)
        assert str(requests[0].url) == "https://provider.test/api/v1/chat/completions"
        assert sent["tool_choice"] == "required"
        assert sent["tools"][0]["function"]["name"] == TOOL.name
        assert sent["temperature"] == 0.4
        assert sent["max_tokens"] == 512
        assert sent["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_unparseable_arguments_are_kept_raw(self):
        service, _ = make_service(
            lambda request: httpx.Response(200, json=completion(arguments="not json"))
        )

        result = await invoke(service)
        assert result.tool_calls[0].arguments == {"raw": "not json"}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        responses = [
            httpx.Response(503, json={"error": {"message": "overloaded"}}),
            httpx.Response(429, json={"error": {"message": "slow down"}}),
            httpx.Response(200, json=completion()),
        ]
        service, sleeps = make_service(lambda request: responses.pop(0))

        result = await invoke(service)

        assert result.tool_calls
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_client_error_is_raised_immediately(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "Bad Request: unknown model"}})

        service, sleeps = make_service(handler)

        with pytest.raises(ProviderError) as exc_info:
            await invoke(service)

        assert exc_info.value.status == 400
        assert exc_info.value.is_client_error
        assert "unknown model" in exc_info.value.message
        assert len(calls) == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        service, sleeps = make_service(lambda request: httpx.Response(500, text="boom"), attempts=2)

        with pytest.raises(ProviderError) as exc_info:
            await invoke(service)

        assert exc_info.value.status == 500
        assert not exc_info.value.is_client_error
        assert len(sleeps) == 1

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        service, _ = make_service(handler, attempts=2)

        with pytest.raises(ProviderError) as exc_info:
            await invoke(service)

        assert exc_info.value.status is None
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_no_attempts_raise_provider_error(self):
        calls = []
        service, _ = make_service(lambda request: calls.append(request))
        service.retry_attempts = 0

        with pytest.raises(ProviderError) as exc_info:
            await invoke(service)

        assert exc_info.value.status is None
        assert "provider/model-1" in exc_info.value.message
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancel_event_stops_before_request(self):
        calls = []
        service, _ = make_service(lambda request: calls.append(request))
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(RunCancelled):
            await invoke(service, cancel_event=cancel)
        assert calls == []

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        service, _ = make_service(lambda request: httpx.Response(200, json=completion()))

        await service.close()
        assert service.client.is_closed


class TestFromSettings:
    """Tests for settings-driven construction."""

    def test_uses_settings(self):
        settings = Settings(
            openrouter_api_key="settings-key",
            openrouter_base_url="https://router.test/v1",
            retry_attempts=5,
            retry_backoff_ms=250,
        )

        service = ModelInvocationService.from_settings(settings)

        assert service.api_key == "settings-key"
        assert service.base_url == "https://router.test/v1"
        assert service.retry_attempts == 5
        assert service.configured

    def test_explicit_key_wins(self):
        settings = Settings(openrouter_api_key=None)

        service = ModelInvocationService.from_settings(settings, api_key="request-key")

        assert service.api_key == "request-key"
        assert service.client.headers["Authorization"] == "Bearer request-key"

    def test_unconfigured_without_key(self):
        service = ModelInvocationService.from_settings(Settings(openrouter_api_key=None))

        assert not service.configured
