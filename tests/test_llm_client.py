"""Tests for the Groq / Ollama completion client."""
import json

import httpx
import pytest

from app.services.llm_client import LLMClient, LLMError


def _transport(handler):
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_groq_sends_context_as_system_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Ship it.  "}}]})

    client = LLMClient(groq_api_key="gsk-test", transport=_transport(handler))
    text = await client.complete("Critique this", context="Idea: desks", max_tokens=50)

    assert text == "Ship it."
    assert client.backend == "groq"
    assert seen["url"].endswith("/openai/v1/chat/completions")
    assert seen["auth"] == "Bearer gsk-test"
    assert seen["body"]["max_tokens"] == 50
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "Idea: desks"},
        {"role": "user", "content": "Critique this"},
    ]


@pytest.mark.asyncio
async def test_ollama_prepends_context_to_prompt():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "Looks promising."})

    client = LLMClient(groq_api_key="", transport=_transport(handler))
    assert await client.complete("Analyze", context="Idea: meals") == "Looks promising."
    assert client.backend == "ollama"
    assert seen["path"] == "/api/generate"
    assert seen["body"]["prompt"] == "Idea: meals\n\nAnalyze"
    assert seen["body"]["stream"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="boom"),
    httpx.Response(200, json={"response": "   "}),
    httpx.Response(200, text="not json"),
])
async def test_bad_responses_raise_llm_error(response):
    client = LLMClient(groq_api_key="", transport=_transport(lambda request: response))
    with pytest.raises(LLMError):
        await client.complete("Analyze")


@pytest.mark.asyncio
async def test_connection_failure_raises_llm_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = LLMClient(groq_api_key="", transport=_transport(handler))
    with pytest.raises(LLMError):
        await client.complete("Analyze")
    assert await client.check_health() is False


@pytest.mark.asyncio
async def test_health_check_hits_backend_listing():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": []})

    client = LLMClient(groq_api_key="", transport=_transport(handler))
    assert await client.check_health() is True
