"""Tests for the chat LLM provider."""

import asyncio
import json
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
import pytest

from server.config import Settings
from server.errors import ProviderError
from server.services.llm import FakeProvider, OpenAICompatibleProvider, get_llm_provider

MESSAGES = [{"role": "user", "content": "hi"}]


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def test_disabled_without_key():
    """No key configured means no provider."""
    assert get_llm_provider(Settings(llm_api_key="")) is None
    assert get_llm_provider(Settings(llm_api_key="sk-your-openai-key")) is None


def test_provider_from_settings():
    provider = get_llm_provider(Settings(llm_api_key="sk-live", llm_model="gpt-test", llm_base_url="http://llm/v1/"))
    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.model == "gpt-test"
    assert provider.base_url == "http://llm/v1"


def test_chat_posts_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return _completion('{"ok": true}')

    provider = OpenAICompatibleProvider(api_key="sk-x", base_url="http://llm/v1", transport=httpx.MockTransport(handler))
    out = asyncio.run(provider.chat(MESSAGES, temperature=0.3, json_mode=True))
    assert out == '{"ok": true}'
    assert seen["url"] == "http://llm/v1/chat/completions"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["temperature"] == 0.3
    assert seen["body"]["messages"] == MESSAGES


def test_chat_without_json_mode_has_no_response_format():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return _completion("plain")

    provider = OpenAICompatibleProvider(api_key="sk-x", transport=httpx.MockTransport(handler))
    asyncio.run(provider.chat(MESSAGES))
    assert "response_format" not in seen["body"]


def test_non_200_is_http_error():
    provider = OpenAICompatibleProvider(
        api_key="sk-x", transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down")),
    )
    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.chat(MESSAGES))
    assert exc.value.kind == "http_error"
    assert exc.value.details["status"] == 429


def test_malformed_response():
    provider = OpenAICompatibleProvider(
        api_key="sk-x", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})),
    )
    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.chat(MESSAGES))
    assert exc.value.kind == "invalid_response"


def test_connect_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    provider = OpenAICompatibleProvider(api_key="sk-x", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as exc:
        asyncio.run(provider.chat(MESSAGES))
    assert exc.value.kind == "unavailable"


def test_fake_provider_replies_in_order():
    fake = FakeProvider(replies=["one", "two"])
    assert asyncio.run(fake.chat(MESSAGES)) == "one"
    assert asyncio.run(fake.chat(MESSAGES)) == "two"
    assert asyncio.run(fake.chat(MESSAGES)) == "two"
    assert len(fake.calls) == 3


def test_fake_provider_error():
    fake = FakeProvider(error=ProviderError(kind="unavailable", message="down"))
    with pytest.raises(ProviderError):
        asyncio.run(fake.chat(MESSAGES))
    assert str(fake.error) == "unavailable: down"
