"""Chat LLM provider interface. OpenAI-compatible HTTP API; fake for tests."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from rag.embedding_client import is_configured_key
from server.errors import ProviderError

logger = logging.getLogger("studyforge.llm")

Message = Dict[str, str]  # {"role": "system" | "user" | "assistant", "content": ...}


class LLMProvider(ABC):
    """Abstract chat completion provider."""

    name: str = "base"

    @abstractmethod
    async def chat(
        self,
        messages: List[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        """Return the assistant message content or raise ProviderError."""
        ...


class OpenAICompatibleProvider(LLMProvider):
    """/chat/completions over httpx. No retries."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout_s: float = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.name = "openai"
        self._transport = transport

    async def chat(
        self,
        messages: List[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException as e:
            raise ProviderError(kind="timeout", message="LLM request timed out", details={"error": str(e)})
        except httpx.ConnectError as e:
            raise ProviderError(kind="unavailable", message="Cannot connect to LLM API", details={"error": str(e)})
        except httpx.HTTPError as e:
            logger.exception("LLM request failed")
            raise ProviderError(kind="http_error", message="LLM request failed", details={"error": str(e)})
        if resp.status_code != 200:
            raise ProviderError(
                kind="http_error",
                message=f"LLM API error {resp.status_code}",
                details={"status": resp.status_code, "body": resp.text[:200]},
            )
        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(kind="invalid_response", message="Malformed LLM response", details={"error": str(e)})
        return content or ""


class FakeProvider(LLMProvider):
    """Test double: returns canned replies in order (last one repeats)."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[ProviderError] = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls: List[List[Message]] = []
        self.name = "fake"

    async def chat(self, messages: List[Message], **kwargs) -> str:
        self.calls.append(messages)
        if self.error:
            raise self.error
        if not self.replies:
            return "{}"
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def get_llm_provider(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[LLMProvider]:
    """Configured provider, or None when no usable API key is set."""
    key = getattr(settings, "llm_api_key", "")
    if not is_configured_key(key):
        return None
    return OpenAICompatibleProvider(
        api_key=key,
        base_url=getattr(settings, "llm_base_url", "https://api.openai.com/v1"),
        model=getattr(settings, "llm_model", "gpt-4o-mini"),
        timeout_s=getattr(settings, "llm_timeout_s", 60),
        transport=transport,
    )
