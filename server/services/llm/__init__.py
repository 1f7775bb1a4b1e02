"""Chat LLM access for question generation and grading. Optional; stubs run without a key."""

from server.services.llm.provider import (
    FakeProvider,
    LLMProvider,
    OpenAICompatibleProvider,
    get_llm_provider,
)

__all__ = [
    "FakeProvider",
    "LLMProvider",
    "OpenAICompatibleProvider",
    "get_llm_provider",
]
