"""Configuration for the StudyForge services."""

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, current: int) -> int:
    v = os.environ.get(name)
    if v is None:
        return current
    try:
        return int(v)
    except ValueError:
        return current


@dataclass
class Settings:
    """
    Database, provider and import settings.

    Every field is overridable at construction for testing; unset fields
    are read from the environment in __post_init__.
    """
    database_url: Optional[str] = None

    # Embeddings (OpenAI-compatible). No key -> deterministic hash embeddings.
    embeddings_base_url: Optional[str] = None
    embeddings_api_key: Optional[str] = None
    embeddings_model: Optional[str] = None
    embeddings_dimensions: int = 1536
    embeddings_batch_size: int = 100

    # Chat LLM (OpenAI-compatible). No key -> stub questions + heuristic grading.
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None
    llm_timeout_s: int = 60

    max_file_size_mb: int = 20
    top_k_text: int = 5
    top_k_code: int = 3

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./studyforge.db")

        if self.embeddings_base_url is None:
            self.embeddings_base_url = os.environ.get("EMBEDDINGS_BASE_URL", "https://api.openai.com/v1")
        if self.embeddings_api_key is None:
            self.embeddings_api_key = os.environ.get("EMBEDDINGS_API_KEY", "")
        if self.embeddings_model is None:
            self.embeddings_model = os.environ.get("EMBEDDINGS_MODEL", "text-embedding-3-small")
        self.embeddings_dimensions = _env_int("EMBEDDINGS_DIMENSIONS", self.embeddings_dimensions)

        if self.llm_base_url is None:
            self.llm_base_url = os.environ.get("LLM_BASE_URL", "https://api.openai.com/v1")
        if self.llm_api_key is None:
            self.llm_api_key = os.environ.get("LLM_API_KEY", "")
        if self.llm_model is None:
            self.llm_model = os.environ.get("LLM_MODEL", "gpt-4o-mini")
        self.llm_timeout_s = _env_int("LLM_TIMEOUT_S", self.llm_timeout_s)

        self.max_file_size_mb = _env_int("MAX_FILE_SIZE_MB", self.max_file_size_mb) or 20

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024
