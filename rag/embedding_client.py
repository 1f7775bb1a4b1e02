"""
Embedding client interface and implementations.

Provides:
  - EmbeddingClient: Protocol for embedding text into vectors.
  - HashEmbeddingClient: Deterministic hash-based embeddings used when no
    provider credentials are configured.
  - OpenAIEmbeddingClient: OpenAI-compatible /embeddings endpoint over httpx.
  - get_embedding_client: pick one from Settings.
"""
from __future__ import annotations

import hashlib
import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from server.errors import ProviderError

logger = logging.getLogger("studyforge.embeddings")

MAX_INPUT_CHARS = 8000
DEFAULT_BATCH_SIZE = 100


@runtime_checkable
class EmbeddingClient(Protocol):
   """Protocol for embedding text into fixed-dimensional vectors."""

   async def embed(self, text: str) -> list[float]:
      """Embed a single text string into a vector."""
      ...

   async def embed_batch(self, texts: list[str]) -> list[list[float]]:
      """Embed many texts; output order matches input order."""
      ...

   @property
   def dim(self) -> int:
      """Embedding dimensionality."""
      ...


def hash_embedding(text: str, dim: int) -> list[float]:
   """
   Pseudo-embedding derived from the SHA-256 digest of the text.

   Component i is digest[i % 32] scaled from [0, 255] into [-1, 1]. The
   result depends only on the text, so it is stable across processes.
   """
   digest = hashlib.sha256(text.encode('utf-8')).digest()
   return [(digest[i % len(digest)] / 255) * 2 - 1 for i in range(dim)]


class HashEmbeddingClient:
   """
   Deterministic hash-based embedding for running without credentials.

   WARNING: These vectors do NOT capture semantic similarity. They keep the
   import/retrieve pipeline working end to end for local use and tests.
   """

   def __init__(self, dim: int = 1536):
      self._dim = dim

   @property
   def dim(self) -> int:
      return self._dim

   async def embed(self, text: str) -> list[float]:
      return hash_embedding(text, self._dim)

   async def embed_batch(self, texts: list[str]) -> list[list[float]]:
      return [hash_embedding(t, self._dim) for t in texts]


class OpenAIEmbeddingClient:
   """
   Client for OpenAI-compatible embedding APIs.

   Inputs are truncated to MAX_INPUT_CHARS and sent in batches of
   `batch_size`. Failures raise ProviderError; nothing is retried.
   """

   def __init__(
      self,
      api_key: str,
      base_url: str = "https://api.openai.com/v1",
      model: str = "text-embedding-3-small",
      dim: int = 1536,
      batch_size: int = DEFAULT_BATCH_SIZE,
      timeout_s: float = 60,
      transport: Optional[httpx.AsyncBaseTransport] = None,
   ):
      self.api_key = api_key
      self.base_url = base_url.rstrip('/')
      self.model = model
      self.batch_size = batch_size
      self.timeout_s = timeout_s
      self._dim = dim
      self._transport = transport

   @property
   def dim(self) -> int:
      return self._dim

   async def _request(self, client: httpx.AsyncClient, payload_input) -> list[list[float]]:
      try:
         resp = await client.post(
            f"{self.base_url}/embeddings",
            json={"model": self.model, "input": payload_input},
            headers={"Authorization": f"Bearer {self.api_key}"},
         )
      except httpx.TimeoutException as e:
         raise ProviderError(kind="timeout", message="Embeddings request timed out", details={"error": str(e)})
      except httpx.ConnectError as e:
         raise ProviderError(kind="unavailable", message="Cannot connect to embeddings API", details={"error": str(e)})
      except httpx.HTTPError as e:
         logger.exception("Embeddings request failed")
         raise ProviderError(kind="http_error", message="Embeddings request failed", details={"error": str(e)})

      if resp.status_code != 200:
         raise ProviderError(
            kind="http_error",
            message=f"Embeddings API error {resp.status_code}",
            details={"status": resp.status_code, "body": resp.text[:200]},
         )

      try:
         items = resp.json()["data"]
         items = sorted(items, key=lambda d: d["index"])
         return [list(map(float, d["embedding"])) for d in items]
      except (ValueError, KeyError, TypeError) as e:
         raise ProviderError(kind="invalid_response", message="Malformed embeddings payload", details={"error": str(e)})

   async def embed(self, text: str) -> list[float]:
      async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
         vectors = await self._request(client, text[:MAX_INPUT_CHARS])
      if not vectors:
         raise ProviderError(kind="invalid_response", message="Empty embeddings payload")
      return vectors[0]

   async def embed_batch(self, texts: list[str]) -> list[list[float]]:
      out: list[list[float]] = []
      async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
         for i in range(0, len(texts), self.batch_size):
            batch = [t[:MAX_INPUT_CHARS] for t in texts[i:i + self.batch_size]]
            vectors = await self._request(client, batch)
            if len(vectors) != len(batch):
               raise ProviderError(
                  kind="invalid_response",
                  message="Embeddings count does not match inputs",
                  details={"expected": len(batch), "got": len(vectors)},
               )
            out.extend(vectors)
      return out


def is_configured_key(key: Optional[str]) -> bool:
   """True for a real-looking API key (not empty, not an 'sk-your...' placeholder)."""
   return bool(key) and not key.startswith("sk-your")


def get_embedding_client(settings) -> EmbeddingClient:
   """OpenAI-compatible client when a key is configured, else hash embeddings."""
   dim = getattr(settings, "embeddings_dimensions", 1536)
   key = getattr(settings, "embeddings_api_key", "")
   if not is_configured_key(key):
      logger.debug("No embeddings key configured, using hash embeddings (dim=%d)", dim)
      return HashEmbeddingClient(dim=dim)
   return OpenAIEmbeddingClient(
      api_key=key,
      base_url=getattr(settings, "embeddings_base_url", "https://api.openai.com/v1"),
      model=getattr(settings, "embeddings_model", "text-embedding-3-small"),
      dim=dim,
      batch_size=getattr(settings, "embeddings_batch_size", DEFAULT_BATCH_SIZE),
   )
