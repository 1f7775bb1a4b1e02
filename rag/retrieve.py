"""
Vector retrieval over stored chunk embeddings.

Chunks are scored by cosine similarity against the query embedding and
ranked per type:
   text chunks -> top_k_text (default 5)
   code chunks -> top_k_code (default 3)

Ties keep creation order (created_at, then chunk_index, then id).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from rag.chunking import estimate_tokens
from rag.embedding_client import EmbeddingClient
from rag.types import CODE, TEXT, ChunkInput, RetrievalResult, RetrievedChunk
from server.db.models import Chunk, utcnow
from server.errors import ProviderError

logger = logging.getLogger("studyforge.retrieval")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
   """dot(a, b) / (|a| |b|); 0.0 for a zero vector, mismatched dimensions or non-finite input."""
   va = np.asarray(a, dtype=np.float64)
   vb = np.asarray(b, dtype=np.float64)
   if va.shape != vb.shape or va.size == 0:
      return 0.0
   norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
   if norm == 0:
      return 0.0
   sim = float(np.dot(va, vb) / norm)
   if not np.isfinite(sim):
      return 0.0
   return max(-1.0, min(1.0, sim))


def parse_embedding(raw: Any) -> Optional[List[float]]:
   """Decode a stored embedding. Returns None when it cannot be used (empty, non-numeric, NaN or infinite)."""
   if raw is None:
      return None
   try:
      values = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
      vec = [float(x) for x in values]
   except (ValueError, TypeError):
      return None
   if not vec or not np.isfinite(vec).all():
      return None
   return vec


@dataclass
class Candidate:
   """A stored chunk considered for ranking."""
   id: str
   content: str
   type: str
   language: Optional[str]
   embedding: Any


def rank_chunks(
   query_vector: Sequence[float],
   candidates: Iterable[Candidate],
   top_k_text: int = 5,
   top_k_code: int = 3,
) -> RetrievalResult:
   """Score candidates against the query and keep the best of each type."""
   scored = []
   for position, cand in enumerate(candidates):
      vec = parse_embedding(cand.embedding)
      if vec is None:
         logger.debug("Chunk %s has an unusable embedding, scoring 0", cand.id)
         similarity = 0.0
      else:
         similarity = cosine_similarity(query_vector, vec)
      scored.append((similarity, position, cand))

   # Stable sort on similarity only; candidates arrive in creation order
   scored.sort(key=lambda item: (-item[0], item[1]))

   result = RetrievalResult()
   for similarity, _, cand in scored:
      chunk = RetrievedChunk(
         id=cand.id,
         content=cand.content,
         type=cand.type,
         language=cand.language,
         similarity=similarity,
      )
      if cand.type == TEXT and len(result.text_chunks) < top_k_text:
         result.text_chunks.append(chunk)
      elif cand.type == CODE and len(result.code_chunks) < top_k_code:
         result.code_chunks.append(chunk)
   return result


class Retriever:
   """
   Course-scoped retriever over Chunk rows.

   Every query is filtered by course, and by section when one is given.
   """

   def __init__(self, db: DBSession, embedding_client: EmbeddingClient):
      self.db = db
      self.client = embedding_client

   def _candidates(self, course_id: str, section_id: Optional[str]) -> List[Candidate]:
      stmt = select(Chunk).where(Chunk.course_id == course_id, Chunk.embedding.is_not(None))
      if section_id:
         stmt = stmt.where(Chunk.section_id == section_id)
      stmt = stmt.order_by(Chunk.created_at, Chunk.chunk_index, Chunk.id)
      return [
         Candidate(
            id=c.id,
            content=c.content,
            type=c.type,
            language=c.language,
            embedding=c.embedding,
         )
         for c in self.db.scalars(stmt)
      ]

   async def retrieve(
      self,
      course_id: str,
      section_id: Optional[str],
      query: str,
      top_k_text: int = 5,
      top_k_code: int = 3,
   ) -> RetrievalResult:
      """
      Return the most similar text and code chunks for a query.

      Args:
         course_id:   Course the chunks must belong to
         section_id:  Optional section filter
         query:       Query text (usually the section title)
         top_k_text:  Max text chunks
         top_k_code:  Max code chunks
      """
      query_vector = await self.client.embed(query)
      candidates = self._candidates(course_id, section_id)
      result = rank_chunks(query_vector, candidates, top_k_text, top_k_code)
      logger.debug(
         "Retrieved %d text / %d code chunks from %d candidates (course=%s section=%s)",
         len(result.text_chunks), len(result.code_chunks), len(candidates), course_id, section_id,
      )
      return result


async def embed_and_store_chunks(
   db: DBSession,
   course_id: str,
   chunks: List[ChunkInput],
   client: EmbeddingClient,
) -> List[str]:
   """
   Embed chunks in one batch call and persist them with their vectors.

   Returns the new chunk ids in input order.
   """
   if not chunks:
      return []

   vectors = await client.embed_batch([c.content for c in chunks])
   if len(vectors) != len(chunks):
      raise ProviderError(
         kind="invalid_response",
         message=f"Expected {len(chunks)} embeddings, got {len(vectors)}",
      )
   now = utcnow()
   rows: List[Chunk] = []
   for i, (chunk, vector) in enumerate(zip(chunks, vectors)):
      rows.append(Chunk(
         course_id=course_id,
         section_id=chunk.section_id,
         type=chunk.type,
         content=chunk.content,
         language=chunk.language,
         meta=dict(chunk.metadata or {}),
         token_count=estimate_tokens(chunk.content),
         chunk_index=i,
         embedding=json.dumps(vector),
         created_at=now,
      ))
   db.add_all(rows)
   db.flush()
   return [r.id for r in rows]

