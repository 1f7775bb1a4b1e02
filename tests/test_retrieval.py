#!/usr/bin/env python3
"""
Tests for rag/retrieve.py

Ranking is tested on in-memory candidates; the Retriever and
embed_and_store_chunks run against a temporary SQLite database.

Run:  pytest tests/test_retrieval.py -v
"""

import asyncio
import json
import sys
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from sqlalchemy import select

from rag.embedding_client import HashEmbeddingClient, hash_embedding
from rag.retrieve import Candidate, Retriever, cosine_similarity, embed_and_store_chunks, parse_embedding, rank_chunks
from rag.types import CODE, TEXT, ChunkInput
from server.config import Settings
from server.db.models import Chunk, Course, Section, User
from server.db.session import get_db, init_db, reset_engine
from server.errors import ProviderError


# ============================================================================
# HELPERS
# ============================================================================

class FixedEmbeddingClient:
   """Returns the same query vector for every text."""

   def __init__(self, vector):
      self.vector = list(vector)

   @property
   def dim(self):
      return len(self.vector)

   async def embed(self, text):
      return list(self.vector)

   async def embed_batch(self, texts):
      return [list(self.vector) for _ in texts]


@contextmanager
def _temp_settings():
   reset_engine()
   with tempfile.TemporaryDirectory() as tmp:
      settings = Settings(database_url=f"sqlite:///{Path(tmp) / 'test.db'}")
      init_db(settings)
      try:
         yield settings
      finally:
         reset_engine()


def _seed_course(db):
   user = User(email="reader@example.com")
   db.add(user)
   db.flush()
   course = Course(user_id=user.id, title="Graphs")
   db.add(course)
   db.flush()
   s1 = Section(course_id=course.id, title="BFS")
   s2 = Section(course_id=course.id, title="DFS")
   db.add_all([s1, s2])
   db.flush()
   return user, course, s1, s2


def _add_chunk(db, course, section, content, vector, type_=TEXT, offset=0, language=None):
   chunk = Chunk(
      course_id=course.id,
      section_id=section.id if section else None,
      type=type_,
      content=content,
      language=language,
      embedding=json.dumps(vector) if vector is not None else None,
      created_at=datetime(2026, 1, 1) + timedelta(seconds=offset),
   )
   db.add(chunk)
   db.flush()
   return chunk


# ============================================================================
# COSINE
# ============================================================================

def test_cosine_identical_is_one():
   assert abs(cosine_similarity([1, 2, 3], [1, 2, 3]) - 1.0) < 1e-9


def test_cosine_symmetric_and_bounded():
   a = hash_embedding("alpha", 32)
   b = hash_embedding("beta", 32)
   assert cosine_similarity(a, b) == cosine_similarity(b, a)
   assert -1.0 <= cosine_similarity(a, b) <= 1.0


def test_cosine_zero_vector():
   assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0


def test_cosine_dimension_mismatch():
   assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0


def test_parse_embedding():
   assert parse_embedding("[1, 2.5]") == [1.0, 2.5]
   assert parse_embedding([3, 4]) == [3.0, 4.0]
   assert parse_embedding("not json") is None
   assert parse_embedding("[]") is None
   assert parse_embedding(None) is None
   assert parse_embedding('["a", "b"]') is None


def test_non_finite_embeddings_are_unusable():
   assert parse_embedding("[NaN, 1.0]") is None
   assert parse_embedding("[Infinity, 0.0]") is None
   assert parse_embedding([float("-inf"), 1.0]) is None
   assert cosine_similarity([float("nan"), 1.0], [1.0, 1.0]) == 0.0


# ============================================================================
# RANKING
# ============================================================================

def test_rank_splits_by_type_and_limits():
   query = [1.0, 0.0]
   candidates = [
      Candidate(id=f"t{i}", content="t", type=TEXT, language=None, embedding=[1.0, i * 0.1])
      for i in range(8)
   ] + [
      Candidate(id=f"c{i}", content="c", type=CODE, language="python", embedding=[1.0, i * 0.1])
      for i in range(5)
   ]
   result = rank_chunks(query, candidates, top_k_text=5, top_k_code=3)
   assert [c.id for c in result.text_chunks] == ["t0", "t1", "t2", "t3", "t4"]
   assert [c.id for c in result.code_chunks] == ["c0", "c1", "c2"]
   sims = [c.similarity for c in result.text_chunks]
   assert sims == sorted(sims, reverse=True)


def test_rank_ties_keep_input_order():
   candidates = [
      Candidate(id=name, content="x", type=TEXT, language=None, embedding=[1.0, 1.0])
      for name in ["b", "a", "c"]
   ]
   result = rank_chunks([1.0, 1.0], candidates)
   assert [c.id for c in result.text_chunks] == ["b", "a", "c"]


def test_rank_unparsable_embedding_scores_zero():
   candidates = [
      Candidate(id="bad", content="x", type=TEXT, language=None, embedding="{broken"),
      Candidate(id="good", content="y", type=TEXT, language=None, embedding=[1.0, 0.0]),
   ]
   result = rank_chunks([1.0, 0.0], candidates)
   assert [c.id for c in result.text_chunks] == ["good", "bad"]
   assert result.text_chunks[1].similarity == 0.0


def test_rank_non_finite_embedding_scores_zero():
   candidates = [
      Candidate(id="nan", content="x", type=TEXT, language=None, embedding="[NaN, 0.0]"),
      Candidate(id="good", content="y", type=TEXT, language=None, embedding=[1.0, 1.0]),
   ]
   result = rank_chunks([1.0, 0.0], candidates)
   assert [c.id for c in result.text_chunks] == ["good", "nan"]
   assert result.text_chunks[1].similarity == 0.0


# ============================================================================
# RETRIEVER (SQLite)
# ============================================================================

def test_retriever_scopes_to_course_and_section():
   with _temp_settings() as settings:
      with get_db(settings) as db:
         user, course, s1, s2 = _seed_course(db)
         other = Course(user_id=user.id, title="Other")
         db.add(other)
         db.flush()
         _add_chunk(db, course, s1, "bfs notes", [1.0, 0.0], offset=0)
         _add_chunk(db, course, s2, "dfs notes", [1.0, 0.0], offset=1)
         _add_chunk(db, other, None, "other course", [1.0, 0.0], offset=2)
         _add_chunk(db, course, s1, "no vector", None, offset=3)

         retriever = Retriever(db, FixedEmbeddingClient([1.0, 0.0]))
         course_wide = asyncio.run(retriever.retrieve(course.id, None, "graphs"))
         section_only = asyncio.run(retriever.retrieve(course.id, s1.id, "bfs"))

      assert [c.content for c in course_wide.text_chunks] == ["bfs notes", "dfs notes"]
      assert [c.content for c in section_only.text_chunks] == ["bfs notes"]


def test_retriever_orders_by_similarity_then_creation():
   with _temp_settings() as settings:
      with get_db(settings) as db:
         _, course, s1, _ = _seed_course(db)
         _add_chunk(db, course, s1, "older tie", [0.0, 1.0], offset=0)
         _add_chunk(db, course, s1, "best", [1.0, 0.0], offset=1)
         _add_chunk(db, course, s1, "newer tie", [0.0, 1.0], offset=2)
         _add_chunk(db, course, s1, "code", [1.0, 0.1], type_=CODE, offset=3, language="go")

         result = asyncio.run(Retriever(db, FixedEmbeddingClient([1.0, 0.0])).retrieve(course.id, s1.id, "q"))

      assert [c.content for c in result.text_chunks] == ["best", "older tie", "newer tie"]
      assert [c.language for c in result.code_chunks] == ["go"]


def test_embed_and_store_chunks_persists_vectors():
   client = HashEmbeddingClient(dim=16)
   with _temp_settings() as settings:
      with get_db(settings) as db:
         _, course, s1, _ = _seed_course(db)
         chunk_ids = asyncio.run(embed_and_store_chunks(db, course.id, [
            ChunkInput(content="first chunk", type=TEXT, section_id=s1.id),
            ChunkInput(content="def f(): pass", type=CODE, language="python", section_id=s1.id,
                       metadata={"start_line": 0, "end_line": 1}),
         ], client))
         course_id = course.id

      with get_db(settings) as db:
         rows = [db.get(Chunk, cid) for cid in chunk_ids]
         assert [r.chunk_index for r in rows] == [0, 1]
         assert json.loads(rows[0].embedding) == hash_embedding("first chunk", 16)
         assert rows[0].token_count == 3
         assert rows[1].meta == {"start_line": 0, "end_line": 1}
         assert all(r.course_id == course_id for r in rows)


class ShortBatchClient(FixedEmbeddingClient):
   """Drops the last vector of every batch."""

   async def embed_batch(self, texts):
      return [list(self.vector) for _ in texts][:-1]


def test_embed_and_store_rejects_missing_vectors():
   with _temp_settings() as settings:
      with get_db(settings) as db:
         _, course, s1, _ = _seed_course(db)
         chunks = [ChunkInput(content=f"chunk {i}", type=TEXT, section_id=s1.id) for i in range(3)]
         with pytest.raises(ProviderError) as exc:
            asyncio.run(embed_and_store_chunks(db, course.id, chunks, ShortBatchClient([1.0, 0.0])))
         assert exc.value.kind == "invalid_response"
         assert db.scalars(select(Chunk)).all() == []


def test_embed_and_store_nothing():
   with _temp_settings() as settings:
      with get_db(settings) as db:
         _, course, _, _ = _seed_course(db)
         assert asyncio.run(embed_and_store_chunks(db, course.id, [], HashEmbeddingClient(dim=4))) == []


def test_hash_client_retrieves_exact_match_first():
   """With hash embeddings the chunk identical to the query scores 1.0."""
   client = HashEmbeddingClient(dim=64)
   with _temp_settings() as settings:
      with get_db(settings) as db:
         _, course, s1, _ = _seed_course(db)
         asyncio.run(embed_and_store_chunks(db, course.id, [
            ChunkInput(content="unrelated words", type=TEXT, section_id=s1.id),
            ChunkInput(content="BFS", type=TEXT, section_id=s1.id),
         ], client))
         result = asyncio.run(Retriever(db, client).retrieve(course.id, s1.id, "BFS"))

      assert result.text_chunks[0].content == "BFS"
      assert abs(result.text_chunks[0].similarity - 1.0) < 1e-9
