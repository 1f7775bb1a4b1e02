"""Tests for server/services/import_service.py -- text, code and PDF imports."""

import asyncio
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import fitz  # PyMuPDF
import pytest
from sqlalchemy import select

from extractors.pdf_text import extract_pdf_text
from rag.embedding_client import HashEmbeddingClient
from server.config import Settings
from server.db.models import Chunk, Course, Section, Upload, User
from server.db.session import get_db, init_db, reset_engine
from server.errors import ImportFailedError, InvalidInputError, NotFoundError
from server.services.import_service import import_code, import_pdf, import_text

CLIENT = HashEmbeddingClient(dim=16)

NOTES = (
    "# Graphs\n"
    "intro text\n"
    "## BFS\n"
    "uses a queue\n"
    "```python\n"
    "def bfs():\n"
    "    pass\n"
    "```\n"
    "## DFS\n"
    "uses a stack"
)


# ============================================================================
# HELPERS
# ============================================================================

@contextmanager
def _temp_settings(**overrides):
    reset_engine()
    with tempfile.TemporaryDirectory() as tmp:
        settings = Settings(database_url=f"sqlite:///{Path(tmp) / 'test.db'}", **overrides)
        init_db(settings)
        try:
            yield settings
        finally:
            reset_engine()


def _seed(settings):
    """Create an owner with a course and a second user. Returns (owner_id, other_id, course_id)."""
    with get_db(settings) as db:
        owner = User(email="owner@example.com")
        other = User(email="other@example.com")
        db.add_all([owner, other])
        db.flush()
        course = Course(user_id=owner.id, title="Algorithms")
        db.add(course)
        db.flush()
        return owner.id, other.id, course.id


def _make_pdf(pages_text):
    doc = fitz.open()
    for text in pages_text:
        page = doc.new_page(width=612, height=792)
        if text:
            page.insert_text((72, 72), text, fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


# ============================================================================
# TEXT
# ============================================================================

def test_import_text_builds_section_tree_and_chunks():
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            result = asyncio.run(import_text(db, owner, course_id, NOTES, None, CLIENT))

        assert result.sections == 3
        assert result.chunks == 4

        with get_db(settings) as db:
            sections = {s.title: s for s in db.scalars(select(Section))}
            assert sections["Graphs"].parent_id is None
            assert sections["BFS"].parent_id == sections["Graphs"].id
            assert sections["DFS"].parent_id == sections["Graphs"].id

            bfs_chunks = db.scalars(
                select(Chunk).where(Chunk.section_id == sections["BFS"].id).order_by(Chunk.chunk_index)
            ).all()
            assert [c.type for c in bfs_chunks] == ["text", "code"]
            assert bfs_chunks[1].language == "python"
            assert all(c.embedding for c in bfs_chunks)


def test_import_text_without_headings_uses_title():
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            result = asyncio.run(import_text(db, owner, course_id, "plain notes, no structure", "My Notes", CLIENT))
            section = db.get(Section, result.section_ids[0])
            assert section.title == "My Notes"
            assert result.chunks == 1


def test_import_text_into_foreign_course():
    with _temp_settings() as settings:
        _, other, course_id = _seed(settings)
        with pytest.raises(NotFoundError):
            with get_db(settings) as db:
                asyncio.run(import_text(db, other, course_id, NOTES, None, CLIENT))


def test_import_text_rejects_empty_and_oversized():
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            with pytest.raises(InvalidInputError):
                asyncio.run(import_text(db, owner, course_id, "   ", None, CLIENT))
            with pytest.raises(InvalidInputError):
                asyncio.run(import_text(db, owner, course_id, "x" * 100_001, None, CLIENT))


# ============================================================================
# CODE
# ============================================================================

def test_import_code_detects_language():
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            result = asyncio.run(import_code(db, owner, course_id, "func main() {\n}", None, None, CLIENT))
            section = db.get(Section, result.section_ids[0])

            assert result.language == "go"
            assert section.title == "Code Import (go)"
            assert result.chunks == 1


def test_import_code_with_title_and_hint():
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            result = asyncio.run(import_code(db, owner, course_id, "puts 'hi'", "Ruby", "Scripts", CLIENT))
            section = db.get(Section, result.section_ids[0])
            chunk = db.get(Chunk, result.chunk_ids[0])

            assert section.title == "Scripts"
            assert chunk.language == "ruby"


# ============================================================================
# PDF
# ============================================================================

def test_extract_pdf_text():
    data = _make_pdf(["First page words", "Second page words"])
    text = extract_pdf_text(data)
    assert "First page words" in text
    assert text.index("First") < text.index("Second")


def test_extract_pdf_text_unknown_mode():
    with pytest.raises(ValueError):
        extract_pdf_text(_make_pdf(["x"]), mode="ocr")


def test_import_pdf_marks_upload_processed():
    data = _make_pdf(["GRAPH BASICS\nA graph has vertices and edges."])
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            result = asyncio.run(import_pdf(db, owner, course_id, "graphs.pdf", data, CLIENT, settings))

        with get_db(settings) as db:
            upload = db.get(Upload, result.upload_id)
            assert upload.status == "processed"
            assert upload.file_size == len(data)
            assert result.sections >= 1
            assert result.chunks >= 1


def test_import_pdf_without_text_marks_error():
    data = _make_pdf([""])
    with _temp_settings() as settings:
        owner, _, course_id = _seed(settings)
        with pytest.raises(ImportFailedError):
            with get_db(settings) as db:
                asyncio.run(import_pdf(db, owner, course_id, "scan.pdf", data, CLIENT, settings))

        with get_db(settings) as db:
            upload = db.scalars(select(Upload)).one()
            assert upload.status == "error"
            assert "No text" in upload.error


def test_import_pdf_rejects_bad_files():
    with _temp_settings(max_file_size_mb=1) as settings:
        owner, _, course_id = _seed(settings)
        with get_db(settings) as db:
            with pytest.raises(InvalidInputError):
                asyncio.run(import_pdf(db, owner, course_id, "notes.txt", b"%PDF", CLIENT, settings))
            with pytest.raises(InvalidInputError):
                asyncio.run(import_pdf(db, owner, course_id, "big.pdf", b"0" * (2 * 1024 * 1024), CLIENT, settings))
            assert db.scalars(select(Upload)).all() == []
