"""
Import notes into a course: text, source code and PDFs.

Each import builds sections, chunks the content per section and stores the
chunks with their embeddings:
   text  -> heading tree -> sections -> split_text_and_code per section
   code  -> one "Code Import (<lang>)" section -> chunk_code
   pdf   -> Upload row -> PyMuPDF text -> same path as text
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.orm import Session as DBSession

from extractors.pdf_text import extract_pdf_text
from rag.chunking import chunk_code, detect_language, split_text_and_code
from rag.embedding_client import EmbeddingClient
from rag.headings import (
    MAIN_CONTENT_TITLE,
    SectionNode,
    extract_headings,
    pair_sections_with_blocks,
    split_content_by_headings,
)
from rag.retrieve import embed_and_store_chunks
from rag.types import ChunkInput
from server.config import Settings
from server.db.models import Section, Upload
from server.errors import ImportFailedError, InvalidInputError
from server.services.course_service import get_owned_course

logger = logging.getLogger("studyforge.import")

MAX_CONTENT_CHARS = 100_000
MAX_TITLE_LEN = 200
MAX_LANGUAGE_LEN = 20

# Upload states
PENDING = "pending"
PROCESSED = "processed"
ERROR = "error"


@dataclass
class ImportResult:
    section_ids: List[str]
    chunk_ids: List[str]
    language: Optional[str] = None
    upload_id: Optional[str] = None

    @property
    def sections(self) -> int:
        return len(self.section_ids)

    @property
    def chunks(self) -> int:
        return len(self.chunk_ids)


def _check_content(content: str, field: str) -> None:
    if not content or not content.strip():
        raise InvalidInputError(f"{field} is required")
    if len(content) > MAX_CONTENT_CHARS:
        raise InvalidInputError(f"{field} must be at most {MAX_CONTENT_CHARS} characters")


def _check_title(title: Optional[str]) -> None:
    if title is not None and len(title) > MAX_TITLE_LEN:
        raise InvalidInputError(f"Title must be at most {MAX_TITLE_LEN} characters")


def save_sections(
    db: DBSession,
    course_id: str,
    nodes: List[SectionNode],
    parent_id: Optional[str] = None,
    saved: Optional[Dict[int, Section]] = None,
) -> Dict[int, Section]:
    """
    Persist a heading tree depth-first.

    Returns a dict from id(node) to its Section row, in pre-order.
    """
    if saved is None:
        saved = {}
    for node in nodes:
        section = Section(course_id=course_id, parent_id=parent_id, title=node.title, level=node.level, order=node.order)
        db.add(section)
        db.flush()
        saved[id(node)] = section
        if node.children:
            save_sections(db, course_id, node.children, section.id, saved)
    return saved


async def _import_outline(
    db: DBSession,
    course_id: str,
    text: str,
    title: Optional[str],
    client: EmbeddingClient,
) -> ImportResult:
    tree = extract_headings(text)
    if title and tree and tree[0].title == MAIN_CONTENT_TITLE:
        tree[0].title = title
    saved = save_sections(db, course_id, tree)

    chunks: List[ChunkInput] = []
    for node, content in pair_sections_with_blocks(tree, split_content_by_headings(text), text):
        chunks.extend(split_text_and_code(content, saved[id(node)].id))

    chunk_ids = await embed_and_store_chunks(db, course_id, chunks, client)
    return ImportResult(section_ids=[s.id for s in saved.values()], chunk_ids=chunk_ids)


async def import_text(
    db: DBSession,
    user_id: str,
    course_id: str,
    content: str,
    title: Optional[str],
    client: EmbeddingClient,
) -> ImportResult:
    """
    Import pasted notes (markdown or plain text) into a course.

    Raises:
        NotFoundError: course missing or owned by someone else
        InvalidInputError: empty or oversized content, oversized title
    """
    _check_content(content, "Content")
    _check_title(title)
    get_owned_course(db, user_id, course_id)

    result = await _import_outline(db, course_id, content, title, client)
    logger.info("Imported text into course %s: %d sections, %d chunks", course_id, result.sections, result.chunks)
    return result


async def import_code(
    db: DBSession,
    user_id: str,
    course_id: str,
    code: str,
    language: Optional[str],
    title: Optional[str],
    client: EmbeddingClient,
) -> ImportResult:
    """Import one source file as a single section of code chunks."""
    _check_content(code, "Code")
    _check_title(title)
    if language is not None and len(language) > MAX_LANGUAGE_LEN:
        raise InvalidInputError(f"Language must be at most {MAX_LANGUAGE_LEN} characters")
    get_owned_course(db, user_id, course_id)

    lang = detect_language(code, language)
    section = Section(course_id=course_id, title=title or f"Code Import ({lang})", level=1, order=0)
    db.add(section)
    db.flush()

    chunks = chunk_code(code, section.id, lang)
    chunk_ids = await embed_and_store_chunks(db, course_id, chunks, client)
    logger.info("Imported %s code into course %s: %d chunks", lang, course_id, len(chunk_ids))
    return ImportResult(section_ids=[section.id], chunk_ids=chunk_ids, language=lang)


async def import_pdf(
    db: DBSession,
    user_id: str,
    course_id: str,
    file_name: str,
    data: bytes,
    client: EmbeddingClient,
    settings: Optional[Settings] = None,
) -> ImportResult:
    """
    Import a PDF upload.

    The Upload row is committed as pending before extraction and committed
    again as processed or error, so its status survives a failed import.

    Raises:
        InvalidInputError: file too large or not a .pdf
        NotFoundError: course missing or not owned
        ImportFailedError: no text could be extracted
    """
    settings = settings or Settings()
    if len(data) > settings.max_file_size_bytes:
        raise InvalidInputError(f"File too large. Max {settings.max_file_size_mb}MB")
    if not file_name.lower().endswith(".pdf"):
        raise InvalidInputError("Only PDF files accepted")
    get_owned_course(db, user_id, course_id)

    upload = Upload(course_id=course_id, file_name=file_name, file_type="pdf", file_size=len(data), status=PENDING)
    db.add(upload)
    db.commit()

    try:
        text = extract_pdf_text(data)
        if not text.strip():
            raise ImportFailedError("No text could be extracted from the PDF")
        result = await _import_outline(db, course_id, text, Path(file_name).stem or None, client)
    except Exception as e:
        logger.exception("PDF import failed for upload %s", upload.id)
        db.rollback()
        upload.status = ERROR
        upload.error = str(e) or type(e).__name__
        db.commit()
        raise

    upload.status = PROCESSED
    result.upload_id = upload.id
    logger.info(
        "Imported PDF %s into course %s: %d sections, %d chunks", file_name, course_id, result.sections, result.chunks,
    )
    return result
