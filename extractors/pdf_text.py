"""
PyMuPDF text extraction for uploaded PDFs.

Provides two extraction modes:
  - "text":   page.get_text("text"): simple, fast, good for single-column
  - "blocks": page.get_text("blocks"): preserves reading order for multi-column

Pages are joined with a blank line so headings at the top of a page still
start on their own line.

Usage:
  from extractors.pdf_text import extract_pdf_text

  text = extract_pdf_text(data)
"""

from typing import List

import fitz


# ---------------------------------------------------------------------------
# Text extraction helpers
# ---------------------------------------------------------------------------

def _extract_text_mode(page: fitz.Page) -> str:
    return page.get_text("text") or ""


def _extract_blocks_mode(page: fitz.Page) -> str:
    """
    Block-based extraction via page.get_text('blocks').

    Each block is (x0, y0, x1, y1, text_or_image, block_no, block_type);
    block_type 0 is text. Blocks are sorted top-to-bottom, then
    left-to-right to approximate reading order.
    """
    blocks = page.get_text("blocks") or []
    text_blocks = [b for b in blocks if b[6] == 0]
    text_blocks.sort(key=lambda b: (b[1], b[0]))
    return "\n".join(b[4].strip() for b in text_blocks if b[4].strip())


# ---------------------------------------------------------------------------
# Core extraction
# ---------------------------------------------------------------------------

def extract_pdf_text(data: bytes, *, mode: str = "text") -> str:
    """
    Extract the text of every page from in-memory PDF bytes.

    Args:
        data:  Raw PDF file contents.
        mode:  "text" or "blocks".

    Returns:
        The page texts joined in page order. Empty for image-only PDFs.

    Raises:
        ValueError for an unknown mode; fitz errors for unreadable files.
    """
    if mode not in ("text", "blocks"):
        raise ValueError(f"Unknown pymupdf mode: {mode!r}. Use 'text' or 'blocks'.")

    extractor = _extract_text_mode if mode == "text" else _extract_blocks_mode

    pages: List[str] = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            text = extractor(page).strip()
            if text:
                pages.append(text)
    return "\n\n".join(pages)
