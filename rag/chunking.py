"""
Chunking of imported notes and code into retrievable units.

Text is packed paragraph by paragraph up to TEXT_MAX_TOKENS with a small
character overlap between consecutive chunks. Code is kept whole when short,
otherwise split on function/class boundaries, falling back to fixed windows.

Token counts are estimated at ~4 characters per token.
"""
from __future__ import annotations

import math
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from rag.types import CODE, TEXT, ChunkInput

TEXT_MIN_TOKENS = 300
TEXT_MAX_TOKENS = 800
TEXT_OVERLAP_RATIO = 0.1
CODE_MAX_LINES = 400
CODE_MIN_LINES = 10

_PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')
_CODE_FENCE = re.compile(r'```(\w*)\n([\s\S]*?)```')


def estimate_tokens(text: str) -> int:
   return math.ceil(len(text) / 4)


# ============================================================================
# TEXT
# ============================================================================

def _seed_overlap(buffer: str, paragraph: str) -> str:
   """
   Start a new buffer with the tail of the flushed one plus the paragraph.

   The tail is the last TEXT_OVERLAP_RATIO of the buffer, shortened so the
   seeded buffer stays within TEXT_MAX_TOKENS.
   """
   overlap_chars = math.floor(len(buffer) * TEXT_OVERLAP_RATIO)
   room = TEXT_MAX_TOKENS * 4 - len(paragraph) - 2
   overlap_chars = max(0, min(overlap_chars, room))
   if overlap_chars == 0:
      return paragraph
   return buffer[-overlap_chars:] + '\n\n' + paragraph


def chunk_text(
   text: str,
   section_id: Optional[str] = None,
   metadata: Optional[Dict[str, Any]] = None,
) -> List[ChunkInput]:
   """
   Split prose into overlapping chunks of at most TEXT_MAX_TOKENS.

   A remainder under TEXT_MIN_TOKENS // 2 is appended to the previous chunk,
   so the last chunk can exceed the bound by less than that.
   """
   meta = dict(metadata or {})

   if estimate_tokens(text) <= TEXT_MAX_TOKENS:
      stripped = text.strip()
      if not stripped:
         return []
      return [ChunkInput(content=stripped, type=TEXT, section_id=section_id, metadata=meta)]

   chunks: List[ChunkInput] = []
   buffer = ''

   for para in _PARAGRAPH_SPLIT.split(text):
      trimmed = para.strip()
      if not trimmed:
         continue

      candidate_tokens = estimate_tokens(buffer + '\n\n' + trimmed)

      if candidate_tokens > TEXT_MAX_TOKENS and buffer:
         chunks.append(ChunkInput(
            content=buffer.strip(), type=TEXT, section_id=section_id, metadata=dict(meta),
         ))
         buffer = _seed_overlap(buffer, trimmed)
      else:
         buffer = buffer + '\n\n' + trimmed if buffer else trimmed

   rest = buffer.strip()
   if not rest:
      return chunks

   if estimate_tokens(buffer) >= TEXT_MIN_TOKENS // 2:
      chunks.append(ChunkInput(content=rest, type=TEXT, section_id=section_id, metadata=dict(meta)))
   elif chunks:
      # Short tail: fold into the previous chunk, which may then pass TEXT_MAX_TOKENS
      chunks[-1].content += '\n\n' + rest
   else:
      chunks.append(ChunkInput(content=rest, type=TEXT, section_id=section_id, metadata=dict(meta)))

   return chunks


# ============================================================================
# LANGUAGE DETECTION
# ============================================================================

def _has(pattern: str, flags: int = re.M) -> Callable[[str], bool]:
   compiled = re.compile(pattern, flags)
   return lambda code: compiled.search(code) is not None


_JSX_TAG = _has(r'<[a-z]+[\s>]|</[a-z]+>', re.I)
_JSX_IDENT = _has(r'className|onClick|useState')
_C_SIGNATURE = _has(r'^#include\s.*\.h>|int main\s*\(')
_HAS_CLASS = _has(r'class\s')

# Evaluated in order; the first predicate that matches wins.
LANGUAGE_SIGNATURES: List[Tuple[str, Callable[[str], bool]]] = [
   ('cpp', _has(r'^#include\s|^using namespace\s|int main\s*\(')),
   ('c', lambda code: _C_SIGNATURE(code) and not _HAS_CLASS(code)),
   ('python', _has(r'^import\s+\w|^from\s+\w+\s+import|def\s+\w+\s*\(|class\s+\w+.*:')),
   ('javascript', _has(r'^(const|let|var|function|import|export)\s')),
   ('typescript', _has(r':\s*(string|number|boolean|void)\s*[;=,){\n]|interface\s+\w+')),
   ('go', _has(r'^package\s+\w|^import\s+".*"|func\s+\w+')),
   ('java', _has(r'^(public|private|protected)\s+(static\s+)?(class|void|int|String)')),
   ('rust', _has(r'^use\s+\w|fn\s+\w+|let\s+mut\s')),
   ('jsx', lambda code: _JSX_TAG(code) and _JSX_IDENT(code)),
   ('sql', _has(r'^SELECT\s|^INSERT\s|^CREATE\s', re.M | re.I)),
]


def detect_language(code: str, hint: Optional[str] = None) -> str:
   """Return the hint (lower-cased) or the first matching language, else "text"."""
   if hint:
      return hint.lower()
   for language, matches in LANGUAGE_SIGNATURES:
      if matches(code):
         return language
   return 'text'


# ============================================================================
# CODE
# ============================================================================

# Start of a top-level definition, tested against the stripped line.
DEFINITION_STARTS: Dict[str, re.Pattern] = {
   'python': re.compile(r'^(def |class |async def )'),
   'javascript': re.compile(r'^(function |const \w+ = |class |export )'),
   'typescript': re.compile(r'^(function |const \w+ = |class |export |interface |type )'),
   'java': re.compile(r'^(\s*(public|private|protected)\s+(static\s+)?(class|void|int|String|boolean|List|Map))'),
   'cpp': re.compile(r'^(\w[\w:<>*& ]+\s+\w+\s*\(|class \w+|namespace \w+)'),
   'c': re.compile(r'^(\w[\w* ]+\s+\w+\s*\()'),
   'go': re.compile(r'^(func |type \w+ struct)'),
   'rust': re.compile(r'^(fn |pub fn |struct |impl |enum |trait )'),
}


def find_code_boundaries(lines: List[str], language: str) -> List[Tuple[int, int]]:
   """
   Return (start, end) line ranges cut at definition starts.

   A cut is only made once the current segment is longer than CODE_MIN_LINES.
   Unsupported languages yield no boundaries.
   """
   pattern = DEFINITION_STARTS.get(language)
   if pattern is None:
      return []

   boundaries: List[Tuple[int, int]] = []
   current = 0
   for i, line in enumerate(lines):
      if pattern.match(line.strip()) and i > current + CODE_MIN_LINES:
         boundaries.append((current, i))
         current = i

   if current < len(lines):
      boundaries.append((current, len(lines)))
   return boundaries


def chunk_code(
   code: str,
   section_id: Optional[str] = None,
   language: Optional[str] = None,
   metadata: Optional[Dict[str, Any]] = None,
) -> List[ChunkInput]:
   """Split source code into chunks of at most CODE_MAX_LINES lines."""
   lang = language or detect_language(code)
   meta = dict(metadata or {})
   lines = code.split('\n')

   if len(lines) <= CODE_MAX_LINES:
      stripped = code.strip()
      if not stripped:
         return []
      return [ChunkInput(content=stripped, type=CODE, language=lang, section_id=section_id, metadata=meta)]

   ranges = find_code_boundaries(lines, lang)
   if len(ranges) < 2:
      ranges = [
         (start, min(start + CODE_MAX_LINES, len(lines)))
         for start in range(0, len(lines), CODE_MAX_LINES)
      ]

   chunks: List[ChunkInput] = []
   for start, end in ranges:
      content = '\n'.join(lines[start:end]).strip()
      if not content:
         continue
      chunks.append(ChunkInput(
         content=content,
         type=CODE,
         language=lang,
         section_id=section_id,
         metadata={**meta, 'start_line': start, 'end_line': end},
      ))
   return chunks


# ============================================================================
# MIXED CONTENT
# ============================================================================

def split_text_and_code(content: str, section_id: Optional[str] = None) -> List[ChunkInput]:
   """
   Chunk notes that may contain fenced code blocks.

   Fenced code goes through chunk_code (fence tag as language), everything
   else through chunk_text. Output keeps source order.
   """
   chunks: List[ChunkInput] = []
   last = 0

   for m in _CODE_FENCE.finditer(content):
      before = content[last:m.start()].strip()
      if before:
         chunks.extend(chunk_text(before, section_id))

      code = m.group(2)
      if code.strip():
         chunks.extend(chunk_code(code, section_id, m.group(1) or None))

      last = m.end()

   remaining = content[last:].strip()
   if remaining:
      chunks.extend(chunk_text(remaining, section_id))

   return chunks
