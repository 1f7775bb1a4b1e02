"""
Heading hierarchy extraction for imported notes.

Recognizes, per line and in this order:
  - Markdown headings:   "# Title", "## Title", "### Title"
  - Numbered headings:   "1. Title", "1.2) Title", "1.2.3. Title"
  - ALL CAPS lines:      "INTRODUCTION TO GRAPHS"
  - Underlined headings: a line followed by "===" (level 1) or "---" (level 2)

Provides:
  - extract_headings:          nested SectionNode outline
  - split_content_by_headings: flat ContentBlocks aligned with the outline
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

MAIN_CONTENT_TITLE = "Main Content"

_MD_HEADING = re.compile(r'^(#{1,3})\s+(.+)$')
_NUMBERED_HEADING = re.compile(r'^(\d+(?:\.\d+)*)[.)]\s+(.+)$')
_CAPS_HEADING = re.compile(r'^[A-Z\s\-:]+$')
_UNDERLINE_L1 = re.compile(r'^={3,}$')
_UNDERLINE_L2 = re.compile(r'^-{3,}$')


@dataclass
class SectionNode:
   title: str
   level: int
   order: int
   children: List['SectionNode'] = field(default_factory=list)

   def to_dict(self) -> dict:
      return {
         'title': self.title,
         'level': self.level,
         'order': self.order,
         'children': [c.to_dict() for c in self.children],
      }


@dataclass
class ContentBlock:
   title: str
   level: int
   order: int
   content: str


@dataclass
class DetectedHeading:
   title: str
   level: int
   line_index: int


def _title_case(text: str) -> str:
   return ' '.join(w[:1].upper() + w[1:] for w in text.lower().split(' '))


def _match_heading(line: str, next_line: Optional[str]) -> Optional[tuple]:
   """Return (title, level) if the stripped line is a heading, else None."""
   m = _MD_HEADING.match(line)
   if m:
      return m.group(2).strip(), len(m.group(1))

   m = _NUMBERED_HEADING.match(line)
   if m:
      depth = len(m.group(1).split('.'))
      return m.group(2).strip(), min(depth, 3)

   if (
      4 <= len(line) <= 100
      and line == line.upper()
      and _CAPS_HEADING.match(line)
      and any(c.isalpha() for c in line)
   ):
      return _title_case(line), 1

   if next_line is not None:
      if _UNDERLINE_L1.match(next_line):
         return line, 1
      if _UNDERLINE_L2.match(next_line):
         return line, 2

   return None


def detect_headings(text: str) -> List[DetectedHeading]:
   """Scan text line by line and return headings in document order."""
   lines = text.split('\n')
   headings: List[DetectedHeading] = []

   for i, raw in enumerate(lines):
      line = raw.strip()
      if not line:
         continue
      next_line = lines[i + 1].strip() if i + 1 < len(lines) else None
      found = _match_heading(line, next_line)
      if found:
         title, level = found
         headings.append(DetectedHeading(title=title, level=level, line_index=i))

   return headings


def _build_tree(headings: List[DetectedHeading]) -> List[SectionNode]:
   """
   Arrange headings into a forest.

   Nodes live in a flat arena; the stack and the child lists hold arena
   indices. For each heading, pop while the stack top's level >= the new
   level, then attach to the new top (or as a root).
   """
   arena: List[SectionNode] = []
   children: List[List[int]] = []
   roots: List[int] = []
   stack: List[int] = []

   for order, h in enumerate(headings):
      idx = len(arena)
      arena.append(SectionNode(title=h.title, level=h.level, order=order))
      children.append([])

      while stack and arena[stack[-1]].level >= h.level:
         stack.pop()

      if stack:
         children[stack[-1]].append(idx)
      else:
         roots.append(idx)

      stack.append(idx)

   for idx, child_ids in enumerate(children):
      arena[idx].children = [arena[c] for c in child_ids]

   return [arena[r] for r in roots]


def extract_headings(text: str) -> List[SectionNode]:
   """
   Extract a heading outline from raw text.

   Falls back to a single "Main Content" root when no heading is found.
   """
   headings = detect_headings(text)
   if not headings:
      return [SectionNode(title=MAIN_CONTENT_TITLE, level=1, order=0)]
   return _build_tree(headings)


def flatten_sections(nodes: List[SectionNode]) -> List[SectionNode]:
   """Depth-first, pre-order flattening (matches heading discovery order)."""
   flat: List[SectionNode] = []
   for node in nodes:
      flat.append(node)
      flat.extend(flatten_sections(node.children))
   return flat


def split_content_by_headings(text: str) -> List[ContentBlock]:
   """
   Slice text into one block per detected heading.

   Block i runs from heading i's line up to heading i+1's line (or the end
   of text). Any text before the first heading is prepended to block 0.
   """
   headings = detect_headings(text)
   if not headings:
      return [ContentBlock(title=MAIN_CONTENT_TITLE, level=1, order=0, content=text)]

   lines = text.split('\n')
   blocks: List[ContentBlock] = []

   for i, h in enumerate(headings):
      end = headings[i + 1].line_index if i + 1 < len(headings) else len(lines)
      content = '\n'.join(lines[h.line_index:end])
      blocks.append(ContentBlock(title=h.title, level=h.level, order=i, content=content))

   intro = '\n'.join(lines[:headings[0].line_index])
   if intro.strip():
      blocks[0].content = intro + '\n' + blocks[0].content

   return blocks


def pair_sections_with_blocks(
   sections: List[SectionNode],
   blocks: List[ContentBlock],
   text: str,
) -> List[tuple]:
   """
   Pair flattened sections with content blocks positionally.

   On a count mismatch the whole text is attached to the first section.
   """
   flat = flatten_sections(sections)
   if len(flat) == len(blocks):
      return [(s, b.content) for s, b in zip(flat, blocks)]
   if not flat:
      return []
   return [(flat[0], text)]
