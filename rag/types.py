from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

TEXT = "text"
CODE = "code"


@dataclass
class ChunkInput:
   content: str
   type: str  # "text" | "code"
   language: Optional[str] = None
   section_id: Optional[str] = None
   metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedChunk:
   id: str
   content: str
   type: str
   language: Optional[str] = None
   similarity: float = 0.0


@dataclass
class RetrievalResult:
   text_chunks: List[RetrievedChunk] = field(default_factory=list)
   code_chunks: List[RetrievedChunk] = field(default_factory=list)

   def all_chunks(self) -> List[RetrievedChunk]:
      return [*self.text_chunks, *self.code_chunks]
