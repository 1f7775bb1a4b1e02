"""Generated practice question types.

A generator returns exactly one of these variants. InsufficientContext is a
normal result (the notes cannot ground a question), not an error, and
RawTextQuestion carries provider output that could not be parsed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union


class PracticeMode(str, Enum):
    QUIZ = "quiz"
    FLASHCARD = "flashcard"
    CODE_STUDY = "code_study"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class CodeSubMode(str, Enum):
    EXPLAIN = "explain"
    PREDICT = "predict"
    BUG = "bug"
    FILL = "fill"


DIFFICULTIES = tuple(d.value for d in Difficulty)


@dataclass
class _QuestionBase:
    question: str
    difficulty: str = Difficulty.MEDIUM.value
    chunk_ids: List[str] = field(default_factory=list)

    @property
    def answer_text(self) -> str:
        return getattr(self, 'answer', '') or ''


@dataclass
class InsufficientContext(_QuestionBase):
    """No question can be grounded in the retrieved chunks."""
    question_type: str = "short_answer"


@dataclass
class MCQQuestion(_QuestionBase):
    options: List[str] = field(default_factory=list)
    answer: str = ""
    question_type: str = "mcq"


@dataclass
class ShortAnswerQuestion(_QuestionBase):
    answer: str = ""
    question_type: str = "short_answer"


@dataclass
class FlashcardQuestion(_QuestionBase):
    answer: str = ""
    question_type: str = "flashcard"


@dataclass
class CodeStudyQuestion(_QuestionBase):
    sub_mode: str = CodeSubMode.EXPLAIN.value
    answer: str = ""

    @property
    def question_type(self) -> str:
        return f"code_{self.sub_mode}"


@dataclass
class RawTextQuestion(_QuestionBase):
    """Unparsable provider output shown verbatim as the question."""
    question_type: str = "short_answer"


GeneratedQuestion = Union[
    InsufficientContext,
    MCQQuestion,
    ShortAnswerQuestion,
    FlashcardQuestion,
    CodeStudyQuestion,
    RawTextQuestion,
]


def question_to_dict(q: GeneratedQuestion, attempt_id: Optional[str] = None) -> Dict:
    """JSON-safe view of a generated question."""
    d = {
        'question': q.question,
        'answer': q.answer_text,
        'difficulty': q.difficulty,
        'chunk_ids': list(q.chunk_ids),
        'type': q.question_type,
        'insufficient': isinstance(q, InsufficientContext),
    }
    if isinstance(q, MCQQuestion):
        d['options'] = list(q.options)
    if attempt_id is not None:
        d['attempt_id'] = attempt_id
    return d
