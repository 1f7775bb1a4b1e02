"""Practice rounds: generate a grounded question, then grade the user's answer."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from rag.embedding_client import EmbeddingClient, get_embedding_client
from rag.retrieve import Retriever
from rag.types import RetrievedChunk
from server.config import Settings
from server.db.models import Attempt, Chunk, Course, Section, utcnow
from server.errors import AttemptAlreadyGradedError, InvalidInputError, NotFoundError, UnauthorizedError
from server.services.llm import get_llm_provider
from server.services.progress_service import record_attempt
from study.gamification import AttemptOutcome
from study.generator import QuestionGenerator
from study.grader import AnswerGrader, GradeResult, grade_flashcard, grade_mcq
from study.prompts import is_mcq_answer
from study.questions import (
    DIFFICULTIES,
    CodeSubMode,
    GeneratedQuestion,
    InsufficientContext,
    PracticeMode,
    question_to_dict,
)

logger = logging.getLogger("studyforge.practice")

MAX_ANSWER_CHARS = 10_000
MAX_TIME_MS = 60 * 60 * 1000

_MODES = tuple(m.value for m in PracticeMode)
_SUB_MODES = tuple(m.value for m in CodeSubMode)


@dataclass
class PracticeQuestion:
    question: GeneratedQuestion
    attempt_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return question_to_dict(self.question, self.attempt_id)


@dataclass
class PracticeGrade:
    grade: GradeResult
    outcome: AttemptOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correct": self.grade.correct,
            "score": self.grade.score,
            "feedback": self.grade.feedback,
            "xp_earned": self.outcome.xp_earned,
            "streak": self.outcome.new_streak,
            "mastery": self.outcome.mastery,
        }


def _owned_section(db: DBSession, user_id: str, section_id: str) -> Section:
    section = db.get(Section, section_id)
    if section is None:
        raise NotFoundError("section", section_id)
    course = db.get(Course, section.course_id)
    if course is None or course.user_id != user_id:
        raise UnauthorizedError(f"Section {section_id} belongs to another user")
    return section


async def generate_practice(
    db: DBSession,
    user_id: str,
    section_id: str,
    mode: str,
    difficulty: str = "medium",
    sub_mode: Optional[str] = None,
    client: Optional[EmbeddingClient] = None,
    generator: Optional[QuestionGenerator] = None,
    top_k_text: Optional[int] = None,
    top_k_code: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> PracticeQuestion:
    """
    Retrieve context for a section and generate one question from it.

    A pending Attempt holding the question and reference answer is created,
    except when the notes cannot ground a question (InsufficientContext).

    Unset collaborators come from settings: the embedding client, the
    question generator (stub questions when no LLM key is configured) and
    the top-K limits.

    Raises:
        InvalidInputError: unknown mode, difficulty or code sub-mode
        NotFoundError: section does not exist
        UnauthorizedError: section belongs to another user's course
    """
    if mode not in _MODES:
        raise InvalidInputError(f"Unknown practice mode: {mode}")
    if difficulty not in DIFFICULTIES:
        raise InvalidInputError(f"Unknown difficulty: {difficulty}")
    if sub_mode is not None and sub_mode not in _SUB_MODES:
        raise InvalidInputError(f"Unknown code study mode: {sub_mode}")

    section = _owned_section(db, user_id, section_id)
    settings = settings or Settings()
    client = client or get_embedding_client(settings)
    generator = generator or QuestionGenerator(get_llm_provider(settings))
    top_k_text = settings.top_k_text if top_k_text is None else top_k_text
    top_k_code = settings.top_k_code if top_k_code is None else top_k_code

    context = await Retriever(db, client).retrieve(
        section.course_id, section_id, section.title, top_k_text=top_k_text, top_k_code=top_k_code,
    )
    question = await generator.generate(
        mode,
        context.text_chunks,
        context.code_chunks,
        difficulty=difficulty,
        section_title=section.title,
        sub_mode=sub_mode,
    )

    if isinstance(question, InsufficientContext):
        logger.info("Not enough context in section %s for %s practice", section_id, mode)
        return PracticeQuestion(question=question, attempt_id=None)

    attempt = Attempt(
        user_id=user_id,
        section_id=section_id,
        mode=mode,
        question=question.question,
        answer=question.answer_text,
        difficulty=question.difficulty,
        chunk_ids=list(question.chunk_ids),
        created_at=utcnow(),
    )
    db.add(attempt)
    db.flush()
    return PracticeQuestion(question=question, attempt_id=attempt.id)


def _owned_chunks(db: DBSession, user_id: str, chunk_ids) -> list:
    if not chunk_ids:
        return []
    rows = db.scalars(
        select(Chunk)
        .join(Course, Course.id == Chunk.course_id)
        .where(Chunk.id.in_(list(chunk_ids)), Course.user_id == user_id)
    ).all()
    by_id = {c.id: c for c in rows}
    return [
        RetrievedChunk(id=c.id, content=c.content, type=c.type, language=c.language, similarity=1.0)
        for c in (by_id.get(cid) for cid in chunk_ids)
        if c is not None
    ]


async def grade_practice(
    db: DBSession,
    user_id: str,
    attempt_id: str,
    user_answer: Optional[str] = None,
    quality: Optional[int] = None,
    time_ms: Optional[int] = None,
    grader: Optional[AnswerGrader] = None,
    settings: Optional[Settings] = None,
) -> PracticeGrade:
    """
    Grade a pending attempt and apply the gamification updates.

    Flashcards use the self-rated quality; MCQ answers compare option
    letters; everything else goes to the grader with the attempt's chunks
    (restricted to the user's own courses).

    Raises:
        NotFoundError: attempt does not exist for this user
        UnauthorizedError: attempt's section belongs to another user
        AttemptAlreadyGradedError: attempt was already graded
        InvalidInputError: missing answer or out-of-range quality/time
    """
    if quality is not None and not (0 <= quality <= 5):
        raise InvalidInputError("Quality must be 0-5")
    if time_ms is not None and not (0 < time_ms <= MAX_TIME_MS):
        raise InvalidInputError("time_ms must be positive and at most one hour")
    if user_answer is not None and len(user_answer) > MAX_ANSWER_CHARS:
        raise InvalidInputError(f"Answer must be at most {MAX_ANSWER_CHARS} characters")

    attempt = db.scalar(select(Attempt).where(Attempt.id == attempt_id, Attempt.user_id == user_id))
    if attempt is None:
        raise NotFoundError("attempt", attempt_id)
    _owned_section(db, user_id, attempt.section_id)
    if attempt.graded_at is not None:
        raise AttemptAlreadyGradedError(attempt_id)

    correct_answer = attempt.answer or ""
    submitted = (user_answer or "").strip()

    if attempt.mode == PracticeMode.FLASHCARD.value:
        grade = grade_flashcard(submitted, quality)
        submitted = submitted or ("known" if grade.correct else "unknown")
    elif not submitted:
        raise InvalidInputError("Answer is required")
    elif attempt.mode == PracticeMode.QUIZ.value and is_mcq_answer(correct_answer):
        grade = grade_mcq(correct_answer, submitted)
    elif not correct_answer.strip():
        grade = GradeResult(correct=False, score=0.0, feedback="Reference answer is missing for this question.")
    else:
        grader = grader or AnswerGrader(get_llm_provider(settings or Settings()))
        chunks = _owned_chunks(db, user_id, attempt.chunk_ids or [])
        grade = await grader.grade(attempt.question, correct_answer, submitted, chunks)

    outcome = record_attempt(db, attempt.id, user_id, grade, time_ms=time_ms, user_answer=submitted)
    return PracticeGrade(grade=grade, outcome=outcome)
