"""Answer grading: keyword overlap, MCQ letters, flashcard self-rating, LLM."""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from rag.types import RetrievedChunk
from study import prompts

logger = logging.getLogger("studyforge.practice")

LLM_PASS_SCORE = 0.7
HEURISTIC_PASS_SCORE = 0.5
MIN_KEYWORD_LEN = 4


@dataclass
class GradeResult:
    correct: bool
    score: float
    feedback: str


def _keywords(text: str) -> list:
    """Words longer than three characters, lowercased, in order."""
    return [w for w in re.split(r'\s+', text.lower().strip()) if len(w) >= MIN_KEYWORD_LEN]


def grade_keyword_overlap(correct_answer: str, user_answer: str) -> GradeResult:
    """
    Heuristic grading used when no LLM is configured.

    Each keyword of the correct answer counts as matched when it appears as a
    substring of the lowercased user answer. Scoring:
        score = min(1, matches / max(0.5 * keywords, 1))
        correct when score >= 0.5
    An answer key with no keywords scores 0.5.
    """
    normalized_user = user_answer.lower().strip()
    words = _keywords(correct_answer)
    matches = sum(1 for w in words if w in normalized_user)
    if words:
        score = min(1.0, matches / max(len(words) * 0.5, 1))
    else:
        score = 0.5
    return GradeResult(
        correct=score >= HEURISTIC_PASS_SCORE,
        score=score,
        feedback=(
            f"[Demo Mode] Keyword overlap grading: {matches}/{len(words)} key terms matched. "
            "Add an LLM API key for AI-powered grading."
        ),
    )


def grade_mcq(correct_answer: str, user_answer: str) -> GradeResult:
    """Compare the leading option letters, case-insensitively."""
    correct = correct_answer[:1].upper() == user_answer.strip()[:1].upper()
    return GradeResult(
        correct=correct,
        score=1.0 if correct else 0.0,
        feedback="Correct!" if correct else f"Incorrect. The correct answer is {correct_answer}",
    )


def flashcard_quality(user_answer: str, quality: Optional[int] = None) -> int:
    """Self-rated quality; "unknown" means 1, anything else defaults to 4."""
    if quality is not None:
        return quality
    return 1 if user_answer.strip().lower() == "unknown" else 4


def grade_flashcard(user_answer: str, quality: Optional[int] = None) -> GradeResult:
    q = flashcard_quality(user_answer, quality)
    correct = q >= 3
    return GradeResult(
        correct=correct,
        score=max(0.0, min(1.0, q / 5)),
        feedback="Good recall. Keep the streak going." if correct else "Needs review. This card was queued again.",
    )


class AnswerGrader:
    """
    Grades free-form answers.

    With an LLM provider the model scores the answer (correct at >= 0.7);
    without one, keyword overlap is used.
    """

    def __init__(self, llm=None):
        self.llm = llm

    async def grade(
        self,
        question: str,
        correct_answer: str,
        user_answer: str,
        chunks: Sequence[RetrievedChunk] = (),
    ) -> GradeResult:
        if self.llm is None:
            logger.debug("No LLM configured, grading by keyword overlap")
            return grade_keyword_overlap(correct_answer, user_answer)

        reply = await self.llm.chat(
            prompts.grade_messages(question, correct_answer, user_answer, chunks),
            json_mode=True,
            temperature=0.3,
        )
        payload = prompts.parse_grade_payload(reply)
        if payload is None:
            logger.warning("Grader returned malformed output")
            return GradeResult(correct=False, score=0.0, feedback="Unable to grade answer.")
        return GradeResult(
            correct=payload.score >= LLM_PASS_SCORE,
            score=max(0.0, min(1.0, payload.score)),
            feedback=payload.feedback or "",
        )
