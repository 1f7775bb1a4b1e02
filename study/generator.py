"""Practice question generation grounded in retrieved chunks.

With an LLM provider, questions come from the model and are parsed into the
types in study.questions. Without one, a deterministic stub question is built
from the best-ranked chunk so the practice loop still works offline.
"""

import logging
import random
from typing import List, Optional, Sequence

from rag.types import RetrievedChunk
from study import prompts
from study.questions import (
    DIFFICULTIES,
    CodeStudyQuestion,
    CodeSubMode,
    Difficulty,
    FlashcardQuestion,
    GeneratedQuestion,
    InsufficientContext,
    MCQQuestion,
    PracticeMode,
    RawTextQuestion,
    ShortAnswerQuestion,
)

logger = logging.getLogger("studyforge.practice")

NOT_FOUND = "Not found in your notes"
MCQ_SHARE = 0.6


def _difficulty(value: Optional[str], fallback: str) -> str:
    return value if value in DIFFICULTIES else fallback


class QuestionGenerator:
    """
    Builds one practice question per call.

    Args:
        llm: LLMProvider, or None for stub questions
        rng: Random source for the MCQ / short-answer choice
    """

    def __init__(self, llm=None, rng: Optional[random.Random] = None):
        self.llm = llm
        self.rng = rng or random.Random()

    async def generate_quiz(
        self,
        text_chunks: Sequence[RetrievedChunk],
        code_chunks: Sequence[RetrievedChunk],
        difficulty: str,
        section_title: str,
    ) -> GeneratedQuestion:
        chunks = [*text_chunks, *code_chunks]
        if not chunks:
            return InsufficientContext(
                question=f"{NOT_FOUND}: no content available for this section.",
                difficulty=difficulty,
            )

        if self.llm is None:
            chunk = chunks[0]
            snippet = chunk.content[:300]
            return ShortAnswerQuestion(
                question=(
                    f'[Demo mode] Based on "{section_title}", explain the following concept '
                    f'in your own words:\n\n"{snippet}..."'
                ),
                answer=snippet,
                difficulty=difficulty,
                chunk_ids=[chunk.id],
            )

        mcq = self.rng.random() < MCQ_SHARE
        reply = await self.llm.chat(
            prompts.quiz_messages(chunks, difficulty, section_title, mcq),
            json_mode=True,
            temperature=0.8,
        )
        payload = prompts.parse_question_payload(reply)
        if payload is None:
            logger.debug("Unparsable quiz reply, using raw text")
            return RawTextQuestion(question=reply, difficulty=difficulty, chunk_ids=[c.id for c in chunks])
        if payload.insufficient:
            return InsufficientContext(question=payload.message or NOT_FOUND, difficulty=difficulty)

        if payload.type == "mcq" or payload.options:
            return MCQQuestion(
                question=payload.question,
                options=payload.options,
                answer=payload.answer or "",
                difficulty=payload.difficulty or difficulty,
                chunk_ids=payload.chunk_ids,
            )
        return ShortAnswerQuestion(
            question=payload.question,
            answer=payload.answer or "",
            difficulty=payload.difficulty or difficulty,
            chunk_ids=payload.chunk_ids,
        )

    async def generate_flashcard(
        self,
        text_chunks: Sequence[RetrievedChunk],
        code_chunks: Sequence[RetrievedChunk],
        section_title: str,
    ) -> GeneratedQuestion:
        chunks = [*text_chunks, *code_chunks]
        medium = Difficulty.MEDIUM.value
        if not chunks:
            return InsufficientContext(question=NOT_FOUND, difficulty=medium, question_type="flashcard")

        if self.llm is None:
            chunk = chunks[0]
            lines = [ln for ln in chunk.content.split("\n") if ln.strip()]
            front = lines[0][:100] if lines else section_title
            return FlashcardQuestion(
                question=f"[Demo] What do you know about: {front}?",
                answer="\n".join(lines[:5]),
                difficulty=medium,
                chunk_ids=[chunk.id],
            )

        reply = await self.llm.chat(prompts.flashcard_messages(chunks, section_title), json_mode=True, temperature=0.8)
        payload = prompts.parse_question_payload(reply)
        if payload is None:
            return RawTextQuestion(question=reply, difficulty=medium, chunk_ids=[c.id for c in chunks])
        if payload.insufficient:
            return InsufficientContext(question=payload.message or NOT_FOUND, difficulty=medium, question_type="flashcard")
        return FlashcardQuestion(
            question=payload.question,
            answer=payload.answer or "",
            difficulty=payload.difficulty or medium,
            chunk_ids=payload.chunk_ids,
        )

    async def generate_code_study(
        self,
        text_chunks: Sequence[RetrievedChunk],
        code_chunks: Sequence[RetrievedChunk],
        sub_mode: str,
        section_title: str,
    ) -> GeneratedQuestion:
        medium = Difficulty.MEDIUM.value
        if not code_chunks:
            return InsufficientContext(
                question="No code snippets found in your notes for this section.",
                difficulty=medium,
                question_type=f"code_{sub_mode}",
            )

        if self.llm is None:
            chunk = code_chunks[0]
            return CodeStudyQuestion(
                question=f"[Demo mode] Explain what this code does:\n\n{chunk.content[:500]}",
                answer=f"This is {chunk.language or 'code'} related to {section_title}.",
                difficulty=medium,
                chunk_ids=[chunk.id],
                sub_mode=sub_mode,
            )

        chunks = [*text_chunks, *code_chunks]
        reply = await self.llm.chat(
            prompts.code_study_messages(chunks, sub_mode, section_title),
            json_mode=True,
            temperature=0.7,
        )
        payload = prompts.parse_question_payload(reply)
        if payload is None:
            return RawTextQuestion(question=reply, difficulty=medium, chunk_ids=[c.id for c in chunks])
        if payload.insufficient:
            return InsufficientContext(
                question=payload.message or NOT_FOUND,
                difficulty=medium,
                question_type=f"code_{sub_mode}",
            )
        return CodeStudyQuestion(
            question=payload.question,
            answer=payload.answer or "",
            difficulty=payload.difficulty or medium,
            chunk_ids=payload.chunk_ids,
            sub_mode=sub_mode,
        )

    async def generate(
        self,
        mode: str,
        text_chunks: Sequence[RetrievedChunk],
        code_chunks: Sequence[RetrievedChunk],
        difficulty: str = Difficulty.MEDIUM.value,
        section_title: str = "",
        sub_mode: Optional[str] = None,
    ) -> GeneratedQuestion:
        """
        Generate a question for `mode` and normalize it.

        Chunk ids are restricted to the chunks that were passed in (unique,
        in order) and an unknown difficulty falls back to the requested one.
        """
        if mode == PracticeMode.QUIZ.value:
            question = await self.generate_quiz(text_chunks, code_chunks, difficulty, section_title)
        elif mode == PracticeMode.FLASHCARD.value:
            question = await self.generate_flashcard(text_chunks, code_chunks, section_title)
        elif mode == PracticeMode.CODE_STUDY.value:
            question = await self.generate_code_study(
                text_chunks, code_chunks, sub_mode or CodeSubMode.EXPLAIN.value, section_title,
            )
        else:
            raise ValueError(f"Unknown practice mode: {mode}")

        allowed = {c.id for c in [*text_chunks, *code_chunks]}
        question.chunk_ids = _unique_allowed(question.chunk_ids, allowed)
        question.difficulty = _difficulty(question.difficulty, difficulty)
        return question


def _unique_allowed(chunk_ids: List[str], allowed: set) -> List[str]:
    seen = set()
    out = []
    for cid in chunk_ids:
        if cid in allowed and cid not in seen:
            seen.add(cid)
            out.append(cid)
    return out
