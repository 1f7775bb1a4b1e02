"""Prompt templates and response payload models for question generation and grading."""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag.types import RetrievedChunk

GROUNDING_INSTRUCTION = (
    "Base your response ONLY on the provided context chunks.\n"
    "If the context is insufficient to create a good question/answer, respond with:\n"
    '{"insufficient": true, "message": "Not found in your notes"}\n'
    'Always include a "chunkIds" array referencing which chunks you used.'
)

QUIZ_MCQ_SCHEMA = (
    '{"question": "...", "options": ["A) ...", "B) ...", "C) ...", "D) ..."], '
    '"answer": "The correct option letter and explanation", "difficulty": "%s", '
    '"chunkIds": ["id1"], "type": "mcq"}'
)
QUIZ_SHORT_SCHEMA = (
    '{"question": "...", "answer": "Expected answer with key points", "difficulty": "%s", '
    '"chunkIds": ["id1"], "type": "short_answer"}'
)
FLASHCARD_SCHEMA = (
    '{"question": "Front of card", "answer": "Back of card", "difficulty": "easy|medium|hard", '
    '"chunkIds": ["id1"], "type": "flashcard"}'
)
CODE_STUDY_SCHEMA = (
    '{"question": "The exercise prompt with code", "answer": "The correct answer/solution", '
    '"difficulty": "easy|medium|hard", "chunkIds": ["id1"], "type": "code_%s"}'
)
GRADE_SCHEMA = '{"correct": true, "score": 0.0, "feedback": "Brief constructive feedback"}'

CODE_SUB_MODE_TASKS = {
    "explain": "Present a code snippet and ask the student to explain what it does, step by step.",
    "predict": "Present a code snippet and ask the student to predict its output. Include the correct output in the answer.",
    "bug": "Introduce a subtle bug into a code snippet and ask the student to find and fix it. Include the original code in the answer.",
    "fill": "Replace a key part of a code snippet with ___ and ask the student to fill it in. Include the missing code in the answer.",
}


class QuestionPayload(BaseModel):
    """Question JSON as returned by the model."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    insufficient: bool = False
    message: Optional[str] = None
    question: str = ""
    answer: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    difficulty: Optional[str] = None
    chunk_ids: List[str] = Field(default_factory=list, alias="chunkIds")
    type: Optional[str] = None


class GradePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: float
    feedback: str = ""
    correct: Optional[bool] = None


def format_chunks(chunks: Sequence[RetrievedChunk]) -> str:
    parts = []
    for c in chunks:
        label = f"{c.type}, {c.language}" if c.language else c.type
        parts.append(f"[Chunk {c.id}] ({label}):\n{c.content}")
    return "\n\n---\n\n".join(parts)


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object out of a model reply; None if it is not one."""
    try:
        obj = json.loads(strip_code_fence(text))
    except (json.JSONDecodeError, TypeError):
        return None
    return obj if isinstance(obj, dict) else None


def parse_question_payload(text: str) -> Optional[QuestionPayload]:
    obj = parse_json_object(text)
    if obj is None:
        return None
    try:
        return QuestionPayload.model_validate(obj)
    except ValidationError:
        return None


def parse_grade_payload(text: str) -> Optional[GradePayload]:
    obj = parse_json_object(text)
    if obj is None:
        return None
    try:
        return GradePayload.model_validate(obj)
    except ValidationError:
        return None


def quiz_messages(chunks, difficulty: str, section_title: str, mcq: bool) -> List[Dict[str, str]]:
    kind = "multiple choice (MCQ)" if mcq else "short answer"
    schema = (QUIZ_MCQ_SCHEMA if mcq else QUIZ_SHORT_SCHEMA) % difficulty
    return [
        {
            "role": "system",
            "content": (
                f"You are an educational quiz generator. Create a {difficulty} difficulty {kind} "
                f'question for the topic "{section_title}".\n\n{GROUNDING_INSTRUCTION}\n\n'
                f"Respond in JSON format:\n{schema}"
            ),
        },
        {"role": "user", "content": f"Context from student notes:\n\n{format_chunks(chunks)}"},
    ]


def flashcard_messages(chunks, section_title: str) -> List[Dict[str, str]]:
    return [
        {
            "role": "system",
            "content": (
                f'You are an educational flashcard creator. Create a concise flashcard for the topic "{section_title}". '
                "The front should be a clear question or prompt, the back a concise answer.\n\n"
                f"{GROUNDING_INSTRUCTION}\n\nRespond in JSON:\n{FLASHCARD_SCHEMA}"
            ),
        },
        {"role": "user", "content": f"Context:\n\n{format_chunks(chunks)}"},
    ]


def code_study_messages(chunks, sub_mode: str, section_title: str) -> List[Dict[str, str]]:
    task = CODE_SUB_MODE_TASKS.get(sub_mode, CODE_SUB_MODE_TASKS["explain"])
    return [
        {
            "role": "system",
            "content": (
                f'You are a code study exercise creator for the topic "{section_title}".\nTask: {task}\n\n'
                f"{GROUNDING_INSTRUCTION}\n\nRespond in JSON:\n{CODE_STUDY_SCHEMA % sub_mode}"
            ),
        },
        {"role": "user", "content": f"Context:\n\n{format_chunks(chunks)}"},
    ]


def grade_messages(question: str, correct_answer: str, user_answer: str, chunks) -> List[Dict[str, str]]:
    return [
        {
            "role": "system",
            "content": (
                "You are a fair grader. Grade the student's answer against the correct answer, "
                "using the context chunks as additional reference. Give partial credit for answers "
                f"that show understanding.\n\nRespond in JSON:\n{GRADE_SCHEMA}\n\nA score >= 0.7 counts as correct."
            ),
        },
        {
            "role": "user",
            "content": (
                f"Question: {question}\n\nCorrect Answer: {correct_answer}\n\n"
                f"Student's Answer: {user_answer}\n\nReference Context:\n{format_chunks(chunks)}"
            ),
        },
    ]


_MCQ_ANSWER = re.compile(r"^[A-D]\)")


def is_mcq_answer(answer: str) -> bool:
    return bool(_MCQ_ANSWER.match(answer or ""))
