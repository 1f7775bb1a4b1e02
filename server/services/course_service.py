"""Courses and their section trees, scoped to the owning user."""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session as DBSession

from server.db.models import Chunk, Course, Progress, Section
from server.errors import InvalidInputError, NotFoundError

MAX_TITLE_LEN = 200
MAX_DESCRIPTION_LEN = 1000


def get_owned_course(db: DBSession, user_id: str, course_id: str) -> Course:
    """Course owned by user_id. Other users' courses are reported as missing."""
    course = db.scalar(select(Course).where(Course.id == course_id, Course.user_id == user_id))
    if course is None:
        raise NotFoundError("course", course_id)
    return course


def create_course(db: DBSession, user_id: str, title: str, description: Optional[str] = None) -> Course:
    title = (title or "").strip()
    if not title or len(title) > MAX_TITLE_LEN:
        raise InvalidInputError(f"Course title must be 1-{MAX_TITLE_LEN} characters")
    if description is not None:
        description = description.strip()
        if len(description) > MAX_DESCRIPTION_LEN:
            raise InvalidInputError(f"Description must be at most {MAX_DESCRIPTION_LEN} characters")

    course = Course(user_id=user_id, title=title, description=description)
    db.add(course)
    db.flush()
    return course


def list_courses(db: DBSession, user_id: str) -> List[Dict[str, Any]]:
    """User's courses, most recently updated first, with section and chunk counts."""
    courses = db.scalars(
        select(Course).where(Course.user_id == user_id).order_by(Course.updated_at.desc(), Course.id)
    ).all()
    if not courses:
        return []

    ids = [c.id for c in courses]
    section_counts = dict(db.execute(
        select(Section.course_id, func.count(Section.id)).where(Section.course_id.in_(ids)).group_by(Section.course_id)
    ).all())
    chunk_counts = dict(db.execute(
        select(Chunk.course_id, func.count(Chunk.id)).where(Chunk.course_id.in_(ids)).group_by(Chunk.course_id)
    ).all())

    return [
        {
            "id": c.id,
            "title": c.title,
            "description": c.description,
            "sections": section_counts.get(c.id, 0),
            "chunks": chunk_counts.get(c.id, 0),
            "updated_at": c.updated_at.isoformat() if c.updated_at else None,
        }
        for c in courses
    ]


def get_course_tree(db: DBSession, user_id: str, course_id: str) -> Dict[str, Any]:
    """
    Nested section tree for a course plus the user's progress per section.

    Returns:
        {"course": {...}, "sections": [node, ...], "progress": {section_id: {...}}}
        where each node is {"id", "title", "level", "order", "parent_id", "children"}.
        Sections whose parent is missing are treated as roots.
    """
    course = get_owned_course(db, user_id, course_id)

    sections = db.scalars(
        select(Section).where(Section.course_id == course_id).order_by(Section.order, Section.created_at, Section.id)
    ).all()

    progress_map: Dict[str, Dict[str, int]] = {}
    if sections:
        rows = db.scalars(
            select(Progress).where(Progress.user_id == user_id, Progress.section_id.in_([s.id for s in sections]))
        )
        for p in rows:
            progress_map[p.section_id] = {"mastery": p.mastery, "xp_earned": p.xp_earned}

    nodes: Dict[str, Dict[str, Any]] = {
        s.id: {
            "id": s.id,
            "title": s.title,
            "level": s.level,
            "order": s.order,
            "parent_id": s.parent_id,
            "children": [],
        }
        for s in sections
    }
    roots = []
    for s in sections:
        node = nodes[s.id]
        if s.parent_id and s.parent_id in nodes:
            nodes[s.parent_id]["children"].append(node)
        else:
            roots.append(node)

    return {
        "course": {"id": course.id, "title": course.title, "description": course.description},
        "sections": roots,
        "progress": progress_map,
    }
