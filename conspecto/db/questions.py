"""Lookups for spaced-repetition questions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from conspecto.study.errors import ValidationError

from . import Note, Question


QUESTION_SCOPES = ("user", "folder", "note")


@dataclass(frozen=True, slots=True)
class QuestionScope:
    """Which questions to drill: all of a user's, a folder's, or a note's."""

    scope: str
    id: str

    def __post_init__(self) -> None:
        if self.scope not in QUESTION_SCOPES:
            raise ValidationError(f"Unknown question scope: {self.scope!r}.")
        if not self.id:
            raise ValidationError(f"A {self.scope} id is required to list questions.")


async def get_question_by_id(session: AsyncSession, question_id: str) -> Optional[Question]:
    return await session.get(Question, question_id)


async def get_questions_by_user_id(session: AsyncSession, user_id: str) -> Sequence[Question]:
    stmt = select(Question).where(Question.user_id == user_id).order_by(Question.time_stamp, Question.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_questions_by_note_id(session: AsyncSession, note_id: str, user_id: str) -> Sequence[Question]:
    stmt = (
        select(Question)
        .where(Question.note_id == note_id, Question.user_id == user_id)
        .order_by(Question.time_stamp, Question.id)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_questions_by_folder_id(session: AsyncSession, folder_id: str, user_id: str) -> Sequence[Question]:
    stmt = (
        select(Question)
        .join(Note, Question.note_id == Note.id)
        .where(Note.folder_id == folder_id, Question.user_id == user_id)
        .order_by(Question.time_stamp, Question.id)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_questions_for_scope(
    session: AsyncSession,
    scope: QuestionScope,
    user_id: str,
) -> Sequence[Question]:
    """Return the questions of ``scope`` that belong to ``user_id``."""
    if scope.scope == "user":
        if scope.id != user_id:
            raise ValidationError(f"Questions of user {scope.id} are not accessible to user {user_id}.")
        return await get_questions_by_user_id(session, user_id)
    if scope.scope == "folder":
        return await get_questions_by_folder_id(session, scope.id, user_id)
    return await get_questions_by_note_id(session, scope.id, user_id)


async def get_due_questions(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> Sequence[Question]:
    """Return a user's questions whose review is due, earliest first."""
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = (
        select(Question)
        .where(
            Question.user_id == user_id,
            or_(Question.next_review.is_(None), Question.next_review <= now),
        )
        .order_by(Question.next_review.is_not(None), Question.next_review, Question.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()
