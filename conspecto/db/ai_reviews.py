"""Persistence for AI review sessions.

Rows store the status as a plain string together with every optional column;
``review_from_record`` rebuilds the matching state dataclass and
``save_review`` refuses writes that would move a stored session backwards.
"""

from __future__ import annotations

from dataclasses import fields
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conspecto.study.errors import InvalidTransitionError, NotFoundError, PersistenceError, ValidationError
from conspecto.study.sessions import (
    SESSION_CLASSES,
    AiReviewQuestion,
    AiReviewSession,
    CompletedSession,
    Difficulty,
    FailedSession,
    PendingSession,
    ReviewMode,
    SessionResult,
    SessionStatus,
    check_transition,
)

from . import AiReviewSessionRecord
from .scheduling import as_utc


def review_from_record(record: AiReviewSessionRecord) -> AiReviewSession:
    """Rebuild the state dataclass stored in ``record``."""
    try:
        state_cls = SESSION_CLASSES[SessionStatus(record.status)]
        values = {
            "id": record.id,
            "user_id": record.user_id,
            "note_id": record.note_id,
            "mode": ReviewMode(record.mode),
            "difficulty": Difficulty(record.difficulty) if record.difficulty else None,
            "model_version": record.model_version,
            "summary": record.summary,
            "key_takeaways": tuple(record.key_takeaways or ()),
            "requested_at": as_utc(record.requested_at),
        }
        optional = {
            "questions": tuple(AiReviewQuestion.from_dict(item) for item in record.generated_questions or ()),
            "questions_generated_at": as_utc(record.questions_generated_at),
            "session_started_at": as_utc(record.session_started_at),
            "completed_at": as_utc(record.completed_at),
            "result": SessionResult.from_dict(record.result) if record.result else None,
            "error_message": record.error_message,
        }
        names = {item.name for item in fields(state_cls)}
        values.update({name: value for name, value in optional.items() if name in names})
        return state_cls(**values)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise PersistenceError(f"AI review session {record.id} is stored in an inconsistent state.") from exc


def _copy_to_record(record: AiReviewSessionRecord, review: AiReviewSession) -> None:
    record.status = review.status.value
    record.mode = review.mode.value
    record.difficulty = review.difficulty.value if review.difficulty else None
    record.model_version = review.model_version
    record.summary = review.summary
    record.key_takeaways = list(review.key_takeaways)
    record.requested_at = review.requested_at
    record.generated_questions = [question.to_dict() for question in getattr(review, "questions", ())]
    record.questions_generated_at = getattr(review, "questions_generated_at", None)
    record.session_started_at = getattr(review, "session_started_at", None)
    record.completed_at = review.completed_at if isinstance(review, CompletedSession) else None
    record.result = review.result.to_dict() if isinstance(review, CompletedSession) else None
    record.error_message = review.error_message if isinstance(review, FailedSession) else None


async def create_review(session: AsyncSession, review: PendingSession) -> AiReviewSessionRecord:
    record = AiReviewSessionRecord(id=review.id, user_id=review.user_id, note_id=review.note_id)
    _copy_to_record(record, review)
    session.add(record)
    await session.flush()
    return record


async def get_review_record(session: AsyncSession, review_id: str) -> Optional[AiReviewSessionRecord]:
    return await session.get(AiReviewSessionRecord, review_id)


async def load_review(session: AsyncSession, review_id: str) -> Optional[AiReviewSession]:
    record = await get_review_record(session, review_id)
    if record is None:
        return None
    return review_from_record(record)


async def save_review(session: AsyncSession, review: AiReviewSession) -> None:
    """Persist the next state of an existing session."""
    record = await get_review_record(session, review.id)
    if record is None:
        raise NotFoundError(f"AI review session {review.id} does not exist.")
    if (record.user_id, record.note_id, record.mode) != (review.user_id, review.note_id, review.mode.value):
        raise InvalidTransitionError(f"AI review session {review.id} identity fields are immutable.")

    check_transition(SessionStatus(record.status), review.status)
    _copy_to_record(record, review)
    await session.flush()


async def get_reviews_by_note_id(session: AsyncSession, note_id: str) -> Sequence[AiReviewSession]:
    stmt = (
        select(AiReviewSessionRecord)
        .where(AiReviewSessionRecord.note_id == note_id)
        .order_by(AiReviewSessionRecord.requested_at.desc(), AiReviewSessionRecord.id)
    )
    result = await session.execute(stmt)
    return [review_from_record(record) for record in result.scalars().all()]


async def get_reviews_by_user_id(session: AsyncSession, user_id: str) -> Sequence[AiReviewSession]:
    stmt = (
        select(AiReviewSessionRecord)
        .where(AiReviewSessionRecord.user_id == user_id)
        .order_by(AiReviewSessionRecord.requested_at.desc(), AiReviewSessionRecord.id)
    )
    result = await session.execute(stmt)
    return [review_from_record(record) for record in result.scalars().all()]
