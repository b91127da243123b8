"""Manual self-rated reviews of notes, folders and questions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conspecto.db import Note, Question
from conspecto.db.notes import get_due_notes, get_folder_by_id, get_note_by_id
from conspecto.db.questions import (
    QuestionScope,
    get_due_questions,
    get_question_by_id,
    get_questions_for_scope,
)
from conspecto.db.scheduling import ScheduledRecord, scheduling_state_of, store_scheduling_state
from conspecto.study.errors import NotFoundError, PersistenceError, ValidationError
from conspecto.study.srs import (
    DEFAULT_SCHEDULER_CONFIG,
    SchedulerConfig,
    SchedulingState,
    schedule_review,
    validate_quality,
)


LOGGER = logging.getLogger(__name__)

_Loader = Callable[[AsyncSession, str], Awaitable[Optional[ScheduledRecord]]]


class StudyService:
    """Applies the scheduler to stored notes, folders and questions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
    ) -> None:
        self._session_factory = session_factory
        self._config = config

    async def review_note(
        self, user_id: str, note_id: str, quality: int, now: Optional[datetime] = None
    ) -> SchedulingState:
        return await self._review("note", get_note_by_id, user_id, note_id, quality, now)

    async def review_folder(
        self, user_id: str, folder_id: str, quality: int, now: Optional[datetime] = None
    ) -> SchedulingState:
        return await self._review("folder", get_folder_by_id, user_id, folder_id, quality, now)

    async def review_question(
        self, user_id: str, question_id: str, quality: int, now: Optional[datetime] = None
    ) -> SchedulingState:
        return await self._review("question", get_question_by_id, user_id, question_id, quality, now)

    async def get_questions_for_scope(self, user_id: str, scope: QuestionScope) -> Sequence[Question]:
        """List the questions of a user, or of one of their folders or notes."""
        if not user_id:
            raise ValidationError("A user id is required to list questions.")
        try:
            async with self._session_factory() as session:
                return await get_questions_for_scope(session, scope, user_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load questions for {scope.scope} {scope.id}.") from exc

    async def get_due_questions(
        self, user_id: str, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> Sequence[Question]:
        try:
            async with self._session_factory() as session:
                return await get_due_questions(session, user_id, now=now, limit=limit)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load due questions for user {user_id}.") from exc

    async def get_due_notes(self, user_id: str, now: Optional[datetime] = None) -> Sequence[Note]:
        try:
            async with self._session_factory() as session:
                return await get_due_notes(session, user_id, now=now)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load due notes for user {user_id}.") from exc

    async def _review(
        self,
        kind: str,
        loader: _Loader,
        user_id: str,
        entity_id: str,
        quality: int,
        now: Optional[datetime],
    ) -> SchedulingState:
        validate_quality(quality)
        if not user_id or not entity_id:
            raise ValidationError(f"Reviewing a {kind} requires both a user id and a {kind} id.")
        if now is None:
            now = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    record = await loader(session, entity_id)
                    if record is None:
                        raise NotFoundError(f"{kind.capitalize()} {entity_id} does not exist.")
                    if record.user_id != user_id:
                        raise ValidationError(f"{kind.capitalize()} {entity_id} does not belong to user {user_id}.")

                    state = schedule_review(scheduling_state_of(record), quality, now, self._config)
                    await store_scheduling_state(session, record, state)
        except SQLAlchemyError as exc:
            LOGGER.exception("Failed to store review of %s %s.", kind, entity_id)
            raise PersistenceError(f"Failed to store review of {kind} {entity_id}.") from exc

        LOGGER.info(
            "Reviewed %s %s with quality %s; next review in %s day(s).",
            kind,
            entity_id,
            quality,
            state.interval,
        )
        return state
