"""Conversions between scheduling columns and ``SchedulingState`` values."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from conspecto.study.srs import ReviewHistoryItem, SchedulingState, history_from_json, history_to_json

from . import Folder, Note, Question


ScheduledRecord = Union[Note, Folder, Question]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes returned by backends without timezone support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def scheduling_state_of(record: ScheduledRecord) -> SchedulingState:
    history = tuple(
        ReviewHistoryItem(date=as_utc(item.date), quality=item.quality)
        for item in history_from_json(record.history)
    )
    return SchedulingState(
        repetition=record.repetition or 0,
        interval=record.interval or 0,
        ease_factor=record.ease_factor,
        next_review=as_utc(record.next_review),
        last_review=as_utc(record.last_review),
        history=history,
    )


async def store_scheduling_state(
    session: AsyncSession,
    record: ScheduledRecord,
    state: SchedulingState,
) -> None:
    """Copy a computed scheduling state onto a record and flush it."""
    record.repetition = state.repetition
    record.interval = state.interval
    record.ease_factor = state.ease_factor
    record.next_review = state.next_review
    record.last_review = state.last_review
    # A new list so the JSON column is flagged as modified.
    record.history = history_to_json(state.history)
    await session.flush()
