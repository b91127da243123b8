"""Lookups for notes and folders."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import Folder, Note


async def get_note_by_id(session: AsyncSession, note_id: str) -> Optional[Note]:
    return await session.get(Note, note_id)


async def get_folder_by_id(session: AsyncSession, folder_id: str) -> Optional[Folder]:
    return await session.get(Folder, folder_id)


async def get_due_notes(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> Sequence[Note]:
    """Return active notes of a user whose review is due, earliest first.

    Notes that have never been reviewed are due immediately.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = (
        select(Note)
        .where(
            Note.user_id == user_id,
            Note.status == "active",
            or_(Note.next_review.is_(None), Note.next_review <= now),
        )
        .order_by(Note.next_review.is_not(None), Note.next_review, Note.id)
    )
    result = await session.execute(stmt)
    return result.scalars().all()
