"""Derived study figures shown alongside notes and AI reviews."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from conspecto.study.sessions import AiReviewSession, CompletedSession, ReviewMode
from conspecto.study.srs import ReviewHistoryItem, SchedulingState


MONO_TEST_MIN_REVIEWS = 4
MONO_TEST_MIN_AVERAGE_QUALITY = 4
MAX_SESSION_SCORE = 10

# (score upper bound, days until the next AI review); scores at or above the
# last bound fall back to ``_MAX_AI_REVIEW_GAP_DAYS``.
_AI_REVIEW_GAPS = ((5, 1), (7, 3), (9, 7))
_MAX_AI_REVIEW_GAP_DAYS = 14


def recommended_mode(history: Sequence[ReviewHistoryItem]) -> ReviewMode:
    """Suggest a combined test for notes the user already recalls well."""
    if not history:
        return ReviewMode.SEPARATE_QUESTIONS
    average = sum(item.quality for item in history) / len(history)
    if len(history) >= MONO_TEST_MIN_REVIEWS and average >= MONO_TEST_MIN_AVERAGE_QUALITY:
        return ReviewMode.MONO_TEST
    return ReviewMode.SEPARATE_QUESTIONS


def session_score(session: AiReviewSession) -> Optional[float]:
    """Return the 0..10 score of a completed session, ``None`` otherwise."""
    if not isinstance(session, CompletedSession) or session.result.total_questions == 0:
        return None
    return session.result.correct_answers / session.result.total_questions * MAX_SESSION_SCORE


def _session_date(session: AiReviewSession) -> datetime:
    if isinstance(session, CompletedSession):
        return session.completed_at
    return session.requested_at


def next_ai_review_date(sessions: Iterable[AiReviewSession], now: datetime) -> datetime:
    """Space AI reviews of a note according to how the latest session went."""
    ordered = sorted(sessions, key=_session_date, reverse=True)
    if not ordered:
        return now

    latest = ordered[0]
    score = session_score(latest)
    if score is None:
        return _session_date(latest)

    gap_days = _MAX_AI_REVIEW_GAP_DAYS
    for upper_bound, days in _AI_REVIEW_GAPS:
        if score < upper_bound:
            gap_days = days
            break
    return _session_date(latest) + timedelta(days=gap_days)


def count_due(states: Iterable[SchedulingState], day: date) -> int:
    """Count scheduled items whose next review falls on or before ``day``."""
    return sum(
        1 for state in states if state.next_review is None or state.next_review.date() <= day
    )
