"""Workflow driving AI review sessions from request to result."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conspecto.db.ai_reviews import (
    create_review,
    get_reviews_by_note_id,
    get_reviews_by_user_id,
    load_review,
    save_review,
)
from conspecto.db.notes import get_note_by_id
from conspecto.services.ai_provider import AnswerEvaluation, ReviewAIProvider
from conspecto.study.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    ProviderUnavailableError,
    ValidationError,
)
from conspecto.study.sessions import (
    AiReviewQuestion,
    AiReviewSession,
    Difficulty,
    EvaluatingSession,
    Evaluation,
    InProgressSession,
    PendingSession,
    QuestionStatus,
    ReadyForReviewSession,
    ReviewMode,
    expect_state,
    parse_difficulty,
    parse_mode,
)


LOGGER = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 5
MAX_QUESTION_COUNT = 20
DEFAULT_MAX_CONCURRENCY = 4

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AiReviewWorkflow:
    """Coordinates the AI provider and the database for AI review sessions.

    Each public method performs one step of the session state machine in its
    own transaction. Provider calls happen outside of open transactions, and a
    step is skipped without contacting the provider when the stored session has
    already moved past it.
    """

    def __init__(
        self,
        provider: ReviewAIProvider,
        session_factory: async_sessionmaker[AsyncSession],
        question_count: int = DEFAULT_QUESTION_COUNT,
        timeout: Optional[float] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_concurrency < 1:
            raise ValidationError("max_concurrency must be at least 1.")
        self._provider = provider
        self._session_factory = session_factory
        self._question_count = self._validate_question_count(question_count)
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._clock = clock

    @staticmethod
    def _validate_question_count(question_count: int) -> int:
        if isinstance(question_count, bool) or not isinstance(question_count, int):
            raise ValidationError("question_count must be an integer.")
        if not 1 <= question_count <= MAX_QUESTION_COUNT:
            raise ValidationError(f"question_count must be between 1 and {MAX_QUESTION_COUNT}.")
        return question_count

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            LOGGER.exception("Database error while trying to %s.", action)
            raise PersistenceError(f"Failed to {action}.") from exc

    @staticmethod
    async def _require(session: AsyncSession, review_id: str) -> AiReviewSession:
        if not review_id:
            raise ValidationError("An AI review session id is required.")
        review = await load_review(session, review_id)
        if review is None:
            raise NotFoundError(f"AI review session {review_id} does not exist.")
        return review

    async def _save(self, review: AiReviewSession) -> None:
        async with self._transaction(f"save AI review session {review.id}") as session:
            await save_review(session, review)
        LOGGER.info("AI review session %s is now %s.", review.id, review.status.value)

    async def _with_timeout(self, awaitable: Awaitable[T], timeout: Optional[float]) -> T:
        limit = timeout if timeout is not None else self._timeout
        if limit is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, limit)

    async def create_session(
        self,
        user_id: str,
        note_id: str,
        mode: ReviewMode | str,
        difficulty: Difficulty | str | None = None,
    ) -> PendingSession:
        """Request a new AI review of a note owned by ``user_id``."""
        if not user_id or not note_id:
            raise ValidationError("Both user_id and note_id are required to request an AI review.")
        review_mode = parse_mode(mode)
        review_difficulty = parse_difficulty(difficulty)

        async with self._transaction(f"create an AI review for note {note_id}") as session:
            note = await get_note_by_id(session, note_id)
            if note is None:
                raise NotFoundError(f"Note {note_id} does not exist.")
            if note.user_id != user_id:
                raise ValidationError(f"Note {note_id} is not accessible to user {user_id}.")

            review = PendingSession(
                id=uuid.uuid4().hex,
                user_id=user_id,
                note_id=note_id,
                mode=review_mode,
                difficulty=review_difficulty,
                requested_at=self._clock(),
            )
            await create_review(session, review)

        LOGGER.info(
            "Created AI review session %s for note %s (%s, %s).",
            review.id,
            note_id,
            review_mode.value,
            review_difficulty.value if review_difficulty else "default difficulty",
        )
        return review

    async def load_session(self, review_id: str, user_id: Optional[str] = None) -> AiReviewSession:
        """Return the stored session; never changes it."""
        async with self._transaction(f"load AI review session {review_id}") as session:
            review = await self._require(session, review_id)
        if user_id is not None and review.user_id != user_id:
            raise NotFoundError(f"AI review session {review_id} does not exist.")
        return review

    async def list_sessions_for_note(self, note_id: str) -> Sequence[AiReviewSession]:
        async with self._transaction(f"list AI reviews of note {note_id}") as session:
            return await get_reviews_by_note_id(session, note_id)

    async def list_sessions_for_user(self, user_id: str) -> Sequence[AiReviewSession]:
        async with self._transaction(f"list AI reviews of user {user_id}") as session:
            return await get_reviews_by_user_id(session, user_id)

    async def generate_questions(
        self,
        review_id: str,
        question_count: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> AiReviewSession:
        """Ask the provider for questions; pending sessions only."""
        count = self._question_count if question_count is None else self._validate_question_count(question_count)

        async with self._transaction(f"load AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            if not isinstance(review, PendingSession):
                LOGGER.debug(
                    "Skipping question generation for session %s because it is %s.",
                    review_id,
                    review.status.value,
                )
                return review
            note = await get_note_by_id(session, review.note_id)
            note_content = (note.content_plain_text or "").strip() if note is not None else ""

        if not note_content:
            next_review = review.fail("The note has no content to review.")
            await self._save(next_review)
            return next_review

        try:
            questions = await self._with_timeout(
                self._provider.generate_questions(
                    note_content,
                    mode=review.mode,
                    difficulty=review.difficulty,
                    question_count=count,
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Question generation for session %s timed out.", review_id)
            next_review = review.fail("Question generation timed out.")
        except ProviderError as exc:
            LOGGER.warning("Question generation for session %s failed: %s", review_id, exc)
            next_review = review.fail(str(exc) or "Question generation failed.")
        except Exception as exc:
            LOGGER.exception("Unexpected error while generating questions for session %s.", review_id)
            next_review = review.fail(str(exc) or "Question generation failed.")
        else:
            next_review = self._accept_questions(review, questions)

        await self._save(next_review)
        return next_review

    def _accept_questions(
        self, review: PendingSession, questions: Sequence[AiReviewQuestion]
    ) -> AiReviewSession:
        if not questions:
            return review.fail("The AI provider returned no questions.")
        try:
            return review.questions_generated(
                questions,
                now=self._clock(),
                model_version=getattr(self._provider, "model", None),
            )
        except (ValidationError, InvalidTransitionError) as exc:
            LOGGER.warning("AI provider returned unusable questions for session %s: %s", review.id, exc)
            return review.fail(f"The AI provider returned unusable questions: {exc}")

    async def generate_insights(self, review_id: str, timeout: Optional[float] = None) -> AiReviewSession:
        """Attach a summary and key takeaways of the reviewed note.

        Sessions that already carry insights are returned unchanged. Provider
        failures are raised to the caller and leave the session untouched.
        """
        async with self._transaction(f"load AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            if review.has_insights:
                LOGGER.debug("AI review session %s already has insights.", review_id)
                return review
            if review.is_terminal:
                raise InvalidTransitionError(
                    f"AI review session {review_id} is already {review.status.value}."
                )
            note = await get_note_by_id(session, review.note_id)
            note_content = (note.content_plain_text or "").strip() if note is not None else ""

        if not note_content:
            raise ValidationError(f"Note {review.note_id} has no content to summarize.")

        try:
            insights = await self._with_timeout(self._provider.generate_insights(note_content), timeout)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Insight generation for session %s timed out.", review_id)
            raise ProviderUnavailableError("Insight generation timed out.") from exc

        async with self._transaction(f"store insights of AI review session {review_id}") as session:
            current = await self._require(session, review_id)
            updated = current.with_insights(insights.summary, insights.key_takeaways)
            await save_review(session, updated)

        LOGGER.info(
            "Stored insights for AI review session %s (%s takeaways).",
            review_id,
            len(updated.key_takeaways),
        )
        return updated

    async def start_session(self, review_id: str) -> InProgressSession:
        async with self._transaction(f"start AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            if isinstance(review, InProgressSession):
                return review
            expect_state(review, ReadyForReviewSession)
            started = review.start(self._clock())
            await save_review(session, started)

        LOGGER.info("AI review session %s started.", review_id)
        return started

    async def submit_answer(
        self,
        review_id: str,
        question_id: str,
        answer: str,
        time_spent_ms: Optional[int] = None,
    ) -> InProgressSession:
        async with self._transaction(f"record an answer in AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            expect_state(review, InProgressSession)
            updated = review.answer(question_id, answer, time_spent_ms=time_spent_ms)
            await save_review(session, updated)
        return updated

    async def skip_question(
        self, review_id: str, question_id: str, time_spent_ms: Optional[int] = None
    ) -> InProgressSession:
        async with self._transaction(f"skip a question in AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            expect_state(review, InProgressSession)
            updated = review.skip(question_id, time_spent_ms=time_spent_ms)
            await save_review(session, updated)
        return updated

    async def fail_session(self, review_id: str, message: str) -> AiReviewSession:
        """Give up on a session, e.g. after a caller-side timeout."""
        async with self._transaction(f"fail AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            if review.is_terminal:
                return review
            failed = review.fail(message)
            await save_review(session, failed)

        LOGGER.info("AI review session %s failed: %s", review_id, message)
        return failed

    async def evaluate_session(self, review_id: str, timeout: Optional[float] = None) -> AiReviewSession:
        """Lock answers, evaluate every unresolved question and complete the session."""
        async with self._transaction(f"begin evaluating AI review session {review_id}") as session:
            review = await self._require(session, review_id)
            if review.is_terminal:
                LOGGER.debug("AI review session %s is already %s.", review_id, review.status.value)
                return review
            if isinstance(review, InProgressSession):
                review = review.begin_evaluation()
                await save_review(session, review)
            expect_state(review, EvaluatingSession)
            note = await get_note_by_id(session, review.note_id)
            note_content = note.content_plain_text if note is not None else None

        LOGGER.info("Evaluating answers of AI review session %s.", review_id)
        review = review.resolve_skipped()

        try:
            review = await self._with_timeout(self._evaluate_answers(review, note_content), timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Evaluation of AI review session %s timed out.", review_id)
            failed = review.fail("Answer evaluation timed out.")
            await self._save(failed)
            return failed
        except ProviderUnavailableError as exc:
            LOGGER.warning("AI provider unavailable while evaluating session %s: %s", review_id, exc)
            failed = review.fail(str(exc) or "The AI provider is unavailable.")
            await self._save(failed)
            return failed

        # Verdicts are stored before completing so a retry never re-evaluates them.
        await self._save(review)
        completed = review.complete(self._clock())
        await self._save(completed)
        return completed

    async def _evaluate_answers(
        self,
        review: EvaluatingSession,
        note_content: Optional[str],
    ) -> EvaluatingSession:
        pending = [
            question
            for question in review.unresolved_questions()
            if question.status is not QuestionStatus.SKIPPED
        ]
        for question in pending:
            if question.status is QuestionStatus.ANSWERED:
                review = review.mark_evaluating(question.id)

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _evaluate(question: AiReviewQuestion) -> Tuple[str, AnswerEvaluation]:
            async with semaphore:
                return question.id, await self._evaluate_one(review, question, note_content)

        outcomes = await asyncio.gather(*(_evaluate(question) for question in pending), return_exceptions=True)

        verdicts: List[Tuple[str, AnswerEvaluation]] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            verdicts.append(outcome)

        for question_id, verdict in verdicts:
            review = review.record_evaluation(
                question_id,
                verdict.evaluation,
                ai_message=verdict.ai_message,
                score=verdict.score,
            )
        return review

    async def _evaluate_one(
        self,
        review: EvaluatingSession,
        question: AiReviewQuestion,
        note_content: Optional[str],
    ) -> AnswerEvaluation:
        if not question.answer:
            return AnswerEvaluation(evaluation=Evaluation.NOT_ANSWERED)
        try:
            return await self._provider.evaluate_answer(
                question,
                question.answer,
                note_content=note_content,
                difficulty=review.difficulty,
            )
        except ProviderUnavailableError:
            raise
        except ProviderError as exc:
            LOGGER.warning("Evaluation of question %s in session %s failed: %s", question.id, review.id, exc)
            return AnswerEvaluation(
                evaluation=Evaluation.NOT_ANSWERED,
                ai_message=f"Automatic evaluation failed: {exc}",
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error while evaluating question %s in session %s.", question.id, review.id)
            return AnswerEvaluation(
                evaluation=Evaluation.NOT_ANSWERED,
                ai_message=f"Automatic evaluation failed: {exc}",
            )
