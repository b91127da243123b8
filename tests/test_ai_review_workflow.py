from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy.exc import OperationalError

from conspecto.db import Note
from conspecto.db.ai_reviews import get_review_record
from conspecto.services.ai_provider import AnswerEvaluation, NoteInsights
from conspecto.study import ai_review
from conspecto.study.ai_review import AiReviewWorkflow
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
    CompletedSession,
    Difficulty,
    EvaluatingSession,
    Evaluation,
    FailedSession,
    InProgressSession,
    PendingSession,
    QuestionStatus,
    ReadyForReviewSession,
    ReviewMode,
    SessionResult,
    SessionStatus,
)


START = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self) -> None:
        self._now = START

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=30)
        return self._now


class _StubProvider:
    name = "stub"
    model = "stub-model-1"

    def __init__(
        self,
        questions: Optional[List[AiReviewQuestion]] = None,
        verdicts: Optional[Dict[str, object]] = None,
        generation_error: Optional[Exception] = None,
        delay: float = 0.0,
        insights: Optional[NoteInsights] = None,
    ) -> None:
        self._questions = questions if questions is not None else []
        self._verdicts = verdicts or {}
        self._generation_error = generation_error
        self._delay = delay
        self.generation_calls = 0
        self.evaluated: List[str] = []
        self.last_generation_kwargs: Optional[dict] = None
        self._insights = insights or NoteInsights(
            summary="Plants make sugar from light.",
            key_takeaways=["Light drives photosynthesis."],
        )
        self.insight_calls = 0

    async def generate_questions(self, note_content, *, mode, difficulty, question_count):
        self.generation_calls += 1
        self.last_generation_kwargs = {
            "note_content": note_content,
            "mode": mode,
            "difficulty": difficulty,
            "question_count": question_count,
        }
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._generation_error is not None:
            raise self._generation_error
        return list(self._questions[:question_count])

    async def evaluate_answer(self, question, answer, *, note_content=None, difficulty=None):
        self.evaluated.append(question.id)
        if self._delay:
            await asyncio.sleep(self._delay)
        verdict = self._verdicts.get(question.id, Evaluation.CORRECT)
        if isinstance(verdict, Exception):
            raise verdict
        return AnswerEvaluation(evaluation=verdict, ai_message=f"verdict for {answer}", score=80)

    async def generate_insights(self, note_content):
        self.insight_calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._insights


def _questions(count: int) -> List[AiReviewQuestion]:
    return [
        AiReviewQuestion(id=f"q{index}", question=f"Question {index}?", question_type="definition")
        for index in range(1, count + 1)
    ]


async def _add_note(session_factory, note_id: str = "note-1", user_id: str = "user-1", content: str = "Photosynthesis turns light into chemical energy.") -> None:
    async with session_factory() as session:
        async with session.begin():
            session.add(Note(id=note_id, user_id=user_id, title="Plants", content_plain_text=content))


def _workflow(provider, session_factory, **kwargs) -> AiReviewWorkflow:
    return AiReviewWorkflow(provider, session_factory, clock=_Clock(), **kwargs)


@pytest.mark.asyncio
async def test_full_review_flow_produces_result(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(
        questions=_questions(5),
        verdicts={"q4": Evaluation.INCORRECT},
    )
    workflow = _workflow(provider, session_factory, question_count=5)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions", "easy")
    assert isinstance(pending, PendingSession)
    assert pending.difficulty is Difficulty.EASY

    ready = await workflow.generate_questions(pending.id)
    assert isinstance(ready, ReadyForReviewSession)
    assert ready.model_version == "stub-model-1"
    assert provider.last_generation_kwargs["question_count"] == 5
    assert provider.last_generation_kwargs["mode"] is ReviewMode.SEPARATE_QUESTIONS

    await workflow.start_session(pending.id)
    for question_id in ("q1", "q2", "q3", "q4"):
        await workflow.submit_answer(pending.id, question_id, f"answer {question_id}")
    await workflow.skip_question(pending.id, "q5")

    completed = await workflow.evaluate_session(pending.id)

    assert isinstance(completed, CompletedSession)
    assert completed.result == SessionResult(total_questions=5, correct_answers=3, skipped_answers=1)
    assert sorted(provider.evaluated) == ["q1", "q2", "q3", "q4"]
    assert completed.get_question("q1").ai_message == "verdict for answer q1"
    assert completed.get_question("q5").evaluation is Evaluation.NOT_ANSWERED

    stored = await workflow.load_session(pending.id, user_id="user-1")
    assert isinstance(stored, CompletedSession)
    assert stored.result == completed.result
    assert stored.requested_at < stored.questions_generated_at < stored.session_started_at < stored.completed_at

    async with session_factory() as session:
        record = await get_review_record(session, pending.id)
        assert record is not None
        assert record.status == "completed"
        assert record.result == {"totalQuestions": 5, "correctAnswers": 3, "skippedAnswers": 1}


@pytest.mark.asyncio
async def test_empty_generation_fails_session(session_factory) -> None:
    await _add_note(session_factory)
    workflow = _workflow(_StubProvider(questions=[]), session_factory)

    pending = await workflow.create_session("user-1", "note-1", ReviewMode.MONO_TEST)
    failed = await workflow.generate_questions(pending.id)

    assert isinstance(failed, FailedSession)
    assert failed.error_message
    stored = await workflow.load_session(pending.id)
    assert stored.status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_provider_error_during_generation_fails_session(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(generation_error=ProviderUnavailableError("stub is unreachable"))
    workflow = _workflow(provider, session_factory)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    failed = await workflow.generate_questions(pending.id)

    assert isinstance(failed, FailedSession)
    assert "unreachable" in failed.error_message


@pytest.mark.asyncio
async def test_generation_timeout_fails_session(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=_questions(2), delay=0.5)
    workflow = _workflow(provider, session_factory)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    failed = await workflow.generate_questions(pending.id, timeout=0.01)

    assert isinstance(failed, FailedSession)
    assert "timed out" in failed.error_message


@pytest.mark.asyncio
async def test_generation_runs_once_per_session(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=_questions(3))
    workflow = _workflow(provider, session_factory, question_count=3)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    first = await workflow.generate_questions(pending.id)
    second = await workflow.generate_questions(pending.id)

    assert provider.generation_calls == 1
    assert first == second


@pytest.mark.asyncio
async def test_note_without_content_fails_without_calling_provider(session_factory) -> None:
    await _add_note(session_factory, content="   ")
    provider = _StubProvider(questions=_questions(1))
    workflow = _workflow(provider, session_factory)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    failed = await workflow.generate_questions(pending.id)

    assert isinstance(failed, FailedSession)
    assert provider.generation_calls == 0


@pytest.mark.asyncio
async def test_single_evaluation_failure_is_isolated(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(
        questions=_questions(3),
        verdicts={"q2": ProviderError("malformed verdict")},
    )
    workflow = _workflow(provider, session_factory, question_count=3, max_concurrency=1)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    for question_id in ("q1", "q2", "q3"):
        await workflow.submit_answer(pending.id, question_id, "answer")

    completed = await workflow.evaluate_session(pending.id)

    assert isinstance(completed, CompletedSession)
    failed_question = completed.get_question("q2")
    assert failed_question.evaluation is Evaluation.NOT_ANSWERED
    assert "malformed verdict" in failed_question.ai_message
    assert completed.result == SessionResult(total_questions=3, correct_answers=2, skipped_answers=1)


@pytest.mark.asyncio
async def test_unreachable_provider_fails_evaluation(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(
        questions=_questions(2),
        verdicts={"q1": ProviderUnavailableError("stub is unreachable")},
    )
    workflow = _workflow(provider, session_factory, question_count=2)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    await workflow.submit_answer(pending.id, "q1", "answer")
    await workflow.submit_answer(pending.id, "q2", "answer")

    failed = await workflow.evaluate_session(pending.id)

    assert isinstance(failed, FailedSession)
    assert failed.questions
    stored = await workflow.load_session(pending.id)
    assert stored.status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_evaluation_timeout_fails_session(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=_questions(1))
    workflow = _workflow(provider, session_factory, question_count=1)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    await workflow.submit_answer(pending.id, "q1", "answer")
    provider._delay = 0.5

    failed = await workflow.evaluate_session(pending.id, timeout=0.01)

    assert isinstance(failed, FailedSession)
    assert "timed out" in failed.error_message


@pytest.mark.asyncio
async def test_unanswered_questions_are_skipped_at_evaluation(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=_questions(2))
    workflow = _workflow(provider, session_factory, question_count=2)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    await workflow.submit_answer(pending.id, "q1", "answer")

    completed = await workflow.evaluate_session(pending.id)

    assert provider.evaluated == ["q1"]
    assert completed.get_question("q2").status is QuestionStatus.SKIPPED
    assert completed.result == SessionResult(total_questions=2, correct_answers=1, skipped_answers=1)

    again = await workflow.evaluate_session(pending.id)
    assert again == completed
    assert provider.evaluated == ["q1"]


@pytest.mark.asyncio
async def test_illegal_steps_are_rejected(session_factory) -> None:
    await _add_note(session_factory)
    workflow = _workflow(_StubProvider(questions=_questions(1)), session_factory, question_count=1)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")

    with pytest.raises(InvalidTransitionError):
        await workflow.start_session(pending.id)
    with pytest.raises(InvalidTransitionError):
        await workflow.submit_answer(pending.id, "q1", "answer")
    with pytest.raises(InvalidTransitionError):
        await workflow.evaluate_session(pending.id)

    failed = await workflow.fail_session(pending.id, "cancelled by user")
    assert isinstance(failed, FailedSession)
    assert await workflow.fail_session(pending.id, "again") == failed
    with pytest.raises(InvalidTransitionError):
        await workflow.start_session(pending.id)


@pytest.mark.asyncio
async def test_create_session_validates_note_and_mode(session_factory) -> None:
    await _add_note(session_factory)
    await _add_note(session_factory, note_id="note-2", user_id="user-2")
    workflow = _workflow(_StubProvider(), session_factory)

    with pytest.raises(NotFoundError):
        await workflow.create_session("user-1", "missing", "mono_test")
    with pytest.raises(ValidationError):
        await workflow.create_session("user-1", "note-2", "mono_test")
    with pytest.raises(ValidationError):
        await workflow.create_session("user-1", "note-1", "flashcards")
    with pytest.raises(ValidationError):
        await workflow.generate_questions("anything", question_count=50)


@pytest.mark.asyncio
async def test_sessions_are_listed_newest_first(session_factory) -> None:
    await _add_note(session_factory)
    workflow = _workflow(_StubProvider(), session_factory)

    older = await workflow.create_session("user-1", "note-1", "mono_test")
    newer = await workflow.create_session("user-1", "note-1", "separate_questions")

    by_note = await workflow.list_sessions_for_note("note-1")
    by_user = await workflow.list_sessions_for_user("user-1")

    assert [session.id for session in by_note] == [newer.id, older.id]
    assert [session.id for session in by_user] == [newer.id, older.id]
    with pytest.raises(NotFoundError):
        await workflow.load_session(older.id, user_id="user-2")


@pytest.mark.asyncio
async def test_duplicate_question_ids_fail_generation_once(session_factory) -> None:
    await _add_note(session_factory)
    duplicated = [
        AiReviewQuestion(id="q1", question="First?", question_type="definition"),
        AiReviewQuestion(id="q1", question="Second?", question_type="definition"),
    ]
    provider = _StubProvider(questions=duplicated)
    workflow = _workflow(provider, session_factory, question_count=2)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    failed = await workflow.generate_questions(pending.id)
    again = await workflow.generate_questions(pending.id)

    assert isinstance(failed, FailedSession)
    assert "unique" in failed.error_message
    assert again == failed
    assert provider.generation_calls == 1
    stored = await workflow.load_session(pending.id)
    assert stored.status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_failed_completion_write_keeps_verdicts_for_retry(session_factory, monkeypatch) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=_questions(2), verdicts={"q2": Evaluation.INCORRECT})
    workflow = _workflow(provider, session_factory, question_count=2)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    await workflow.submit_answer(pending.id, "q1", "light")
    await workflow.submit_answer(pending.id, "q2", "water")

    original_save = ai_review.save_review
    failures: List[str] = []

    async def _save_failing_completion_once(session, review):
        if review.status is SessionStatus.COMPLETED and not failures:
            failures.append(review.id)
            raise OperationalError("UPDATE ai_review_sessions", {}, Exception("disk full"))
        return await original_save(session, review)

    monkeypatch.setattr(ai_review, "save_review", _save_failing_completion_once)

    with pytest.raises(PersistenceError):
        await workflow.evaluate_session(pending.id)

    stored = await workflow.load_session(pending.id)
    assert isinstance(stored, EvaluatingSession)
    assert stored.get_question("q1").evaluation is Evaluation.CORRECT
    assert stored.get_question("q2").evaluation is Evaluation.INCORRECT
    assert sorted(provider.evaluated) == ["q1", "q2"]

    completed = await workflow.evaluate_session(pending.id)

    assert isinstance(completed, CompletedSession)
    assert sorted(provider.evaluated) == ["q1", "q2"]
    assert completed.result == SessionResult(total_questions=2, correct_answers=1, skipped_answers=0)


@pytest.mark.asyncio
async def test_time_spent_is_accumulated_and_stored(session_factory) -> None:
    await _add_note(session_factory)
    workflow = _workflow(_StubProvider(questions=_questions(3)), session_factory, question_count=3)

    pending = await workflow.create_session("user-1", "note-1", "separate_questions")
    await workflow.generate_questions(pending.id)
    await workflow.start_session(pending.id)
    await workflow.submit_answer(pending.id, "q1", "first draft", time_spent_ms=1200)
    await workflow.submit_answer(pending.id, "q1", "revised", time_spent_ms=800)
    await workflow.skip_question(pending.id, "q2", time_spent_ms=300)
    await workflow.submit_answer(pending.id, "q3", "no timer")

    with pytest.raises(ValidationError):
        await workflow.submit_answer(pending.id, "q3", "again", time_spent_ms=-1)

    stored = await workflow.load_session(pending.id)
    assert isinstance(stored, InProgressSession)
    assert stored.get_question("q1").time_spent_ms == 2000
    assert stored.get_question("q2").time_spent_ms == 300
    assert stored.get_question("q3").time_spent_ms is None
    assert stored.get_question("q3").answer == "no timer"

    async with session_factory() as session:
        record = await get_review_record(session, pending.id)
        assert record is not None
        assert record.generated_questions[0]["timeSpentMs"] == 2000
        assert "timeSpentMs" not in record.generated_questions[2]


@pytest.mark.asyncio
async def test_insights_are_stored_once(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(
        questions=_questions(1),
        insights=NoteInsights(summary="Light becomes sugar.", key_takeaways=["Chlorophyll absorbs light.", ""]),
    )
    workflow = _workflow(provider, session_factory, question_count=1)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    await workflow.generate_questions(pending.id)

    with_insights = await workflow.generate_insights(pending.id)
    again = await workflow.generate_insights(pending.id)

    assert provider.insight_calls == 1
    assert with_insights.status is SessionStatus.READY_FOR_REVIEW
    assert with_insights.summary == "Light becomes sugar."
    assert with_insights.key_takeaways == ("Chlorophyll absorbs light.",)
    assert again == with_insights

    stored = await workflow.load_session(pending.id)
    assert stored.summary == "Light becomes sugar."
    assert stored.key_takeaways == ("Chlorophyll absorbs light.",)

    await workflow.start_session(pending.id)
    started = await workflow.load_session(pending.id)
    assert started.summary == "Light becomes sugar."


@pytest.mark.asyncio
async def test_insights_are_refused_for_finished_sessions(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(questions=[])
    workflow = _workflow(provider, session_factory)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")
    await workflow.generate_questions(pending.id)

    with pytest.raises(InvalidTransitionError):
        await workflow.generate_insights(pending.id)
    assert provider.insight_calls == 0


@pytest.mark.asyncio
async def test_insight_timeout_leaves_session_untouched(session_factory) -> None:
    await _add_note(session_factory)
    provider = _StubProvider(delay=0.5)
    workflow = _workflow(provider, session_factory)

    pending = await workflow.create_session("user-1", "note-1", "mono_test")

    with pytest.raises(ProviderUnavailableError):
        await workflow.generate_insights(pending.id, timeout=0.01)

    stored = await workflow.load_session(pending.id)
    assert isinstance(stored, PendingSession)
    assert not stored.has_insights
