"""AI review session states, questions and result aggregation.

Every session state is its own frozen dataclass carrying only the fields that
are valid in that state. Transitions are methods returning the next state, so
a ``CompletedSession`` can only be produced from an ``EvaluatingSession`` whose
questions are all resolved, and its ``result`` is computed exactly once there.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Callable, ClassVar, Iterable, Optional, Sequence, Union

from conspecto.study.errors import InvalidTransitionError, NotFoundError, ValidationError
from conspecto.study.question_types import DEFAULT_QUESTION_TYPE


class SessionStatus(str, Enum):
    PENDING = "pending"
    READY_FOR_REVIEW = "ready_for_review"
    IN_PROGRESS = "in_progress"
    EVALUATING_ANSWERS = "evaluating_answers"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewMode(str, Enum):
    MONO_TEST = "mono_test"
    SEPARATE_QUESTIONS = "separate_questions"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuestionStatus(str, Enum):
    GENERATED = "generated"
    ANSWERED = "answered"
    SKIPPED = "skipped"
    EVALUATING = "evaluating"


class Evaluation(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    NOT_ANSWERED = "not_answered"


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset(
        {SessionStatus.PENDING, SessionStatus.READY_FOR_REVIEW, SessionStatus.FAILED}
    ),
    SessionStatus.READY_FOR_REVIEW: frozenset(
        {SessionStatus.READY_FOR_REVIEW, SessionStatus.IN_PROGRESS, SessionStatus.FAILED}
    ),
    SessionStatus.IN_PROGRESS: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.EVALUATING_ANSWERS, SessionStatus.FAILED}
    ),
    SessionStatus.EVALUATING_ANSWERS: frozenset(
        {SessionStatus.EVALUATING_ANSWERS, SessionStatus.COMPLETED, SessionStatus.FAILED}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


def check_transition(previous: SessionStatus, new: SessionStatus) -> None:
    """Raise when moving from ``previous`` to ``new`` is not a legal transition."""
    if new not in ALLOWED_TRANSITIONS[previous]:
        raise InvalidTransitionError(
            f"AI review session cannot move from {previous.value} to {new.value}."
        )


def parse_mode(value: Union[str, ReviewMode, None]) -> ReviewMode:
    try:
        return ReviewMode(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown AI review mode: {value!r}.") from exc


def parse_difficulty(value: Union[str, Difficulty, None]) -> Optional[Difficulty]:
    if value is None:
        return None
    try:
        return Difficulty(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown AI review difficulty: {value!r}.") from exc


@dataclass(frozen=True, slots=True)
class AiReviewQuestion:
    """A generated question owned by exactly one session."""

    id: str
    question: str
    question_type: str = DEFAULT_QUESTION_TYPE
    status: QuestionStatus = QuestionStatus.GENERATED
    answer: Optional[str] = None
    evaluation: Optional[Evaluation] = None
    ai_message: Optional[str] = None
    score: Optional[int] = None
    options: tuple[str, ...] = ()
    time_spent_ms: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self.evaluation is not None

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "question_type": self.question_type,
            "question": self.question,
            "status": self.status.value,
            "answer": self.answer,
            "evaluation": self.evaluation.value if self.evaluation else None,
            "aiMessage": self.ai_message,
            "score": self.score,
        }
        if self.options:
            payload["options"] = list(self.options)
        if self.time_spent_ms is not None:
            payload["timeSpentMs"] = self.time_spent_ms
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> AiReviewQuestion:
        evaluation = payload.get("evaluation")
        return cls(
            id=str(payload["id"]),
            question=payload["question"],
            question_type=payload.get("question_type") or DEFAULT_QUESTION_TYPE,
            status=QuestionStatus(payload.get("status") or QuestionStatus.GENERATED.value),
            answer=payload.get("answer"),
            evaluation=Evaluation(evaluation) if evaluation else None,
            ai_message=payload.get("aiMessage"),
            score=payload.get("score"),
            options=tuple(payload.get("options") or ()),
            time_spent_ms=payload.get("timeSpentMs"),
        )


@dataclass(frozen=True, slots=True)
class SessionResult:
    total_questions: int
    correct_answers: int
    skipped_answers: int

    def __post_init__(self) -> None:
        if min(self.total_questions, self.correct_answers, self.skipped_answers) < 0:
            raise ValidationError("Session result counts must not be negative.")
        if self.correct_answers + self.skipped_answers > self.total_questions:
            raise ValidationError("Correct and skipped answers exceed the number of questions.")

    def to_dict(self) -> dict:
        return {
            "totalQuestions": self.total_questions,
            "correctAnswers": self.correct_answers,
            "skippedAnswers": self.skipped_answers,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> SessionResult:
        return cls(
            total_questions=int(payload["totalQuestions"]),
            correct_answers=int(payload["correctAnswers"]),
            skipped_answers=int(payload["skippedAnswers"]),
        )


def aggregate_result(questions: Sequence[AiReviewQuestion]) -> SessionResult:
    """Summarize evaluated questions into a session result."""
    correct = sum(1 for question in questions if question.evaluation is Evaluation.CORRECT)
    skipped = sum(
        1
        for question in questions
        if question.evaluation is Evaluation.NOT_ANSWERED or question.status is QuestionStatus.SKIPPED
    )
    return SessionResult(
        total_questions=len(questions),
        correct_answers=correct,
        skipped_answers=skipped,
    )


def _update_question(
    questions: tuple[AiReviewQuestion, ...],
    question_id: str,
    update: Callable[[AiReviewQuestion], AiReviewQuestion],
) -> tuple[AiReviewQuestion, ...]:
    updated = []
    found = False
    for question in questions:
        if question.id == question_id:
            updated.append(update(question))
            found = True
        else:
            updated.append(question)
    if not found:
        raise NotFoundError(f"Question {question_id} is not part of this session.")
    return tuple(updated)


def _add_time(question: AiReviewQuestion, time_spent_ms: Optional[int]) -> Optional[int]:
    if time_spent_ms is None:
        return question.time_spent_ms
    if isinstance(time_spent_ms, bool) or not isinstance(time_spent_ms, int) or time_spent_ms < 0:
        raise ValidationError("time_spent_ms must be a non-negative integer.")
    return (question.time_spent_ms or 0) + time_spent_ms


def _find_question(questions: Iterable[AiReviewQuestion], question_id: str) -> AiReviewQuestion:
    for question in questions:
        if question.id == question_id:
            return question
    raise NotFoundError(f"Question {question_id} is not part of this session.")


def _promote(session: "_SessionBase", target: type, **changes):
    """Build ``target`` from the fields ``session`` shares with it."""
    names = {item.name for item in fields(target)}
    values = {item.name: getattr(session, item.name) for item in fields(session) if item.name in names}
    values.update(changes)
    return target(**values)


def _check_order(*timestamps: Optional[datetime]) -> None:
    present = [stamp for stamp in timestamps if stamp is not None]
    for earlier, later in zip(present, present[1:]):
        if later < earlier:
            raise ValidationError("AI review session timestamps must increase monotonically.")


@dataclass(frozen=True, slots=True, kw_only=True)
class _SessionBase:
    status: ClassVar[SessionStatus]
    is_terminal: ClassVar[bool] = False

    id: str
    user_id: str
    note_id: str
    mode: ReviewMode
    requested_at: datetime
    difficulty: Optional[Difficulty] = None
    model_version: Optional[str] = None
    summary: Optional[str] = None
    key_takeaways: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if not self.id or not self.user_id or not self.note_id:
            raise ValidationError("AI review sessions require id, user_id and note_id.")

    @property
    def has_insights(self) -> bool:
        return bool(self.summary) or bool(self.key_takeaways)

    def with_insights(self, summary: Optional[str], key_takeaways: Sequence[str]):
        """Attach the note summary and key takeaways; the status is unchanged."""
        if self.is_terminal:
            raise InvalidTransitionError(
                f"AI review session {self.id} is already {self.status.value}."
            )
        return replace(
            self,
            summary=summary or None,
            key_takeaways=tuple(item for item in key_takeaways if item),
        )

    def fail(self, message: str) -> FailedSession:
        """Move any non-terminal session to ``failed``."""
        if self.is_terminal:
            raise InvalidTransitionError(
                f"AI review session {self.id} is already {self.status.value}."
            )
        return _promote(self, FailedSession, error_message=message or "Unknown error")


@dataclass(frozen=True, slots=True, kw_only=True)
class PendingSession(_SessionBase):
    """Created, waiting for the provider to generate questions."""

    status = SessionStatus.PENDING

    def questions_generated(
        self,
        questions: Sequence[AiReviewQuestion],
        now: datetime,
        model_version: Optional[str] = None,
    ) -> ReadyForReviewSession:
        if not questions:
            raise InvalidTransitionError("A session needs at least one generated question.")
        generated = tuple(
            replace(question, status=QuestionStatus.GENERATED, answer=None, evaluation=None, ai_message=None)
            for question in questions
        )
        return _promote(
            self,
            ReadyForReviewSession,
            questions=generated,
            questions_generated_at=now,
            model_version=model_version or self.model_version,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class _GeneratedSession(_SessionBase):
    questions: tuple[AiReviewQuestion, ...]
    questions_generated_at: datetime

    def _validate(self) -> None:
        _SessionBase._validate(self)
        if not self.questions:
            raise ValidationError("Generated sessions must contain at least one question.")
        ids = [question.id for question in self.questions]
        if len(set(ids)) != len(ids):
            raise ValidationError("Question ids must be unique within a session.")
        _check_order(self.requested_at, self.questions_generated_at)

    def get_question(self, question_id: str) -> AiReviewQuestion:
        return _find_question(self.questions, question_id)


@dataclass(frozen=True, slots=True, kw_only=True)
class ReadyForReviewSession(_GeneratedSession):
    """Questions are generated; the user has not started answering."""

    status = SessionStatus.READY_FOR_REVIEW

    def start(self, now: datetime) -> InProgressSession:
        return _promote(self, InProgressSession, session_started_at=now)


@dataclass(frozen=True, slots=True, kw_only=True)
class _StartedSession(_GeneratedSession):
    session_started_at: datetime

    def _validate(self) -> None:
        _GeneratedSession._validate(self)
        _check_order(self.requested_at, self.questions_generated_at, self.session_started_at)


@dataclass(frozen=True, slots=True, kw_only=True)
class InProgressSession(_StartedSession):
    """The user is answering; answers may still be revised."""

    status = SessionStatus.IN_PROGRESS

    def answer(
        self, question_id: str, answer: str, time_spent_ms: Optional[int] = None
    ) -> InProgressSession:
        """Record or revise an answer; ``time_spent_ms`` adds to the time already spent."""
        text = (answer or "").strip()
        if not text:
            raise ValidationError("Answers must not be blank; skip the question instead.")
        questions = _update_question(
            self.questions,
            question_id,
            lambda question: replace(
                question,
                status=QuestionStatus.ANSWERED,
                answer=text,
                time_spent_ms=_add_time(question, time_spent_ms),
            ),
        )
        return replace(self, questions=questions)

    def skip(self, question_id: str, time_spent_ms: Optional[int] = None) -> InProgressSession:
        questions = _update_question(
            self.questions,
            question_id,
            lambda question: replace(
                question,
                status=QuestionStatus.SKIPPED,
                answer=None,
                time_spent_ms=_add_time(question, time_spent_ms),
            ),
        )
        return replace(self, questions=questions)

    @property
    def all_answered(self) -> bool:
        return all(question.status is not QuestionStatus.GENERATED for question in self.questions)

    def begin_evaluation(self) -> EvaluatingSession:
        """Lock answers; questions nobody answered count as skipped."""
        locked = tuple(
            replace(question, status=QuestionStatus.SKIPPED)
            if question.status is QuestionStatus.GENERATED
            else question
            for question in self.questions
        )
        return _promote(self, EvaluatingSession, questions=locked)


@dataclass(frozen=True, slots=True, kw_only=True)
class EvaluatingSession(_StartedSession):
    """Answers are locked and being evaluated question by question."""

    status = SessionStatus.EVALUATING_ANSWERS

    def _validate(self) -> None:
        _StartedSession._validate(self)
        if any(question.status is QuestionStatus.GENERATED for question in self.questions):
            raise ValidationError("Every question must be answered or skipped before evaluation.")

    def unresolved_questions(self) -> list[AiReviewQuestion]:
        return [question for question in self.questions if not question.is_resolved]

    def mark_evaluating(self, question_id: str) -> EvaluatingSession:
        def _mark(question: AiReviewQuestion) -> AiReviewQuestion:
            if question.status is not QuestionStatus.ANSWERED or question.is_resolved:
                raise InvalidTransitionError(f"Question {question.id} is not awaiting evaluation.")
            return replace(question, status=QuestionStatus.EVALUATING)

        return replace(self, questions=_update_question(self.questions, question_id, _mark))

    def record_evaluation(
        self,
        question_id: str,
        evaluation: Evaluation,
        ai_message: Optional[str] = None,
        score: Optional[int] = None,
    ) -> EvaluatingSession:
        def _record(question: AiReviewQuestion) -> AiReviewQuestion:
            if question.is_resolved:
                raise InvalidTransitionError(f"Question {question.id} has already been evaluated.")
            if question.status is QuestionStatus.SKIPPED:
                if evaluation is not Evaluation.NOT_ANSWERED:
                    raise InvalidTransitionError(f"Skipped question {question.id} can only be not_answered.")
                return replace(question, evaluation=evaluation, ai_message=ai_message, score=score)
            return replace(
                question,
                status=QuestionStatus.ANSWERED,
                evaluation=evaluation,
                ai_message=ai_message,
                score=score,
            )

        return replace(self, questions=_update_question(self.questions, question_id, _record))

    def resolve_skipped(self) -> EvaluatingSession:
        """Classify skipped questions as ``not_answered`` without asking the provider."""
        session = self
        for question in self.unresolved_questions():
            if question.status is QuestionStatus.SKIPPED:
                session = session.record_evaluation(question.id, Evaluation.NOT_ANSWERED)
        return session

    def complete(self, now: datetime) -> CompletedSession:
        pending = self.unresolved_questions()
        if pending:
            raise InvalidTransitionError(
                f"{len(pending)} question(s) still await evaluation in session {self.id}."
            )
        return _promote(
            self,
            CompletedSession,
            result=aggregate_result(self.questions),
            completed_at=now,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class CompletedSession(_StartedSession):
    status = SessionStatus.COMPLETED
    is_terminal = True

    result: SessionResult
    completed_at: datetime

    def _validate(self) -> None:
        _StartedSession._validate(self)
        if self.result.total_questions != len(self.questions):
            raise ValidationError("Session result does not match the generated questions.")
        if not all(question.is_resolved for question in self.questions):
            raise ValidationError("Completed sessions must have every question evaluated.")
        _check_order(self.session_started_at, self.completed_at)


@dataclass(frozen=True, slots=True, kw_only=True)
class FailedSession(_SessionBase):
    status = SessionStatus.FAILED
    is_terminal = True

    error_message: str
    questions: tuple[AiReviewQuestion, ...] = ()
    questions_generated_at: Optional[datetime] = None
    session_started_at: Optional[datetime] = None

    def _validate(self) -> None:
        _SessionBase._validate(self)
        if not self.error_message:
            raise ValidationError("Failed sessions must carry an error message.")
        _check_order(self.requested_at, self.questions_generated_at, self.session_started_at)


AiReviewSession = Union[
    PendingSession,
    ReadyForReviewSession,
    InProgressSession,
    EvaluatingSession,
    CompletedSession,
    FailedSession,
]

SESSION_CLASSES: dict[SessionStatus, type] = {
    cls.status: cls
    for cls in (
        PendingSession,
        ReadyForReviewSession,
        InProgressSession,
        EvaluatingSession,
        CompletedSession,
        FailedSession,
    )
}


def expect_state(session: AiReviewSession, *states: type) -> None:
    """Raise ``InvalidTransitionError`` unless ``session`` is one of ``states``."""
    if not isinstance(session, states):
        allowed = ", ".join(state.status.value for state in states)
        raise InvalidTransitionError(
            f"AI review session {session.id} is {session.status.value}; expected {allowed}."
        )
