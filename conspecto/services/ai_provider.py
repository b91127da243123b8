"""AI provider used to generate review questions and evaluate answers."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from openai import APIConnectionError, AsyncOpenAI, OpenAIError

from conspecto.services.openai_utils import extract_output_text, parse_json_reply
from conspecto.study.errors import ProviderError, ProviderUnavailableError
from conspecto.study.question_types import (
    DIFFICULTY_DESCRIPTIONS,
    QUESTION_TYPE_CONFIGS,
    describe_question_type,
    select_question_types,
)
from conspecto.study.sessions import AiReviewQuestion, Difficulty, Evaluation, ReviewMode


LOGGER = logging.getLogger(__name__)

DEFAULT_DIFFICULTY = Difficulty.MEDIUM
_MAX_NOTE_CHARS = 12_000

_EVALUATION_ALIASES = {
    "correct": Evaluation.CORRECT,
    "incorrect": Evaluation.INCORRECT,
    "partial": Evaluation.INCORRECT,
}
_DEFAULT_SCORES = {"correct": 100, "partial": 50, "incorrect": 0}


@dataclass(slots=True)
class AnswerEvaluation:
    """Verdict returned by the provider for one answer."""

    evaluation: Evaluation
    ai_message: Optional[str] = None
    score: Optional[int] = None


@dataclass(slots=True)
class NoteInsights:
    """Summary and key takeaways of a note."""

    summary: str
    key_takeaways: List[str] = field(default_factory=list)


class ReviewAIProvider(Protocol):
    """Capabilities the AI review workflow needs from a model provider."""

    name: str
    model: str

    async def generate_questions(
        self,
        note_content: str,
        *,
        mode: ReviewMode,
        difficulty: Optional[Difficulty],
        question_count: int,
    ) -> List[AiReviewQuestion]:
        ...

    async def evaluate_answer(
        self,
        question: AiReviewQuestion,
        answer: str,
        *,
        note_content: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
    ) -> AnswerEvaluation:
        ...

    async def generate_insights(self, note_content: str) -> NoteInsights:
        ...


_SUMMARY_PROMPT = (
    "You are an expert at creating concise, comprehensive summaries of educational content. Create a clear, "
    "well-structured summary that captures the main points and key concepts. Focus on the most important "
    "concepts and ideas, use clear educational language, organize information logically, and aim for 150-300 "
    "words depending on content length. Respond with the summary text only."
)
_KEY_TAKEAWAYS_PROMPT = (
    "Extract 3-7 key takeaways from the provided content. Each takeaway should be a complete, actionable "
    "insight, clear and concise (1-2 sentences max), and focused on the most important concepts. Return the "
    "takeaways as a JSON array of strings only, without commentary or code fences."
)


class OpenAIReviewProvider:
    """Generates and grades review questions with the OpenAI Responses API."""

    name = "openai"

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self.model = model
        self._rng = rng or random.Random()

    async def generate_questions(
        self,
        note_content: str,
        *,
        mode: ReviewMode,
        difficulty: Optional[Difficulty],
        question_count: int,
    ) -> List[AiReviewQuestion]:
        difficulty = difficulty or DEFAULT_DIFFICULTY
        selected_types = select_question_types(difficulty.value, question_count, rng=self._rng)
        system_prompt = self._build_generation_prompt(mode, difficulty, question_count, selected_types)
        raw_text = await self._call(system_prompt, note_content[:_MAX_NOTE_CHARS])

        try:
            payload = parse_json_reply(raw_text)
        except ValueError as exc:
            LOGGER.warning("Failed to parse question generation response: %s", raw_text[:500])
            raise ProviderError("Question generation returned malformed JSON.") from exc

        if isinstance(payload, dict):
            payload = payload.get("questions")
        if not isinstance(payload, list):
            raise ProviderError("Question generation did not return a list of questions.")

        return self._convert_questions(payload, selected_types)

    async def evaluate_answer(
        self,
        question: AiReviewQuestion,
        answer: str,
        *,
        note_content: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
    ) -> AnswerEvaluation:
        system_prompt = self._build_evaluation_prompt(question, note_content, difficulty)
        user_message = f"Question: {question.question}\nStudent's Answer: {answer}"
        raw_text = await self._call(system_prompt, user_message)

        try:
            payload = parse_json_reply(raw_text)
        except ValueError as exc:
            LOGGER.warning("Failed to parse evaluation response: %s", raw_text[:500])
            raise ProviderError("Answer evaluation returned malformed JSON.") from exc

        if not isinstance(payload, dict):
            raise ProviderError("Answer evaluation did not return an object.")

        verdict = str(payload.get("evaluation") or "").strip().lower()
        if not verdict:
            raise ProviderError("Answer evaluation is missing a verdict.")
        evaluation = _EVALUATION_ALIASES.get(verdict, Evaluation.INCORRECT)

        score = payload.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
            score = _DEFAULT_SCORES.get(verdict, 0)

        message = payload.get("message")
        return AnswerEvaluation(
            evaluation=evaluation,
            ai_message=message.strip() if isinstance(message, str) and message.strip() else None,
            score=int(score),
        )

    async def generate_insights(self, note_content: str) -> NoteInsights:
        content = note_content[:_MAX_NOTE_CHARS]
        summary_text, takeaways_text = await asyncio.gather(
            self._call(_SUMMARY_PROMPT, content),
            self._call(_KEY_TAKEAWAYS_PROMPT, content),
        )

        try:
            payload = parse_json_reply(takeaways_text)
        except ValueError as exc:
            LOGGER.warning("Failed to parse key takeaways response: %s", takeaways_text[:500])
            raise ProviderError("Key takeaways extraction returned malformed JSON.") from exc

        if isinstance(payload, dict):
            payload = payload.get("takeaways") or payload.get("keyTakeaways")
        if not isinstance(payload, list):
            raise ProviderError("Key takeaways extraction did not return a list.")

        takeaways = [str(item).strip() for item in payload if isinstance(item, (str, int, float)) and str(item).strip()]
        return NoteInsights(summary=summary_text.strip(), key_takeaways=takeaways)

    async def _call(self, system_prompt: str, user_message: str) -> str:
        try:
            response = await self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
            )
        except APIConnectionError as exc:
            raise ProviderUnavailableError(f"{self.name} is unreachable: {exc}") from exc
        except OpenAIError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}") from exc

        raw_text = extract_output_text(response).strip()
        if not raw_text:
            raise ProviderError(f"{self.name} returned an empty response.")
        return raw_text

    def _convert_questions(self, raw_questions: list, selected_types: List[str]) -> List[AiReviewQuestion]:
        questions: List[AiReviewQuestion] = []
        seen_ids: set[str] = set()
        for index, raw in enumerate(raw_questions):
            if not isinstance(raw, dict):
                LOGGER.warning("Dropping generated question #%s with unexpected format.", index + 1)
                continue
            text = raw.get("question")
            if not isinstance(text, str) or not text.strip():
                LOGGER.warning("Dropping generated question #%s without text.", index + 1)
                continue

            question_id = raw.get("id")
            if not isinstance(question_id, str) or not question_id or question_id in seen_ids:
                question_id = uuid.uuid4().hex
            seen_ids.add(question_id)

            question_type = raw.get("question_type")
            if question_type not in QUESTION_TYPE_CONFIGS:
                question_type = selected_types[index] if index < len(selected_types) else None
            options = raw.get("options")

            questions.append(
                AiReviewQuestion(
                    id=question_id,
                    question=text.strip(),
                    question_type=describe_question_type(question_type).type,
                    options=tuple(str(option) for option in options) if isinstance(options, list) else (),
                )
            )
        return questions

    @staticmethod
    def _build_generation_prompt(
        mode: ReviewMode,
        difficulty: Difficulty,
        question_count: int,
        selected_types: List[str],
    ) -> str:
        type_lines = "\n".join(
            f"- {QUESTION_TYPE_CONFIGS[name].name} ({name}): {QUESTION_TYPE_CONFIGS[name].description}"
            for name in dict.fromkeys(selected_types)
        )
        mode_line = (
            "Single comprehensive test format"
            if mode is ReviewMode.MONO_TEST
            else "Separate individual questions"
        )
        return (
            f"You are an educational assessment expert. Create {question_count} high-quality review questions "
            "based on the provided content.\n\n"
            f"Difficulty level: {DIFFICULTY_DESCRIPTIONS[difficulty.value]}\n\n"
            f"Question types to use:\n{type_lines}\n\n"
            f"Mode: {mode_line}\n\n"
            f"Create exactly {question_count} questions. Each question should test a different aspect of the "
            "content, be clear and specific, and be answerable from the content. Distribute the question types "
            "evenly. Respond with a JSON array only, without commentary, Markdown, or code fences. Each item must "
            'look like {"id": "<unique id>", "question_type": "<type from the list>", "question": "<text>", '
            '"options": ["..."]} where "options" is only present for multiple choice or matching questions.'
        )

    @staticmethod
    def _build_evaluation_prompt(
        question: AiReviewQuestion,
        note_content: Optional[str],
        difficulty: Optional[Difficulty],
    ) -> str:
        config = describe_question_type(question.question_type)
        prompt = (
            "You are an educational assessment expert evaluating a student's answer.\n\n"
            f"Question type: {config.name} ({config.type}). {config.description}.\n"
        )
        if difficulty is not None:
            prompt += f"Difficulty level: {DIFFICULTY_DESCRIPTIONS[difficulty.value]}\n"
        prompt += (
            "\nJudge accuracy, completeness, understanding and clarity. Use \"correct\" when the answer is "
            "accurate and complete, \"partial\" when it has correct elements but is incomplete or has minor "
            "errors, and \"incorrect\" otherwise. Be encouraging and constructive; when the answer is not "
            "correct, explain what the correct answer should include.\n\n"
            'Respond with JSON only: {"evaluation": "correct" | "partial" | "incorrect", "score": 0-100, '
            '"message": "<feedback for the student>"}'
        )
        if note_content:
            prompt += f"\n\nContent the question is based on:\n{note_content[:_MAX_NOTE_CHARS]}"
        return prompt
