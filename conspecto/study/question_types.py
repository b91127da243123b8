"""Catalogue of AI review question types and their difficulty levels."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional

from conspecto.study.errors import ValidationError


@dataclass(frozen=True, slots=True)
class QuestionTypeConfig:
    type: str
    name: str
    description: str
    difficulty: str
    weight: float = 1.0


_CATALOGUE = (
    # Remembering & understanding
    QuestionTypeConfig("fact_based", "Fact-based (What/When/Who)",
                       "Questions that test recall of specific facts, dates, names, or events", "easy", 1.0),
    QuestionTypeConfig("definition", "Definition",
                       "Questions asking for definitions of key terms or concepts", "easy", 1.2),
    QuestionTypeConfig("true_false", "True/False",
                       "Binary choice questions testing understanding of statements", "easy", 0.8),
    QuestionTypeConfig("fill_in_the_blank", "Fill in the Blank",
                       "Questions with missing words or phrases to complete", "easy", 1.0),
    QuestionTypeConfig("multiple_choice_basic", "Multiple Choice (Basic facts)",
                       "Multiple choice questions testing basic factual knowledge", "easy", 1.1),
    QuestionTypeConfig("flashcard", "Flashcards (Basic Q&A)",
                       "Simple question-answer pairs for memorization", "easy", 0.9),
    QuestionTypeConfig("matching", "Matching Terms with Definitions",
                       "Questions that require matching related items", "easy", 1.0),
    QuestionTypeConfig("cloze_deletion", "Cloze Deletion",
                       "Text passages with strategically removed words", "easy", 1.0),
    # Applying & analyzing
    QuestionTypeConfig("explain_own_words", "Explain in Your Own Words",
                       "Questions requiring students to demonstrate understanding by explaining concepts",
                       "medium", 1.3),
    QuestionTypeConfig("scenario", "Scenario Questions",
                       "Situational questions that apply knowledge to realistic contexts", "medium", 1.4),
    QuestionTypeConfig("compare_contrast", "Compare & Contrast",
                       "Questions asking students to identify similarities and differences", "medium", 1.2),
    QuestionTypeConfig("cause_effect", "Cause and Effect",
                       "Questions exploring relationships between events, actions, and outcomes", "medium", 1.3),
    QuestionTypeConfig("categorization", "Categorization",
                       "Questions requiring classification or organization of information", "medium", 1.1),
    QuestionTypeConfig("multiple_choice_conceptual", "Multiple Choice (Conceptual)",
                       "Multiple choice questions testing deeper conceptual understanding", "medium", 1.2),
    QuestionTypeConfig("problem_solving", "Problem Solving / Case-based",
                       "Questions presenting problems that require analytical thinking", "medium", 1.5),
    # Evaluating & creating
    QuestionTypeConfig("justify_defend", "Justify/Defend",
                       "Questions requiring students to provide reasoning and evidence for positions", "hard", 1.6),
    QuestionTypeConfig("critique_statement", "Critique a Statement",
                       "Questions asking for critical analysis and evaluation", "hard", 1.5),
    QuestionTypeConfig("rank_prioritize", "Rank/Prioritize",
                       "Questions requiring evaluation and ordering based on criteria", "hard", 1.4),
    QuestionTypeConfig("summary", "Create a Summary",
                       "Questions asking students to synthesize information into summaries", "hard", 1.3),
    QuestionTypeConfig("concept_map", "Design a Concept Map",
                       "Questions requiring visualization of relationships between concepts", "hard", 1.7),
    QuestionTypeConfig("prediction_hypothesis", "Prediction / Hypothesis",
                       "Questions asking for predictions or hypothesis formation", "hard", 1.6),
)

QUESTION_TYPE_CONFIGS = {config.type: config for config in _CATALOGUE}
DEFAULT_QUESTION_TYPE = "fact_based"

DIFFICULTY_DESCRIPTIONS = {
    "easy": (
        "Beginner (Low Difficulty) - Focus: Remembering & Understanding\n"
        "Questions should test basic recall, recognition, and simple comprehension of facts and concepts."
    ),
    "medium": (
        "Intermediate (Moderate Difficulty) - Focus: Applying & Analyzing\n"
        "Questions should require students to apply knowledge, analyze information, and make connections "
        "between concepts."
    ),
    "hard": (
        "Advanced (High Difficulty) - Focus: Evaluating & Creating\n"
        "Questions should involve critical thinking, evaluation of ideas, synthesis of information, and "
        "creative problem-solving."
    ),
}


def get_question_types_for_difficulty(difficulty: str) -> List[QuestionTypeConfig]:
    return [config for config in _CATALOGUE if config.difficulty == difficulty]


def describe_question_type(question_type: str) -> QuestionTypeConfig:
    """Return the catalogue entry, falling back to the default type for unknown names."""
    return QUESTION_TYPE_CONFIGS.get(question_type, QUESTION_TYPE_CONFIGS[DEFAULT_QUESTION_TYPE])


def select_question_types(
    difficulty: str,
    count: int,
    rng: Optional[random.Random] = None,
    exclude: Iterable[str] = (),
) -> List[str]:
    """Pick ``count`` question types for a difficulty using weighted random draws."""
    excluded = set(exclude)
    available = [
        config for config in get_question_types_for_difficulty(difficulty) if config.type not in excluded
    ]
    if not available:
        raise ValidationError(f"No question types available for difficulty: {difficulty}")

    rng = rng or random.Random()
    population = [config.type for config in available]
    weights = [math.ceil(config.weight * 10) for config in available]
    return rng.choices(population, weights=weights, k=count)
