"""External service clients used by the study core."""

from .ai_provider import AnswerEvaluation, NoteInsights, OpenAIReviewProvider, ReviewAIProvider
from .openai_client import build_openai_client

__all__ = [
    "AnswerEvaluation",
    "NoteInsights",
    "OpenAIReviewProvider",
    "ReviewAIProvider",
    "build_openai_client",
]
