"""Bootstrap logic for the Conspecto study core."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conspecto.app.settings import AppSettings
from conspecto.db import get_session_factory, run_migrations_if_needed
from conspecto.services import OpenAIReviewProvider, build_openai_client
from conspecto.study.ai_review import AiReviewWorkflow
from conspecto.study.reviews import StudyService


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudyCore:
    """The services an outer surface needs to drive reviews."""

    study: StudyService
    ai_reviews: AiReviewWorkflow


def _configure_logging(log_level: str) -> None:
    """Set up project-wide logging configuration."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=log_level,
    )


def build_services(
    settings: AppSettings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> StudyCore:
    """Wire the study service and the AI review workflow."""
    if session_factory is None:
        session_factory = get_session_factory()

    openai_client = build_openai_client(settings.openai_api_key, timeout=settings.ai_timeout_seconds)
    provider = OpenAIReviewProvider(openai_client, settings.openai_model)
    return StudyCore(
        study=StudyService(session_factory, config=settings.scheduler_config()),
        ai_reviews=AiReviewWorkflow(
            provider,
            session_factory,
            question_count=settings.ai_question_count,
            timeout=settings.ai_timeout_seconds,
            max_concurrency=settings.ai_max_concurrency,
        ),
    )


def bootstrap(settings: AppSettings) -> StudyCore:
    """Configure logging, apply migrations and build the services."""
    _configure_logging(settings.log_level)

    try:
        run_migrations_if_needed()
    except Exception:
        LOGGER.exception("Database migrations failed. Aborting startup.")
        raise

    core = build_services(settings)
    LOGGER.info(
        "%s study core is ready in %s mode (model %s).",
        settings.app_name,
        settings.app_env,
        settings.openai_model,
    )
    return core
