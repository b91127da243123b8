"""Configuration helpers for the Conspecto study core."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from conspecto.study.srs import MIN_EASE_FACTOR, SchedulerConfig


DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_AI_TIMEOUT_SECONDS = 30.0
DEFAULT_AI_MAX_CONCURRENCY = 4
DEFAULT_AI_QUESTION_COUNT = 5
MAX_AI_QUESTION_COUNT = 20


def _read_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _read_float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc


@dataclass(frozen=True)
class AppSettings:
    """Strongly typed application settings loaded from environment variables."""

    app_name: str
    app_env: str
    log_level: str
    openai_api_key: str
    openai_model: str
    ai_timeout_seconds: float
    ai_max_concurrency: int
    ai_question_count: int
    srs_min_ease_factor: float
    srs_max_interval_days: Optional[int]

    @classmethod
    def from_env(cls) -> AppSettings:
        """Construct settings directly from environment variables."""
        app_name = os.getenv("APP_NAME", "Conspecto")
        app_env = os.getenv("APP_ENV", "development")
        log_level = os.getenv("LOG_LEVEL", "INFO")
        openai_api_key = os.getenv("OPENAI_API_KEY")
        openai_model = os.getenv("OPENAI_MODEL", DEFAULT_MODEL)

        if not openai_api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is required to run AI reviews.")

        ai_timeout_seconds = _read_float("AI_TIMEOUT_SECONDS", str(DEFAULT_AI_TIMEOUT_SECONDS))
        if ai_timeout_seconds <= 0:
            raise RuntimeError("AI_TIMEOUT_SECONDS must be greater than zero.")

        ai_max_concurrency = _read_int("AI_MAX_CONCURRENCY", str(DEFAULT_AI_MAX_CONCURRENCY))
        if ai_max_concurrency < 1:
            raise RuntimeError("AI_MAX_CONCURRENCY must be a positive integer.")

        ai_question_count = _read_int("AI_QUESTION_COUNT", str(DEFAULT_AI_QUESTION_COUNT))
        if ai_question_count < 1 or ai_question_count > MAX_AI_QUESTION_COUNT:
            raise RuntimeError(f"AI_QUESTION_COUNT must be between 1 and {MAX_AI_QUESTION_COUNT}.")

        srs_min_ease_factor = _read_float("SRS_MIN_EASE_FACTOR", str(MIN_EASE_FACTOR))
        if srs_min_ease_factor <= 0:
            raise RuntimeError("SRS_MIN_EASE_FACTOR must be greater than zero.")

        srs_max_interval_days: Optional[int] = None
        if os.getenv("SRS_MAX_INTERVAL_DAYS"):
            srs_max_interval_days = _read_int("SRS_MAX_INTERVAL_DAYS", "0")
            if srs_max_interval_days < 1:
                raise RuntimeError("SRS_MAX_INTERVAL_DAYS must be a positive integer.")

        return cls(
            app_name=app_name,
            app_env=app_env,
            log_level=log_level,
            openai_api_key=openai_api_key,
            openai_model=openai_model,
            ai_timeout_seconds=ai_timeout_seconds,
            ai_max_concurrency=ai_max_concurrency,
            ai_question_count=ai_question_count,
            srs_min_ease_factor=srs_min_ease_factor,
            srs_max_interval_days=srs_max_interval_days,
        )

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            min_ease_factor=self.srs_min_ease_factor,
            max_interval_days=self.srs_max_interval_days,
        )
