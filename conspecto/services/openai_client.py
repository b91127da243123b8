"""Helpers for configuring the OpenAI client."""

from typing import Optional

from openai import AsyncOpenAI


def build_openai_client(api_key: str, timeout: Optional[float] = None, max_retries: int = 2) -> AsyncOpenAI:
    """Create a configured AsyncOpenAI client."""
    if timeout is None:
        return AsyncOpenAI(api_key=api_key, max_retries=max_retries)
    return AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)
