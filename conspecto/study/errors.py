"""Exceptions raised by the study core."""

from __future__ import annotations


class ConspectoError(Exception):
    """Base class for study core failures."""


class ValidationError(ConspectoError):
    """Rejected input: missing identifiers, malformed requests, foreign ownership."""


class InvalidQualityError(ValidationError):
    """A review quality outside of the 0..5 range."""

    def __init__(self, quality: object) -> None:
        super().__init__(f"Review quality must be an integer between 0 and 5, got {quality!r}.")
        self.quality = quality


class NotFoundError(ConspectoError):
    """A note, folder, question or session that does not exist."""


class InvalidTransitionError(ConspectoError):
    """An AI review session event that is not allowed in the current state."""


class ProviderError(ConspectoError):
    """The AI provider failed to generate or evaluate."""


class ProviderUnavailableError(ProviderError):
    """The AI provider could not be reached at all."""


class PersistenceError(ConspectoError):
    """Reading or writing durable state failed."""
