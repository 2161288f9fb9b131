"""Exceptions raised by the knowledge query pipeline."""

from typing import Optional


class KnowledgeQueryError(Exception):
    """Base class for pipeline errors."""


class GenerationError(KnowledgeQueryError):
    """The answer could not be generated."""


class RateLimitExceeded(GenerationError):
    """The generation backend reported a rate or quota limit."""

    def __init__(self, message: str = "rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class VectorStoreError(KnowledgeQueryError):
    """The vector index rejected or failed an operation."""
