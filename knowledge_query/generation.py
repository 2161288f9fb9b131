"""
Generation backends.

The pipeline only needs ``generate(prompt, params) -> text``. Backends signal
upstream rate limiting with RateLimitExceeded so the orchestrator can shrink
the request and retry; every other failure is a GenerationError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import anthropic

from .config import settings
from .errors import GenerationError, RateLimitExceeded

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "Provide very concise answers based on the context provided. "
    "Keep responses brief and focused."
)
EMPTY_RESPONSE_MESSAGE = "Sorry, I couldn't generate a response."


@dataclass(frozen=True)
class GenerationParams:
    max_tokens: int
    temperature: float
    model: str


class Generator(Protocol):
    """Anything that can turn a prompt into text."""

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        ...


def build_prompt(query: str, context: str) -> str:
    """Render the single user message sent to the model."""
    return (
        f"{SYSTEM_INSTRUCTION}\n\n"
        f"Context:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Provide a brief response."
    )


def is_rate_limit_error(error: BaseException) -> bool:
    """True if an SDK error means the caller is being rate or quota limited."""
    if isinstance(error, anthropic.RateLimitError):
        return True
    if getattr(error, "status_code", None) == 429:
        return True

    body = getattr(error, "body", None)
    if isinstance(body, dict):
        detail = body.get("error", body)
        error_type = detail.get("type") if isinstance(detail, dict) else None
        if isinstance(error_type, str) and error_type.startswith("rate_limit"):
            return True
    return False


def _retry_after(error: BaseException) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class AnthropicGenerator:
    """Generator backed by the Anthropic messages API."""

    def __init__(self, client: Optional[Any] = None, api_key: Optional[str] = None):
        # With api_key=None the SDK reads ANTHROPIC_API_KEY itself
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key or settings.anthropic_api_key
        )

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        """
        Send prompt as a single user message.

        Raises:
            RateLimitExceeded: The API rate limit or quota was hit.
            GenerationError: Any other API failure.
        """
        try:
            completion = await self.client.messages.create(
                model=params.model,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            if is_rate_limit_error(e):
                raise RateLimitExceeded(str(e), retry_after=_retry_after(e)) from e
            raise GenerationError(str(e)) from e

        for block in completion.content or []:
            text = getattr(block, "text", None)
            if text:
                return text

        logger.warning(f"Model {params.model} returned no text content")
        return EMPTY_RESPONSE_MESSAGE
