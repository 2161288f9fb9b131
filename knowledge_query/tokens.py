"""
Token counting and truncation.

Every budget in the pipeline (context ceiling, output tokens, daily quota) is
denominated in the units produced here, so counting and truncation share one
tiktoken encoding.
"""

import logging
from typing import List, Optional

import tiktoken

from .config import settings
from .errors import KnowledgeQueryError

logger = logging.getLogger(__name__)

# Global encoding instance (lazy loaded, shared across all callers)
_encoding: Optional[tiktoken.Encoding] = None


def _get_encoding() -> tiktoken.Encoding:
    """Get or create the tokenizer encoding."""
    global _encoding

    if _encoding is None:
        logger.info(f"Loading tokenizer encoding ({settings.tokenizer_encoding})...")
        _encoding = tiktoken.get_encoding(settings.tokenizer_encoding)

    return _encoding


def load_encoding() -> None:
    """
    Load the encoding up front.

    tiktoken fetches the BPE files on first use unless TIKTOKEN_CACHE_DIR
    already holds them, so an offline host fails here rather than mid-query.

    Raises:
        KnowledgeQueryError: If the encoding cannot be loaded.
    """
    try:
        _get_encoding()
    except Exception as e:
        raise KnowledgeQueryError(
            f"Failed to load tokenizer encoding {settings.tokenizer_encoding!r}: {e}"
        ) from e


def encode(text: str) -> List[int]:
    """Encode text to token ids. Special-token markers are treated as plain text."""
    return _get_encoding().encode(text, disallowed_special=())


def count_tokens(text: str) -> int:
    """Count tokens in text."""
    if not text:
        return 0
    return len(encode(text))


def truncate(text: str, max_tokens: int) -> str:
    """
    Truncate text to at most max_tokens tokens.

    Text already within budget is returned unchanged, which makes the
    operation idempotent. A cut that lands inside a multi-byte character
    drops the partial character; if re-encoding the decoded prefix would
    still exceed the budget the prefix is shortened further.
    """
    if max_tokens <= 0:
        return ""

    tokens = encode(text)
    if len(tokens) <= max_tokens:
        return text

    enc = _get_encoding()
    limit = max_tokens
    while limit > 0:
        candidate = enc.decode_bytes(tokens[:limit]).decode("utf-8", errors="ignore")
        if count_tokens(candidate) <= max_tokens:
            return candidate
        limit -= 1

    return ""
