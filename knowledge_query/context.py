"""
Context Assembler - builds the bounded context block handed to the generator.

Candidates arrive in the order the vector index ranked them. Assembly is
deterministic: empty excerpts are dropped, exact duplicates collapse to the
first occurrence, survivors are rendered as "<type>: <text>" and joined with a
blank line, and the result is truncated to the context token budget.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Tuple

from . import tokens

CONTEXT_SEPARATOR = "\n\n"


class ContentType(str, Enum):
    """Kinds of saved content."""
    DOCUMENT = "document"
    TWEET = "tweet"
    VIDEO = "video"
    LINK = "link"

    @classmethod
    def parse(cls, value: str) -> "ContentType":
        """Parse a content type name; 'youtube' is accepted for video."""
        normalized = (value or "").strip().lower()
        if normalized == "youtube":
            return cls.VIDEO
        return cls(normalized)


@dataclass(frozen=True)
class ContentCandidate:
    """One similarity search hit, scoped to its owner."""
    external_id: str
    score: float
    owner_id: str
    content_type: ContentType
    text: str


@dataclass(frozen=True)
class AssembledContext:
    """
    Context block ready for the prompt.

    Attributes:
        text: Rendered and truncated context
        token_count: Tokens in text
        excerpts: (content_type, text) pairs that survived deduplication
    """
    text: str
    token_count: int
    excerpts: Tuple[Tuple[ContentType, str], ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.text


def dedupe_candidates(candidates: Iterable[ContentCandidate]) -> List[ContentCandidate]:
    """Drop blank excerpts and exact-text duplicates, keeping first occurrences."""
    seen = set()
    unique = []
    for candidate in candidates:
        if not candidate.text or not candidate.text.strip():
            continue
        if candidate.text in seen:
            continue
        seen.add(candidate.text)
        unique.append(candidate)
    return unique


def render_candidate(candidate: ContentCandidate) -> str:
    return f"{candidate.content_type.value}: {candidate.text}"


def assemble_context(
    candidates: Iterable[ContentCandidate],
    max_context_tokens: int = 800
) -> AssembledContext:
    """
    Build the context block for a query.

    Args:
        candidates: Search hits in descending similarity order
        max_context_tokens: Token ceiling for the rendered block

    Returns:
        AssembledContext whose token_count never exceeds max_context_tokens
    """
    unique = dedupe_candidates(candidates)
    rendered = CONTEXT_SEPARATOR.join(render_candidate(c) for c in unique)
    text = tokens.truncate(rendered, max_context_tokens)

    return AssembledContext(
        text=text,
        token_count=tokens.count_tokens(text),
        excerpts=tuple((c.content_type, c.text) for c in unique),
    )
