"""
Query Orchestrator - answers a user's question over their own saved content.

Pipeline per query:
    EMBED -> RETRIEVE -> ASSEMBLE -> CACHE_CHECK -> QUOTA_CHECK
          -> PACE_AND_GENERATE -> CACHE_STORE -> DONE

If the generator reports a rate limit, the ASSEMBLE..GENERATE steps are
retried over a fixed ladder of progressively smaller option sets (output and
context budgets each scaled by retry_scale, caching forced on). When the
ladder is exhausted the near-duplicate cache lookup may still produce a
degraded answer; otherwise the failure reaches the caller.

QUOTA_CHECK reserves the estimated tokens before the call waits for the pacer,
so queries queued behind one another cannot all pass a stale counter. The
reservation is handed back if the call fails. Quota exhaustion is not an
error: the caller gets QUOTA_EXCEEDED_MESSAGE.

All shared state (response cache, quota counter, pacer) is owned by objects
passed in at construction, so isolated instances can be used in tests.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .cache import ResponseCache, TTLCache, make_cache_key
from .config import Settings, settings as default_settings
from .context import ContentCandidate, ContentType, assemble_context
from .errors import GenerationError, RateLimitExceeded, VectorStoreError
from .generation import (
    EMPTY_RESPONSE_MESSAGE,
    AnthropicGenerator,
    GenerationParams,
    Generator,
    build_prompt,
)
from .logging_config import with_request_id
from .pacer import RequestPacer
from .qdrant_store import QdrantVectorStore, create_client
from .quota import QuotaManager
from .tokens import count_tokens, load_encoding
from .vectors import Embedder, is_zero_vector

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED_MESSAGE = (
    "Daily API quota limit reached. Please try again tomorrow or use cached responses only."
)
SIMILAR_RESPONSE_PREFIX = "(Cached similar response due to API limits): "


@dataclass(frozen=True)
class QueryOptions:
    """Per-query generation and caching options."""
    max_tokens: int = 250
    temperature: float = 0.7
    model: str = "claude-3-haiku-20240307"
    cache_enabled: bool = True
    max_context_tokens: int = 800
    force_fresh: bool = False

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **overrides: Any) -> "QueryOptions":
        config = config or default_settings
        values = {
            "max_tokens": config.generation_max_tokens,
            "temperature": config.generation_temperature,
            "model": config.generation_model,
            "max_context_tokens": config.max_context_tokens,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def scaled(self, factor: float) -> "QueryOptions":
        """Shrunk copy used after a rate limit; caching is always on for retries."""
        return replace(
            self,
            max_tokens=max(1, int(self.max_tokens * factor)),
            max_context_tokens=int(self.max_context_tokens * factor),
            cache_enabled=True,
        )


def retry_ladder(options: QueryOptions, retries: int, scale: float) -> List[QueryOptions]:
    """The option sets tried in order: the original plus one shrunk set per retry."""
    ladder = [options]
    for _ in range(retries):
        ladder.append(ladder[-1].scaled(scale))
    return ladder


class QueryOutcome(str, Enum):
    GENERATED = "generated"
    CACHED = "cached"
    QUOTA_EXCEEDED = "quota_exceeded"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class QueryResult:
    """
    Answer plus how it was produced.

    Attributes:
        answer: Text returned to the user
        outcome: Which pipeline exit produced the answer
        attempts: Ladder steps used (0 when served from the answer cache)
    """
    answer: str
    outcome: QueryOutcome
    attempts: int = 1


class QueryOrchestrator:
    """Composes embedding, retrieval, context assembly, caching, quota and pacing."""

    def __init__(
        self,
        embedder: Embedder,
        store: QdrantVectorStore,
        generator: Generator,
        response_cache: Optional[ResponseCache] = None,
        quota: Optional[QuotaManager] = None,
        pacer: Optional[RequestPacer] = None,
        answer_cache: Optional[TTLCache] = None,
        default_options: Optional[QueryOptions] = None,
        max_retries: int = 2,
        retry_scale: float = 0.7,
        top_k: int = 5,
        similar_min_overlap: int = 2,
        excerpt_chars: int = 1500,
    ):
        self.embedder = embedder
        self.store = store
        self.generator = generator
        self.response_cache = response_cache or ResponseCache()
        self.quota = quota or QuotaManager()
        self.pacer = pacer or RequestPacer()
        self.answer_cache = answer_cache
        self.default_options = default_options or QueryOptions()
        self.max_retries = max_retries
        self.retry_scale = retry_scale
        self.top_k = top_k
        self.similar_min_overlap = similar_min_overlap
        self.excerpt_chars = excerpt_chars

    async def answer_query(
        self,
        owner_id: str,
        query: str,
        options: Optional[QueryOptions] = None
    ) -> str:
        """
        Answer query from owner_id's saved content.

        Returns:
            The answer text, a cached or degraded answer, or QUOTA_EXCEEDED_MESSAGE.

        Raises:
            GenerationError: Retrieval failed, generation failed for a reason
                other than rate limiting, or rate limiting persisted with no
                similar cached answer to fall back on.
        """
        result = await self.run_query(owner_id, query, options)
        return result.answer

    @with_request_id
    async def run_query(
        self,
        owner_id: str,
        query: str,
        options: Optional[QueryOptions] = None
    ) -> QueryResult:
        """Like answer_query, but reports how the answer was produced."""
        options = options or self.default_options
        answer_key = make_cache_key(owner_id, query)

        if self.answer_cache is not None and options.cache_enabled and not options.force_fresh:
            found, answer = self.answer_cache.get(answer_key)
            if found:
                logger.debug("Answer cache hit")
                return QueryResult(answer, QueryOutcome.CACHED, attempts=0)

        candidates = await self.retrieve(owner_id, query)
        result = await self._generate(query, candidates, options)

        if (
            self.answer_cache is not None
            and options.cache_enabled
            and result.outcome in (QueryOutcome.GENERATED, QueryOutcome.CACHED)
        ):
            self.answer_cache.set(answer_key, result.answer)

        return result

    async def retrieve(self, owner_id: str, query: str) -> List[ContentCandidate]:
        """Embed the query and fetch the owner's most similar items."""
        vector = await self.embedder.embed(query)
        if is_zero_vector(vector):
            logger.warning("Query embedding unavailable, answering without retrieved context")
            return []

        try:
            candidates = await self.store.search(vector, owner_id, top_k=self.top_k)
        except VectorStoreError as e:
            logger.error(f"Vector search failed for owner {owner_id}: {e}")
            raise GenerationError(f"Failed to generate response: {e}") from e

        logger.debug(f"Retrieved {len(candidates)} candidates")
        return candidates

    async def _generate(
        self,
        query: str,
        candidates: List[ContentCandidate],
        options: QueryOptions
    ) -> QueryResult:
        ladder = retry_ladder(options, self.max_retries, self.retry_scale)
        last_error: Optional[RateLimitExceeded] = None

        for attempt, step in enumerate(ladder, start=1):
            if last_error is not None:
                logger.warning(
                    f"Rate/quota limit hit. Retrying with smaller budget "
                    f"(attempt {attempt}/{len(ladder)}, max_tokens={step.max_tokens}, "
                    f"max_context_tokens={step.max_context_tokens})"
                )

            context = assemble_context(candidates, step.max_context_tokens)

            if step.cache_enabled and not step.force_fresh:
                entry = self.response_cache.get(query, context.text)
                if entry is not None:
                    return QueryResult(entry.response, QueryOutcome.CACHED, attempt)

            estimated = context.token_count + count_tokens(query) + step.max_tokens
            if not self.quota.reserve(estimated):
                return QueryResult(QUOTA_EXCEEDED_MESSAGE, QueryOutcome.QUOTA_EXCEEDED, attempt)

            params = GenerationParams(
                max_tokens=step.max_tokens,
                temperature=step.temperature,
                model=step.model,
            )
            prompt = build_prompt(query, context.text)

            try:
                async with self.pacer.slot():
                    response = await self.generator.generate(prompt, params)
            except RateLimitExceeded as e:
                self.quota.release(estimated)
                last_error = e
                continue
            except asyncio.CancelledError:
                self.quota.release(estimated)
                raise
            except Exception as e:
                self.quota.release(estimated)
                logger.error(f"Error querying generation backend: {e}", exc_info=True)
                raise GenerationError(f"Failed to generate response: {e}") from e

            response = response or EMPTY_RESPONSE_MESSAGE

            if step.cache_enabled:
                self.response_cache.set(query, context.text, response, count_tokens(response))

            return QueryResult(response, QueryOutcome.GENERATED, attempt)

        similar = self.response_cache.find_similar(query, self.similar_min_overlap)
        if similar is not None:
            logger.warning("Retries exhausted, serving similar cached response")
            return QueryResult(
                f"{SIMILAR_RESPONSE_PREFIX}{similar}", QueryOutcome.DEGRADED, len(ladder)
            )

        logger.error(f"Retries exhausted with no similar cached response: {last_error}")
        raise GenerationError(f"Failed to generate response: {last_error}") from last_error

    @with_request_id
    async def index_item(
        self,
        item_id: str,
        owner_id: str,
        content_type: Union[ContentType, str],
        text: str
    ) -> Dict[str, Any]:
        """
        Embed an item's raw text and store it with a context excerpt.

        Items whose embedding failed are not stored, since a zero vector has
        no cosine direction; the call still succeeds so ingestion is never blocked.

        Returns:
            Dict with item_id, indexed flag and excerpt length.
        """
        if not isinstance(content_type, ContentType):
            content_type = ContentType.parse(content_type)

        vector = await self.embedder.embed(text)
        if is_zero_vector(vector):
            logger.warning(f"Embedding failed for item {item_id}, not indexed")
            return {"item_id": item_id, "indexed": False, "excerpt_chars": 0}

        excerpt = (text or "")[:self.excerpt_chars]
        await self.store.upsert(item_id, vector, {
            "owner_id": owner_id,
            "content_type": content_type.value,
            "text": excerpt,
        })
        return {"item_id": item_id, "indexed": True, "excerpt_chars": len(excerpt)}

    async def remove_item(self, item_id: str) -> None:
        await self.store.delete(item_id)

    def status(self) -> Dict[str, Any]:
        """Quota usage and cache statistics."""
        return {
            "quota": self.quota.stats,
            "response_cache": self.response_cache.stats,
            "answer_cache_size": len(self.answer_cache) if self.answer_cache is not None else 0,
        }

    async def close(self) -> None:
        await self.store.close()


async def build_orchestrator(
    config: Optional[Settings] = None,
    generator: Optional[Generator] = None,
) -> QueryOrchestrator:
    """
    Wire an orchestrator from settings, with the collection created if needed.

    Raises:
        KnowledgeQueryError: If the tokenizer encoding cannot be loaded.
    """
    config = config or default_settings
    await asyncio.to_thread(load_encoding)

    store = QdrantVectorStore(
        client=create_client(config),
        collection=config.qdrant_collection,
        dimension=config.embedding_dimension,
    )
    await store.ensure_collection()

    return QueryOrchestrator(
        embedder=Embedder(
            model_name=config.embedding_model,
            dimension=config.embedding_dimension,
            max_chars=config.embedding_max_chars,
        ),
        store=store,
        generator=generator or AnthropicGenerator(api_key=config.anthropic_api_key),
        response_cache=ResponseCache(ttl=config.cache_duration_seconds),
        quota=QuotaManager(daily_limit=config.daily_token_limit),
        pacer=RequestPacer(
            min_interval=config.min_request_interval,
            max_concurrent=config.max_concurrent_requests,
        ),
        answer_cache=TTLCache(
            ttl=config.answer_cache_ttl_seconds,
            maxsize=config.answer_cache_maxsize,
        ),
        default_options=QueryOptions.from_settings(config),
        max_retries=config.max_retries,
        retry_scale=config.retry_scale,
        top_k=config.search_top_k,
        similar_min_overlap=config.similar_min_overlap,
        excerpt_chars=config.excerpt_chars,
    )
