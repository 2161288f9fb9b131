"""
Qdrant Vector Store - owner-scoped similarity search over saved content.

This module provides:
- One cosine collection holding every user's content vectors
- Owner filtering on every search, so one user never sees another's content
- A text excerpt in each point's payload, so the index doubles as the source
  of context snippets at query time (no second content fetch)

External item ids are arbitrary strings; Qdrant needs integers or UUIDs, so
ids are mapped to deterministic UUIDv5 values and the original id is kept in
the payload.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from .config import Settings, settings as default_settings
from .context import ContentCandidate, ContentType
from .errors import VectorStoreError

logger = logging.getLogger(__name__)

_POINT_NAMESPACE = uuid.UUID("6f9c2b8e-3d4a-5b1c-9e7f-0a2b4c6d8e10")

REQUIRED_METADATA = ("owner_id", "content_type", "text")
_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, ValueError)


def point_id_for(item_id: str) -> str:
    """Deterministic Qdrant point id for an external item id."""
    return str(uuid.uuid5(_POINT_NAMESPACE, str(item_id)))


def create_client(config: Optional[Settings] = None) -> AsyncQdrantClient:
    """Build a client for the configured remote URL or local path."""
    config = config or default_settings
    if config.qdrant_url:
        logger.info(f"Connecting to remote Qdrant at: {config.qdrant_url}")
        return AsyncQdrantClient(url=config.qdrant_url, api_key=config.qdrant_api_key)

    path = config.get_qdrant_path()
    logger.info(f"Initializing local Qdrant vector store at: {path}")
    return AsyncQdrantClient(path=path)


class QdrantVectorStore:
    """
    Vector search adapter backed by Qdrant.

    Call ensure_collection() once before use.
    """

    def __init__(
        self,
        client: Optional[AsyncQdrantClient] = None,
        collection: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        """
        Args:
            client: Qdrant client; built from settings if omitted.
                    Use AsyncQdrantClient(location=":memory:") for throwaway stores.
            collection: Collection name.
            dimension: Vector size (must match the embedder).
        """
        self.client = client or create_client()
        self.collection = collection or default_settings.qdrant_collection
        self.dimension = dimension or default_settings.embedding_dimension

    async def ensure_collection(self) -> None:
        """Ensure the collection exists with the proper configuration."""
        response = await self.client.get_collections()
        if self.collection in [c.name for c in response.collections]:
            return

        logger.info(f"Creating collection: {self.collection}")
        await self.client.create_collection(
            collection_name=self.collection,
            vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE)
        )
        await self.client.create_payload_index(
            collection_name=self.collection,
            field_name="owner_id",
            field_schema=PayloadSchemaType.KEYWORD,
        )

    async def upsert(self, item_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        """
        Store or replace one item's vector.

        Args:
            item_id: External content id.
            vector: Embedding of the item's text.
            metadata: Payload; must include owner_id, content_type and text.

        Raises:
            VectorStoreError: On missing metadata, a wrong dimension or a Qdrant failure.
        """
        missing = [k for k in REQUIRED_METADATA if k not in metadata]
        if missing:
            raise VectorStoreError(f"Missing metadata fields: {', '.join(missing)}")
        if len(vector) != self.dimension:
            raise VectorStoreError(
                f"Vector dimension {len(vector)} does not match collection dimension {self.dimension}"
            )

        payload = dict(metadata)
        payload["owner_id"] = str(payload["owner_id"])
        payload["content_type"] = ContentType.parse(str(payload["content_type"])).value
        payload["external_id"] = str(item_id)

        try:
            await self.client.upsert(
                collection_name=self.collection,
                points=[PointStruct(id=point_id_for(item_id), vector=vector, payload=payload)]
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to upsert item {item_id}: {e}") from e

    async def search(
        self,
        query_vector: List[float],
        owner_id: str,
        top_k: int = 5
    ) -> List[ContentCandidate]:
        """
        Find the owner's items most similar to query_vector.

        Returns:
            Candidates in the order Qdrant ranked them (descending score).

        Raises:
            VectorStoreError: If the search fails.
        """
        try:
            response = await self.client.query_points(
                collection_name=self.collection,
                query=query_vector,
                query_filter=Filter(must=[
                    FieldCondition(key="owner_id", match=MatchValue(value=str(owner_id)))
                ]),
                limit=top_k,
                with_payload=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Vector search failed: {e}") from e

        candidates = []
        for point in response.points:
            payload = point.payload or {}
            candidates.append(ContentCandidate(
                external_id=str(payload.get("external_id", point.id)),
                score=float(point.score),
                owner_id=str(payload.get("owner_id", owner_id)),
                content_type=ContentType.parse(payload.get("content_type", "document")),
                text=str(payload.get("text", "")),
            ))
        return candidates

    async def delete(self, item_id: str) -> None:
        """Remove an item's vector from the store."""
        try:
            await self.client.delete(
                collection_name=self.collection,
                points_selector=[point_id_for(item_id)]
            )
        except _QDRANT_ERRORS as e:
            raise VectorStoreError(f"Failed to delete item {item_id}: {e}") from e

    async def count(self, owner_id: Optional[str] = None) -> int:
        """Count stored vectors, optionally for one owner."""
        count_filter = None
        if owner_id is not None:
            count_filter = Filter(must=[
                FieldCondition(key="owner_id", match=MatchValue(value=str(owner_id)))
            ])
        result = await self.client.count(
            collection_name=self.collection,
            count_filter=count_filter,
            exact=True,
        )
        return result.count

    async def close(self) -> None:
        """Close the Qdrant client connection."""
        await self.client.close()
