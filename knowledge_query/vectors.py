"""
Vector Embeddings - text to unit-length vectors with sentence-transformers.

This module provides:
- Text cleanup before embedding (whitespace collapse, length cap)
- L2 normalization of model output
- Fail-soft behaviour: a broken or mismatched embedding becomes a zero vector
  of the expected dimension instead of an exception

A zero vector matches nothing, so a failed embedding degrades relevance but
keeps ingestion and querying alive.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from .config import settings

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Loaded models by name (lazy loaded, shared across all embedders)
_models: Dict[str, SentenceTransformer] = {}


def _get_model(model_name: Optional[str] = None) -> SentenceTransformer:
    """Get or create an embedding model (lazy loading, shared across embedders)."""
    name = model_name or settings.embedding_model

    if name not in _models:
        logger.info(f"Loading embedding model ({name})...")
        _models[name] = SentenceTransformer(name)
        logger.info("Embedding model loaded.")

    return _models[name]


def clean_text(text: str, max_chars: int = 8192) -> str:
    """Collapse whitespace runs, trim, and cap the length."""
    return _WHITESPACE.sub(" ", text or "").strip()[:max_chars]


def zero_vector(dimension: int) -> List[float]:
    return [0.0] * dimension


def is_zero_vector(vector: List[float]) -> bool:
    """True if every component is zero (the fail-soft embedding)."""
    return not any(vector)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """
    L2-normalize each row of a 2-D array.

    Raises:
        ValueError: If any row has zero or non-finite norm.
    """
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    if not np.all(np.isfinite(norms)) or np.any(norms == 0):
        raise ValueError("Cannot normalize a zero or non-finite embedding")
    return matrix / norms


class Embedder:
    """
    Embedding adapter with a fixed output dimension.

    The model may be injected (anything with a sentence-transformers style
    ``encode(texts, convert_to_numpy=True)``); otherwise the shared
    SentenceTransformer named by model_name (default settings.embedding_model)
    is loaded on first use.
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        model_name: Optional[str] = None,
        dimension: Optional[int] = None,
        max_chars: Optional[int] = None,
    ):
        self._model = model
        self.model_name = model_name or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self.max_chars = max_chars or settings.embedding_max_chars

    @property
    def model(self) -> Any:
        if self._model is None:
            self._model = _get_model(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> np.ndarray:
        raw = self.model.encode(texts, convert_to_numpy=True)
        matrix = np.atleast_2d(np.asarray(raw, dtype=np.float64))

        if matrix.shape[0] != len(texts):
            raise ValueError(
                f"Embedding model returned {matrix.shape[0]} rows for {len(texts)} texts"
            )
        if matrix.shape[1] != self.dimension:
            raise ValueError(
                f"Invalid embedding dimension: {matrix.shape[1]} (expected {self.dimension})"
            )

        return normalize_rows(matrix)

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Returns:
            A unit-norm vector of length `dimension`, or a zero vector on failure.
        """
        cleaned = clean_text(text, self.max_chars)
        try:
            matrix = await asyncio.to_thread(self._encode, [cleaned])
        except Exception as e:
            logger.error(f"Error generating embedding: {e}", exc_info=True)
            return zero_vector(self.dimension)

        return matrix[0].tolist()

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts in one model call.

        Returns:
            One vector per input text. If the batch fails, every row is a zero vector.
        """
        if not texts:
            return []

        cleaned = [clean_text(t, self.max_chars) for t in texts]
        try:
            matrix = await asyncio.to_thread(self._encode, cleaned)
        except Exception as e:
            logger.error(f"Error generating batch embeddings: {e}", exc_info=True)
            return [zero_vector(self.dimension) for _ in texts]

        return matrix.tolist()
