"""
Local Embeddings for Semantic Search

Uses sentence-transformers for local embedding generation, truncated
Matryoshka-style to a fixed dimension and renormalised so every vector
in the index has the same length and unit norm.

Features:
- Async embedding capability (single and batch)
- Injected model cache instead of module globals
- Numpy vector helpers: normalise, truncate, pool, cosine similarity

Usage:
    from search.embeddings import SentenceTransformerEmbedder

    embedder = SentenceTransformerEmbedder(dimensions=256)
    vec = await embedder.embed("search query")
    vecs = await embedder.embed_batch(["first", "second"])
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.errors import ConfigurationError, EmbeddingError, InvalidInputError
from .models import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'all-MiniLM-L6-v2'


# =============================================================================
# Vector Helpers
# =============================================================================

def normalize(vec: np.ndarray) -> np.ndarray:
    """Scale to unit L2 norm. A zero vector is returned unchanged."""
    vec = np.asarray(vec, dtype=np.float64)
    norm = np.linalg.norm(vec)
    if norm == 0:
        return vec
    return vec / norm


def truncate_embedding(
    embedding: Sequence[float],
    target_dimensions: int,
    renormalize: bool = True
) -> np.ndarray:
    """
    Keep the first target_dimensions values of an embedding.

    Args:
        embedding: Full-size embedding
        target_dimensions: Number of leading dimensions to keep
        renormalize: Rescale the result to unit length

    Returns:
        Truncated (and optionally renormalised) vector

    Raises:
        InvalidInputError: If target_dimensions exceeds the embedding length
    """
    vec = np.asarray(embedding, dtype=np.float64)
    if target_dimensions > vec.shape[0]:
        raise InvalidInputError(
            f"Cannot truncate {vec.shape[0]}-dimensional embedding to {target_dimensions}",
            source_dimensions=vec.shape[0],
            target_dimensions=target_dimensions
        )

    truncated = vec[:target_dimensions]
    return normalize(truncated) if renormalize else truncated.copy()


def is_normalized(vec: Sequence[float], tolerance: float = 1e-6) -> bool:
    """True if the vector's L2 norm is within tolerance of 1."""
    return abs(float(np.linalg.norm(np.asarray(vec, dtype=np.float64))) - 1.0) <= tolerance


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns:
        Cosine similarity score (-1 to 1), 0.0 if either vector is zero
    """
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(vec1, vec2) / (norm1 * norm2))


def mean_pool(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Element-wise mean of the vectors, renormalised to unit length."""
    if len(vectors) == 1:
        return np.asarray(vectors[0], dtype=np.float64)
    return normalize(np.mean(np.vstack(vectors), axis=0))


# =============================================================================
# Embedding Capability
# =============================================================================

class EmbeddingProvider(ABC):
    """
    Async embedding capability.

    Implementations return unit-normalised vectors of exactly
    `dimensions` floats and reject empty or whitespace-only text.
    """

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of every returned vector."""

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed one text."""

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Embed many texts, one vector per input in order."""

    @staticmethod
    def validate_texts(texts: Sequence[str]) -> None:
        """Raise InvalidInputError naming the first empty text."""
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise InvalidInputError(f"Text at index {i} is empty", index=i)


# =============================================================================
# Model Cache
# =============================================================================

class ModelCache:
    """
    Loaded sentence-transformers models keyed by name.

    Owned by the caller and shared between embedders so a model is
    loaded once per process. Call clear() or evict() to release memory.
    """

    def __init__(self):
        self._models: Dict[str, object] = {}
        self._lock = threading.Lock()

    def get(self, model_name: str):
        """Return the model, loading it on first use."""
        with self._lock:
            model = self._models.get(model_name)
            if model is None:
                model = self._load(model_name)
                self._models[model_name] = model
            return model

    def _load(self, model_name: str):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Install with: pip install sentence-transformers"
            )

        logger.info(f"Loading embedding model: {model_name}")
        try:
            return SentenceTransformer(model_name)
        except Exception as e:
            raise EmbeddingError(
                f"Failed to load embedding model {model_name}: {e}",
                original_error=e,
                model=model_name
            ) from e

    def evict(self, model_name: str) -> bool:
        with self._lock:
            return self._models.pop(model_name, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._models.clear()

    def __contains__(self, model_name: str) -> bool:
        return model_name in self._models


class SentenceTransformerEmbedder(EmbeddingProvider):
    """
    Embedding capability backed by a local sentence-transformers model.

    Encoding runs in a worker thread so the event loop stays responsive.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        cache: Optional[ModelCache] = None,
        batch_size: int = 32
    ):
        """
        Initialize the embedder.

        Args:
            model_name: Name of the sentence-transformers model to use.
                        Default is 'all-MiniLM-L6-v2' (384d, fast).
                        Matryoshka-trained models such as
                        'nomic-ai/nomic-embed-text-v1.5' keep more quality
                        after truncation.
            dimensions: Output dimension after truncation
            cache: Shared model cache (a private one is created if None)
            batch_size: Batch size passed to the model
        """
        self.model_name = model_name
        self._dimensions = dimensions
        self.cache = cache if cache is not None else ModelCache()
        self.batch_size = batch_size

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model(self):
        """Lazy load the model through the cache."""
        model = self.cache.get(self.model_name)
        native = model.get_sentence_embedding_dimension()
        if native is not None and native < self._dimensions:
            raise ConfigurationError(
                f"Model {self.model_name} produces {native} dimensions, "
                f"fewer than the configured {self._dimensions}"
            )
        return model

    async def embed(self, text: str) -> np.ndarray:
        self.validate_texts([text])
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        if not texts:
            return []
        self.validate_texts(texts)
        logger.debug(f"Embedding batch of {len(texts)} texts")
        return await asyncio.to_thread(self._encode, list(texts))

    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        model = self.model
        try:
            raw = model.encode(
                texts,
                batch_size=self.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingError(
                f"Embedding failed: {e}",
                original_error=e,
                model=self.model_name
            ) from e

        return [truncate_embedding(row, self._dimensions) for row in raw]
