"""
Semantic Chunking

Groups consecutive sentences into chunks by embedding similarity.

Algorithm:
1. Split text into sentences
2. Embed all sentences in one batch
3. Start a new chunk when adjacent sentences drift apart
   (cosine below threshold) or the chunk would exceed the token cap
4. Mean-pool the member sentence embeddings into the chunk embedding

Sentence embeddings are reused for pooling, so chunking costs exactly
one embedding call per sentence.

Usage:
    from search.semantic_chunker import SemanticChunker

    chunker = SemanticChunker(embedder, similarity_threshold=0.5)
    chunks = await chunker.chunk_text(transcript)
"""

import logging
from typing import List, Optional

import numpy as np

from core.errors import EmbeddingError
from .embeddings import EmbeddingProvider, cosine_similarity, mean_pool
from .models import Chunk, estimate_tokens
from .sentence_splitter import SentenceSplitter

logger = logging.getLogger(__name__)


class SemanticChunker:
    """
    Chunk text into semantically coherent units.

    similarity_threshold: cosine below which adjacent sentences are split
        (0.3 = aggressive splitting, 0.5 = balanced, 0.7 = conservative)
    max_chunk_tokens: hard cap on estimated tokens per chunk; a single
        sentence longer than the cap still forms its own chunk
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        similarity_threshold: float = 0.5,
        max_chunk_tokens: int = 500,
        splitter: Optional[SentenceSplitter] = None
    ):
        self.embedder = embedder
        self.similarity_threshold = similarity_threshold
        self.max_chunk_tokens = max_chunk_tokens
        self.splitter = splitter or SentenceSplitter()

    async def chunk_text(self, text: str) -> List[Chunk]:
        """
        Chunk text into semantic units with pooled embeddings.

        Args:
            text: Raw text, typically a transcript

        Returns:
            Chunks in order; their sentence ranges tile the sentence list
        """
        sentences = self.splitter.split(text)

        if not sentences:
            return []

        if len(sentences) == 1:
            embedding = await self.embedder.embed(sentences[0])
            return [Chunk(text=sentences[0], embedding=embedding, sentence_range=(0, 1))]

        embeddings = await self.embedder.embed_batch(sentences)
        if len(embeddings) != len(sentences):
            raise EmbeddingError(
                f"Expected {len(sentences)} embeddings, got {len(embeddings)}"
            )

        boundaries = self._find_boundaries(sentences, embeddings)
        chunks = self._create_chunks(sentences, embeddings, boundaries)

        logger.debug(f"Chunked {len(sentences)} sentences into {len(chunks)} chunks")
        return chunks

    def _find_boundaries(self, sentences: List[str], embeddings: List[np.ndarray]) -> List[int]:
        """Start indices of each chunk; always begins with 0."""
        boundaries = [0]
        current_tokens = estimate_tokens(sentences[0])

        for i in range(1, len(sentences)):
            sentence_tokens = estimate_tokens(sentences[i])

            if current_tokens + sentence_tokens > self.max_chunk_tokens:
                logger.debug(f"Forcing boundary at sentence {i} (token limit)")
                boundaries.append(i)
                current_tokens = sentence_tokens
                continue

            similarity = cosine_similarity(embeddings[i - 1], embeddings[i])
            if similarity < self.similarity_threshold:
                logger.debug(f"Boundary at sentence {i} (similarity: {similarity:.3f})")
                boundaries.append(i)
                current_tokens = sentence_tokens
            else:
                current_tokens += sentence_tokens

        return boundaries

    def _create_chunks(
        self,
        sentences: List[str],
        embeddings: List[np.ndarray],
        boundaries: List[int]
    ) -> List[Chunk]:
        chunks = []
        ends = boundaries[1:] + [len(sentences)]

        for start, end in zip(boundaries, ends):
            chunks.append(Chunk(
                text=' '.join(sentences[start:end]),
                embedding=mean_pool(embeddings[start:end]),
                sentence_range=(start, end),
            ))

        return chunks
