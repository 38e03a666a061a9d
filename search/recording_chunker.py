"""
Recording Chunker

Turns a recording into IndexedChunks ready for the vector store:
- Transcript: semantically chunked, one IndexedChunk per chunk
- Title, summary, context: embedded whole, chunk_index 0

Usage:
    from search.recording_chunker import RecordingChunker

    chunker = RecordingChunker(embedder)
    chunks = await chunker.chunk_recording(recording)
"""

import logging
from typing import List, Optional

from .embeddings import EmbeddingProvider
from .models import IndexedChunk, Recording
from .semantic_chunker import SemanticChunker

logger = logging.getLogger(__name__)

# Fields embedded as a single chunk, in output order after the transcript
SINGLE_CHUNK_FIELDS = ('title', 'summary', 'context')


class RecordingChunker:
    """Chunk all searchable content of a recording."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        similarity_threshold: float = 0.5,
        max_chunk_tokens: int = 500,
        semantic_chunker: Optional[SemanticChunker] = None
    ):
        self.embedder = embedder
        self.semantic_chunker = semantic_chunker or SemanticChunker(
            embedder,
            similarity_threshold=similarity_threshold,
            max_chunk_tokens=max_chunk_tokens,
        )

    async def chunk_recording(self, recording: Recording) -> List[IndexedChunk]:
        """
        Chunk one recording.

        Returns transcript chunks first, then title, summary and context
        chunks for whichever of those fields are non-empty.
        """
        chunks: List[IndexedChunk] = []

        if recording.transcript.strip():
            transcript_chunks = await self.semantic_chunker.chunk_text(recording.transcript)
            for i, chunk in enumerate(transcript_chunks):
                chunks.append(self._indexed(recording.id, 'transcript', i, chunk.text, chunk.embedding))

        for field_name in SINGLE_CHUNK_FIELDS:
            text = getattr(recording, field_name)
            if not text.strip():
                continue
            embedding = await self.embedder.embed(text)
            chunks.append(self._indexed(recording.id, field_name, 0, text, embedding))

        logger.debug(
            f"Chunked recording into {len(chunks)} chunks",
            extra={'recording_id': recording.id}
        )
        return chunks

    async def chunk_recordings(self, recordings: List[Recording]) -> List[IndexedChunk]:
        """Chunk recordings one after another and concatenate the results."""
        all_chunks: List[IndexedChunk] = []
        for recording in recordings:
            all_chunks.extend(await self.chunk_recording(recording))

        logger.info(f"Chunked {len(recordings)} recordings into {len(all_chunks)} chunks")
        return all_chunks

    def _indexed(self, recording_id, field_name, chunk_index, text, embedding) -> IndexedChunk:
        return IndexedChunk(
            recording_id=recording_id,
            field=field_name,
            chunk_index=chunk_index,
            chunk_text=text,
            embedding=embedding,
            dimensions=self.embedder.dimensions,
        )
