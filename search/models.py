"""
Data models for the retrieval core.

Recording is the read-only unit owned by the recording store. IndexedChunk
is what the vector store persists; VectorSearchResult, KeywordMatch and
SearchResult are what the two retrieval paths and the fusion step return.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import numpy as np

from core.errors import DimensionMismatchError, InvalidInputError

# Default embedding dimension (Matryoshka truncation target)
EMBEDDING_DIMENSIONS = 256

CHUNK_FIELDS = ('transcript', 'title', 'summary', 'context')
FULL_RECORDING_FIELD = 'full'


# =============================================================================
# Recording
# =============================================================================

@dataclass
class Recording:
    """A journal recording as seen by the search layer."""
    id: str
    title: str = ''
    transcript: str = ''
    summary: str = ''
    context: str = ''
    tags: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    duration: float = 0.0
    file_size_bytes: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Recording':
        if not data.get('id'):
            raise InvalidInputError("Recording is missing an id")

        timestamp = data.get('timestamp')
        if isinstance(timestamp, str) and timestamp:
            timestamp = datetime.fromisoformat(timestamp)

        return cls(
            id=str(data['id']),
            title=data.get('title') or '',
            transcript=data.get('transcript') or '',
            summary=data.get('summary') or '',
            context=data.get('context') or '',
            tags=list(data.get('tags') or []),
            timestamp=timestamp or None,
            duration=float(data.get('duration') or 0.0),
            file_size_bytes=int(data.get('file_size_bytes') or 0),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'transcript': self.transcript,
            'summary': self.summary,
            'context': self.context,
            'tags': self.tags,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'duration': self.duration,
            'file_size_bytes': self.file_size_bytes,
        }


# =============================================================================
# Chunks
# =============================================================================

def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


@dataclass
class Chunk:
    """A semantically coherent run of sentences with a pooled embedding."""
    text: str
    embedding: np.ndarray
    sentence_range: Optional[Tuple[int, int]] = None

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.text)


@dataclass
class IndexedChunk:
    """
    A chunk as persisted in the vector store.

    Identified by (recording_id, field, chunk_index). The embedding length
    must equal the configured dimension; mismatches are rejected, never
    padded or truncated.
    """
    recording_id: str
    field: str
    chunk_index: int
    chunk_text: str
    embedding: np.ndarray
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None
    dimensions: int = field(default=EMBEDDING_DIMENSIONS, repr=False, compare=False)

    def __post_init__(self):
        if self.field not in CHUNK_FIELDS:
            raise InvalidInputError(f"Unknown chunk field: {self.field}", field=self.field)

        self.embedding = np.asarray(self.embedding, dtype=np.float64)
        if self.embedding.ndim != 1 or self.embedding.shape[0] != self.dimensions:
            raise DimensionMismatchError(
                f"Embedding must have {self.dimensions} dimensions, "
                f"got {self.embedding.shape[-1] if self.embedding.ndim else 0}",
                recording_id=self.recording_id,
                field=self.field,
                chunk_index=self.chunk_index,
            )


# =============================================================================
# Retrieval Results
# =============================================================================

@dataclass
class VectorSearchResult:
    """One chunk hit from the vector store."""
    chunk_id: Optional[int]
    recording_id: str
    field: str
    chunk_index: int
    chunk_text: str
    score: float

    def to_dict(self) -> dict:
        return {
            'chunk_id': self.chunk_id,
            'recording_id': self.recording_id,
            'field': self.field,
            'chunk_index': self.chunk_index,
            'chunk_text': self.chunk_text,
            'score': self.score,
        }


@dataclass
class KeywordMatch:
    """One recording hit from the BM25 index."""
    recording: Recording
    bm25_score: float
    rank: int
    matched_fields: FrozenSet[str] = frozenset()

    @property
    def recording_id(self) -> str:
        return self.recording.id


@dataclass
class SearchResult:
    """
    A fused hybrid search result.

    RRF scores usually fall between 0.01 and 0.10; a recording ranked
    first by both retrieval paths scores 2/60 with the default k.
    """
    recording: Recording
    matched_field: str
    rrf_score: float
    matched_chunk: Optional[str] = None
    matched_fields: FrozenSet[str] = frozenset()
    vector_score: Optional[float] = None
    vector_rank: Optional[int] = None
    keyword_score: Optional[float] = None
    keyword_rank: Optional[int] = None

    HIGH_RELEVANCE = 0.03
    MEDIUM_RELEVANCE = 0.02

    def __post_init__(self):
        if self.vector_score is None and self.keyword_score is None:
            raise InvalidInputError(
                "SearchResult needs a vector or keyword score",
                recording_id=self.recording.id
            )

    @property
    def relevance_label(self) -> str:
        if self.rrf_score > self.HIGH_RELEVANCE:
            return 'High relevance'
        if self.rrf_score > self.MEDIUM_RELEVANCE:
            return 'Medium relevance'
        return 'Low relevance'

    @property
    def has_vector_match(self) -> bool:
        return self.vector_score is not None

    @property
    def has_keyword_match(self) -> bool:
        return self.keyword_score is not None

    @property
    def is_both_match(self) -> bool:
        return self.has_vector_match and self.has_keyword_match

    def get_snippet(self, max_length: int = 150) -> str:
        """Matched chunk if any, else the start of the transcript."""
        text = self.matched_chunk or self.recording.transcript
        if len(text) <= max_length:
            return text
        return text[:max_length] + '...'

    def to_dict(self) -> dict:
        return {
            'recording_id': self.recording.id,
            'title': self.recording.title,
            'matched_field': self.matched_field,
            'matched_chunk': self.matched_chunk,
            'matched_fields': sorted(self.matched_fields),
            'rrf_score': self.rrf_score,
            'relevance': self.relevance_label,
            'vector_score': self.vector_score,
            'vector_rank': self.vector_rank,
            'keyword_score': self.keyword_score,
            'keyword_rank': self.keyword_rank,
            'snippet': self.get_snippet(),
        }
