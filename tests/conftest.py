"""
Shared fixtures for the search tests.

FakeEmbedder produces deterministic bag-of-words vectors: texts sharing
words have positive cosine similarity, texts with no words in common are
orthogonal. No model is downloaded.
"""

import hashlib
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import EmbeddingError
from search.embeddings import EmbeddingProvider, normalize
from search.models import Recording

DIMENSIONS = 256


class FakeEmbedder(EmbeddingProvider):
    """Deterministic embedding capability for tests."""

    def __init__(
        self,
        dimensions: int = DIMENSIONS,
        vectors: Optional[Dict[str, np.ndarray]] = None,
        fail_on: Optional[set] = None,
        fail_all: bool = False
    ):
        self._dimensions = dimensions
        self.vectors = vectors or {}
        self.fail_on = fail_on or set()
        self.fail_all = fail_all
        self.embed_calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector_for(self, text: str) -> np.ndarray:
        if text in self.vectors:
            return normalize(np.asarray(self.vectors[text], dtype=np.float64))

        vec = np.zeros(self._dimensions)
        for word in re.findall(r'[a-z0-9]+', text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimensions
            vec[bucket] += 1.0
        return normalize(vec)

    def _check(self, text: str) -> None:
        if self.fail_all or any(marker in text for marker in self.fail_on):
            raise EmbeddingError("Fake embedding failure", text=text)

    async def embed(self, text: str) -> np.ndarray:
        self.validate_texts([text])
        self.embed_calls.append(text)
        self._check(text)
        return self.vector_for(text)

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        if not texts:
            return []
        self.validate_texts(texts)
        self.batch_calls.append(list(texts))
        for text in texts:
            self._check(text)
        return [self.vector_for(t) for t in texts]


class InMemoryRecordingStore:
    """Recording store backed by a dict, for tests."""

    def __init__(self, recordings: Optional[List[Recording]] = None):
        self.recordings: Dict[str, Recording] = {r.id: r for r in (recordings or [])}
        self.list_calls = 0
        self.fail_listing = False

    def list_recordings(self) -> List[Recording]:
        self.list_calls += 1
        if self.fail_listing:
            raise OSError("storage unavailable")
        return list(self.recordings.values())

    def get_recording(self, recording_id: str) -> Optional[Recording]:
        return self.recordings.get(recording_id)

    def put(self, recording: Recording) -> None:
        self.recordings[recording.id] = recording

    def delete(self, recording_id: str) -> None:
        self.recordings.pop(recording_id, None)


def make_recording(recording_id: str, **fields) -> Recording:
    fields.setdefault('timestamp', datetime(2024, 5, 1, 9, 30))
    return Recording(id=recording_id, **fields)


SAMPLE_RECORDINGS = [
    make_recording(
        'rec-standup',
        title='Team standup',
        transcript=(
            'Had a great meeting today. Discussed the Q4 roadmap. '
            'Everyone agreed on priorities.'
        ),
        summary='Q4 roadmap planning with the team',
        tags=['work', 'planning'],
    ),
    make_recording(
        'rec-groceries',
        title='Shopping list',
        transcript='Need to pick up groceries. Milk, eggs, bread.',
        tags=['errands'],
    ),
    make_recording(
        'rec-running',
        title='Morning run',
        transcript='Ran five kilometers along the river. Legs felt strong.',
        context='Training for the autumn half marathon',
        tags=['health', 'running'],
    ),
]


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def sample_recordings():
    return list(SAMPLE_RECORDINGS)


@pytest.fixture
def recording_store(sample_recordings):
    return InMemoryRecordingStore(sample_recordings)


@pytest.fixture
def fake_embedder_factory():
    return FakeEmbedder


@pytest.fixture
def store_factory():
    return InMemoryRecordingStore
